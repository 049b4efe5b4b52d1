from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from eduspace_realtime.database.connection import mongo_db_dependency
from eduspace_realtime.repositories.device_repository import DeviceRepository
from eduspace_realtime.utils.dependencies import get_current_user_id


router = APIRouter(prefix="/devices", tags=["push"])


class RegisterDeviceRequest(BaseModel):

    platform: Literal["fcm", "webpush"]
    token: str


@router.post("/register")
async def register_device(payload: RegisterDeviceRequest, user_id: str = Depends(get_current_user_id), db=Depends(mongo_db_dependency)):
    repo = DeviceRepository(db)
    doc = await repo.register(user_id, payload.platform, payload.token)
    return {"ok": True, "device": {"platform": doc["platform"], "token": doc["token"]}}
