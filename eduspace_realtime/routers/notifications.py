import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo.errors import PyMongoError

from eduspace_realtime.repositories.message_repository import MessageRepository
from eduspace_realtime.repositories.notification_repository import NotificationRepository
from eduspace_realtime.schemas.notifications import FanOutRequest, FanOutResult, NavigationTarget, NotificationOut, UnreadCounts
from eduspace_realtime.services.notification_center import NotificationCenter
from eduspace_realtime.services.notification_engine import NotificationFanOut
from eduspace_realtime.utils.dependencies import (
    get_current_user_id,
    get_fan_out,
    get_message_repository,
    get_notification_center,
    get_notification_repository,
)
from eduspace_realtime.utils.errors import NotificationNotFoundError


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(limit: Optional[int] = Query(None, ge=1, le=100), user_id: str = Depends(get_current_user_id), center: NotificationCenter = Depends(get_notification_center)):
    items = await center.list(user_id, limit=limit)
    return {"items": [NotificationOut.from_document(it) for it in items]}


@router.get("/unread_count", response_model=UnreadCounts)
async def unread_count(
    user_id: str = Depends(get_current_user_id),
    notification_repo: NotificationRepository = Depends(get_notification_repository),
    message_repo: MessageRepository = Depends(get_message_repository),
):
    return UnreadCounts(
        notifications=await notification_repo.count_unread(user_id),
        messages=await message_repo.count_unread(user_id),
    )


@router.post("/read_all")
async def mark_all_read(user_id: str = Depends(get_current_user_id), center: NotificationCenter = Depends(get_notification_center)):
    return {"updated": await center.mark_all_as_read(user_id)}


@router.post("/{notification_id}/read")
async def mark_read(notification_id: str, user_id: str = Depends(get_current_user_id), center: NotificationCenter = Depends(get_notification_center)):
    try:
        changed = await center.mark_as_read(notification_id, user_id)
    except NotificationNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)
    return {"updated": int(changed)}


@router.post("/{notification_id}/open", response_model=NavigationTarget)
async def open_notification(notification_id: str, role: Optional[str] = None, user_id: str = Depends(get_current_user_id), center: NotificationCenter = Depends(get_notification_center)):
    try:
        return await center.open(notification_id, user_id, role=role)
    except NotificationNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)


@router.delete("")
async def clear_all(user_id: str = Depends(get_current_user_id), center: NotificationCenter = Depends(get_notification_center)):
    return {"deleted": await center.clear_all(user_id)}


@router.post("/fan_out", response_model=FanOutResult)
async def fan_out(body: FanOutRequest, user_id: str = Depends(get_current_user_id), engine: NotificationFanOut = Depends(get_fan_out)):
    """Ingest a domain event raised by another feature (assignments, grading, invitations)."""
    try:
        return await engine.notify(body.event, body.recipient_ids, idempotency_key=body.idempotency_key)
    except PyMongoError:
        logger.error("Fan-out of %s event from %s aborted", body.event.type, user_id, exc_info=True)
        raise HTTPException(status_code=502, detail="Notification store unavailable")
