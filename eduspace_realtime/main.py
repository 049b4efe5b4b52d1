import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from eduspace_realtime.config import get_settings
from eduspace_realtime.database.connection import close_mongo_connection, connect_to_mongo, get_database
from eduspace_realtime.repositories.conversation_repository import ConversationRepository
from eduspace_realtime.repositories.device_repository import DeviceRepository
from eduspace_realtime.repositories.message_repository import MessageRepository
from eduspace_realtime.repositories.notification_repository import NotificationRepository
from eduspace_realtime.routers.chat import router as chat_router
from eduspace_realtime.routers.conversations import router as conversations_router
from eduspace_realtime.routers.devices import router as devices_router
from eduspace_realtime.routers.notifications import router as notifications_router
from eduspace_realtime.routers.realtime import router as realtime_router
from eduspace_realtime.utils.dependencies import close_channels
from eduspace_realtime.utils.logging import setup_logging
from eduspace_realtime.utils.realtime_bus import close_bus, get_bus


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):

    setup_logging(get_settings())
    await connect_to_mongo()
    db = get_database()
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
    await NotificationRepository(db).ensure_indexes()
    await DeviceRepository(db).ensure_indexes()
    logger.info("Realtime service started")
    try:
        yield
    finally:
        await close_channels()
        await close_bus()
        await close_mongo_connection()


app = FastAPI(title="EduSpace realtime messaging and notifications", lifespan=lifespan)


app.include_router(conversations_router)
app.include_router(chat_router)
app.include_router(notifications_router)
app.include_router(devices_router)
app.include_router(realtime_router)


@app.get("/health")
async def health():

    await get_database().command("ping")
    bus = await get_bus()
    return {"status": "ok", "realtime_bus": type(bus).__name__}
