from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from eduspace_realtime.config import get_settings
from eduspace_realtime.database.connection import mongo_db_dependency
from eduspace_realtime.repositories.conversation_repository import ConversationRepository
from eduspace_realtime.repositories.device_repository import DeviceRepository
from eduspace_realtime.repositories.message_repository import MessageRepository
from eduspace_realtime.repositories.notification_repository import NotificationRepository
from eduspace_realtime.repositories.profile_repository import ProfileRepository
from eduspace_realtime.services.conversation_registry import ConversationRegistry
from eduspace_realtime.services.message_stream import MessageService
from eduspace_realtime.services.notification_center import NotificationCenter
from eduspace_realtime.services.notification_engine import NotificationFanOut
from eduspace_realtime.utils.change_feed import BroadcastChannel, ChangeFeed
from eduspace_realtime.utils.notifications import get_push
from eduspace_realtime.utils.realtime_bus import get_bus


_feed: Optional[ChangeFeed] = None
_broadcast: Optional[BroadcastChannel] = None


async def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    # identity is established upstream; this service only reads it
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return x_user_id


async def get_change_feed() -> ChangeFeed:
    global _feed
    if _feed is None:
        _feed = ChangeFeed(await get_bus())
    return _feed


async def get_broadcast_channel() -> BroadcastChannel:
    global _broadcast
    if _broadcast is None:
        _broadcast = BroadcastChannel(await get_bus())
    return _broadcast


async def close_channels() -> None:
    global _feed, _broadcast
    if _feed is not None:
        await _feed.close()
    if _broadcast is not None:
        await _broadcast.close()
    _feed = None
    _broadcast = None


def get_conversation_repository(db=Depends(mongo_db_dependency), feed: ChangeFeed = Depends(get_change_feed)) -> ConversationRepository:
    return ConversationRepository(db, feed)


def get_message_repository(db=Depends(mongo_db_dependency), feed: ChangeFeed = Depends(get_change_feed)) -> MessageRepository:
    return MessageRepository(db, feed)


def get_notification_repository(db=Depends(mongo_db_dependency), feed: ChangeFeed = Depends(get_change_feed)) -> NotificationRepository:
    return NotificationRepository(db, feed)


def get_profile_repository(db=Depends(mongo_db_dependency)) -> ProfileRepository:
    return ProfileRepository(db)


def get_conversation_registry(
    conversations: ConversationRepository = Depends(get_conversation_repository),
    profiles: ProfileRepository = Depends(get_profile_repository),
) -> ConversationRegistry:
    return ConversationRegistry(conversations, profiles)


async def get_fan_out(
    db=Depends(mongo_db_dependency),
    notifications: NotificationRepository = Depends(get_notification_repository),
    profiles: ProfileRepository = Depends(get_profile_repository),
) -> NotificationFanOut:
    return NotificationFanOut(notifications, profiles, devices=DeviceRepository(db), push=await get_push())


def get_message_service(
    messages: MessageRepository = Depends(get_message_repository),
    broadcast: BroadcastChannel = Depends(get_broadcast_channel),
    registry: ConversationRegistry = Depends(get_conversation_registry),
    engine: NotificationFanOut = Depends(get_fan_out),
    profiles: ProfileRepository = Depends(get_profile_repository),
) -> MessageService:
    return MessageService(messages, registry, broadcast, engine=engine, profiles=profiles)


def get_notification_center(notifications: NotificationRepository = Depends(get_notification_repository)) -> NotificationCenter:
    return NotificationCenter(notifications, page_size=get_settings().notification_page_size)
