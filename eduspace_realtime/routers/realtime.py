import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from eduspace_realtime.config import get_settings
from eduspace_realtime.repositories.message_repository import MessageRepository
from eduspace_realtime.repositories.notification_repository import NotificationRepository
from eduspace_realtime.schemas.messages import ConversationOut, MessageOut
from eduspace_realtime.schemas.notifications import UnreadCounts
from eduspace_realtime.services.conversation_list import ConversationList
from eduspace_realtime.services.conversation_registry import ConversationRegistry
from eduspace_realtime.services.message_stream import MessageService, MessageStream
from eduspace_realtime.services.unread_aggregator import UnreadAggregator
from eduspace_realtime.utils.change_feed import BroadcastChannel, ChangeFeed
from eduspace_realtime.utils.dependencies import (
    get_broadcast_channel,
    get_change_feed,
    get_conversation_registry,
    get_message_repository,
    get_notification_repository,
)
from eduspace_realtime.utils.logging import bind_context, clear_context


logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws/sessions/{user_id}")
async def session_socket(
    websocket: WebSocket,
    user_id: str,
    feed: ChangeFeed = Depends(get_change_feed),
    broadcast: BroadcastChannel = Depends(get_broadcast_channel),
    registry: ConversationRegistry = Depends(get_conversation_registry),
    message_repo: MessageRepository = Depends(get_message_repository),
    notification_repo: NotificationRepository = Depends(get_notification_repository),
):
    """One live client session.

    Client frames: ``{"action": "view", "conversation_id": ...}``,
    ``{"action": "typing"}``, ``{"action": "leave"}``, ``{"action": "resubscribe"}``.
    Server frames: ``unread``, ``conversations``, ``messages``, ``typing``, ``error``.
    """
    settings = get_settings()
    await websocket.accept()
    bind_context(user_id=user_id)

    service = MessageService(message_repo, registry, broadcast)

    async def send_unread(counts: UnreadCounts) -> None:
        await websocket.send_json({"type": "unread", **counts.model_dump()})

    async def send_conversations(items: List[Dict[str, Any]]) -> None:
        await websocket.send_json({
            "type": "conversations",
            "items": [ConversationOut.from_document(it).model_dump(mode="json") for it in items],
        })

    aggregator = UnreadAggregator(user_id, notification_repo, message_repo, feed, on_change=send_unread)
    conversations = ConversationList(user_id, registry, feed, limit=settings.conversation_list_size, on_change=send_conversations)
    stream: Optional[MessageStream] = None

    async def open_stream(conversation_id: str) -> MessageStream:
        async def send_messages(messages: List[Dict[str, Any]]) -> None:
            await websocket.send_json({
                "type": "messages",
                "conversation_id": conversation_id,
                "items": [MessageOut.from_document(m).model_dump(mode="json") for m in messages],
            })

        async def send_typing(users: List[str]) -> None:
            await websocket.send_json({"type": "typing", "conversation_id": conversation_id, "users": users})

        new_stream = MessageStream(
            conversation_id,
            user_id,
            message_repo,
            feed,
            broadcast,
            window_size=settings.message_window_size,
            typing_window=settings.typing_window_seconds,
            on_messages=send_messages,
            on_typing=send_typing,
        )
        return await new_stream.open()

    try:
        await aggregator.open()
        await conversations.open()
        while True:
            frame = await websocket.receive_json()
            action = frame.get("action") if isinstance(frame, dict) else None

            if action == "view":
                conversation_id = frame.get("conversation_id")
                if not conversation_id or await registry.get_for_participant(conversation_id, user_id) is None:
                    await websocket.send_json({"type": "error", "detail": "Conversation not found"})
                    continue
                if stream is not None:
                    await stream.close()
                    stream = None
                stream = await open_stream(conversation_id)
                continue

            if action == "typing":
                if stream is not None:
                    await service.notify_typing(stream.conversation_id, user_id)
                continue

            if action == "leave":
                if stream is not None:
                    await stream.close()
                    stream = None
                continue

            if action == "resubscribe":
                for live in (aggregator, conversations, stream):
                    if live is not None and live.dropped:
                        await live.resubscribe()
                continue

            await websocket.send_json({"type": "error", "detail": "Unknown action"})
    except WebSocketDisconnect:
        logger.info("Session for %s disconnected", user_id)
    finally:
        if stream is not None:
            await stream.close()
        await conversations.close()
        await aggregator.close()
        clear_context()
