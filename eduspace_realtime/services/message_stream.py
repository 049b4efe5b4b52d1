"""Durable message history of a conversation.

``MessageService`` is the write side (send, mark read, delete, typing).
``MessageStream`` is the read side for one viewer of one conversation: it
keeps a reconciled, store-ordered window of messages plus the set of users
currently typing, and is torn down with ``close()`` (or by leaving an
``async with`` block).
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pymongo.errors import PyMongoError

from eduspace_realtime.repositories.message_repository import MessageRepository
from eduspace_realtime.repositories.profile_repository import ProfileRepository
from eduspace_realtime.schemas.events import MessageEvent
from eduspace_realtime.schemas.messages import TypingSignal
from eduspace_realtime.services.conversation_registry import ConversationRegistry
from eduspace_realtime.services.notification_engine import NotificationFanOut
from eduspace_realtime.utils.change_feed import BroadcastChannel, ChangeEvent, ChangeFeed, Subscription
from eduspace_realtime.utils.errors import (
    EmptyMessageError,
    InvalidParticipantsError,
    MessageDeleteForbiddenError,
    MessageNotFoundError,
    MessageSendError,
)
from eduspace_realtime.utils.typing_tracker import TypingTracker


logger = logging.getLogger(__name__)

SNAPSHOT_LIMIT = 200


class MessageService:

    def __init__(
        self,
        message_repo: MessageRepository,
        registry: ConversationRegistry,
        broadcast: BroadcastChannel,
        engine: Optional[NotificationFanOut] = None,
        profiles: Optional[ProfileRepository] = None,
    ) -> None:
        self._message_repo = message_repo
        self._registry = registry
        self._broadcast = broadcast
        self._engine = engine
        self._profiles = profiles

    async def send(
        self,
        sender_id: str,
        receiver_id: str,
        content: str,
        conversation_id: Optional[str] = None,
        attachment: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        text = (content or "").strip()
        if not text and not attachment:
            raise EmptyMessageError("Message content cannot be empty")
        if sender_id == receiver_id:
            raise InvalidParticipantsError("Cannot send a message to yourself")

        try:
            if conversation_id is None:
                conversation_id = await self._registry.resolve(sender_id, receiver_id)
            else:
                convo = await self._registry.get_for_participant(conversation_id, sender_id)
                if convo is None or self._registry.other_participant(convo, sender_id) != receiver_id:
                    raise InvalidParticipantsError("Receiver is not part of this conversation")
            saved = await self._message_repo.save_message(
                conversation_id=conversation_id,
                sender_id=sender_id,
                receiver_id=receiver_id,
                content=text,
                attachment=attachment,
            )
        except PyMongoError as exc:
            logger.error("Failed to send message from %s to %s", sender_id, receiver_id, exc_info=True)
            raise MessageSendError("Failed to send message", exc) from exc

        snapshot = text or f"Attachment: {attachment.get('name', 'file')}"
        try:
            await self._registry.record_last_message(conversation_id, snapshot[:SNAPSHOT_LIMIT])
        except PyMongoError:
            # display cache only; the message itself is stored
            logger.warning("Could not refresh snapshot of conversation %s", conversation_id, exc_info=True)

        await self._notify_receiver(saved)
        return saved

    async def _notify_receiver(self, message: Dict[str, Any]) -> None:
        if self._engine is None:
            return
        try:
            sender_name = "Someone"
            if self._profiles is not None:
                names = await self._profiles.get_display_names([message["sender_id"]])
                sender_name = names[message["sender_id"]]
            event = MessageEvent(
                conversation_id=message["conversation_id"],
                sender_id=message["sender_id"],
                sender_name=sender_name,
                preview=message["content"] or "Sent an attachment",
            )
            await self._engine.notify(event, [message["receiver_id"]])
        except Exception:
            logger.warning("Message notification for %s not delivered", message["_id"], exc_info=True)

    async def mark_read(self, conversation_id: str, reader_id: str) -> int:
        modified = await self._message_repo.mark_read(conversation_id, reader_id)
        if modified:
            logger.debug("Marked %d messages read in %s for %s", modified, conversation_id, reader_id)
        return modified

    async def delete(self, message_id: str, requester_id: str) -> None:
        message = await self._message_repo.get(message_id)
        if message is None:
            raise MessageNotFoundError(f"Message {message_id} not found")
        if message["sender_id"] != requester_id:
            logger.warning("User %s tried to delete message %s sent by another user", requester_id, message_id)
            raise MessageDeleteForbiddenError("Only the sender can delete this message")
        if not await self._message_repo.delete(message):
            raise MessageNotFoundError(f"Message {message_id} not found")
        logger.info("Message %s deleted by sender", message_id)

    async def notify_typing(self, conversation_id: str, user_id: str) -> None:
        signal = TypingSignal(conversation_id=conversation_id, user_id=user_id, sent_at=time.time())
        await self._broadcast.publish_ephemeral(conversation_id, signal.model_dump())


MessagesCallback = Callable[[List[Dict[str, Any]]], Awaitable[None]]
TypingCallback = Callable[[List[str]], Awaitable[None]]


class MessageStream:

    def __init__(
        self,
        conversation_id: str,
        viewer_id: str,
        message_repo: MessageRepository,
        feed: ChangeFeed,
        broadcast: BroadcastChannel,
        window_size: int = 200,
        typing_window: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
        on_messages: Optional[MessagesCallback] = None,
        on_typing: Optional[TypingCallback] = None,
    ) -> None:
        self.conversation_id = conversation_id
        self.viewer_id = viewer_id
        self._message_repo = message_repo
        self._feed = feed
        self._broadcast = broadcast
        self._window_size = window_size
        self._on_messages = on_messages
        self._on_typing = on_typing
        self.typing = TypingTracker(window=typing_window, clock=clock)
        self.messages: List[Dict[str, Any]] = []
        self._subs: List[Subscription] = []
        self._generation = 0
        self._expiry_task: Optional[asyncio.Task] = None

    async def open(self) -> "MessageStream":
        try:
            # subscribe before the first fetch so nothing slips between them
            self._subs.append(await self._feed.subscribe("messages", {"conversation_id": self.conversation_id}, self._on_change))
            self._subs.append(await self._broadcast.subscribe_ephemeral(self.conversation_id, self._on_signal))
            await self.reconcile()
        except BaseException:
            await self.close()
            raise
        return self

    async def close(self) -> None:
        subs, self._subs = self._subs, []
        for sub in subs:
            await sub.close()
        if self._expiry_task is not None:
            self._expiry_task.cancel()
            self._expiry_task = None

    async def __aenter__(self) -> "MessageStream":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def dropped(self) -> bool:
        return any(sub.dropped for sub in self._subs)

    async def resubscribe(self) -> None:
        for sub in self._subs:
            await sub.resubscribe()
        await self.reconcile()

    async def reconcile(self) -> None:
        """Re-read the visible window from the store and replace the local view."""
        self._generation += 1
        generation = self._generation
        rows = await self._message_repo.latest_window(self.conversation_id, self._window_size)
        if generation != self._generation:
            # a later reconcile started meanwhile; its result wins
            return
        self.messages = rows
        if self._on_messages is not None:
            await self._on_messages(rows)

    async def _on_change(self, event: ChangeEvent) -> None:
        await self.reconcile()

    async def _on_signal(self, payload: Dict[str, Any]) -> None:
        user_id = payload.get("user_id")
        if not user_id or user_id == self.viewer_id:
            return
        self.typing.signal(user_id)
        await self._typing_changed()
        self._schedule_expiry()

    def typing_users(self) -> List[str]:
        return self.typing.typing_users()

    async def _typing_changed(self) -> None:
        if self._on_typing is not None:
            await self._on_typing(self.typing.typing_users())

    def _schedule_expiry(self) -> None:
        if self._expiry_task is not None:
            self._expiry_task.cancel()
        delay = self.typing.next_expiry_in()
        if delay is not None:
            self._expiry_task = asyncio.create_task(self._expire_after(delay))

    async def _expire_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._expiry_task = None
        if self.typing.expire():
            try:
                await self._typing_changed()
            except Exception:
                logger.warning("Typing listener for %s failed on expiry", self.conversation_id, exc_info=True)
        self._schedule_expiry()
