"""Notification fan-out.

Given one domain event and an already-resolved recipient list, write one
notification row per recipient who has notifications switched on. Rows are
written independently: a failure for one recipient is logged and counted and
never blocks the others. Push delivery follows each created row when the
recipient has granted and enabled browser push.

Without an idempotency key the engine does not guard against the caller
invoking ``notify`` twice for the same event. With one, each recipient's row
is keyed ``<key>:<recipient_id>`` and written as an upsert, so a repeat call
creates nothing.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, Optional

from eduspace_realtime.repositories.device_repository import DeviceRepository
from eduspace_realtime.repositories.notification_repository import NotificationRepository
from eduspace_realtime.repositories.profile_repository import ProfileRepository
from eduspace_realtime.schemas.events import NotificationContent, NotificationEvent
from eduspace_realtime.schemas.notifications import FanOutResult
from eduspace_realtime.utils.notifications import push_tag


logger = logging.getLogger(__name__)


class NotificationFanOut:

    def __init__(
        self,
        notification_repo: NotificationRepository,
        profiles: ProfileRepository,
        devices: Optional[DeviceRepository] = None,
        push=None,
    ) -> None:
        self._notification_repo = notification_repo
        self._profiles = profiles
        self._devices = devices
        self._push = push

    async def notify(
        self,
        event: NotificationEvent,
        recipient_ids: Iterable[str],
        idempotency_key: Optional[str] = None,
    ) -> FanOutResult:
        content = event.render()
        result = FanOutResult()
        recipients = list(dict.fromkeys(r for r in recipient_ids if r))
        if not recipients:
            logger.debug("No recipients for %s event", content.type)
            return result

        # an unreadable preference store fails the whole call: never notify someone who opted out
        disabled = await self._profiles.get_disabled_user_ids(recipients)
        eligible = [r for r in recipients if r not in disabled]
        result.skipped = len(recipients) - len(eligible)

        fields = content.model_dump()
        outcomes = await asyncio.gather(
            *(self._deliver(recipient_id, fields, content, idempotency_key) for recipient_id in eligible),
            return_exceptions=True,
        )
        for recipient_id, outcome in zip(eligible, outcomes):
            if isinstance(outcome, Exception):
                result.failed += 1
                logger.error("Failed to notify %s of %s event", recipient_id, content.type, exc_info=outcome)
            elif outcome is None:
                result.duplicates += 1
            else:
                result.delivered += 1
                result.notification_ids.append(outcome["_id"])

        logger.info(
            "Fan-out %s: %d delivered, %d opted out, %d failed, %d duplicate",
            content.type,
            result.delivered,
            result.skipped,
            result.failed,
            result.duplicates,
        )
        return result

    async def _deliver(
        self,
        recipient_id: str,
        fields: Dict[str, Any],
        content: NotificationContent,
        idempotency_key: Optional[str],
    ) -> Optional[Dict[str, Any]]:
        if idempotency_key:
            doc = await self._notification_repo.create_once(recipient_id, fields, f"{idempotency_key}:{recipient_id}")
        else:
            doc = await self._notification_repo.create(recipient_id, fields)
        if doc is not None:
            await self._push_to(recipient_id, doc, content)
        return doc

    async def _push_to(self, recipient_id: str, doc: Dict[str, Any], content: NotificationContent) -> None:
        if self._push is None or not getattr(self._push, "enabled", False) or self._devices is None:
            return
        try:
            state = await self._profiles.get_push_subscription(recipient_id)
            if not state.get("enabled") or state.get("permission") != "granted":
                return
            tokens = await self._devices.get_tokens(recipient_id, platform="fcm")
            if not tokens:
                return
            data = {
                "notification_id": doc["_id"],
                "type": content.type,
                "related_id": content.related_id,
                "class_id": content.class_id,
                "tag": push_tag(content.type, content.related_id, content.class_id),
            }
            rejected = await self._push.send_fcm(tokens, content.title, content.message, data)
            for token in rejected:
                await self._devices.remove_token(token)
        except Exception:
            # the row exists; push is best effort on top of it
            logger.warning("Push for notification %s not sent", doc["_id"], exc_info=True)

    async def clear_for_related(self, recipient_id: str, notification_type: str, related_id: str) -> int:
        """Remove a recipient's notifications about one entity, e.g. an answered invitation."""
        return await self._notification_repo.delete_for_related(recipient_id, notification_type, related_id)
