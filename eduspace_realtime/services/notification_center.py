import logging
from typing import Any, Dict, List, Optional

from eduspace_realtime.repositories.notification_repository import NotificationRepository
from eduspace_realtime.schemas.notifications import NavigationTarget
from eduspace_realtime.utils.errors import NotificationNotFoundError


logger = logging.getLogger(__name__)


class NotificationCenter:
    """Recipient-side operations on notifications: unread -> read -> cleared."""

    def __init__(self, notification_repo: NotificationRepository, page_size: int = 20) -> None:
        self._notification_repo = notification_repo
        self._page_size = page_size

    async def list(self, recipient_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return await self._notification_repo.list_for_recipient(recipient_id, limit=limit or self._page_size)

    async def mark_as_read(self, notification_id: str, recipient_id: str) -> bool:
        notification = await self._notification_repo.get(notification_id, recipient_id)
        if notification is None:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")
        if notification["is_read"]:
            return False
        return await self._notification_repo.mark_read(notification_id, recipient_id)

    async def mark_all_as_read(self, recipient_id: str) -> int:
        return await self._notification_repo.mark_all_read(recipient_id)

    async def clear_all(self, recipient_id: str) -> int:
        deleted = await self._notification_repo.delete_all(recipient_id)
        logger.info("Cleared %d notifications for %s", deleted, recipient_id)
        return deleted

    async def open(self, notification_id: str, recipient_id: str, role: Optional[str] = None) -> NavigationTarget:
        """Mark read and hand back where the click should lead."""
        notification = await self._notification_repo.get(notification_id, recipient_id)
        if notification is None:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")
        if not notification["is_read"]:
            await self._notification_repo.mark_read(notification_id, recipient_id)
        return NavigationTarget(
            type=notification["type"],
            related_id=notification.get("related_id"),
            class_id=notification.get("class_id"),
            role=role,
        )
