import asyncio
import logging
from typing import Dict, List, Optional

from eduspace_realtime.config import get_settings


logger = logging.getLogger(__name__)

TAG_PREFIXES = {
    "message": "msg",
    "assignment": "assign",
    "announcement": "quiz",
    "schedule": "schedule",
    "submission": "submission",
    "grade": "grade",
}


def push_tag(notification_type: str, related_id: Optional[str] = None, class_id: Optional[str] = None) -> str:
    """Collapse key so a newer push for the same entity replaces the older one on the device."""
    prefix = TAG_PREFIXES.get(notification_type)
    if prefix is None:
        return f"eduspace-{notification_type}"
    return f"{prefix}-{related_id or class_id or 'general'}"


class NoopPush:

    enabled = False

    async def send_fcm(self, tokens: List[str], title: str, body: str, data: Optional[Dict[str, str]] = None) -> List[str]:
        return []


class FcmPush:

    enabled = True

    def __init__(self, service_account_file: str, project_id: str) -> None:
        from pyfcm import FCMNotification

        self._client = FCMNotification(service_account_file=service_account_file, project_id=project_id)

    async def send_fcm(self, tokens: List[str], title: str, body: str, data: Optional[Dict[str, str]] = None) -> List[str]:
        """Send to every token; returns the tokens FCM rejected."""
        from pyfcm.errors import FCMNotRegisteredError

        rejected: List[str] = []
        payload = {k: str(v) for k, v in (data or {}).items() if v is not None}
        for token in tokens:
            try:
                # pyfcm is sync
                await asyncio.to_thread(
                    self._client.notify,
                    fcm_token=token,
                    notification_title=title,
                    notification_body=body,
                    data_payload=payload,
                )
            except FCMNotRegisteredError:
                rejected.append(token)
            except Exception:
                logger.warning("FCM push failed for one device", exc_info=True)
        return rejected


_push = None


async def get_push():
    global _push
    if _push is not None:
        return _push
    settings = get_settings()
    if not settings.fcm_service_account_file or not settings.fcm_project_id:
        _push = NoopPush()
        return _push
    _push = FcmPush(settings.fcm_service_account_file, settings.fcm_project_id)
    logger.info("FCM push enabled for project %s", settings.fcm_project_id)
    return _push
