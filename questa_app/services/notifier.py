from __future__ import annotations
import json
import logging
from typing import Any, Dict, Optional

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from ..config import settings
from ..errors import NotifyError
from ..models import Notification
from ..timestamps import to_iso
from .security import compute_hmac_sha256_hex

logger = logging.getLogger(__name__)


class Notifier:
    """
    Pushes freshly created notifications to an outside webhook.

    The body is signed with HMAC-SHA256 (``X-Signature: sha256=<hex>``) so the
    receiver can check it came from us. Without a webhook URL this is a no-op.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        secret: str = "dev-secret",
        max_retries: int = 4,
        backoff_seconds: float = 1.0,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.webhook_url = webhook_url
        self.secret = secret
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "Notifier":
        return cls(
            webhook_url=settings.notification_webhook_url,
            secret=settings.notification_hmac_secret,
            max_retries=settings.notify_max_retries,
            backoff_seconds=settings.notify_backoff_seconds,
            timeout=settings.request_timeout_seconds,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    @staticmethod
    def payload(note: Notification) -> Dict[str, Any]:
        return {
            "id": note.id,
            "user_id": note.user_id,
            "type": note.type,
            "title": note.title,
            "message": note.message,
            "data": note.data,
            "created_at": to_iso(note.created_at),
        }

    def dispatch(self, note: Notification) -> bool:
        if not self.enabled:
            return False
        raw = json.dumps(self.payload(note), ensure_ascii=False, default=str).encode("utf-8")
        sig = compute_hmac_sha256_hex(self.secret, raw)
        headers = {
            "Content-Type": "application/json",
            "X-Signature": f"sha256={sig}",
        }
        retrying = Retrying(
            reraise=True,
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential_jitter(initial=self.backoff_seconds, max=30, jitter=self.backoff_seconds),
            retry=retry_if_exception_type(httpx.HTTPError),
        )
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                for attempt in retrying:
                    with attempt:
                        resp = client.post(self.webhook_url, content=raw, headers=headers)
                        resp.raise_for_status()
        except httpx.HTTPError as e:
            raise NotifyError(f"notification {note.id} not delivered: {e}") from e
        logger.debug("notification %s pushed type=%s", note.id, note.type)
        return True


def notify_user(
    repo,
    notifier: Optional[Notifier],
    user_id: str,
    type: str,
    title: str,
    message: str,
    data: Optional[Dict[str, Any]] = None,
) -> Notification:
    """Store a notification for ``user_id`` and push it; a failed push is logged, not raised."""
    note = repo.create_notification(user_id, type, title, message, data)
    if notifier is not None:
        try:
            notifier.dispatch(note)
        except NotifyError as e:
            logger.warning("%s", e)
    return note
