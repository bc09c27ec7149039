from __future__ import annotations
import io
import logging
import re
import time
from typing import Callable, Optional

import requests
from PIL import Image, UnidentifiedImageError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import settings
from ..errors import StorageError

logger = logging.getLogger(__name__)

ALLOWED_FORMATS = {"JPEG": "image/jpeg", "PNG": "image/png", "WEBP": "image/webp", "GIF": "image/gif"}


class _Retryable(Exception):
    pass


def _safe_name(name: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "_", name or "").strip("._")
    return cleaned or "upload"


class StorageClient:
    """Uploads screenshots and banners to the object storage bucket; returns public URLs."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        bucket: str = "task-images",
        max_bytes: int = 5 * 1024 * 1024,
        timeout: float = 30.0,
        attempts: int = 3,
        backoff: float = 0.5,
        session: Optional[requests.Session] = None,
        clock_ms: Callable[[], int] = lambda: int(time.time() * 1000),
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.bucket = bucket
        self.max_bytes = max_bytes
        self.timeout = timeout
        self.attempts = attempts
        self.backoff = backoff
        self.session = session or requests.Session()
        self._clock_ms = clock_ms

    @classmethod
    def from_settings(cls) -> Optional["StorageClient"]:
        if not settings.storage_url:
            return None
        return cls(
            base_url=settings.storage_url,
            api_key=settings.storage_api_key,
            bucket=settings.storage_bucket,
            max_bytes=settings.max_upload_bytes,
            timeout=settings.request_timeout_seconds,
        )

    def validate_image(self, data: bytes) -> str:
        """Return the MIME type of ``data`` or raise StorageError."""
        if not data:
            raise StorageError("No file provided")
        if len(data) > self.max_bytes:
            raise StorageError(f"File size must be less than {self.max_bytes // (1024 * 1024)}MB")
        try:
            with Image.open(io.BytesIO(data)) as img:
                fmt = img.format
                img.verify()
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            raise StorageError("File is not a readable image") from e
        if fmt not in ALLOWED_FORMATS:
            raise StorageError("Only JPEG, PNG, WebP, and GIF images are allowed")
        return ALLOWED_FORMATS[fmt]

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{path}"

    def verification_path(self, phase: str, user_id: str, task_id: str, file_name: str) -> str:
        return f"verifications/{phase}/{user_id}/{task_id}/{self._clock_ms()}_{_safe_name(file_name)}"

    def banner_path(self, task_id: str, file_name: str) -> str:
        return f"banners/{task_id}/{self._clock_ms()}_{_safe_name(file_name)}"

    def _post_once(self, path: str, data: bytes, content_type: str) -> None:
        headers = {
            "Content-Type": content_type,
            "Cache-Control": "3600",
            "x-upsert": "false",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
            headers["apikey"] = self.api_key
        url = f"{self.base_url}/storage/v1/object/{self.bucket}/{path}"
        try:
            resp = self.session.post(url, data=data, headers=headers, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise _Retryable(str(e)) from e
        if resp.status_code >= 500:
            raise _Retryable(f"{resp.status_code} {resp.text[:200]}")
        if resp.status_code >= 400:
            raise StorageError(f"Upload failed: {resp.status_code} {resp.text[:200]}")

    def upload(self, path: str, data: bytes) -> str:
        content_type = self.validate_image(data)
        retrying = Retrying(
            reraise=True,
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.backoff, max=8),
            retry=retry_if_exception_type(_Retryable),
        )
        try:
            for attempt in retrying:
                with attempt:
                    self._post_once(path, data, content_type)
        except _Retryable as e:
            raise StorageError(f"Upload failed: {e}") from e
        logger.info("uploaded %s (%d bytes)", path, len(data))
        return self.public_url(path)

    def upload_verification_image(self, data: bytes, file_name: str, user_id: str, task_id: str, phase: str) -> str:
        return self.upload(self.verification_path(phase, user_id, task_id, file_name), data)

    def upload_task_banner(self, data: bytes, file_name: str, task_id: str) -> str:
        return self.upload(self.banner_path(task_id, file_name), data)
