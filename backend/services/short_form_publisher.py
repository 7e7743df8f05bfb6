"""
Short-form channel client.

Posts go through a signing bridge that holds the OAuth credentials for the
social account; this service only speaks plain JSON/multipart over HTTP with a
bearer token. Posts from this process are serialized so the bridge sees one
publish at a time.
"""
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from models.lore import GeneratedImage, ShortFormResult
from utils.errors import UpstreamError

logger = logging.getLogger(__name__)


class ShortFormPublisher:
    def __init__(
        self,
        bridge_url: str = "",
        token: str = "",
        timeout: float = 25.0,
        attempts: int = 3,
        backoff_s: float = 0.5,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.bridge_url = bridge_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.attempts = max(1, attempts)
        self.backoff_s = backoff_s
        self._client = client
        self._lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return bool(self.bridge_url and self.token)

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}", "Accept": "application/json"}

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.bridge_url}{path}"
        try:
            if self._client is not None:
                response = await self._client.request(
                    method, url, headers=self._headers(), timeout=self.timeout, **kwargs
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as exc:
            raise UpstreamError(f"{method} {path} timed out", service="short_form") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"{method} {path} failed: {exc}", service="short_form") from exc

        if response.status_code >= 400:
            raise UpstreamError(
                f"{method} {path} failed ({response.status_code}): {response.text[:200]}",
                service="short_form",
            )
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(f"{method} {path} returned invalid JSON", service="short_form") from exc

    async def _with_retry(self, fn):
        last_exc: Optional[Exception] = None
        for i in range(self.attempts):
            try:
                return await fn()
            except UpstreamError as exc:
                last_exc = exc
                logger.warning(
                    "[short_form] Attempt %d/%d failed: %s", i + 1, self.attempts, exc
                )
                if i + 1 < self.attempts:
                    await asyncio.sleep(self.backoff_s * (i + 1))
        if last_exc is None:
            raise UpstreamError("No short-form attempts were made", service="short_form")
        raise last_exc

    async def check_connection(self) -> bool:
        if not self.configured:
            return False
        try:
            me = await self._request("GET", "/me")
            logger.info("[short_form] Bridge ready (account=%s)", me.get("username"))
            return True
        except UpstreamError as exc:
            logger.warning("[short_form] Bridge not ready: %s", exc)
            return False

    async def upload_media(self, image: GeneratedImage) -> str:
        """Upload one image; returns the bridge's media id."""
        ext = image.mime_type.split("/")[-1] or "png"
        files = {"media": (f"image.{ext}", image.data, image.mime_type)}
        data = await self._with_retry(lambda: self._request("POST", "/media", files=files))
        media_id = data.get("media_id")
        if not media_id:
            raise UpstreamError(f"Media upload missing media_id: {str(data)[:200]}", service="short_form")
        return str(media_id)

    async def publish(self, text: str, media_ids: Optional[List[str]] = None) -> ShortFormResult:
        if not self.configured:
            logger.info("[short_form] Bridge not configured; skipping post")
            return ShortFormResult(text=text, error="not_configured")

        body: Dict[str, Any] = {"text": text}
        if media_ids:
            body["media_ids"] = list(media_ids)

        async with self._lock:
            start = time.monotonic()
            data = await self._with_retry(lambda: self._request("POST", "/posts", json=body))

        post_id = data.get("id")
        if not post_id:
            raise UpstreamError(f"Post response missing id: {str(data)[:200]}", service="short_form")
        url = data.get("url") or f"https://x.com/i/web/status/{post_id}"
        logger.info(
            "[short_form] Posted %s in %.2fs (%d chars)", post_id, time.monotonic() - start, len(text)
        )
        return ShortFormResult(post_id=str(post_id), url=url, text=text)
