from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable
from urllib.parse import urlparse

import httpx

from furniture_genai.errors import TerminalBackendError, TransientBackendError, ValidationError

logger = logging.getLogger(__name__)

# Hosts the image download proxy is allowed to fetch from.
ALLOWED_IMAGE_HOSTS = (
    "oaidalleapiprodscus.blob.core.windows.net",
    "firebasestorage.googleapis.com",
    "storage.googleapis.com",
)


@dataclass(frozen=True)
class DeliveredArtifact:
    content: bytes
    content_type: str
    filename: str
    attempts: int


def sanitize_filename(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.-]", "_", name) or "download"


class DeliveryProxy:
    """
    Fetches finished artifacts on the caller's behalf.

    Backend artifacts need the API key, so callers get a local path
    (``/videos/{id}/content``) and this proxy does the authenticated fetch.
    Each fetch makes up to ``attempts`` tries and waits ``backoff * attempt``
    seconds between them.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        attempts: int = 3,
        backoff: float = 1.0,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.attempts = max(1, attempts)
        self.backoff = backoff
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout), follow_redirects=True)
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._sleep = sleep

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_video(self, video_id: str) -> DeliveredArtifact:
        if not video_id or "/" in video_id:
            raise ValidationError(f"invalid video id '{video_id}'")
        url = f"{self.base_url}/videos/{video_id}/content"
        response, attempts = await self._fetch(url, headers=self._headers)
        return DeliveredArtifact(
            content=response.content,
            content_type=response.headers.get("content-type", "video/mp4"),
            filename=f"video-{sanitize_filename(video_id)}.mp4",
            attempts=attempts,
        )

    async def fetch_image(self, url: str, filename: str = "image.jpg") -> DeliveredArtifact:
        host = urlparse(url).hostname or ""
        if not any(host == h or host.endswith(f".{h}") for h in ALLOWED_IMAGE_HOSTS):
            raise ValidationError(f"image host '{host}' is not allowed")
        response, attempts = await self._fetch(url, headers={"Accept": "image/*,*/*;q=0.8"})
        return DeliveredArtifact(
            content=response.content,
            content_type=response.headers.get("content-type", "image/jpeg"),
            filename=sanitize_filename(filename),
            attempts=attempts,
        )

    async def _fetch(self, url: str, headers: dict[str, str]) -> tuple[httpx.Response, int]:
        for attempt in range(1, self.attempts + 1):
            try:
                response = await self._client.get(url, headers=headers)
            except httpx.TransportError as exc:
                if attempt == self.attempts:
                    raise TransientBackendError(f"network error fetching artifact: {exc}") from exc
                logger.warning("Delivery attempt %d/%d network error: %s", attempt, self.attempts, exc)
            else:
                if response.is_success:
                    logger.info("Delivered %s (%d bytes) after %d attempt(s)", url, len(response.content), attempt)
                    return response, attempt
                if attempt == self.attempts:
                    message = f"failed to fetch artifact: {response.status_code}"
                    if 400 <= response.status_code < 500:
                        raise TerminalBackendError(message, status_code=response.status_code, detail=response.text[:200])
                    raise TransientBackendError(message, status_code=response.status_code, detail=response.text[:200])
                logger.warning("Delivery attempt %d/%d got status %d", attempt, self.attempts, response.status_code)
            await self._sleep(self.backoff * attempt)
        raise TransientBackendError(f"failed to fetch {url}")
