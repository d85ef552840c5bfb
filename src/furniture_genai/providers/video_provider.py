from __future__ import annotations

import logging
from typing import Any

import httpx

from furniture_genai.errors import TerminalBackendError, TransientBackendError, transient_for_status
from furniture_genai.models import Size
from furniture_genai.providers.base import JobPoll

logger = logging.getLogger(__name__)

_PENDING = {"queued", "in_progress", "processing", "pending"}


def raise_for_response(response: httpx.Response, what: str) -> None:
    """Map a non-2xx response to the transient/terminal split."""
    if response.is_success:
        return
    detail = _error_message(response)
    message = f"{what} failed with status {response.status_code}: {detail}"
    if transient_for_status(response.status_code):
        raise TransientBackendError(message, status_code=response.status_code, detail=detail)
    raise TerminalBackendError(message, status_code=response.status_code, detail=detail)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict):
        return str(err.get("message") or err)
    return str(err or body)


class OpenAIVideoProvider:
    """
    Video jobs against the OpenAI ``/videos`` endpoints.

    submit_job posts a multipart form and returns the backend job id;
    poll_job reads the job and reports pending, completed or failed.
    """

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "sora-2",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
        )
        self._headers = {"Authorization": f"Bearer {api_key}"}

    async def close(self) -> None:
        await self._client.aclose()

    async def submit_job(self, instruction: str, size: Size, duration_seconds: int) -> str:
        form = {
            "prompt": instruction,
            "model": self.model,
            "seconds": str(duration_seconds),
            "size": str(size),
        }
        # multipart/form-data, matching what the endpoint expects for uploads
        files = {k: (None, v) for k, v in form.items()}
        data = await self._request("POST", "/videos", "video submit", files=files)
        job_id = data.get("id")
        if not job_id:
            raise TerminalBackendError("video submit response carried no job id", detail=str(data)[:200])
        logger.info("Video job created: %s (%ss, %s)", job_id, duration_seconds, size)
        return job_id

    async def poll_job(self, job_id: str) -> JobPoll:
        data = await self._request("GET", f"/videos/{job_id}", "video status")
        status = str(data.get("status") or "").lower()
        progress = data.get("progress")
        if status == "completed":
            return JobPoll(
                status="completed",
                progress=progress,
                duration_seconds=_float_or_none(data.get("seconds")),
                size=data.get("size"),
            )
        if status == "failed":
            err = data.get("error")
            reason = err.get("message") if isinstance(err, dict) else err
            return JobPoll(status="failed", error=str(reason or "video generation failed"), progress=progress)
        if status and status not in _PENDING:
            logger.warning("Unknown video status %r for %s, treating as pending", status, job_id)
        return JobPoll(status="pending", progress=progress)

    async def _request(self, method: str, path: str, what: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, headers=self._headers, **kwargs)
        except httpx.TransportError as exc:
            raise TransientBackendError(f"{what} request failed: {exc}") from exc
        raise_for_response(response, what)
        try:
            return response.json()
        except ValueError as exc:
            raise TerminalBackendError(f"{what} returned invalid JSON") from exc


def _float_or_none(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
