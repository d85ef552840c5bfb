from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from furniture_genai.models import Size


@dataclass(frozen=True)
class SynthesizedImage:
    image_bytes: bytes
    mime_type: str
    provider: str
    model: str
    raw_metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class JobPoll:
    status: Literal["pending", "completed", "failed"]
    artifact_handle: str | None = None
    error: str | None = None
    progress: int | None = None
    duration_seconds: float | None = None
    size: str | None = None


class ImageBackend(Protocol):
    name: str
    model: str

    async def synthesize_from_text(self, instruction: str, size: Size) -> SynthesizedImage: ...

    async def edit_from_reference(self, reference: bytes, instruction: str, size: Size) -> SynthesizedImage: ...


class VideoBackend(Protocol):
    name: str
    model: str

    async def submit_job(self, instruction: str, size: Size, duration_seconds: int) -> str: ...

    async def poll_job(self, job_id: str) -> JobPoll: ...


class VisionBackend(Protocol):
    name: str
    model: str

    async def analyze_product(self, images: list[bytes]) -> dict[str, Any]: ...
