from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

from furniture_genai.batch import VariationBatchManager
from furniture_genai.config import Settings
from furniture_genai.delivery import DeliveredArtifact, DeliveryProxy
from furniture_genai.dispatcher import GenerationDispatcher
from furniture_genai.errors import ConfigurationError, ValidationError
from furniture_genai.jobs import JobLifecycleManager
from furniture_genai.models import (
    AssetBatchOutcome,
    BatchOutcome,
    BatchRequest,
    GenerationJob,
    GenerationRequest,
    JobState,
    ProductProfile,
    Size,
)
from furniture_genai.profile import ProfileNormalizer
from furniture_genai.prompts import PromptComposer
from furniture_genai.provenance import ProvenanceRecorder
from furniture_genai.providers.base import ImageBackend, VideoBackend, VisionBackend
from furniture_genai.selection import MethodSelector, build_preferences

logger = logging.getLogger(__name__)

DEFAULT_VIDEO_PROMPT = (
    "Create a cinematic advertisement showcasing this {name} in a modern, elegant setting. "
    "Show the product from multiple angles with smooth camera movements, professional lighting, "
    "and an upscale atmosphere."
)
DEFAULT_VIDEO_SECONDS = 4
VIDEO_SECONDS = (4, 8, 12)


class UsageReporter(Protocol):
    def record_usage(self, units: int, kind: str, details: Mapping[str, Any]) -> None: ...


class LoggingUsageReporter:
    """Default reporter: logs consumption, bills nothing."""

    def record_usage(self, units: int, kind: str, details: Mapping[str, Any]) -> None:
        logger.info("Usage: %d unit(s) of %s %s", units, kind, dict(details))


class GenerationOrchestrator:
    """
    Caller-facing entry point.

    Usage is reported for actual successes only: one unit per successful
    variation and one per completed job. Failed work is never reported.
    """

    def __init__(
        self,
        batches: VariationBatchManager,
        jobs: JobLifecycleManager | None = None,
        usage: UsageReporter | None = None,
        vision: VisionBackend | None = None,
        normalizer: ProfileNormalizer | None = None,
        delivery: DeliveryProxy | None = None,
        video_size: Size = Size(1280, 720),
    ) -> None:
        self.batches = batches
        self.jobs = jobs
        self.usage = usage or LoggingUsageReporter()
        self.vision = vision
        self.normalizer = normalizer or ProfileNormalizer()
        self.delivery = delivery
        self.video_size = video_size
        if self.jobs is not None:
            self.jobs.add_listener(self._on_job_finished)

    async def generate_batch(self, request: GenerationRequest) -> BatchOutcome:
        outcome = await self.batches.run(request)
        self.usage.record_usage(
            outcome.succeeded,
            "image",
            {
                "contextPreset": request.settings.context_preset.value,
                "requested": outcome.requested,
                "failed": outcome.failed,
            },
        )
        return outcome

    async def generate_assets(self, request: BatchRequest) -> AssetBatchOutcome:
        outcome = await self.batches.run_assets(request)
        self.usage.record_usage(
            outcome.succeeded,
            "asset",
            {
                "assetTypes": [t.value for t in outcome.groups],
                "requested": outcome.requested,
                "failedGroups": [t.value for t in outcome.group_errors],
            },
        )
        return outcome

    def generate_async(
        self,
        request: GenerationRequest,
        duration_seconds: int = DEFAULT_VIDEO_SECONDS,
        deadline_seconds: float | None = None,
    ) -> GenerationJob:
        jobs = self._require_jobs()
        if duration_seconds not in VIDEO_SECONDS:
            raise ValidationError(
                f"unsupported duration {duration_seconds}s. Must be one of: {', '.join(map(str, VIDEO_SECONDS))}"
            )
        custom = (request.custom_prompt or "").strip()
        instruction = custom or DEFAULT_VIDEO_PROMPT.format(name=request.profile.display_name)
        job = jobs.start(instruction, self.video_size, duration_seconds, deadline_seconds)
        logger.info("Started job %s (%ss, %s)", job.job_id, duration_seconds, self.video_size)
        return job

    def get_job(self, job_id: str) -> GenerationJob:
        return self._require_jobs().get(job_id)

    async def wait_for_job(self, job_id: str, raise_on_error: bool = False) -> GenerationJob:
        return await self._require_jobs().wait(job_id, raise_on_error=raise_on_error)

    def cancel_job(self, job_id: str) -> GenerationJob:
        return self._require_jobs().cancel(job_id)

    async def analyze_product(self, images: list[bytes], product_name: str | None = None) -> ProductProfile:
        if self.vision is None:
            raise ConfigurationError("no vision backend configured")
        raw = await self.vision.analyze_product(images)
        return self.normalizer.normalize(raw, product_name=product_name, analysis_model=self.vision.model)

    async def fetch_video(self, video_id: str) -> DeliveredArtifact:
        if self.delivery is None:
            raise ConfigurationError("no delivery proxy configured")
        return await self.delivery.fetch_video(video_id)

    async def fetch_image(self, url: str, filename: str = "image.jpg") -> DeliveredArtifact:
        if self.delivery is None:
            raise ConfigurationError("no delivery proxy configured")
        return await self.delivery.fetch_image(url, filename)

    def _require_jobs(self) -> JobLifecycleManager:
        if self.jobs is None:
            raise ConfigurationError("no video backend configured")
        return self.jobs

    def _on_job_finished(self, job: GenerationJob) -> None:
        if job.state is JobState.COMPLETED:
            self.usage.record_usage(
                1,
                "video",
                {"jobId": job.job_id, "backendJobId": job.backend_job_id, "durationSeconds": job.duration_seconds},
            )


def _image_backend(cfg: Settings) -> ImageBackend:
    backend = cfg.image_backend.strip().lower()
    if backend == "openai":
        if not cfg.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY not set")
        from furniture_genai.providers.openai_provider import OpenAIImageProvider

        return OpenAIImageProvider(api_key=cfg.openai_api_key, model=cfg.openai_image_model)
    if backend == "gemini":
        if not cfg.gemini_api_key:
            raise ConfigurationError("GEMINI_API_KEY not set")
        from furniture_genai.providers.gemini_provider import GeminiImageProvider

        return GeminiImageProvider(api_key=cfg.gemini_api_key, model=cfg.gemini_image_model)
    raise ConfigurationError(f"unknown image backend '{cfg.image_backend}'. Must be one of: openai, gemini")


def build_orchestrator(cfg: Settings, usage: UsageReporter | None = None) -> GenerationOrchestrator:
    """
    Wire real providers from settings. Missing credentials fail here, before
    any request is accepted.
    """
    if not cfg.openai_api_key:
        # Video, vision and delivery all go through OpenAI.
        raise ConfigurationError("OPENAI_API_KEY not set")

    from furniture_genai.providers.openai_provider import OpenAIVisionProvider
    from furniture_genai.providers.video_provider import OpenAIVideoProvider

    provenance = ProvenanceRecorder()
    batches = VariationBatchManager(
        dispatcher=GenerationDispatcher(_image_backend(cfg)),
        selector=MethodSelector(build_preferences(cfg.method_preferences)),
        composer=PromptComposer(),
        provenance=provenance,
        concurrency_limit=cfg.batch_concurrency,
    )
    jobs = JobLifecycleManager(
        OpenAIVideoProvider(
            api_key=cfg.openai_api_key,
            model=cfg.openai_video_model,
            base_url=cfg.openai_base_url,
            timeout=cfg.delivery_timeout_seconds,
        ),
        provenance=provenance,
        poll_interval=cfg.job_poll_interval_seconds,
        max_polls=cfg.job_max_poll_attempts,
        submit_attempts=cfg.job_submit_attempts,
        max_finished_jobs=cfg.job_max_finished,
        submit_retry_delay=cfg.job_submit_retry_delay_seconds,
    )
    delivery = DeliveryProxy(
        api_key=cfg.openai_api_key,
        base_url=cfg.openai_base_url,
        attempts=cfg.delivery_attempts,
        backoff=cfg.delivery_backoff_seconds,
        timeout=cfg.delivery_timeout_seconds,
    )
    return GenerationOrchestrator(
        batches=batches,
        jobs=jobs,
        usage=usage,
        vision=OpenAIVisionProvider(api_key=cfg.openai_api_key, model=cfg.openai_vision_model),
        delivery=delivery,
        video_size=Size.parse(cfg.video_size),
    )
