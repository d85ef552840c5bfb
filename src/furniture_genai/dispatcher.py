from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from furniture_genai.errors import GenerationError, TerminalBackendError, ValidationError
from furniture_genai.models import GenerationMethod, Size
from furniture_genai.providers.base import ImageBackend, SynthesizedImage
from furniture_genai.selection import MethodPlan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchedImage:
    image: SynthesizedImage
    method: GenerationMethod
    duration_ms: int
    fallback_reason: str | None = None


class GenerationDispatcher:
    """
    Sends one variation to exactly one backend capability.

    No retries happen here: each call either returns an image or raises a
    GenerationError subclass, and the batch layer decides what a failure means.
    """

    def __init__(self, backend: ImageBackend, clock: Callable[[], float] = time.monotonic) -> None:
        self.backend = backend
        self._clock = clock

    async def dispatch(
        self,
        method: GenerationMethod,
        instruction: str,
        size: Size,
        reference_image: bytes | None = None,
    ) -> DispatchedImage:
        if method is GenerationMethod.HYBRID:
            raise ValidationError("hybrid must be resolved to a concrete method before dispatch")
        if method is GenerationMethod.REFERENCE_BASED and not reference_image:
            raise ValidationError("reference-based generation requires a reference image")

        t0 = self._clock()
        try:
            if method is GenerationMethod.REFERENCE_BASED:
                image = await self.backend.edit_from_reference(reference_image, instruction, size)
            else:
                image = await self.backend.synthesize_from_text(instruction, size)
        except GenerationError:
            raise
        except Exception as exc:
            raise TerminalBackendError(f"{self.backend.name} {method.value} call failed: {exc}") from exc
        duration_ms = int((self._clock() - t0) * 1000)

        logger.debug("Dispatched %s via %s/%s in %dms", method.value, self.backend.name, image.model, duration_ms)
        return DispatchedImage(image=image, method=method, duration_ms=duration_ms)

    async def dispatch_plan(
        self,
        plan: MethodPlan,
        instruction: str,
        size: Size,
        reference_image: bytes | None = None,
    ) -> DispatchedImage:
        """
        Walk the plan's attempts in order. A failure on any attempt but the last
        falls through to the next one; the last attempt's error propagates.
        """
        fallback_reason = plan.degraded_reason
        for i, method in enumerate(plan.attempts):
            is_last = i == len(plan.attempts) - 1
            try:
                dispatched = await self.dispatch(method, instruction, size, reference_image)
            except GenerationError as exc:
                if is_last:
                    raise
                logger.warning("%s attempt failed (%s), falling back to %s", method.value, exc, plan.attempts[i + 1].value)
                fallback_reason = f"{method.value} failed: {exc.message}"
                continue
            return DispatchedImage(
                image=dispatched.image,
                method=dispatched.method,
                duration_ms=dispatched.duration_ms,
                fallback_reason=fallback_reason,
            )
        raise ValidationError("method plan has no attempts")
