from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Union

from furniture_genai.dispatcher import GenerationDispatcher
from furniture_genai.errors import BatchFailedError, GenerationError
from furniture_genai.models import (
    PRESET_SIZES,
    AssetBatchOutcome,
    AssetType,
    BatchItem,
    BatchOutcome,
    BatchRequest,
    ContextPreset,
    GenerationMethod,
    GenerationRequest,
    GenerationResult,
    GenerationSettings,
    Size,
    VariationError,
)
from furniture_genai.prompts import PromptComposer
from furniture_genai.provenance import ProvenanceRecorder
from furniture_genai.selection import MethodPlan, MethodSelector

logger = logging.getLogger(__name__)

VariationOutcome = Union[GenerationResult, VariationError]


@dataclass(frozen=True)
class _Attempt:
    variation_index: int
    instruction: str
    preset: ContextPreset
    plan: MethodPlan
    reference_image: bytes | None
    settings: GenerationSettings
    size: Size
    asset_type: AssetType | None = None


class VariationBatchManager:
    """
    Fans a request out into independent variation attempts.

    Every attempt resolves to either a GenerationResult or a VariationError;
    nothing raised by a single attempt escapes the batch. The batch as a whole
    only fails when zero attempts succeed.
    """

    def __init__(
        self,
        dispatcher: GenerationDispatcher,
        selector: MethodSelector,
        composer: PromptComposer | None = None,
        provenance: ProvenanceRecorder | None = None,
        concurrency_limit: int = 1,
    ) -> None:
        self.dispatcher = dispatcher
        self.selector = selector
        self.composer = composer or PromptComposer()
        self.provenance = provenance or ProvenanceRecorder()
        self.concurrency_limit = max(1, concurrency_limit)

    async def run(self, request: GenerationRequest) -> BatchOutcome:
        s = request.settings
        preset = s.context_preset
        plan = self.selector.plan(preset, request.has_reference_image)
        instruction = self.composer.compose(request.profile, preset, s, request.custom_prompt)

        attempts = [
            _Attempt(
                variation_index=i,
                instruction=instruction,
                preset=preset,
                plan=plan,
                reference_image=request.reference_image,
                settings=s,
                size=s.size,
            )
            for i in range(1, s.variations + 1)
        ]
        logger.info(
            "Generating %d %s variations (preferred=%s, attempts=%s)",
            len(attempts),
            preset.value,
            plan.preferred.value,
            [m.value for m in plan.attempts],
        )

        outcome = _split(await self._run_attempts(attempts))
        if not outcome.results:
            raise BatchFailedError(outcome.errors, requested=len(attempts))
        if outcome.errors:
            logger.warning("Batch partially succeeded: %d/%d variations", outcome.succeeded, len(attempts))
        return outcome

    async def run_assets(self, request: BatchRequest) -> AssetBatchOutcome:
        # Assets are edits of the uploaded photo, so the per-preset preference
        # table does not apply here: reference first, text-to-image as fallback.
        plan = self.selector.plan_for(GenerationMethod.HYBRID, bool(request.source_image))
        attempts: list[_Attempt] = []
        for item in request.items:
            attempts.extend(self._asset_attempts(request, item, plan))

        logger.info(
            "Generating asset batch: %s (%d variations total)",
            [f"{i.asset_type.value}x{i.variations}" for i in request.items],
            len(attempts),
        )
        outcomes = await self._run_attempts(attempts)

        groups: dict[AssetType, BatchOutcome] = {}
        group_errors: dict[AssetType, list[VariationError]] = {}
        for item in request.items:
            mine = [o for a, o in zip(attempts, outcomes) if a.asset_type is item.asset_type]
            outcome = _split(mine)
            groups[item.asset_type] = outcome
            if not outcome.results:
                logger.error("All %d %s variations failed", outcome.failed, item.asset_type.value)
                group_errors[item.asset_type] = outcome.errors

        result = AssetBatchOutcome(groups=groups, group_errors=group_errors)
        if result.succeeded == 0:
            raise BatchFailedError([e for errs in group_errors.values() for e in errs], requested=len(attempts))
        return result

    def _asset_attempts(self, request: BatchRequest, item: BatchItem, plan: MethodPlan) -> list[_Attempt]:
        return [
            _Attempt(
                variation_index=i,
                instruction=self.composer.compose_asset(
                    request.profile, item.asset_type, request.settings, i, item.custom_prompt
                ),
                preset=item.context_preset,
                plan=plan,
                reference_image=request.source_image,
                settings=request.settings,
                size=PRESET_SIZES[item.context_preset],
                asset_type=item.asset_type,
            )
            for i in range(1, item.variations + 1)
        ]

    async def _run_attempts(self, attempts: list[_Attempt]) -> list[VariationOutcome]:
        semaphore = asyncio.Semaphore(self.concurrency_limit)

        async def guarded(attempt: _Attempt) -> VariationOutcome:
            async with semaphore:
                return await self._attempt(attempt)

        # gather keeps input order, so outcomes line up with attempts.
        return list(await asyncio.gather(*(guarded(a) for a in attempts)))

    async def _attempt(self, attempt: _Attempt) -> VariationOutcome:
        try:
            dispatched = await self.dispatcher.dispatch_plan(
                attempt.plan, attempt.instruction, attempt.size, attempt.reference_image
            )
        except GenerationError as exc:
            logger.error("Variation %d failed: %s", attempt.variation_index, exc)
            return VariationError(
                variation_index=attempt.variation_index,
                kind=exc.kind,
                message=exc.message,
                method=attempt.plan.attempts[-1],
                asset_type=attempt.asset_type,
            )
        return self.provenance.record(
            dispatched.image,
            method=dispatched.method,
            prompt=attempt.instruction,
            size=attempt.size,
            variation_index=attempt.variation_index,
            context_preset=attempt.preset,
            quality=attempt.settings.quality,
            duration_ms=dispatched.duration_ms,
            fallback_reason=dispatched.fallback_reason,
            asset_type=attempt.asset_type,
        )


def _split(outcomes: list[VariationOutcome]) -> BatchOutcome:
    results = [o for o in outcomes if isinstance(o, GenerationResult)]
    errors = [o for o in outcomes if isinstance(o, VariationError)]
    return BatchOutcome(results=results, errors=errors)
