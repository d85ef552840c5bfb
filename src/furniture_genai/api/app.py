from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from furniture_genai.config import settings
from furniture_genai.errors import (
    BatchFailedError,
    ConfigurationError,
    GenerationError,
    JobTimeoutError,
    TerminalBackendError,
    TransientBackendError,
    ValidationError,
)
from furniture_genai.imaging import prepare_reference_image
from furniture_genai.models import (
    AssetBatchOutcome,
    BatchItem,
    BatchOutcome,
    BatchRequest,
    GenerationRequest,
    GenerationSettings,
    ProductProfile,
)
from furniture_genai.orchestrator import DEFAULT_VIDEO_SECONDS, GenerationOrchestrator, build_orchestrator
from furniture_genai.profile import ProfileNormalizer

logger = logging.getLogger(__name__)

app = FastAPI(title="furniture_genai generation service")

_STATUS_BY_ERROR: list[tuple[type[GenerationError], int]] = [
    (ConfigurationError, 500),
    (ValidationError, 400),
    (BatchFailedError, 502),
    (JobTimeoutError, 504),
    (TransientBackendError, 503),
    (TerminalBackendError, 502),
]

_orchestrator: GenerationOrchestrator | None = None


def _get_orchestrator() -> GenerationOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator(settings)
    return _orchestrator


@app.exception_handler(GenerationError)
async def _generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
    status = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
    body: dict[str, Any] = {"detail": exc.message, "kind": exc.kind}
    if isinstance(exc, BatchFailedError):
        body["errors"] = [e.to_dict() for e in exc.errors]
    if status >= 500:
        logger.error("%s %s -> %d: %s", request.method, request.url.path, status, exc)
    return JSONResponse(status_code=status, content=body)


def _parse_json_object(raw: str, label: str) -> dict[str, Any]:
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail=f"{label} must be a JSON object: {exc}") from exc
    if not isinstance(parsed, dict):
        raise HTTPException(status_code=400, detail=f"{label} must be a JSON object")
    return parsed


def _parse_json_list(raw: str, label: str) -> list[dict[str, Any]]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail=f"{label} must be a JSON list: {exc}") from exc
    if not isinstance(parsed, list):
        raise HTTPException(status_code=400, detail=f"{label} must be a JSON list")
    return [item for item in parsed if isinstance(item, dict)]


def _profile(raw: str, product_name: str | None) -> ProductProfile:
    data = _parse_json_object(raw, "profile")
    if not data:
        raise HTTPException(status_code=400, detail="profile is required")
    return ProfileNormalizer().normalize(data, product_name=product_name or None)


async def _reference(upload: UploadFile | None) -> bytes | None:
    if upload is None or not upload.filename:
        return None
    return prepare_reference_image(await upload.read())


def _batch_body(outcome: BatchOutcome) -> dict[str, Any]:
    return {
        "images": [r.to_dict() for r in outcome.results],
        "errors": [e.to_dict() for e in outcome.errors],
        "requested": outcome.requested,
        "succeeded": outcome.succeeded,
    }


def _asset_body(outcome: AssetBatchOutcome) -> dict[str, Any]:
    return {
        "groups": {t.value: _batch_body(o) for t, o in outcome.groups.items()},
        "failedGroups": sorted(t.value for t in outcome.group_errors),
        "requested": outcome.requested,
        "succeeded": outcome.succeeded,
    }


@app.post("/analyze/product")
async def analyze_product(
    images: list[UploadFile] = File(...),
    product_name: str = Form(""),
):
    contents = [await f.read() for f in images]
    contents = [c for c in contents if c]
    if not contents:
        raise HTTPException(status_code=400, detail="upload at least one product image")
    orch = _get_orchestrator()
    profile = await orch.analyze_product(contents, product_name=product_name or None)
    return profile.to_dict()


@app.post("/generate/batch")
async def generate_batch(
    profile: str = Form(...),
    settings_json: str = Form("{}", alias="settings"),
    custom_prompt: str = Form(""),
    product_name: str = Form(""),
    reference_image: UploadFile | None = File(None),
):
    request = GenerationRequest(
        profile=_profile(profile, product_name),
        settings=GenerationSettings.from_dict(_parse_json_object(settings_json, "settings")),
        reference_image=await _reference(reference_image),
        custom_prompt=custom_prompt or None,
    )
    orch = _get_orchestrator()
    outcome = await orch.generate_batch(request)
    return _batch_body(outcome)


@app.post("/generate/assets")
async def generate_assets(
    profile: str = Form(...),
    assets: str = Form(...),
    settings_json: str = Form("{}", alias="settings"),
    product_name: str = Form(""),
    source_image: UploadFile = File(...),
):
    items = []
    for raw in _parse_json_list(assets, "assets"):
        items.append(
            BatchItem(
                asset_type=raw.get("type") or raw.get("assetType") or "",
                variations=raw.get("variations", 1),
                custom_prompt=raw.get("customPrompt") or raw.get("custom_prompt"),
            )
        )
    source = await _reference(source_image)
    if source is None:
        raise HTTPException(status_code=400, detail="source_image is required")
    request = BatchRequest(
        profile=_profile(profile, product_name),
        source_image=source,
        items=tuple(items),
        settings=GenerationSettings.from_dict(_parse_json_object(settings_json, "settings")),
    )
    orch = _get_orchestrator()
    outcome = await orch.generate_assets(request)
    return _asset_body(outcome)


@app.post("/generate/video", status_code=202)
async def generate_video(
    profile: str = Form(...),
    prompt: str = Form(""),
    seconds: int = Form(DEFAULT_VIDEO_SECONDS),
    product_name: str = Form(""),
):
    request = GenerationRequest(profile=_profile(profile, product_name), custom_prompt=prompt or None)
    orch = _get_orchestrator()
    job = orch.generate_async(request, duration_seconds=seconds)
    return job.to_dict()


@app.get("/jobs/{job_id}")
async def get_job(job_id: str):
    orch = _get_orchestrator()
    try:
        job = orch.get_job(job_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="job not found") from None
    return job.to_dict()


@app.delete("/jobs/{job_id}")
async def cancel_job(job_id: str):
    orch = _get_orchestrator()
    try:
        job = orch.cancel_job(job_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="job not found") from None
    return job.to_dict()


@app.get("/videos/{video_id}/content")
async def video_content(video_id: str):
    orch = _get_orchestrator()
    artifact = await orch.fetch_video(video_id)
    return Response(
        content=artifact.content,
        media_type=artifact.content_type,
        headers={
            "Content-Disposition": f'inline; filename="{artifact.filename}"',
            "Cache-Control": "public, max-age=31536000, immutable",
        },
    )


@app.get("/images/proxy")
async def image_proxy(url: str, filename: str = "image.jpg"):
    if not url:
        raise HTTPException(status_code=400, detail="url is required")
    orch = _get_orchestrator()
    artifact = await orch.fetch_image(url, filename)
    return Response(
        content=artifact.content,
        media_type=artifact.content_type,
        headers={
            "Content-Disposition": f'attachment; filename="{artifact.filename}"',
            "Cache-Control": "public, max-age=3600",
        },
    )
