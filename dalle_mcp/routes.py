import os
import time
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import FileResponse, PlainTextResponse

from dalle_mcp.auth import require_auth
from dalle_mcp.cleanup import IMAGE_FILE_RE
from dalle_mcp.handlers import (
    handle_cleanup,
    handle_descriptor,
    handle_generate,
    handle_health,
    handle_metrics,
    handle_prometheus_metrics,
    handle_stats,
)
from dalle_mcp.log import log_request
from dalle_mcp.ratelimit import limit_general, limit_image_generation
from dalle_mcp.schemas import (
    CleanupRequest,
    CleanupResponse,
    GenerateResponse,
    HealthResponse,
    StatsResponse,
)
from dalle_mcp.validation import ValidationError

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health() -> dict:
    return await handle_health()


@router.get("/mcp", dependencies=[Depends(limit_general), Depends(require_auth)])
async def get_descriptor() -> dict[str, Any]:
    return await handle_descriptor()


@router.post(
    "/mcp",
    response_model=GenerateResponse,
    dependencies=[Depends(limit_general), Depends(require_auth), Depends(limit_image_generation)],
)
async def generate(request: Request) -> dict:
    start = time.perf_counter()
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be valid JSON.")

    prompt = payload.get("prompt") if isinstance(payload, dict) else None
    log_request(request, "received", prompt=prompt)
    try:
        _, result = await handle_generate(payload, request.app.state.client)
    except (ValidationError, HTTPException) as exc:
        elapsed = (time.perf_counter() - start) * 1000
        log_request(request, "failed", error=str(getattr(exc, "detail", exc)), response_time_ms=elapsed)
        raise

    for item in result["data"]:
        if item.get("file_path"):
            item["image_url"] = f"{request.base_url}images/{os.path.basename(item['file_path'])}"

    elapsed = (time.perf_counter() - start) * 1000
    log_request(request, "completed", prompt=prompt, response_time_ms=elapsed)
    return result


@router.get("/images/{filename}")
async def get_image(filename: str, request: Request) -> FileResponse:
    if os.path.basename(filename) != filename or not IMAGE_FILE_RE.search(filename):
        raise HTTPException(status_code=404, detail="Image not found.")
    path = os.path.join(request.app.state.config.output_dir, filename)
    if not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="Image not found.")
    return FileResponse(path)


@router.get("/metrics")
async def get_metrics(format: str = "json"):
    if format == "prometheus":
        return PlainTextResponse(await handle_prometheus_metrics(), media_type="text/plain; version=0.0.4")
    return await handle_metrics()


@router.get(
    "/admin/stats",
    response_model=StatsResponse,
    dependencies=[Depends(limit_general), Depends(require_auth)],
)
async def get_stats(request: Request) -> dict:
    return await handle_stats(request.app.state.config.output_dir)


@router.post(
    "/admin/cleanup",
    response_model=CleanupResponse,
    dependencies=[Depends(limit_general), Depends(require_auth)],
)
async def run_cleanup(payload: CleanupRequest, request: Request) -> dict:
    return await handle_cleanup(
        request.app.state.config.output_dir,
        retention_days=payload.retention_days,
        max_files=payload.max_files,
        dry_run=payload.dry_run,
    )
