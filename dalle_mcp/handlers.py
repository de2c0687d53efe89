"""Core handler functions shared by REST routes, the stdio server and the CLI."""

import os
from datetime import timedelta
from typing import Any

import aiofiles.os
from fastapi import HTTPException

from dalle_mcp import cleanup
from dalle_mcp.client import ImageGenerationClient, tool_descriptor
from dalle_mcp.metrics import metrics, update_process_metrics
from dalle_mcp.validation import ValidatedParameters, validate

LIST_SORT_FIELDS = ("name", "size", "age")


async def handle_health() -> dict:
    return {"status": "ok"}


async def handle_descriptor() -> dict:
    return tool_descriptor()


async def handle_generate(raw_params: Any, client: ImageGenerationClient) -> tuple[ValidatedParameters, dict]:
    """Validate ``raw_params`` and generate.

    Images are saved to the output directory unless ``save`` is false.
    """
    params = validate(raw_params)
    if params.save is False:
        data = await client.generate(params)
    else:
        data = await client.generate_and_save(params)
    return params, {"success": True, "data": data}


async def handle_metrics() -> dict:
    update_process_metrics()
    return metrics.snapshot()


async def handle_prometheus_metrics() -> str:
    update_process_metrics()
    return metrics.prometheus()


async def handle_stats(directory: str) -> dict:
    result = await cleanup.stats(directory)
    return {"directory": os.path.abspath(directory), **result.to_dict()}


async def handle_cleanup(
    directory: str,
    retention_days: float = 7,
    max_files: int | None = None,
    dry_run: bool = False,
) -> dict:
    try:
        policy = cleanup.CleanupPolicy(
            retention=timedelta(days=retention_days),
            max_files=max_files,
            dry_run=dry_run,
        )
    except (ValueError, OverflowError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid cleanup policy: {exc}")
    result = await cleanup.cleanup(directory, policy)
    return {"directory": os.path.abspath(directory), **result.to_dict()}


async def handle_list(directory: str, limit: int = 20, sort: str = "age") -> dict:
    if sort not in LIST_SORT_FIELDS:
        raise HTTPException(status_code=400, detail=f"sort must be one of: {', '.join(LIST_SORT_FIELDS)}")
    if not await aiofiles.os.path.isdir(directory):
        return {"total": 0, "files": []}

    records = await cleanup.scan(directory)
    if sort == "size":
        records.sort(key=lambda r: r.size, reverse=True)
    elif sort == "name":
        records.sort(key=lambda r: r.name)
    else:
        records.sort(key=lambda r: r.age, reverse=True)

    files = [
        {
            "name": r.name,
            "size": r.size,
            "size_formatted": cleanup.format_bytes(r.size),
            "age": r.age,
            "age_days": int(r.age // cleanup.SECONDS_PER_DAY),
            "modified_at": r.modified_at.isoformat(),
        }
        for r in records[:max(limit, 0)]
    ]
    return {"total": len(records), "files": files}
