import base64
import os
import time
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from dalle_mcp import auth
from dalle_mcp.metrics import metrics
from dalle_mcp.ratelimit import general_limiter, image_limiter

SAMPLE_PNG = b"\x89PNG\r\n\x1a\nfakedata"
SAMPLE_PNG_B64 = base64.b64encode(SAMPLE_PNG).decode()
DAY = 24 * 60 * 60


def _reset():
    metrics.reset()
    general_limiter.reset()
    image_limiter.reset()
    image_limiter.limit = 10
    auth._warned = False


@pytest.fixture(autouse=True)
def _reset_global_state():
    _reset()
    yield
    _reset()


def make_image(directory: Path, name: str, age_days: float = 0.0, size: int = 100) -> Path:
    """Write an image file whose mtime is ``age_days`` in the past."""
    path = directory / name
    path.write_bytes(b"x" * size)
    mtime = time.time() - age_days * DAY
    os.utime(path, (mtime, mtime))
    return path


def mock_httpx_client(status_code: int = 200, json_data: dict | None = None):
    """Mock httpx.AsyncClient used as an async context manager."""
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = json_data if json_data is not None else {}

    client = AsyncMock()
    client.post.return_value = resp
    client.get.return_value = resp
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    return client, resp


def image_response(count: int = 1, revised_prompt: str | None = None) -> dict:
    data = []
    for i in range(count):
        item = {"url": f"https://images.example.com/img{i}.png"}
        if revised_prompt:
            item["revised_prompt"] = revised_prompt
        data.append(item)
    return {"created": 1700000000, "data": data}
