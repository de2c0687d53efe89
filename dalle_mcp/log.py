"""Logging setup shared by the HTTP server, the stdio server and the CLI."""

import logging
import sys
from pathlib import Path
from typing import IO

from starlette.requests import Request

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger("dalle_mcp.requests")


def configure_logging(
    level: str = "INFO",
    log_to_file: bool = False,
    log_file_path: str = "./logs/mcp.log",
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Configure the ``dalle_mcp`` logger tree.

    Pass ``stream=sys.stderr`` in stdio mode: stdout is reserved for
    JSON-RPC frames there.
    """
    root = logging.getLogger("dalle_mcp")
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    stream_handler = logging.StreamHandler(stream or sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if log_to_file:
        path = Path(log_file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.propagate = False
    return root


def truncate_prompt(prompt: str, limit: int = 50) -> str:
    return f"{prompt[:limit]}..." if len(prompt) > limit else prompt


def log_request(
    request: Request,
    status: str,
    prompt: str | None = None,
    error: str | None = None,
    response_time_ms: float | None = None,
) -> None:
    request_id = request.headers.get("x-request-id", "unknown")
    client = request.client.host if request.client else "unknown"
    message = f"Request {request_id} {status} - {request.method} {request.url.path} from {client}"
    if isinstance(prompt, str) and prompt:
        message += f' - Prompt: "{truncate_prompt(prompt)}"'
    if error:
        message += f" - Error: {error}"
    if response_time_ms is not None:
        message += f" - Response time: {response_time_ms:.0f}ms"
    logger.info(message)
