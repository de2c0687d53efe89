"""Optional bearer-token authentication for the HTTP API."""

import hmac
import logging

from fastapi import HTTPException
from starlette.requests import Request

logger = logging.getLogger("dalle_mcp.auth")

_warned = False


def check_token(expected: str | None, authorization: str | None) -> None:
    """Raise HTTPException unless ``authorization`` carries ``expected``.

    With no token configured every request is allowed.
    """
    global _warned
    if not expected:
        if not _warned:
            logger.warning("No MCP_AUTH_TOKEN set. Running without authentication!")
            _warned = True
        return

    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid authorization header")

    token = authorization[len("Bearer "):].strip()
    if not token or not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=403, detail="Invalid authentication token")


async def require_auth(request: Request) -> None:
    check_token(request.app.state.config.auth_token, request.headers.get("authorization"))
