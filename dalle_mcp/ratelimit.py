"""Fixed-window rate limiting for the HTTP API."""

import hashlib
import math
import threading
import time
from dataclasses import dataclass

from starlette.requests import Request


class RateLimitExceeded(Exception):
    def __init__(self, message: str, limit: int, reset_at: float):
        self.limit = limit
        self.remaining = 0
        self.reset_at = reset_at
        super().__init__(message)

    @property
    def retry_after(self) -> int:
        return max(0, math.ceil(self.reset_at - time.time()))


@dataclass
class _Window:
    started: float
    count: int = 0


class RateLimiter:
    def __init__(self, limit: int, window_seconds: float, message: str) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self.message = message
        self._windows: dict[str, _Window] = {}
        self._last_prune = 0.0
        self._lock = threading.Lock()

    def hit(self, key: str) -> int:
        """Count one request for ``key`` and return how many remain in the window."""
        now = time.time()
        with self._lock:
            if now - self._last_prune >= self.window_seconds:
                self._prune(now)
            window = self._windows.get(key)
            if window is None or now - window.started >= self.window_seconds:
                window = _Window(started=now)
                self._windows[key] = window
            if window.count >= self.limit:
                raise RateLimitExceeded(self.message, self.limit, window.started + self.window_seconds)
            window.count += 1
            return self.limit - window.count

    def _prune(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if now - w.started >= self.window_seconds]
        for key in expired:
            del self._windows[key]
        self._last_prune = now

    def prune(self) -> None:
        """Drop every expired window. ``hit`` does this at most once per window length."""
        with self._lock:
            self._prune(time.time())

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
            self._last_prune = 0.0


def client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def image_generation_key(request: Request) -> str:
    """Client address plus a short hash of the bearer token, if any."""
    key = client_key(request)
    auth = request.headers.get("authorization", "")
    if auth.startswith("Bearer "):
        token_hash = hashlib.sha256(auth[7:].encode("utf-8")).hexdigest()[:16]
        return f"{key}-{token_hash}"
    return key


general_limiter = RateLimiter(
    limit=100,
    window_seconds=15 * 60,
    message="Too many requests from this IP, please try again later.",
)

image_limiter = RateLimiter(
    limit=10,
    window_seconds=60 * 60,
    message="Image generation rate limit exceeded. Please try again later.",
)


async def limit_general(request: Request) -> None:
    general_limiter.hit(client_key(request))


async def limit_image_generation(request: Request) -> None:
    image_limiter.hit(image_generation_key(request))
