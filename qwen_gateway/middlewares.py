import math
import time
import uuid
from typing import Callable, Dict, Tuple

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

from .errors import unhandled_error_response
from .schemas import ErrorResponse

logger = structlog.get_logger()

RATE_LIMITED = "Too many requests, please try again later."


async def log_requests(request: Request, call_next):
    """Log every request and turn anything unhandled into the 500 error contract."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request.headers.get("x-request-id") or uuid.uuid4().hex)
    logger.info("request.start", method=request.method, path=request.url.path)
    try:
        response = await call_next(request)
    except Exception as e:
        logger.exception("request.error", error=str(e))
        return unhandled_error_response(e)
    logger.info("request.end", status_code=response.status_code)
    return response


class FixedWindowRateLimiter:
    """At most `limit` hits per key in each window of `window` seconds."""

    def __init__(self, limit: int, window: float, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window = window
        self._clock = clock
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._last_prune = clock()

    def hit(self, key: str) -> Tuple[bool, float]:
        """Record a hit; return (allowed, seconds until the window resets)."""
        now = self._clock()
        self._prune(now)

        start, count = self._windows.get(key, (now, 0))
        if now - start >= self.window:
            start, count = now, 0
        count += 1
        self._windows[key] = (start, count)
        return count <= self.limit, max(0.0, start + self.window - now)

    def _prune(self, now: float) -> None:
        if now - self._last_prune < self.window:
            return
        self._windows = {k: v for k, v in self._windows.items() if now - v[0] < self.window}
        self._last_prune = now


def rate_limit(limiter: FixedWindowRateLimiter):
    async def rate_limit_middleware(request: Request, call_next):
        client = request.client.host if request.client else "unknown"
        allowed, retry_after = limiter.hit(client)
        if not allowed:
            logger.warning("rate_limit.exceeded", client=client)
            return JSONResponse(
                status_code=429,
                content=ErrorResponse(error=RATE_LIMITED).model_dump(exclude_none=True),
                headers={"Retry-After": str(math.ceil(retry_after))},
            )
        return await call_next(request)

    return rate_limit_middleware
