"""Rate limiting for the typeahead endpoints, using SlowAPI.

Limits are counted per operator rather than per client address, since
operators of one company often share an egress IP.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address


def operator_key(request: Request) -> str:
    # Set by get_current_operator, which FastAPI resolves before the limited endpoint runs.
    user_code = getattr(request.state, "user_code", None)
    if user_code:
        return f"operator:{user_code}"
    return f"addr:{get_remote_address(request)}"


limiter = Limiter(key_func=operator_key)


def init_rate_limiter(app: FastAPI) -> None:
    """Attach the rate limiter and exception handler to the FastAPI app."""

    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)

    async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
        logger.bind(key=operator_key(request), path=str(request.url.path), limit=str(exc.detail)).warning(
            "rate_limited"
        )
        return JSONResponse(
            status_code=429,
            content={"detail": "Too many requests", "code": "rate_limited", "resync": False},
            headers={"Retry-After": "1"},
        )

    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
