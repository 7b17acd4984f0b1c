"""ASGI middleware for request context and body limits."""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from audience.core.config import settings
from audience.core.logging import company_id_ctx_var, request_id_ctx_var, user_code_ctx_var


class RequestContextLogMiddleware(BaseHTTPMiddleware):
    """Tags every request with an id and writes one access line when it ends.

    The operator and company are filled in by ``get_current_operator`` once
    the bearer token is decoded, so they appear on the access line too.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        tokens = (
            (request_id_ctx_var, request_id_ctx_var.set(request_id)),
            (user_code_ctx_var, user_code_ctx_var.set("-")),
            (company_id_ctx_var, company_id_ctx_var.set("-")),
        )
        start = time.perf_counter()
        response: Response | None = None
        try:
            response = await call_next(request)
            return response
        finally:
            logger.bind(
                method=request.method,
                path=request.url.path,
                status=response.status_code if response is not None else 500,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
                user_code=getattr(request.state, "user_code", "-"),
                company_id=getattr(request.state, "company_id", "-"),
            ).info("request_completed")
            if response is not None:
                response.headers.setdefault("X-Request-ID", request_id)
            for var, token in reversed(tokens):
                var.reset(token)


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Refuse bodies whose declared length exceeds MAX_BODY_BYTES.

    Segment filters and duplicate ingest batches are the only large payloads.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        declared = request.headers.get("content-length")
        if declared is None:
            return await call_next(request)
        if not declared.isdigit():
            return JSONResponse(
                status_code=400,
                content={"detail": "Invalid Content-Length header", "code": "bad_request", "resync": False},
            )
        if int(declared) > settings.MAX_BODY_BYTES:
            logger.bind(path=request.url.path, content_length=int(declared)).warning("request_rejected")
            return JSONResponse(
                status_code=413,
                content={"detail": "Request body too large", "code": "body_too_large", "resync": False},
            )
        return await call_next(request)
