"""Map domain errors onto HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from audience.domain.errors import (
    AggregationUnavailableError,
    AudienceError,
    DuplicateRevertRequestError,
    EmptySegmentError,
    EvaluatorUnavailableError,
    InvalidTransitionError,
    KeyLockedError,
    StalePairError,
    StaleReferenceError,
)

ERROR_STATUS: dict[type[AudienceError], int] = {
    EmptySegmentError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    StaleReferenceError: status.HTTP_404_NOT_FOUND,
    KeyLockedError: status.HTTP_409_CONFLICT,
    DuplicateRevertRequestError: status.HTTP_409_CONFLICT,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    StalePairError: status.HTTP_409_CONFLICT,
    AggregationUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
    EvaluatorUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: AudienceError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return status.HTTP_400_BAD_REQUEST


def error_body(exc: AudienceError) -> dict:
    body = {"detail": exc.detail, "code": exc.code, "resync": exc.resync}
    if isinstance(exc, StaleReferenceError) and exc.references:
        body["references"] = exc.references
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the domain error handler to the FastAPI app."""

    async def audience_error_handler(request: Request, exc: AudienceError):
        status_code = status_for(exc)
        logger.bind(
            code=exc.code,
            status=status_code,
            path=str(request.url.path),
        ).warning("request_rejected")
        return JSONResponse(status_code=status_code, content=error_body(exc))

    app.add_exception_handler(AudienceError, audience_error_handler)
