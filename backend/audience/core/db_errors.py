"""Translate database lock errors into API responses."""

from __future__ import annotations

from fastapi import HTTPException, status
from sqlalchemy.exc import OperationalError

# 3572: statement aborted because NOWAIT could not acquire a row lock.
LOCK_NOWAIT_ERROR_CODES = {3572}


def mysql_error_code(exc: OperationalError) -> int | None:
    orig = getattr(exc, "orig", None)
    if orig and getattr(orig, "args", None):
        try:
            return int(orig.args[0])
        except (TypeError, ValueError):
            return None
    return None


def raise_on_lock_conflict(exc: OperationalError) -> None:
    """Raise HTTP 409 for lock-nowait conflicts and re-raise anything else."""

    code = mysql_error_code(exc)
    message = str(getattr(exc, "orig", exc)).lower()
    if (
        code in LOCK_NOWAIT_ERROR_CODES
        or "could not obtain lock" in message
        or "could not acquire" in message
        or "database is locked" in message
    ):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Resource is locked by another request. Please retry shortly.",
        ) from exc
    raise exc
