"""Optimistic concurrency checks for edits that carry a version timestamp."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import HTTPException, status


def ensure_expected_timestamp(
    current: Optional[datetime], expected: Optional[datetime]
) -> None:
    """Raise HTTP 409 if the persisted timestamp does not match the expected value.

    Timezone information is ignored; both sides are stored naive.
    """

    if current is not None and expected is not None:
        if current.replace(tzinfo=None) == expected.replace(tzinfo=None):
            return
    elif current is None and expected is None:
        return
    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail="Record has been updated by someone else. Please reload and try again.",
    )
