"""Pending / settled / failed tracking for outbound calls."""

from __future__ import annotations

from contextlib import asynccontextmanager
from enum import Enum
from typing import AsyncIterator, Optional


class CallStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SETTLED = "settled"
    FAILED = "failed"


class CallTracker:
    """Records the state of the most recent call made through :meth:`track`."""

    def __init__(self) -> None:
        self.status = CallStatus.IDLE
        self.error: Optional[BaseException] = None

    @property
    def pending(self) -> bool:
        return self.status == CallStatus.PENDING

    @asynccontextmanager
    async def track(self) -> AsyncIterator[None]:
        self.status = CallStatus.PENDING
        self.error = None
        try:
            yield
        except Exception as exc:
            self.status = CallStatus.FAILED
            self.error = exc
            raise
        self.status = CallStatus.SETTLED
