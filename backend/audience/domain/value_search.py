"""Debounced, last-request-wins lookups for filter value typeahead."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import anyio

from audience.domain.calls import CallTracker


@dataclass(frozen=True)
class ValuePage:
    values: list[Any] = field(default_factory=list)
    page: int = 1
    has_more: bool = False


ValueFetcher = Callable[[str, int], Awaitable[ValuePage]]


class LatestValueSearch:
    """Only the most recent search may publish a result.

    Each call waits ``debounce`` seconds before fetching. A newer call
    cancels the older one while it is waiting or in flight, and a response
    that still arrives for a superseded call is discarded.
    """

    def __init__(self, fetch: ValueFetcher, *, debounce: float = 0.3) -> None:
        self._fetch = fetch
        self._debounce = debounce
        self._sequence = 0
        self._scope: Optional[anyio.CancelScope] = None
        self.term: Optional[str] = None
        self.latest: Optional[ValuePage] = None
        self.call = CallTracker()

    async def search(self, term: str, page: int = 1) -> Optional[ValuePage]:
        """Return the page for ``term``, or ``None`` if a newer search replaced it."""

        self._sequence += 1
        sequence = self._sequence
        if self._scope is not None:
            self._scope.cancel()

        result: Optional[ValuePage] = None
        with anyio.CancelScope() as scope:
            self._scope = scope
            async with self.call.track():
                await anyio.sleep(self._debounce)
                result = await self._fetch(term.strip(), page)

        if scope.cancelled_caught or sequence != self._sequence:
            return None
        self._scope = None
        self.term = term
        self.latest = result
        return result
