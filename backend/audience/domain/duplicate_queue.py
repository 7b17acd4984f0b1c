"""Operator-facing queue of duplicate contact pairs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Protocol

from loguru import logger

from audience.domain.calls import CallTracker
from audience.domain.errors import StalePairError


class Choice(str, Enum):
    OLD = "OLD"
    NEW = "NEW"


class BulkChoice(str, Enum):
    ALL_OLD = "ALL_OLD"
    ALL_NEW = "ALL_NEW"


@dataclass(frozen=True)
class DuplicatePair:
    id: str
    old: Mapping[str, Any]
    new: Mapping[str, Any]


@dataclass(frozen=True)
class DuplicatePage:
    pairs: list[DuplicatePair] = field(default_factory=list)
    total_remaining: int = 0


class DuplicateStore(Protocol):
    async def fetch_page(self, page: int) -> DuplicatePage:
        ...

    async def resolve(
        self, pair_id: str, choice: Choice, overrides: Optional[Mapping[str, Any]] = None
    ) -> None:
        ...

    async def resolve_all(self, choice: BulkChoice) -> int:
        ...


class ResolutionQueue:
    """Client-side view over the server's duplicate queue.

    Loaded items are only a window onto the queue. ``total_remaining`` is
    always the server's last answer and is never decremented locally; after
    any resolution the window is rebuilt from page 1.
    """

    def __init__(self, store: DuplicateStore) -> None:
        self._store = store
        self.items: list[DuplicatePair] = []
        self.page = 0
        self.total_remaining = 0
        self.cursor: Optional[int] = None
        self.call = CallTracker()

    @property
    def current(self) -> Optional[DuplicatePair]:
        if self.cursor is None:
            return None
        return self.items[self.cursor]

    @property
    def has_more(self) -> bool:
        return len(self.items) < self.total_remaining

    def inspect(self, index: int) -> DuplicatePair:
        if not 0 <= index < len(self.items):
            raise IndexError(f"No loaded duplicate pair at index {index}")
        self.cursor = index
        return self.items[index]

    async def load_page(self, page: int) -> list[DuplicatePair]:
        """Fetch ``page`` and append its pairs that are not already loaded."""

        async with self.call.track():
            result = await self._store.fetch_page(page)
        loaded = {pair.id for pair in self.items}
        added = [pair for pair in result.pairs if pair.id not in loaded]
        self.items.extend(added)
        self.page = page
        self.total_remaining = result.total_remaining
        if self.cursor is None and self.items:
            self.cursor = 0
        return added

    async def load_next(self) -> list[DuplicatePair]:
        return await self.load_page(self.page + 1)

    async def refresh(self) -> None:
        """Reload from the first page, keeping the inspected pair if it survived.

        The loaded pairs are replaced only once the fetch succeeds.
        """

        inspected = self.current.id if self.current is not None else None
        async with self.call.track():
            result = await self._store.fetch_page(1)
        self.items = list(result.pairs)
        self.page = 1
        self.total_remaining = result.total_remaining
        self.cursor = 0 if self.items else None
        if inspected is not None:
            for index, pair in enumerate(self.items):
                if pair.id == inspected:
                    self.cursor = index
                    break

    async def resolve_one(
        self,
        pair_index: int,
        choice: Choice,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Commit one pair's canonical record and rebuild the queue.

        A pair already resolved elsewhere raises :class:`StalePairError`
        after the queue has been reloaded.
        """

        if not 0 <= pair_index < len(self.items):
            raise IndexError(f"No loaded duplicate pair at index {pair_index}")
        pair = self.items[pair_index]
        try:
            async with self.call.track():
                await self._store.resolve(pair.id, Choice(choice), overrides)
        except StalePairError:
            logger.bind(pair_id=pair.id).warning("duplicate_pair_stale")
            await self.refresh()
            raise
        await self.refresh()

    async def resolve_all(self, choice: BulkChoice) -> int:
        """Resolve every pending pair on the server, loaded or not."""

        async with self.call.track():
            resolved = await self._store.resolve_all(BulkChoice(choice))
        await self.refresh()
        return resolved
