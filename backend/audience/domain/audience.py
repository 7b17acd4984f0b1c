"""Deduplicated recipient counts across several segments."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping, Optional, Protocol, Sequence

import anyio
from loguru import logger

from audience.domain.errors import AggregationUnavailableError, EvaluatorUnavailableError
from audience.domain.filter_tree import Node, segment_predicate, union_predicate
from audience.schemas.filters import FilterGroup


@dataclass(frozen=True)
class CountSnapshot:
    count: int = 0
    invalid_email_count: int = 0
    unsubscribed_count: int = 0


@dataclass(frozen=True)
class SegmentDefinition:
    id: str
    name: str
    filters: Sequence[FilterGroup]


@dataclass(frozen=True)
class SegmentCount:
    segment_id: str
    segment_name: str
    contact_count: int
    invalid_email_count: int
    unsubscribed_count: int


@dataclass(frozen=True)
class AudienceCount:
    """Point-in-time audience size.

    ``per_segment`` counts are independent and do not add up to
    ``total_number_of_contacts``; a contact in two segments is counted once
    in the total.
    """

    per_segment: list[SegmentCount] = field(default_factory=list)
    total_number_of_contacts: int = 0
    total_invalid_email_count: int = 0
    total_unsubscribed_count: int = 0
    stale_segment_ids: list[str] = field(default_factory=list)
    computed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PredicateEvaluator(Protocol):
    async def evaluate(self, predicate: Node, *, identity_key: Optional[str] = None) -> CountSnapshot:
        ...


class SegmentSource(Protocol):
    async def load_segments(self, segment_ids: Sequence[str]) -> Mapping[str, SegmentDefinition]:
        ...


def _distinct_ids(segment_ids: Sequence[str]) -> list[str]:
    ordered: list[str] = []
    for segment_id in segment_ids:
        if segment_id not in ordered:
            ordered.append(segment_id)
    return ordered


class AudienceAggregator:
    def __init__(self, evaluator: PredicateEvaluator, segments: SegmentSource) -> None:
        self._evaluator = evaluator
        self._segments = segments

    async def compute_audience(
        self,
        segment_ids: Sequence[str],
        *,
        identity_key: Optional[str] = None,
    ) -> AudienceCount:
        """Count the union of ``segment_ids``.

        The total comes from one evaluation of the OR of all segment
        predicates, deduplicated by ``identity_key``. Unknown ids are left out
        of the union and reported in ``stale_segment_ids``. Any evaluator
        failure fails the whole computation.
        """

        ids = _distinct_ids(segment_ids)
        if not ids:
            return AudienceCount()

        found = await self._segments.load_segments(ids)
        live = [found[segment_id] for segment_id in ids if segment_id in found]
        stale = [segment_id for segment_id in ids if segment_id not in found]
        if stale:
            logger.bind(stale_segment_ids=stale).warning("audience_stale_segments")
        if not live:
            return AudienceCount(stale_segment_ids=stale)

        predicates: list[Node] = [segment_predicate(s.filters) for s in live]
        predicates.append(union_predicate([s.filters for s in live]))
        snapshots: list[Optional[CountSnapshot]] = [None] * len(predicates)
        failures: list[EvaluatorUnavailableError] = []

        async def run(index: int, predicate: Node, scope: anyio.CancelScope) -> None:
            try:
                snapshots[index] = await self._evaluator.evaluate(predicate, identity_key=identity_key)
            except EvaluatorUnavailableError as exc:
                failures.append(exc)
                scope.cancel()

        async with anyio.create_task_group() as tg:
            for index, predicate in enumerate(predicates):
                tg.start_soon(run, index, predicate, tg.cancel_scope)

        if failures:
            logger.bind(
                segment_ids=[s.id for s in live],
                error=str(failures[0]),
            ).error("audience_count_failed")
            raise AggregationUnavailableError() from failures[0]

        counted = [snapshot for snapshot in snapshots if snapshot is not None]
        if len(counted) != len(snapshots):
            # A missing count would make the total partial.
            logger.bind(segment_ids=[s.id for s in live]).error("audience_count_incomplete")
            raise AggregationUnavailableError()
        *per_segment, total = counted
        return AudienceCount(
            per_segment=[
                SegmentCount(
                    segment_id=segment.id,
                    segment_name=segment.name,
                    contact_count=snapshot.count,
                    invalid_email_count=snapshot.invalid_email_count,
                    unsubscribed_count=snapshot.unsubscribed_count,
                )
                for segment, snapshot in zip(live, per_segment)
            ],
            total_number_of_contacts=total.count,
            total_invalid_email_count=total.invalid_email_count,
            total_unsubscribed_count=total.unsubscribed_count,
            stale_segment_ids=stale,
        )
