"""Segment lookups shared by the segment and audience endpoints."""

from __future__ import annotations

from typing import Mapping, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from audience.domain.audience import SegmentDefinition
from audience.domain.errors import StaleReferenceError
from audience.domain.filter_tree import from_groups, normalize_groups, to_groups
from audience.models.contact_field import ContactField
from audience.models.segment import Segment
from audience.schemas.filters import FilterGroup


def parse_filters(raw: Sequence[dict]) -> list[FilterGroup]:
    return [FilterGroup.model_validate(item) for item in raw or []]


class SqlSegmentSource:
    """Loads one company's segment definitions from the database."""

    def __init__(self, session: AsyncSession, company_id: str) -> None:
        self._session = session
        self._company_id = company_id

    async def load_segments(self, segment_ids: Sequence[str]) -> Mapping[str, SegmentDefinition]:
        if not segment_ids:
            return {}
        rows = (
            await self._session.execute(
                select(Segment).where(
                    Segment.company_id == self._company_id,
                    Segment.id.in_(list(segment_ids)),
                )
            )
        ).scalars().all()
        return {
            row.id: SegmentDefinition(id=row.id, name=row.name, filters=parse_filters(row.filters))
            for row in rows
        }


async def load_company_fields(session: AsyncSession, company_id: str) -> list[ContactField]:
    return list(
        (
            await session.execute(
                select(ContactField)
                .where(ContactField.company_id == company_id)
                .order_by(ContactField.name)
            )
        ).scalars().all()
    )


async def canonical_filters(
    session: AsyncSession, company_id: str, groups: Sequence[FilterGroup]
) -> list[FilterGroup]:
    """Drop empty groups and bind every group to a field that still exists.

    Raises EmptySegmentError when nothing remains and StaleReferenceError when
    a group or nested condition names an unknown field.
    """

    normalized = normalize_groups(groups)
    fields = await load_company_fields(session, company_id)
    selections = from_groups(normalized, fields).require_resolved()
    known_keys = {f.field_key for f in fields}
    unknown = sorted(
        {c.field_key for s in selections for c in s.conditions if c.field_key not in known_keys}
    )
    if unknown:
        raise StaleReferenceError(
            "Filter conditions reference fields that no longer exist: " + ", ".join(unknown),
            references=unknown,
        )
    return to_groups(selections)
