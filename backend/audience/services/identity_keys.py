"""Persistence for the identity key aggregate.

Routes load the config with the company row locked, apply one transition of
:class:`~audience.domain.identity_keys.IdentityKeyConfig`, then write the
result back in the same transaction.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from audience.core.config import settings
from audience.domain.identity_keys import (
    IdentityKeyConfig,
    KeySlot,
    RevertRequest,
    RevertStatus,
    SlotType,
)
from audience.models.base import db_now
from audience.models.duplicate_pair import ContactDuplicatePair
from audience.models.identity_key import CompanyIdentityKey, IdentityKeyRevertRequest
from audience.services.segments import parse_filters


async def load_identity_row(
    session: AsyncSession, company_id: str, *, for_update: bool = False
) -> CompanyIdentityKey:
    """Return the company's row, creating an empty one on first use."""

    stmt = select(CompanyIdentityKey).where(CompanyIdentityKey.company_id == company_id)
    if for_update:
        stmt = stmt.with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
    row = await session.scalar(stmt)
    if row is None:
        row = CompanyIdentityKey(company_id=company_id)
        session.add(row)
        await session.flush()
    return row


async def load_pending_requests(
    session: AsyncSession, company_id: str
) -> dict[SlotType, IdentityKeyRevertRequest]:
    rows = (
        await session.execute(
            select(IdentityKeyRevertRequest).where(
                IdentityKeyRevertRequest.company_id == company_id,
                IdentityKeyRevertRequest.status == RevertStatus.PENDING.value,
            )
        )
    ).scalars().all()
    return {SlotType(row.request_type): row for row in rows}


def _as_request(row: Optional[IdentityKeyRevertRequest]) -> Optional[RevertRequest]:
    if row is None:
        return None
    requested_at = row.requested_at
    if requested_at is not None and requested_at.tzinfo is None:
        requested_at = requested_at.replace(tzinfo=timezone.utc)
    return RevertRequest(
        type=SlotType(row.request_type),
        status=RevertStatus.PENDING,
        requested_at=requested_at,
        requested_by=row.requested_by,
    )


def to_config(
    row: CompanyIdentityKey, pending: dict[SlotType, IdentityKeyRevertRequest]
) -> IdentityKeyConfig:
    filters = tuple(parse_filters(row.selection_filters)) if row.selection_filters else None
    return IdentityKeyConfig(
        company_id=row.company_id,
        primary_key=KeySlot(
            value=row.primary_key_field,
            locked=bool(row.primary_key_locked),
            revert_request=_as_request(pending.get(SlotType.PRIMARY_KEY)),
        ),
        email_key=KeySlot(
            value=row.email_key_field,
            locked=bool(row.email_key_locked),
            revert_request=_as_request(pending.get(SlotType.EMAIL_KEY)),
        ),
        filters=KeySlot(
            value=filters,
            locked=bool(row.filters_locked),
            revert_request=_as_request(pending.get(SlotType.FILTERS)),
        ),
    )


async def load_config(
    session: AsyncSession, company_id: str, *, for_update: bool = False
) -> tuple[CompanyIdentityKey, IdentityKeyConfig]:
    row = await load_identity_row(session, company_id, for_update=for_update)
    pending = await load_pending_requests(session, company_id)
    return row, to_config(row, pending)


def apply_slots(row: CompanyIdentityKey, config: IdentityKeyConfig, user_code: str) -> None:
    """Copy slot values and lock flags from ``config`` onto ``row``."""

    filters = config.filters.value
    row.primary_key_field = config.primary_key.value
    row.primary_key_locked = config.primary_key.locked
    row.email_key_field = config.email_key.value
    row.email_key_locked = config.email_key.locked
    row.selection_filters = (
        [g.model_dump(mode="json") for g in filters] if filters is not None else None
    )
    row.filters_locked = config.filters.locked
    row.updated_by = user_code
    row.updated_at = db_now()


async def open_revert_request(
    session: AsyncSession, company_id: str, request: RevertRequest, user_code: str
) -> IdentityKeyRevertRequest:
    requested_at = request.requested_at or datetime.now(timezone.utc)
    row = IdentityKeyRevertRequest(
        company_id=company_id,
        request_type=request.type.value,
        status=RevertStatus.PENDING.value,
        requested_by=request.requested_by or user_code,
        requested_at=requested_at.astimezone(timezone.utc).replace(tzinfo=None, microsecond=0),
    )
    session.add(row)
    await session.flush()
    return row


async def close_revert_request(
    session: AsyncSession,
    company_id: str,
    slot_type: SlotType,
    *,
    status: str,
    user_code: str,
) -> int:
    """Close the pending request of ``slot_type`` as CANCELLED or APPROVED."""

    result = await session.execute(
        update(IdentityKeyRevertRequest)
        .where(
            IdentityKeyRevertRequest.company_id == company_id,
            IdentityKeyRevertRequest.request_type == slot_type.value,
            IdentityKeyRevertRequest.status == RevertStatus.PENDING.value,
        )
        .values(status=status, closed_by=user_code, closed_at=db_now())
    )
    return result.rowcount or 0


async def count_pending_duplicates(session: AsyncSession, company_id: str) -> int:
    return (
        await session.execute(
            select(func.count())
            .select_from(ContactDuplicatePair)
            .where(
                ContactDuplicatePair.company_id == company_id,
                ContactDuplicatePair.status == "PENDING",
            )
        )
    ).scalar_one()


async def get_primary_key_field(session: AsyncSession, company_id: str) -> Optional[str]:
    """The field audience counts deduplicate contacts by, if one is configured."""

    return await session.scalar(
        select(CompanyIdentityKey.primary_key_field).where(
            CompanyIdentityKey.company_id == company_id
        )
    )


async def persist_transition(
    session: AsyncSession,
    row: CompanyIdentityKey,
    before: IdentityKeyConfig,
    after: IdentityKeyConfig,
    *,
    user_code: str,
    closed_status: str = "CANCELLED",
) -> None:
    """Write ``after`` over ``before``: slot columns plus opened or closed revert requests."""

    apply_slots(row, after, user_code)
    if after.is_finalized and not before.is_finalized:
        row.finalized_at = db_now()
        row.finalized_by = user_code
    for slot_type in SlotType:
        was = before.slot(slot_type).revert_request
        now = after.slot(slot_type).revert_request
        if was is None and now is not None:
            await open_revert_request(session, row.company_id, now, user_code)
        elif was is not None and now is None:
            await close_revert_request(
                session, row.company_id, slot_type, status=closed_status, user_code=user_code
            )
    await session.flush()
