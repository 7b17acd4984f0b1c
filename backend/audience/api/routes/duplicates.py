"""Duplicate contact pairs and their resolution into one canonical record."""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from audience.core.audit import log_audit, remote_addr
from audience.core.config import settings
from audience.core.db import get_session, repeatable_read_transaction
from audience.core.db_errors import raise_on_lock_conflict
from audience.core.db_retry import with_db_retry
from audience.core.deps import Operator, get_current_operator
from audience.domain.duplicate_queue import BulkChoice, Choice
from audience.domain.errors import StalePairError
from audience.models.base import db_now
from audience.models.duplicate_pair import ContactDuplicatePair
from audience.schemas.duplicates import (
    DuplicateIngestIn,
    DuplicatePageOut,
    DuplicatePairOut,
    IngestOut,
    ResolveAllIn,
    ResolveAllOut,
    ResolveIn,
    ResolveOut,
)

router = APIRouter(prefix="/duplicates", tags=["duplicates"])

PENDING = "PENDING"
RESOLVED = "RESOLVED"


def canonical_record(
    old: dict[str, Any], new: dict[str, Any], choice: Choice, overrides: Optional[dict] = None
) -> dict[str, Any]:
    chosen = dict(old if choice == Choice.OLD else new)
    if overrides:
        chosen.update(overrides)
    return chosen


@router.get("", response_model=DuplicatePageOut)
async def list_duplicates(
    page: int = Query(1, ge=1),
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    """One page of unresolved pairs; ``total_remaining`` counts all of them."""

    page_size = settings.DUPLICATE_PAGE_SIZE
    conds = (
        ContactDuplicatePair.company_id == operator.company_id,
        ContactDuplicatePair.status == PENDING,
    )
    total = (
        await session.execute(
            select(func.count()).select_from(ContactDuplicatePair).where(*conds)
        )
    ).scalar_one()
    rows = (
        await session.execute(
            select(ContactDuplicatePair)
            .where(*conds)
            .order_by(ContactDuplicatePair.detected_at, ContactDuplicatePair.id)
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
    ).scalars().all()
    return DuplicatePageOut(
        pairs=[DuplicatePairOut.model_validate(row) for row in rows],
        total_remaining=total,
        page=page,
        page_size=page_size,
    )


@router.post("", response_model=IngestOut, status_code=status.HTTP_201_CREATED)
async def ingest_duplicates(
    payload: DuplicateIngestIn,
    request: Request,
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    """Record pairs reported by the duplicate detector."""

    now = db_now()
    session.add_all(
        [
            ContactDuplicatePair(
                company_id=operator.company_id,
                old_record=pair.old,
                new_record=pair.new,
                status=PENDING,
                detected_at=now,
            )
            for pair in payload.pairs
        ]
    )
    await log_audit(
        session,
        operator.user_code,
        operator.company_id,
        "duplicate_pair",
        None,
        "INGEST",
        details={"count": len(payload.pairs)},
        remote_addr=remote_addr(request),
    )
    await session.commit()
    return IngestOut(created=len(payload.pairs))


@router.post("/resolve-all", response_model=ResolveAllOut)
async def resolve_all_duplicates(
    payload: ResolveAllIn,
    request: Request,
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    """Resolve every unresolved pair of the company with one rule, not just a loaded page."""

    choice = Choice.OLD if payload.choice == BulkChoice.ALL_OLD else Choice.NEW

    async def _once() -> int:
        async with repeatable_read_transaction(session):
            rows = (
                await session.execute(
                    select(ContactDuplicatePair)
                    .where(
                        ContactDuplicatePair.company_id == operator.company_id,
                        ContactDuplicatePair.status == PENDING,
                    )
                    .with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
                )
            ).scalars().all()
            now = db_now()
            for row in rows:
                row.status = RESOLVED
                row.choice = choice.value
                row.canonical_record = canonical_record(row.old_record, row.new_record, choice)
                row.resolved_by = operator.user_code
                row.resolved_at = now
            await log_audit(
                session,
                operator.user_code,
                operator.company_id,
                "duplicate_pair",
                None,
                "RESOLVE_ALL",
                details={"choice": payload.choice.value, "count": len(rows)},
                remote_addr=remote_addr(request),
            )
            return len(rows)

    try:
        resolved = await with_db_retry(session, _once)
    except OperationalError as exc:
        raise_on_lock_conflict(exc)
    logger.bind(choice=payload.choice.value, resolved=resolved).info("duplicates_resolved_all")
    return ResolveAllOut(resolved=resolved)


@router.post("/{pair_id}/resolve", response_model=ResolveOut)
async def resolve_duplicate(
    pair_id: str,
    payload: ResolveIn,
    request: Request,
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    """Commit the chosen record as canonical for one pair.

    The status guard makes a concurrent second resolution update nothing,
    which is reported as a stale pair instead of overwriting the first.
    """

    async def _once() -> ResolveOut:
        async with repeatable_read_transaction(session):
            row = await session.scalar(
                select(ContactDuplicatePair).where(
                    ContactDuplicatePair.company_id == operator.company_id,
                    ContactDuplicatePair.id == pair_id,
                )
            )
            if row is None or row.status != PENDING:
                raise StalePairError()
            canonical = canonical_record(
                row.old_record, row.new_record, payload.choice, payload.overrides
            )
            result = await session.execute(
                update(ContactDuplicatePair)
                .where(
                    ContactDuplicatePair.id == pair_id,
                    ContactDuplicatePair.status == PENDING,
                )
                .values(
                    status=RESOLVED,
                    choice=payload.choice.value,
                    canonical_record=canonical,
                    resolved_by=operator.user_code,
                    resolved_at=db_now(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise StalePairError()
            await log_audit(
                session,
                operator.user_code,
                operator.company_id,
                "duplicate_pair",
                pair_id,
                "RESOLVE",
                details={"choice": payload.choice.value, "overrides": sorted(payload.overrides or {})},
                remote_addr=remote_addr(request),
            )
            return ResolveOut(id=pair_id, choice=payload.choice, canonical=canonical)

    try:
        resolved = await with_db_retry(session, _once)
    except OperationalError as exc:
        raise_on_lock_conflict(exc)
    logger.bind(pair_id=pair_id, choice=payload.choice.value).info("duplicate_resolved")
    return resolved
