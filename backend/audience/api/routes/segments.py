from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import delete, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from audience.core.audit import log_audit, remote_addr
from audience.core.config import settings
from audience.core.db import get_session, repeatable_read_transaction
from audience.core.db_errors import raise_on_lock_conflict
from audience.core.db_retry import with_db_retry
from audience.core.deps import Operator, get_current_operator
from audience.core.idempotency import (
    IdempotencyClaimState,
    claim_idempotency_key,
    complete_idempotency_key,
    optional_idempotency_key,
)
from audience.core.optimistic_lock import ensure_expected_timestamp
from audience.domain.errors import AggregationUnavailableError, EvaluatorUnavailableError
from audience.domain.filter_tree import from_groups, normalize_groups, segment_predicate
from audience.models.base import db_now
from audience.models.segment import Segment
from audience.schemas.audience import CountOut
from audience.schemas.segment import (
    FieldSelectionOut,
    SegmentCreate,
    SegmentEditorOut,
    SegmentListOut,
    SegmentOut,
    SegmentPreviewRequest,
    SegmentSummaryOut,
    SegmentUpdate,
)
from audience.services.evaluator import HttpPredicateEvaluator, get_evaluator
from audience.services.identity_keys import get_primary_key_field
from audience.services.segments import canonical_filters, load_company_fields, parse_filters

router = APIRouter(prefix="/segments", tags=["segments"])


async def _get_segment(
    session: AsyncSession, company_id: str, segment_id: str, *, for_update: bool = False
) -> Segment:
    stmt = select(Segment).where(Segment.company_id == company_id, Segment.id == segment_id)
    if for_update:
        stmt = stmt.with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
    obj = await session.scalar(stmt)
    if not obj:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Segment not found")
    return obj


@router.get("", response_model=SegmentListOut)
async def list_segments(
    q: Optional[str] = None,
    limit: int = settings.SEGMENT_PAGE_SIZE,
    offset: int = 0,
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    conds = [Segment.company_id == operator.company_id]
    if q:
        conds.append(Segment.name.ilike(f"%{q.strip()}%"))

    total = (
        await session.execute(select(func.count()).select_from(Segment).where(*conds))
    ).scalar_one()
    rows = (
        await session.execute(
            select(Segment)
            .where(*conds)
            .order_by(Segment.created_at.desc(), Segment.id)
            .limit(max(1, min(limit, 100)))
            .offset(max(0, offset))
        )
    ).scalars().all()
    return SegmentListOut(items=[SegmentOut.model_validate(r) for r in rows], total=total)


@router.get("/all", response_model=List[SegmentSummaryOut])
async def list_all_segments(
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    """Every segment of the company, for campaign audience pickers."""

    return (
        await session.execute(
            select(Segment)
            .where(Segment.company_id == operator.company_id)
            .order_by(Segment.name)
        )
    ).scalars().all()


@router.post("", response_model=SegmentOut, status_code=status.HTTP_201_CREATED)
async def create_segment(
    payload: SegmentCreate,
    request: Request,
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    # Reject unconstrained segments before touching the database.
    normalize_groups(payload.filters)
    header_key = optional_idempotency_key(request)
    idempotency_key = f"{operator.company_id}:{header_key}" if header_key else None

    async def _create_once() -> Segment:
        async with repeatable_read_transaction(session):
            if idempotency_key:
                claim = await claim_idempotency_key(
                    session, idempotency_key=idempotency_key, resource="segment"
                )
                if claim.state == IdempotencyClaimState.REPLAY and claim.record:
                    existing = await session.scalar(
                        select(Segment).where(
                            Segment.company_id == operator.company_id,
                            Segment.id == claim.record.resource_id,
                        )
                    )
                    if existing:
                        return existing
                    raise HTTPException(
                        status_code=status.HTTP_409_CONFLICT,
                        detail="Original request completed but the segment was not found.",
                    )
                if claim.state == IdempotencyClaimState.IN_PROGRESS:
                    raise HTTPException(
                        status_code=status.HTTP_409_CONFLICT,
                        detail="Another request with this Idempotency-Key is still running. Please retry shortly.",
                        headers={"Retry-After": str(claim.retry_after or 1)},
                    )

            filters = await canonical_filters(session, operator.company_id, payload.filters)
            now = db_now()
            obj = Segment(
                company_id=operator.company_id,
                name=payload.name.strip(),
                filters=[g.model_dump(mode="json") for g in filters],
                created_by=operator.user_code,
                created_at=now,
                updated_at=now,
            )
            session.add(obj)
            await session.flush()

            await log_audit(
                session,
                operator.user_code,
                operator.company_id,
                "segment",
                obj.id,
                "CREATE",
                details={"name": obj.name, "group_count": len(filters)},
                remote_addr=remote_addr(request),
            )
            if idempotency_key:
                await complete_idempotency_key(
                    session, idempotency_key=idempotency_key, resource_id=obj.id
                )
            return obj

    try:
        return await with_db_retry(session, _create_once)
    except OperationalError as exc:
        raise_on_lock_conflict(exc)


@router.post("/preview-count", response_model=CountOut)
async def preview_segment_count(
    payload: SegmentPreviewRequest,
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
    evaluator: HttpPredicateEvaluator = Depends(get_evaluator),
):
    """Live count for a draft segment in the editor."""

    filters = await canonical_filters(session, operator.company_id, payload.filters)
    identity_key = await get_primary_key_field(session, operator.company_id)
    try:
        return await evaluator.evaluate(segment_predicate(filters), identity_key=identity_key)
    except EvaluatorUnavailableError as exc:
        raise AggregationUnavailableError() from exc


@router.get("/{segment_id}", response_model=SegmentOut)
async def get_segment(
    segment_id: str,
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    return await _get_segment(session, operator.company_id, segment_id)


@router.get("/{segment_id}/editor", response_model=SegmentEditorOut)
async def get_segment_editor(
    segment_id: str,
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    """Editor state for a saved segment, with groups on deleted fields listed as unresolved."""

    obj = await _get_segment(session, operator.company_id, segment_id)
    fields = await load_company_fields(session, operator.company_id)
    hydrated = from_groups(parse_filters(obj.filters), fields)
    return SegmentEditorOut(
        segment=SegmentOut.model_validate(obj),
        selections=[FieldSelectionOut.model_validate(s) for s in hydrated.selections],
        unresolved=hydrated.unresolved,
    )


@router.patch("/{segment_id}", response_model=SegmentOut)
async def update_segment(
    segment_id: str,
    payload: SegmentUpdate,
    request: Request,
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    if payload.filters is not None:
        normalize_groups(payload.filters)

    async def _update_once() -> Segment:
        async with repeatable_read_transaction(session):
            obj = await _get_segment(
                session, operator.company_id, segment_id, for_update=True
            )
            ensure_expected_timestamp(obj.updated_at, payload.expected_updated_at)

            changes: dict = {}
            if payload.name is not None and payload.name.strip() != obj.name:
                obj.name = changes["name"] = payload.name.strip()
            if payload.filters is not None:
                filters = await canonical_filters(session, operator.company_id, payload.filters)
                obj.filters = [g.model_dump(mode="json") for g in filters]
                changes["group_count"] = len(filters)
            if changes:
                obj.updated_by = operator.user_code
                obj.updated_at = db_now()
                await log_audit(
                    session,
                    operator.user_code,
                    operator.company_id,
                    "segment",
                    segment_id,
                    "UPDATE",
                    details=changes,
                    remote_addr=remote_addr(request),
                )
            return obj

    try:
        return await with_db_retry(session, _update_once)
    except OperationalError as exc:
        raise_on_lock_conflict(exc)


@router.delete("/{segment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_segment(
    segment_id: str,
    request: Request,
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    try:
        async with repeatable_read_transaction(session):
            obj = await _get_segment(
                session, operator.company_id, segment_id, for_update=True
            )
            await session.execute(delete(Segment).where(Segment.id == obj.id))
            await log_audit(
                session,
                operator.user_code,
                operator.company_id,
                "segment",
                segment_id,
                "DELETE",
                details={"name": obj.name},
                remote_addr=remote_addr(request),
            )
    except OperationalError as exc:
        raise_on_lock_conflict(exc)
