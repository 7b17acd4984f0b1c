"""Identity key configuration: set, finalize, and the revert request workflow."""

from typing import Any, Callable, List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from loguru import logger
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from audience.core.audit import log_audit, remote_addr
from audience.core.db import get_session, repeatable_read_transaction
from audience.core.db_errors import raise_on_lock_conflict
from audience.core.db_retry import with_db_retry
from audience.core.deps import Operator, get_current_operator, require_admin
from audience.domain.identity_keys import (
    IdentityKeyConfig,
    KeySlot,
    SlotType,
    normalize_slot_value,
)
from audience.models.identity_key import CompanyIdentityKey
from audience.schemas.identity_key import (
    FinalizeOut,
    IdentityKeyConfigOut,
    KeyEffectOut,
    KeySlotOut,
    RevertRequestIn,
    RevertRequestOut,
    SlotValueIn,
)
from audience.services.evaluator import HttpPredicateEvaluator, get_evaluator
from audience.services.identity_keys import (
    count_pending_duplicates,
    load_config,
    persist_transition,
)
from audience.services.segments import canonical_filters

router = APIRouter(prefix="/identity-keys", tags=["identity-keys"])

Transition = Callable[[IdentityKeyConfig], IdentityKeyConfig]


def _slot_out(slot_type: SlotType, slot: KeySlot) -> KeySlotOut:
    value = slot.value
    if slot_type == SlotType.FILTERS and value is not None:
        value = [g.model_dump(mode="json") for g in value]
    request = slot.revert_request
    return KeySlotOut(
        type=slot_type,
        state=slot.state,
        value=value,
        locked=slot.locked,
        revert_request=(
            RevertRequestOut(
                type=request.type,
                status=request.status,
                requested_at=request.requested_at,
                requested_by=request.requested_by,
            )
            if request is not None
            else None
        ),
    )


def _config_out(row: CompanyIdentityKey, config: IdentityKeyConfig) -> IdentityKeyConfigOut:
    return IdentityKeyConfigOut(
        company_id=config.company_id,
        primary_key=_slot_out(SlotType.PRIMARY_KEY, config.primary_key),
        email_key=_slot_out(SlotType.EMAIL_KEY, config.email_key),
        filters=_slot_out(SlotType.FILTERS, config.filters),
        finalized=config.is_finalized,
        updated_at=row.updated_at,
    )


async def _slot_value(
    session: AsyncSession, operator: Operator, slot_type: SlotType, payload: SlotValueIn
) -> Any:
    if slot_type == SlotType.FILTERS:
        filters = await canonical_filters(session, operator.company_id, payload.filters or [])
        return normalize_slot_value(slot_type, filters)
    try:
        return normalize_slot_value(slot_type, payload.value)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc


async def _transition(
    session: AsyncSession,
    operator: Operator,
    request: Request,
    action: str,
    transition: Transition,
    *,
    closed_status: str = "CANCELLED",
    details: dict | None = None,
) -> tuple[CompanyIdentityKey, IdentityKeyConfig, bool]:
    """Apply one lifecycle transition under the company row lock.

    The transition either commits together with its audit row or raises and
    leaves the stored config untouched. Returns (row, config, changed).
    """

    async def _once() -> tuple[CompanyIdentityKey, IdentityKeyConfig, bool]:
        async with repeatable_read_transaction(session):
            row, before = await load_config(session, operator.company_id, for_update=True)
            after = transition(before)
            if after == before:
                return row, before, False
            await persist_transition(
                session,
                row,
                before,
                after,
                user_code=operator.user_code,
                closed_status=closed_status,
            )
            await log_audit(
                session,
                operator.user_code,
                operator.company_id,
                "identity_key",
                operator.company_id,
                action,
                details=details,
                remote_addr=remote_addr(request),
            )
            return row, after, True

    try:
        result = await with_db_retry(session, _once)
    except OperationalError as exc:
        raise_on_lock_conflict(exc)
    logger.bind(action=action, changed=result[2], **(details or {})).info("identity_key_transition")
    return result


@router.get("", response_model=IdentityKeyConfigOut)
async def get_identity_keys(
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    async with repeatable_read_transaction(session):
        row, config = await load_config(session, operator.company_id)
    return _config_out(row, config)


@router.post("/finalize", response_model=FinalizeOut)
async def finalize_identity_keys(
    request: Request,
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    """Lock all three slots. Finalizing an already finalized config changes nothing."""

    row, config, changed = await _transition(
        session, operator, request, "FINALIZE", lambda c: c.finalize()
    )
    pending = await count_pending_duplicates(session, operator.company_id)
    return FinalizeOut(config=_config_out(row, config), changed=changed, pending_duplicates=pending)


@router.get("/revert-requests", response_model=List[RevertRequestOut])
async def list_revert_requests(
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    async with repeatable_read_transaction(session):
        _, config = await load_config(session, operator.company_id)
    return [
        RevertRequestOut(
            type=r.type, status=r.status, requested_at=r.requested_at, requested_by=r.requested_by
        )
        for r in config.pending_requests()
    ]


@router.post(
    "/revert-requests",
    response_model=IdentityKeyConfigOut,
    status_code=status.HTTP_201_CREATED,
)
async def request_revert(
    payload: RevertRequestIn,
    request: Request,
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    row, config, _ = await _transition(
        session,
        operator,
        request,
        "REVERT_REQUEST",
        lambda c: c.request_revert(payload.type, requested_by=operator.user_code),
        details={"type": payload.type.value},
    )
    return _config_out(row, config)


@router.post("/revert-requests/cancel", response_model=IdentityKeyConfigOut)
async def cancel_revert_request(
    payload: RevertRequestIn,
    request: Request,
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    row, config, _ = await _transition(
        session,
        operator,
        request,
        "REVERT_CANCEL",
        lambda c: c.cancel_revert(payload.type),
        closed_status="CANCELLED",
        details={"type": payload.type.value},
    )
    return _config_out(row, config)


@router.post("/revert-requests/approve", response_model=IdentityKeyConfigOut)
async def approve_revert_request(
    payload: RevertRequestIn,
    request: Request,
    session: AsyncSession = Depends(get_session),
    admin: Operator = Depends(require_admin),
):
    """Administrator approval: the slot becomes editable again."""

    row, config, _ = await _transition(
        session,
        admin,
        request,
        "REVERT_APPROVE",
        lambda c: c.approve_revert(payload.type),
        closed_status="APPROVED",
        details={"type": payload.type.value},
    )
    return _config_out(row, config)


@router.put("/{slot_type}", response_model=IdentityKeyConfigOut)
async def set_identity_key(
    slot_type: SlotType,
    payload: SlotValueIn,
    request: Request,
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    value = await _slot_value(session, operator, slot_type, payload)
    row, config, _ = await _transition(
        session,
        operator,
        request,
        "SET",
        lambda c: c.set_value(slot_type, value),
        details={"type": slot_type.value},
    )
    return _config_out(row, config)


@router.delete("/{slot_type}", response_model=IdentityKeyConfigOut)
async def clear_identity_key(
    slot_type: SlotType,
    request: Request,
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    row, config, _ = await _transition(
        session,
        operator,
        request,
        "CLEAR",
        lambda c: c.clear_value(slot_type),
        details={"type": slot_type.value},
    )
    return _config_out(row, config)


@router.post("/{slot_type}/effect", response_model=KeyEffectOut)
async def preview_key_effect(
    slot_type: SlotType,
    payload: SlotValueIn,
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
    evaluator: HttpPredicateEvaluator = Depends(get_evaluator),
):
    """How many contacts a candidate value would affect, before it is saved."""

    value = await _slot_value(session, operator, slot_type, payload)
    async with repeatable_read_transaction(session):
        _, config = await load_config(session, operator.company_id)
    # Same rejection the change itself would get.
    config.set_value(slot_type, value)
    effect = await evaluator.preview_key_effect(slot_type, value)
    return KeyEffectOut(
        slot_type=slot_type,
        value=[g.model_dump(mode="json") for g in value] if slot_type == SlotType.FILTERS else value,
        affected_count=effect.affected_count,
        message=effect.message,
    )
