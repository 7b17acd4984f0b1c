from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from audience.core.audit import log_audit, remote_addr
from audience.core.config import settings
from audience.core.db import get_session
from audience.core.deps import Operator, get_current_operator
from audience.core.rate_limit import limiter
from audience.models.base import db_now
from audience.models.contact_field import ContactField
from audience.schemas.fields import ContactFieldCreate, ContactFieldOut, FieldValuesOut
from audience.services.evaluator import HttpPredicateEvaluator, get_evaluator
from audience.services.segments import load_company_fields

router = APIRouter(prefix="/fields", tags=["fields"])


async def _get_field(session: AsyncSession, company_id: str, field_id: int) -> ContactField:
    obj = await session.scalar(
        select(ContactField).where(
            ContactField.company_id == company_id, ContactField.id == field_id
        )
    )
    if not obj:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Field not found")
    return obj


@router.get("", response_model=List[ContactFieldOut])
async def list_fields(
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    return await load_company_fields(session, operator.company_id)


@router.post("", response_model=ContactFieldOut, status_code=status.HTTP_201_CREATED)
async def create_field(
    payload: ContactFieldCreate,
    request: Request,
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    exists = await session.scalar(
        select(ContactField.id).where(
            ContactField.company_id == operator.company_id,
            ContactField.field_key == payload.field_key,
        )
    )
    if exists:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Field key already exists"
        )

    obj = ContactField(
        company_id=operator.company_id,
        field_key=payload.field_key,
        name=payload.name,
        field_type=payload.field_type,
        created_by=operator.user_code,
        created_at=db_now(),
    )
    session.add(obj)
    await session.flush()
    await log_audit(
        session,
        operator.user_code,
        operator.company_id,
        "contact_field",
        str(obj.id),
        "CREATE",
        details=payload.model_dump(),
        remote_addr=remote_addr(request),
    )
    await session.commit()
    return obj


@router.delete("/{field_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_field(
    field_id: int,
    request: Request,
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
):
    """Delete a field. Segments that use it keep the reference and show it as stale."""

    obj = await _get_field(session, operator.company_id, field_id)
    await session.execute(delete(ContactField).where(ContactField.id == obj.id))
    await log_audit(
        session,
        operator.user_code,
        operator.company_id,
        "contact_field",
        str(field_id),
        "DELETE",
        details={"field_key": obj.field_key},
        remote_addr=remote_addr(request),
    )
    await session.commit()


@router.get("/{field_id}/values", response_model=FieldValuesOut)
@limiter.limit(settings.FIELD_VALUE_SEARCH_RATE)
async def search_field_values(
    field_id: int,
    request: Request,
    search: str = Query("", max_length=255),
    page: int = Query(1, ge=1),
    session: AsyncSession = Depends(get_session),
    operator: Operator = Depends(get_current_operator),
    evaluator: HttpPredicateEvaluator = Depends(get_evaluator),
):
    """Distinct values of a field for the filter picker, paged."""

    field = await _get_field(session, operator.company_id, field_id)
    return await evaluator.search_field_values(
        field.field_key, search.strip(), page, settings.FIELD_VALUE_PAGE_SIZE
    )
