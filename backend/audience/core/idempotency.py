"""Idempotency-Key handling for create endpoints."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Literal, Optional

from fastapi import HTTPException, Request, status
from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from audience.core.config import settings
from audience.core.db_errors import raise_on_lock_conflict
from audience.models.idempotency_key import IdempotencyKey

MAX_KEY_LENGTH = 128
ResourceName = Literal["segment"]


class IdempotencyClaimState(str, Enum):
    NEW = "new"
    REPLAY = "replay"
    IN_PROGRESS = "in_progress"


@dataclass(slots=True)
class IdempotencyClaim:
    """Result of attempting to claim an idempotency key."""

    state: IdempotencyClaimState
    record: IdempotencyKey | None = None
    retry_after: int | None = None


def _ttl() -> timedelta:
    return timedelta(minutes=settings.IDEMPOTENCY_TTL_MINUTES)


def _utcnow() -> datetime:
    return datetime.utcnow().replace(microsecond=0)


def optional_idempotency_key(request: Request) -> Optional[str]:
    """Return the validated Idempotency-Key header, or None when absent."""

    key = request.headers.get("Idempotency-Key", "").strip()
    if not key:
        return None
    if len(key) > MAX_KEY_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Idempotency-Key must be 128 characters or fewer.",
        )
    return key


async def claim_idempotency_key(
    session: AsyncSession,
    *,
    idempotency_key: str,
    resource: ResourceName,
) -> IdempotencyClaim:
    """Attempt to register the key for this resource.

    The first caller inserts the row (state=NEW). Later callers see
    IN_PROGRESS while it is pending or REPLAY once it completed. A pending
    claim whose TTL elapsed is taken over as NEW.
    """

    now = _utcnow()
    try:
        await session.execute(
            insert(IdempotencyKey).values(
                idempotency_key=idempotency_key,
                resource=resource,
                status="P",
                created_at=now,
                last_seen_at=now,
                pending_expires_at=now + _ttl(),
            )
        )
        return IdempotencyClaim(state=IdempotencyClaimState.NEW)
    except IntegrityError:
        pass

    try:
        record = await session.scalar(
            select(IdempotencyKey)
            .where(IdempotencyKey.idempotency_key == idempotency_key)
            .with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
        )
    except OperationalError as exc:
        raise_on_lock_conflict(exc)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Idempotency-Key could not be claimed. Please retry.",
        )

    now = _utcnow()
    if record.status == "C" and record.resource_id:
        record.last_seen_at = now
        await session.flush()
        return IdempotencyClaim(IdempotencyClaimState.REPLAY, record)

    expired = record.pending_expires_at is None or record.pending_expires_at <= now
    if expired:
        record.pending_expires_at = now + _ttl()
        record.last_seen_at = now
        await session.flush()
        return IdempotencyClaim(IdempotencyClaimState.NEW, record)

    retry_after = max(1, int((record.pending_expires_at - now).total_seconds()))
    return IdempotencyClaim(IdempotencyClaimState.IN_PROGRESS, record, retry_after=retry_after)


async def complete_idempotency_key(
    session: AsyncSession,
    *,
    idempotency_key: str,
    resource_id: str,
) -> None:
    """Mark the request as completed so later replays can short-circuit."""

    await session.execute(
        update(IdempotencyKey)
        .where(IdempotencyKey.idempotency_key == idempotency_key)
        .values(
            status="C",
            resource_id=resource_id,
            last_seen_at=_utcnow(),
            pending_expires_at=None,
        )
    )
