"""Audit logging utilities."""

from __future__ import annotations

import json
from typing import Any, Optional

from fastapi import Request
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from audience.models.audit_log import AuditLog


def remote_addr(request: Request | None) -> Optional[str]:
    return request.client.host if request is not None and request.client else None


async def log_audit(
    session: AsyncSession,
    user_code: str,
    company_id: str,
    entity: str,
    entity_id: Optional[str],
    action: str,
    details: Optional[dict[str, Any]] = None,
    remote_addr: Optional[str] = None,
) -> None:
    """Write an audit row in the caller's transaction.

    The row commits or rolls back together with the change it describes.
    """

    await session.execute(
        insert(AuditLog).values(
            user_code=user_code,
            company_id=company_id,
            entity=entity,
            entity_id=entity_id,
            action=action,
            details=json.dumps(details, default=str) if details is not None else None,
            remote_addr=remote_addr,
        )
    )
