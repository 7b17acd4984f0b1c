"""Per-company identity key configuration and revert request history."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from audience.models.base import Base, db_now


class CompanyIdentityKey(Base):
    """One row per company; the row lock serialises lifecycle transitions."""

    __tablename__ = "company_identity_key"

    company_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    primary_key_field: Mapped[Optional[str]] = mapped_column(String(128))
    primary_key_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_key_field: Mapped[Optional[str]] = mapped_column(String(128))
    email_key_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    selection_filters: Mapped[Optional[list]] = mapped_column(JSON)
    filters_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    finalized_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    finalized_by: Mapped[Optional[str]] = mapped_column(String(64))
    updated_by: Mapped[Optional[str]] = mapped_column(String(64))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=db_now, onupdate=db_now
    )


class IdentityKeyRevertRequest(Base):
    __tablename__ = "identity_key_revert_request"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    request_type: Mapped[str] = mapped_column(String(32), nullable=False)
    # PENDING until closed as CANCELLED or APPROVED
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")
    requested_by: Mapped[str] = mapped_column(String(64), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=db_now)
    closed_by: Mapped[Optional[str]] = mapped_column(String(64))
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
