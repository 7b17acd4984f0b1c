"""Duplicate contact pairs reported by the detector."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from audience.models.base import Base, db_now


class ContactDuplicatePair(Base):
    __tablename__ = "contact_duplicate_pair"
    __table_args__ = (
        Index("ix_duplicate_pair_company_status", "company_id", "status", "detected_at"),
    )

    id: Mapped[str] = mapped_column(
        String(32), primary_key=True, default=lambda: uuid.uuid4().hex
    )
    company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    old_record: Mapped[dict] = mapped_column(JSON, nullable=False)
    new_record: Mapped[dict] = mapped_column(JSON, nullable=False)
    # PENDING until an operator picks a canonical record
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")
    choice: Mapped[Optional[str]] = mapped_column(String(8))
    canonical_record: Mapped[Optional[dict]] = mapped_column(JSON)
    detected_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=db_now)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(64))
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
