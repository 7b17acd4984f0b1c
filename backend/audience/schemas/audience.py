"""Pydantic models for the deduplicated audience count."""

from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class AudienceCountRequest(BaseModel):
    segment_ids: List[str] = Field(default_factory=list, max_length=100)


class SegmentCountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    segment_id: str
    segment_name: str
    contact_count: int
    invalid_email_count: int
    unsubscribed_count: int


class AudienceCountOut(BaseModel):
    """``total_number_of_contacts`` counts unique contacts; it is not the sum of ``per_segment``."""

    model_config = ConfigDict(from_attributes=True)

    per_segment: List[SegmentCountOut]
    total_number_of_contacts: int
    total_invalid_email_count: int
    total_unsubscribed_count: int
    stale_segment_ids: List[str]
    computed_at: datetime


class CountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    count: int
    invalid_email_count: int
    unsubscribed_count: int
