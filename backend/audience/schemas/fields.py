"""Pydantic models for contact field endpoints."""

from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from audience.schemas.filters import ScalarValue


class ContactFieldCreate(BaseModel):
    field_key: str = Field(..., min_length=1, max_length=128)
    name: str = Field(..., min_length=1, max_length=255)
    field_type: str = Field("text", max_length=32)

    @field_validator("field_key", "name", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class ContactFieldOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    field_key: str
    name: str
    field_type: str
    created_at: datetime


class FieldValuesOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    values: List[ScalarValue]
    page: int
    has_more: bool
