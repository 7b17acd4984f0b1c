"""Pydantic models for segment endpoints."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from audience.domain.conditions import Operator
from audience.schemas.filters import FilterCondition, FilterGroup, ScalarValue


class SegmentCreate(BaseModel):
    name: str = Field(..., description="Segment name", min_length=1, max_length=255)
    filters: List[FilterGroup] = Field(default_factory=list)


class SegmentUpdate(BaseModel):
    expected_updated_at: Optional[datetime]
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    filters: Optional[List[FilterGroup]] = None


class SegmentPreviewRequest(BaseModel):
    filters: List[FilterGroup] = Field(default_factory=list)


class SegmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    filters: List[FilterGroup]
    created_by: str
    created_at: datetime
    updated_by: Optional[str] = None
    updated_at: datetime


class SegmentListOut(BaseModel):
    items: List[SegmentOut]
    total: int


class SegmentSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str


class FieldSelectionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    field_id: Optional[int] = None
    field_key: str
    values: List[ScalarValue]
    conditions: List[FilterCondition]
    operator: Operator


class SegmentEditorOut(BaseModel):
    """Editable state of a saved segment; ``unresolved`` groups reference deleted fields."""

    segment: SegmentOut
    selections: List[FieldSelectionOut]
    unresolved: List[FilterGroup]
