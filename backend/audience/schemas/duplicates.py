"""Pydantic models for the duplicate resolution endpoints."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from audience.domain.duplicate_queue import BulkChoice, Choice


class DuplicatePairIn(BaseModel):
    old: Dict[str, Any]
    new: Dict[str, Any]


class DuplicateIngestIn(BaseModel):
    pairs: List[DuplicatePairIn] = Field(..., min_length=1, max_length=1000)


class DuplicatePairOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    old: Dict[str, Any] = Field(validation_alias=AliasChoices("old", "old_record"))
    new: Dict[str, Any] = Field(validation_alias=AliasChoices("new", "new_record"))
    detected_at: datetime


class DuplicatePageOut(BaseModel):
    pairs: List[DuplicatePairOut]
    total_remaining: int
    page: int
    page_size: int


class ResolveIn(BaseModel):
    choice: Choice
    # Field edits applied on top of the chosen record.
    overrides: Optional[Dict[str, Any]] = None


class ResolveOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    choice: Choice
    canonical: Dict[str, Any] = Field(validation_alias=AliasChoices("canonical", "canonical_record"))


class ResolveAllIn(BaseModel):
    choice: BulkChoice


class ResolveAllOut(BaseModel):
    resolved: int


class IngestOut(BaseModel):
    created: int
