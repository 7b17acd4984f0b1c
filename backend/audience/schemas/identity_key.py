"""Pydantic models for identity key endpoints."""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from audience.domain.identity_keys import RevertStatus, SlotState, SlotType
from audience.schemas.filters import FilterGroup


class SlotValueIn(BaseModel):
    """``value`` for the two key slots, ``filters`` for the FILTERS slot."""

    value: Optional[str] = Field(None, max_length=128)
    filters: Optional[List[FilterGroup]] = None


class RevertRequestIn(BaseModel):
    type: SlotType


class RevertRequestOut(BaseModel):
    type: SlotType
    status: RevertStatus
    requested_at: Optional[datetime] = None
    requested_by: Optional[str] = None


class KeySlotOut(BaseModel):
    type: SlotType
    state: SlotState
    value: Any = None
    locked: bool
    revert_request: Optional[RevertRequestOut] = None


class IdentityKeyConfigOut(BaseModel):
    company_id: str
    primary_key: KeySlotOut
    email_key: KeySlotOut
    filters: KeySlotOut
    finalized: bool
    updated_at: Optional[datetime] = None


class FinalizeOut(BaseModel):
    config: IdentityKeyConfigOut
    changed: bool
    pending_duplicates: int


class KeyEffectOut(BaseModel):
    slot_type: SlotType
    value: Any = None
    affected_count: int
    message: str
