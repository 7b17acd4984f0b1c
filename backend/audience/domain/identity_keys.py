"""Identity key configuration and its lock / revert lifecycle.

A company has one :class:`IdentityKeyConfig` with three slots: the primary
key, the email key and the contact selection filters. Each slot moves through

    UNSET -> CONFIGURED -> LOCKED <-> REVERT_PENDING
                 ^                          |
                 +------- approve ----------+

Every transition returns a new config; a rejected transition raises and
leaves the original untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from audience.domain.errors import (
    DuplicateRevertRequestError,
    InvalidTransitionError,
    KeyLockedError,
)


class SlotType(str, Enum):
    PRIMARY_KEY = "PRIMARY_KEY"
    EMAIL_KEY = "EMAIL_KEY"
    FILTERS = "FILTERS"


class SlotState(str, Enum):
    UNSET = "UNSET"
    CONFIGURED = "CONFIGURED"
    LOCKED = "LOCKED"
    REVERT_PENDING = "REVERT_PENDING"


class RevertStatus(str, Enum):
    PENDING = "PENDING"
    NONE = "NONE"


# Choosing the company itself as primary key means keying contacts by company id.
KEY_ALIASES = {"company": "companyId"}

_SLOT_ATTRS = {
    SlotType.PRIMARY_KEY: "primary_key",
    SlotType.EMAIL_KEY: "email_key",
    SlotType.FILTERS: "filters",
}


@dataclass(frozen=True)
class RevertRequest:
    type: SlotType
    status: RevertStatus = RevertStatus.PENDING
    requested_at: Optional[datetime] = None
    requested_by: Optional[str] = None


@dataclass(frozen=True)
class KeySlot:
    value: Any = None
    locked: bool = False
    revert_request: Optional[RevertRequest] = None

    @property
    def state(self) -> SlotState:
        if self.revert_request is not None and self.revert_request.status == RevertStatus.PENDING:
            return SlotState.REVERT_PENDING
        if self.locked:
            return SlotState.LOCKED
        if self.value is None:
            return SlotState.UNSET
        return SlotState.CONFIGURED


def normalize_slot_value(slot_type: SlotType, value: Any) -> Any:
    if slot_type == SlotType.FILTERS:
        if not value:
            raise ValueError("Contact selection filters need at least one group")
        return tuple(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Key field must be a non-empty string")
    value = value.strip()
    if slot_type == SlotType.PRIMARY_KEY:
        return KEY_ALIASES.get(value, value)
    return value


@dataclass(frozen=True)
class IdentityKeyConfig:
    company_id: str
    primary_key: KeySlot = KeySlot()
    email_key: KeySlot = KeySlot()
    filters: KeySlot = KeySlot()

    def slot(self, slot_type: SlotType) -> KeySlot:
        return getattr(self, _SLOT_ATTRS[SlotType(slot_type)])

    def slots(self) -> dict[SlotType, KeySlot]:
        return {slot_type: self.slot(slot_type) for slot_type in SlotType}

    def _with(self, slot_type: SlotType, slot: KeySlot) -> "IdentityKeyConfig":
        return replace(self, **{_SLOT_ATTRS[SlotType(slot_type)]: slot})

    @property
    def is_finalized(self) -> bool:
        return all(slot.locked for slot in self.slots().values())

    def pending_requests(self) -> list[RevertRequest]:
        return [
            slot.revert_request
            for slot in self.slots().values()
            if slot.state == SlotState.REVERT_PENDING
        ]

    def set_value(self, slot_type: SlotType, value: Any) -> "IdentityKeyConfig":
        current = self.slot(slot_type)
        if current.locked:
            raise KeyLockedError()
        return self._with(
            slot_type, replace(current, value=normalize_slot_value(slot_type, value))
        )

    def clear_value(self, slot_type: SlotType) -> "IdentityKeyConfig":
        current = self.slot(slot_type)
        if current.locked:
            raise KeyLockedError()
        return self._with(slot_type, replace(current, value=None))

    def finalize(self) -> "IdentityKeyConfig":
        """Lock every slot at once.

        Slots that are already locked, including those with a pending revert,
        are left as they are, so finalizing a finalized config is a no-op.
        """

        config = self
        for slot_type, slot in self.slots().items():
            if not slot.locked:
                config = config._with(slot_type, replace(slot, locked=True))
        return config

    def request_revert(
        self,
        slot_type: SlotType,
        *,
        requested_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "IdentityKeyConfig":
        current = self.slot(slot_type)
        if current.state == SlotState.REVERT_PENDING:
            raise DuplicateRevertRequestError()
        if current.state != SlotState.LOCKED:
            raise InvalidTransitionError("Only a locked key can be reverted.")
        request = RevertRequest(
            type=SlotType(slot_type),
            requested_at=now or datetime.now(timezone.utc),
            requested_by=requested_by,
        )
        return self._with(slot_type, replace(current, revert_request=request))

    def cancel_revert(self, slot_type: SlotType) -> "IdentityKeyConfig":
        current = self.slot(slot_type)
        if current.state != SlotState.REVERT_PENDING:
            raise InvalidTransitionError("There is no pending revert request to cancel.")
        return self._with(slot_type, replace(current, revert_request=None))

    def approve_revert(self, slot_type: SlotType) -> "IdentityKeyConfig":
        """Unlock the slot; its value is kept so it lands in CONFIGURED."""

        current = self.slot(slot_type)
        if current.state != SlotState.REVERT_PENDING:
            raise InvalidTransitionError("There is no pending revert request to approve.")
        return self._with(slot_type, replace(current, locked=False, revert_request=None))
