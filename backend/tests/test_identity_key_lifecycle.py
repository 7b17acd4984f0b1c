import pytest

from audience.domain.errors import (
    DuplicateRevertRequestError,
    InvalidTransitionError,
    KeyLockedError,
)
from audience.domain.identity_keys import (
    IdentityKeyConfig,
    KeySlot,
    SlotState,
    SlotType,
)
from audience.schemas.filters import FilterGroup


def configured() -> IdentityKeyConfig:
    return (
        IdentityKeyConfig(company_id="acme")
        .set_value(SlotType.PRIMARY_KEY, "customer_id")
        .set_value(SlotType.EMAIL_KEY, "email")
        .set_value(SlotType.FILTERS, [FilterGroup(field_key="country", values=["US"])])
    )


def test_slots_start_unset_and_become_configured():
    config = IdentityKeyConfig(company_id="acme")
    assert {s.state for s in config.slots().values()} == {SlotState.UNSET}

    config = config.set_value(SlotType.PRIMARY_KEY, " customer_id ")
    assert config.primary_key.state == SlotState.CONFIGURED
    assert config.primary_key.value == "customer_id"
    assert config.email_key.state == SlotState.UNSET


def test_company_primary_key_is_stored_as_company_id():
    config = IdentityKeyConfig(company_id="acme").set_value(SlotType.PRIMARY_KEY, "company")
    assert config.primary_key.value == "companyId"


def test_blank_key_value_is_rejected():
    with pytest.raises(ValueError):
        IdentityKeyConfig(company_id="acme").set_value(SlotType.EMAIL_KEY, "  ")


def test_finalize_locks_all_slots_at_once():
    config = configured().finalize()
    assert config.is_finalized
    assert {s.state for s in config.slots().values()} == {SlotState.LOCKED}


def test_finalize_twice_is_a_no_op():
    once = configured().finalize()
    twice = once.finalize()
    assert twice == once


def test_finalize_keeps_pending_reverts():
    config = configured().finalize().request_revert(SlotType.EMAIL_KEY)
    assert config.finalize() == config
    assert config.email_key.state == SlotState.REVERT_PENDING


def test_locked_slot_rejects_changes():
    config = configured().finalize()
    with pytest.raises(KeyLockedError):
        config.set_value(SlotType.PRIMARY_KEY, "email")
    with pytest.raises(KeyLockedError):
        config.clear_value(SlotType.FILTERS)
    assert config.primary_key.value == "customer_id"


def test_second_pending_revert_of_same_type_is_rejected():
    config = configured().finalize().request_revert(SlotType.PRIMARY_KEY, requested_by="u-1")
    with pytest.raises(DuplicateRevertRequestError):
        config.request_revert(SlotType.PRIMARY_KEY)

    both = config.request_revert(SlotType.EMAIL_KEY)
    assert [r.type for r in both.pending_requests()] == [SlotType.PRIMARY_KEY, SlotType.EMAIL_KEY]


def test_revert_requires_a_locked_slot():
    with pytest.raises(InvalidTransitionError):
        configured().request_revert(SlotType.PRIMARY_KEY)


def test_cancel_returns_slot_to_locked():
    locked = configured().finalize()
    pending = locked.request_revert(SlotType.FILTERS)
    assert pending.cancel_revert(SlotType.FILTERS) == locked
    with pytest.raises(InvalidTransitionError):
        locked.cancel_revert(SlotType.FILTERS)


def test_locked_key_is_editable_again_after_approved_revert():
    config = IdentityKeyConfig(
        company_id="acme", primary_key=KeySlot(value="customer_id", locked=True)
    )
    with pytest.raises(KeyLockedError):
        config.set_value(SlotType.PRIMARY_KEY, "email")

    config = config.request_revert(SlotType.PRIMARY_KEY).approve_revert(SlotType.PRIMARY_KEY)
    config = config.set_value(SlotType.PRIMARY_KEY, "email")
    assert config.primary_key.state == SlotState.CONFIGURED
    assert config.primary_key.value == "email"
    assert config.pending_requests() == []


def test_approve_without_pending_request_is_rejected():
    with pytest.raises(InvalidTransitionError):
        configured().finalize().approve_revert(SlotType.EMAIL_KEY)


def test_rejected_transition_leaves_config_untouched():
    config = configured().finalize().request_revert(SlotType.PRIMARY_KEY)
    snapshot = config
    with pytest.raises(DuplicateRevertRequestError):
        config.request_revert(SlotType.PRIMARY_KEY)
    assert config == snapshot
    assert config.primary_key.state == SlotState.REVERT_PENDING
