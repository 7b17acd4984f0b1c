from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from audience.domain.conditions import ConditionType, DurationUnit, compare
from audience.schemas.filters import FilterCondition

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_missing_value_only_satisfies_negative_conditions():
    assert compare(ConditionType.NOT_EQUALS, None, value="x")
    assert compare(ConditionType.NOT_CONTAINS, None, value="x")
    assert compare(ConditionType.IS_NOT_TIMESTAMP, None)
    assert not compare(ConditionType.EQUALS, None, value="x")
    assert not compare(ConditionType.GREATER_THAN, None, value=1)
    assert not compare(ConditionType.IS_TIMESTAMP, None)


def test_contains_is_case_insensitive():
    assert compare(ConditionType.CONTAINS, "Team Plan", value="team")
    assert not compare(ConditionType.NOT_CONTAINS, "Team Plan", value="TEAM")


def test_ordering_prefers_numbers_over_strings():
    # As strings "9" > "10"; as numbers it is not.
    assert not compare(ConditionType.GREATER_THAN, "9", value="10")
    assert compare(ConditionType.LESS_THAN, "9", value=10)
    assert compare(ConditionType.BETWEEN, 5, from_value=1, to_value=5)


def test_timestamp_comparisons():
    assert compare(ConditionType.TIMESTAMP_AFTER, "2026-05-02", value="2026-05-01")
    assert compare(
        ConditionType.TIMESTAMP_BETWEEN,
        "2026-05-15T08:00:00",
        from_value="2026-05-01",
        to_value="2026-06-01",
    )
    assert compare(ConditionType.IS_TIMESTAMP, "2026-05-15")
    assert compare(ConditionType.IS_NOT_TIMESTAMP, "not a date")


def test_relative_time_windows():
    three_days_ago = (NOW - timedelta(days=3)).isoformat()
    assert compare(
        ConditionType.LESS_THAN_IN_PAST, three_days_ago, value=7, duration=DurationUnit.DAY, now=NOW
    )
    assert not compare(
        ConditionType.MORE_THAN_IN_PAST, three_days_ago, value=7, duration=DurationUnit.DAY, now=NOW
    )
    in_two_hours = (NOW + timedelta(hours=2)).isoformat()
    assert compare(
        ConditionType.LESS_THAN_IN_FUTURE, in_two_hours, value=3, duration=DurationUnit.HOUR, now=NOW
    )
    assert compare(
        ConditionType.MORE_THAN_IN_FUTURE, in_two_hours, value=1, duration=DurationUnit.HOUR, now=NOW
    )


@pytest.mark.parametrize(
    "payload",
    [
        {"field_key": "plan", "condition_type": "in", "values": []},
        {"field_key": "plan", "condition_type": "equals"},
        {"field_key": "seats", "condition_type": "between", "from_value": 1},
        {"field_key": "signup", "condition_type": "less_than_in_past", "value": 3},
        {"field_key": "signup", "condition_type": "less_than_in_past", "value": -1, "duration": "day"},
    ],
)
def test_conditions_missing_inputs_are_rejected(payload):
    with pytest.raises(ValidationError):
        FilterCondition(**payload)


def test_valueless_conditions_need_no_inputs():
    condition = FilterCondition(field_key="signup", condition_type="is_timestamp")
    assert condition.value is None


def test_equality_keeps_booleans_apart_from_numbers():
    assert not compare(ConditionType.EQUALS, True, value=1)
    assert compare(ConditionType.NOT_EQUALS, 0, value=False)
    assert compare(ConditionType.IN, [0, True], values=[True])
    assert not compare(ConditionType.IN, [0, 1], values=[True])


def test_ordered_conditions_check_each_list_member():
    assert not compare(ConditionType.GREATER_THAN, [10, 90], value=95)
    assert compare(ConditionType.GREATER_THAN, [10, 96], value=95)
    assert compare(ConditionType.LESS_THAN, [10, 90], value=20)
    assert compare(ConditionType.BETWEEN, [1, 50, 200], from_value=40, to_value=60)
    assert not compare(ConditionType.BETWEEN, [1, 200], from_value=40, to_value=60)
    assert not compare(ConditionType.GREATER_THAN, [], value=0)


def test_timestamp_conditions_check_each_list_member():
    visits = ["2026-04-01", "2026-05-20"]
    assert compare(ConditionType.TIMESTAMP_AFTER, visits, value="2026-05-01")
    assert not compare(ConditionType.TIMESTAMP_BEFORE, visits, value="2026-03-01")
    assert compare(ConditionType.IS_TIMESTAMP, ["n/a", "2026-05-20"])
    assert not compare(ConditionType.IS_NOT_TIMESTAMP, ["n/a", "2026-05-20"])
    assert compare(ConditionType.IS_NOT_TIMESTAMP, ["n/a", "unknown"])
    assert compare(
        ConditionType.LESS_THAN_IN_PAST,
        ["2025-01-01", (NOW - timedelta(days=2)).isoformat()],
        value=7,
        duration=DurationUnit.DAY,
        now=NOW,
    )
