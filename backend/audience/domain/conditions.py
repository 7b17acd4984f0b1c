"""Typed comparison conditions used inside filter groups."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable, Optional


class Operator(str, Enum):
    AND = "AND"
    OR = "OR"


class ConditionType(str, Enum):
    IN = "in"
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    BETWEEN = "between"
    IS_TIMESTAMP = "is_timestamp"
    IS_NOT_TIMESTAMP = "is_not_timestamp"
    TIMESTAMP_AFTER = "timestamp_after"
    TIMESTAMP_BEFORE = "timestamp_before"
    TIMESTAMP_BETWEEN = "timestamp_between"
    MORE_THAN_IN_PAST = "more_than_in_past"
    LESS_THAN_IN_PAST = "less_than_in_past"
    LESS_THAN_IN_FUTURE = "less_than_in_future"
    MORE_THAN_IN_FUTURE = "more_than_in_future"


class DurationUnit(str, Enum):
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


RANGE_CONDITIONS = {ConditionType.BETWEEN, ConditionType.TIMESTAMP_BETWEEN}
RELATIVE_CONDITIONS = {
    ConditionType.MORE_THAN_IN_PAST,
    ConditionType.LESS_THAN_IN_PAST,
    ConditionType.LESS_THAN_IN_FUTURE,
    ConditionType.MORE_THAN_IN_FUTURE,
}
VALUELESS_CONDITIONS = {ConditionType.IS_TIMESTAMP, ConditionType.IS_NOT_TIMESTAMP}

# Months and years are calendar-free approximations.
_UNIT_DELTAS = {
    DurationUnit.MINUTE: timedelta(minutes=1),
    DurationUnit.HOUR: timedelta(hours=1),
    DurationUnit.DAY: timedelta(days=1),
    DurationUnit.WEEK: timedelta(weeks=1),
    DurationUnit.MONTH: timedelta(days=30),
    DurationUnit.YEAR: timedelta(days=365),
}


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_condition(
    condition_type: ConditionType,
    *,
    values: Iterable[Any] = (),
    value: Any = None,
    from_value: Any = None,
    to_value: Any = None,
    duration: Optional[DurationUnit] = None,
) -> None:
    """Raise ``ValueError`` when a condition is missing the inputs its type needs."""

    if condition_type == ConditionType.IN:
        if not list(values):
            raise ValueError("Select at least one value")
    elif condition_type in RANGE_CONDITIONS:
        if _blank(from_value) or _blank(to_value):
            raise ValueError("Both from and to values are required")
    elif condition_type in RELATIVE_CONDITIONS:
        if _blank(value) or duration is None:
            raise ValueError("Value and duration are required")
        amount = _to_number(value)
        if amount is None or amount < 0:
            raise ValueError("Duration value must be a non-negative number")
    elif condition_type in VALUELESS_CONDITIONS:
        return
    elif _blank(value):
        raise ValueError("Value is required")


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def to_timestamp(value: Any) -> Optional[datetime]:
    """Parse ``value`` into an aware datetime, or ``None`` when it is not one."""

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def same_value(left: Any, right: Any) -> bool:
    """Equality that keeps JSON ``true``/``false`` apart from ``1``/``0``."""

    return isinstance(left, bool) == isinstance(right, bool) and left == right


def _ordered(actual: Any, bound: Any) -> tuple[Any, Any]:
    left, right = _to_number(actual), _to_number(bound)
    if left is not None and right is not None:
        return left, right
    left_ts, right_ts = to_timestamp(actual), to_timestamp(bound)
    if left_ts is not None and right_ts is not None:
        return left_ts, right_ts
    return str(actual), str(bound)


def _members(actual: Any) -> list[Any]:
    if isinstance(actual, (list, tuple, set, frozenset)):
        return [member for member in actual if member is not None]
    return [actual]


def _member_matches(
    condition_type: ConditionType,
    member: Any,
    value: Any,
    from_value: Any,
    to_value: Any,
    duration: Optional[DurationUnit],
    now: datetime,
) -> bool:
    if condition_type == ConditionType.GREATER_THAN:
        left, right = _ordered(member, value)
        return left > right
    if condition_type == ConditionType.LESS_THAN:
        left, right = _ordered(member, value)
        return left < right
    if condition_type == ConditionType.BETWEEN:
        low, high = _ordered(member, from_value), _ordered(member, to_value)
        return low[1] <= low[0] and high[0] <= high[1]

    ts = to_timestamp(member)
    if ts is None:
        return False
    if condition_type == ConditionType.IS_TIMESTAMP:
        return True
    if condition_type == ConditionType.TIMESTAMP_AFTER:
        bound = to_timestamp(value)
        return bound is not None and ts > bound
    if condition_type == ConditionType.TIMESTAMP_BEFORE:
        bound = to_timestamp(value)
        return bound is not None and ts < bound
    if condition_type == ConditionType.TIMESTAMP_BETWEEN:
        start, end = to_timestamp(from_value), to_timestamp(to_value)
        return start is not None and end is not None and start <= ts <= end

    span = _UNIT_DELTAS[DurationUnit(duration)] * (_to_number(value) or 0)
    if condition_type == ConditionType.MORE_THAN_IN_PAST:
        return ts < now - span
    if condition_type == ConditionType.LESS_THAN_IN_PAST:
        return now - span <= ts <= now
    if condition_type == ConditionType.LESS_THAN_IN_FUTURE:
        return now <= ts <= now + span
    if condition_type == ConditionType.MORE_THAN_IN_FUTURE:
        return ts > now + span
    raise ValueError(f"Unsupported condition type: {condition_type}")


def compare(
    condition_type: ConditionType,
    actual: Any,
    *,
    values: Iterable[Any] = (),
    value: Any = None,
    from_value: Any = None,
    to_value: Any = None,
    duration: Optional[DurationUnit] = None,
    now: Optional[datetime] = None,
) -> bool:
    """Return True when a contact's ``actual`` value satisfies the condition.

    List-valued fields match when any member does; the negative conditions
    (``not_equals``, ``not_contains`` and ``is_not_timestamp``) need every
    member to pass. Missing values satisfy only the negative conditions.
    """

    if condition_type == ConditionType.IN:
        allowed = list(values)
        return any(
            any(same_value(member, candidate) for candidate in allowed)
            for member in _members(actual)
            if member is not None
        )

    if actual is None:
        return condition_type in {
            ConditionType.NOT_EQUALS,
            ConditionType.NOT_CONTAINS,
            ConditionType.IS_NOT_TIMESTAMP,
        }

    members = _members(actual)
    if condition_type == ConditionType.EQUALS:
        return any(same_value(member, value) for member in members)
    if condition_type == ConditionType.NOT_EQUALS:
        return not any(same_value(member, value) for member in members)
    if condition_type == ConditionType.CONTAINS:
        needle = str(value).lower()
        return any(needle in str(member).lower() for member in members)
    if condition_type == ConditionType.NOT_CONTAINS:
        needle = str(value).lower()
        return all(needle not in str(member).lower() for member in members)
    if condition_type == ConditionType.IS_NOT_TIMESTAMP:
        return all(to_timestamp(member) is None for member in members)

    now = now or datetime.now(timezone.utc)
    return any(
        _member_matches(condition_type, member, value, from_value, to_value, duration, now)
        for member in members
    )
