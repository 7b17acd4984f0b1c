"""Pydantic models for the filter groups a segment is built from."""

from __future__ import annotations

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from audience.domain.conditions import (
    ConditionType,
    DurationUnit,
    Operator,
    validate_condition,
)

# Field values are opaque to this service; only equality and membership matter.
ScalarValue = Union[bool, int, float, str]


class FilterCondition(BaseModel):
    """A nested sub-criterion of a filter group."""

    model_config = ConfigDict(from_attributes=True)

    field_key: str = Field(..., min_length=1, max_length=128)
    condition_type: ConditionType = ConditionType.IN
    values: List[ScalarValue] = Field(default_factory=list)
    value: Optional[ScalarValue] = None
    from_value: Optional[ScalarValue] = None
    to_value: Optional[ScalarValue] = None
    duration: Optional[DurationUnit] = None

    @field_validator("field_key", mode="before")
    @classmethod
    def strip_field_key(cls, v):
        return v.strip() if isinstance(v, str) else v

    @model_validator(mode="after")
    def check_required_inputs(self) -> "FilterCondition":
        validate_condition(
            self.condition_type,
            values=self.values,
            value=self.value,
            from_value=self.from_value,
            to_value=self.to_value,
            duration=self.duration,
        )
        return self


class FilterGroup(BaseModel):
    """One field-level constraint of a segment.

    ``values`` is an OR-set over the group's own field. ``conditions`` are
    combined with it using ``operator``. Groups of one segment are ANDed.
    """

    model_config = ConfigDict(from_attributes=True)

    field_id: Optional[int] = None
    field_key: str = Field(..., min_length=1, max_length=128)
    values: List[ScalarValue] = Field(default_factory=list)
    conditions: List[FilterCondition] = Field(default_factory=list)
    operator: Operator = Operator.AND

    @field_validator("field_key", mode="before")
    @classmethod
    def strip_field_key(cls, v):
        return v.strip() if isinstance(v, str) else v

    @property
    def is_empty(self) -> bool:
        return not self.values and not self.conditions
