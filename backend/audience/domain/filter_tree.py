"""Filter tree model for segment predicates.

A segment is stored as a list of :class:`FilterGroup` objects, which is the
shape the editor and the evaluator exchange. For evaluation it is folded into
a small tagged tree::

    Node = Leaf(field_key, values)
         | Comparison(field_key, condition_type, ...)
         | Compound(operator, children)

The editor works with :class:`FieldSelection` objects; :func:`to_groups` and
:func:`from_groups` convert between the two shapes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence, Union

from audience.domain.conditions import ConditionType, DurationUnit, Operator, compare, same_value
from audience.domain.errors import EmptySegmentError, StaleReferenceError
from audience.schemas.filters import FilterCondition, FilterGroup


@dataclass(frozen=True)
class Leaf:
    """Contact's value for ``field_key`` is a member of ``values``."""

    field_key: str
    values: tuple[Any, ...]


@dataclass(frozen=True)
class Comparison:
    field_key: str
    condition_type: ConditionType
    value: Any = None
    from_value: Any = None
    to_value: Any = None
    duration: Optional[DurationUnit] = None


@dataclass(frozen=True)
class Compound:
    operator: Operator
    children: tuple["Node", ...]


Node = Union[Leaf, Comparison, Compound]

# Identities of the two folds: an empty AND constrains nothing, an empty OR matches nothing.
MATCH_ALL = Compound(Operator.AND, ())
MATCH_NONE = Compound(Operator.OR, ())


def evaluate(node: Node, contact: Mapping[str, Any], *, now: Optional[datetime] = None) -> bool:
    """Return True when ``contact`` satisfies ``node``."""

    if isinstance(node, Leaf):
        return compare(ConditionType.IN, contact.get(node.field_key), values=node.values)
    if isinstance(node, Comparison):
        return compare(
            node.condition_type,
            contact.get(node.field_key),
            value=node.value,
            from_value=node.from_value,
            to_value=node.to_value,
            duration=node.duration,
            now=now,
        )
    results = (evaluate(child, contact, now=now) for child in node.children)
    if node.operator == Operator.AND:
        return all(results)
    return any(results)


def condition_node(condition: FilterCondition) -> Node:
    if condition.condition_type == ConditionType.IN:
        return Leaf(condition.field_key, tuple(condition.values))
    return Comparison(
        field_key=condition.field_key,
        condition_type=condition.condition_type,
        value=condition.value,
        from_value=condition.from_value,
        to_value=condition.to_value,
        duration=condition.duration,
    )


def group_predicate(group: FilterGroup) -> Node:
    """Fold one group into a node.

    An empty ``values`` list is an absent term rather than "matches nothing",
    so a group made only of conditions is just its conditions.
    """

    terms: list[Node] = []
    if group.values:
        terms.append(Leaf(group.field_key, tuple(group.values)))
    terms.extend(condition_node(c) for c in group.conditions)
    if len(terms) == 1:
        return terms[0]
    return Compound(group.operator, tuple(terms))


def segment_predicate(groups: Sequence[FilterGroup]) -> Node:
    """Top-level groups of a segment are ANDed."""

    children = tuple(group_predicate(g) for g in groups if not g.is_empty)
    if len(children) == 1:
        return children[0]
    return Compound(Operator.AND, children)


def union_predicate(segments: Iterable[Sequence[FilterGroup]]) -> Node:
    """Logical OR of several segments' predicates."""

    children = tuple(segment_predicate(groups) for groups in segments)
    if len(children) == 1:
        return children[0]
    return Compound(Operator.OR, children)


def to_wire(node: Node) -> dict[str, Any]:
    """Serialise a node into the JSON shape the evaluator accepts."""

    if isinstance(node, Leaf):
        return {"type": "leaf", "field_key": node.field_key, "values": list(node.values)}
    if isinstance(node, Comparison):
        payload: dict[str, Any] = {
            "type": "comparison",
            "field_key": node.field_key,
            "condition_type": node.condition_type.value,
        }
        for name in ("value", "from_value", "to_value"):
            if getattr(node, name) is not None:
                payload[name] = getattr(node, name)
        if node.duration is not None:
            payload["duration"] = DurationUnit(node.duration).value
        return payload
    return {
        "type": "compound",
        "operator": node.operator.value,
        "children": [to_wire(child) for child in node.children],
    }


# ---------------------------------------------------------------------------
# Editor state


class KnownField(Protocol):
    id: int
    field_key: str


@dataclass
class FieldSelection:
    """Editable state for one field in the segment editor."""

    field_key: str
    field_id: Optional[int] = None
    values: list[Any] = field(default_factory=list)
    conditions: list[FilterCondition] = field(default_factory=list)
    operator: Operator = Operator.AND

    @classmethod
    def from_group(cls, group: FilterGroup) -> "FieldSelection":
        return cls(
            field_key=group.field_key,
            field_id=group.field_id,
            values=list(group.values),
            conditions=list(group.conditions),
            operator=group.operator,
        )


@dataclass
class HydratedSelection:
    selections: list[FieldSelection]
    unresolved: list[FilterGroup]

    def require_resolved(self) -> list[FieldSelection]:
        if self.unresolved:
            raise StaleReferenceError(
                "Segment references fields that no longer exist: "
                + ", ".join(g.field_key for g in self.unresolved),
                references=[g.field_key for g in self.unresolved],
            )
        return self.selections


def to_groups(selection: Iterable[FieldSelection]) -> list[FilterGroup]:
    """Translate editor selections into canonical filter groups.

    Fields with neither values nor conditions are dropped; if nothing remains
    the segment would be unconstrained, which is rejected.
    """

    groups: list[FilterGroup] = []
    for item in selection:
        values = _distinct(item.values)
        if not values and not item.conditions:
            continue
        groups.append(
            FilterGroup(
                field_id=item.field_id,
                field_key=item.field_key,
                values=values,
                conditions=list(item.conditions),
                operator=item.operator,
            )
        )
    if not groups:
        raise EmptySegmentError()
    return groups


def normalize_groups(groups: Iterable[FilterGroup]) -> list[FilterGroup]:
    return to_groups(FieldSelection.from_group(g) for g in groups)


def from_groups(groups: Iterable[FilterGroup], known_fields: Iterable[KnownField]) -> HydratedSelection:
    """Rebuild editor state, matching by field id first and field key second."""

    fields = list(known_fields)
    by_id = {f.id: f for f in fields}
    by_key = {f.field_key: f for f in fields}

    selections: list[FieldSelection] = []
    unresolved: list[FilterGroup] = []
    for group in groups:
        known = by_id.get(group.field_id) if group.field_id is not None else None
        if known is None:
            known = by_key.get(group.field_key)
        if known is None:
            unresolved.append(group)
            continue
        selection = FieldSelection.from_group(group)
        selection.field_id = known.id
        selection.field_key = known.field_key
        selections.append(selection)
    return HydratedSelection(selections=selections, unresolved=unresolved)


def _distinct(values: Iterable[Any]) -> list[Any]:
    seen: list[Any] = []
    for value in values:
        if not any(same_value(value, kept) for kept in seen):
            seen.append(value)
    return seen
