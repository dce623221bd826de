"""
Condition variants.

A condition says which stored records an operation targets. Each kind of
condition has its own frozen dataclass; ``as_condition`` turns the loose
values callers usually pass (an id, a dict, a list of dicts) into one of
them, so predicate application only ever sees these four types.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Union

from sqlalchemy.sql.elements import ColumnElement, TextClause

from crudkit.core.errors import ValidationError
from crudkit.domain.enums import GroupOperator

IdentityValue = Union[str, int, Decimal, uuid.UUID, date, datetime, tuple]

# SQL text, a column expression, or a callable building one from the mapped class
ExpressionClause = Union[str, ColumnElement, TextClause, Callable[[Any], ColumnElement]]

_SCALAR_TYPES = (str, int, Decimal, uuid.UUID, date, datetime)


def _freeze(mapping: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class Identity:
    """Primary-identity equals ``value`` (a tuple for composite keys)."""

    value: IdentityValue

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, (*_SCALAR_TYPES, tuple)):
            raise ValidationError(
                "Identity value must be a string, number, UUID, date or tuple",
                details={"type": type(self.value).__name__},
            )


@dataclass(frozen=True)
class FieldMatch:
    """Every named attribute equals its value (AND-ed)."""

    fields: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", _freeze(self.fields))


@dataclass(frozen=True)
class Expression:
    """An opaque builder-level predicate with named parameters."""

    clause: ExpressionClause
    parameters: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", _freeze(self.parameters))


@dataclass(frozen=True)
class Group:
    """Boolean combination of other conditions."""

    conditions: tuple[Condition, ...]
    operator: GroupOperator = GroupOperator.AND

    def __post_init__(self) -> None:
        object.__setattr__(self, "conditions", tuple(as_condition(c) for c in self.conditions))
        object.__setattr__(self, "operator", GroupOperator(self.operator))


Condition = Union[Identity, FieldMatch, Expression, Group]

CONDITION_TYPES = (Identity, FieldMatch, Expression, Group)


def all_of(*conditions: Any) -> Group:
    return Group(tuple(conditions), GroupOperator.AND)


def any_of(*conditions: Any) -> Group:
    return Group(tuple(conditions), GroupOperator.OR)


def is_identity_value(value: Any) -> bool:
    """True for the scalar values that mean "look up by primary identity"."""
    return isinstance(value, _SCALAR_TYPES) and not isinstance(value, bool)


def as_condition(raw: Any) -> Condition:
    """
    Normalize a caller-supplied value into a condition variant.

    - condition variants pass through
    - str / int / UUID / date / datetime -> Identity
    - tuple -> Identity (composite key)
    - mapping -> FieldMatch
    - sequence of mappings -> OR group of FieldMatch
    - SQLAlchemy column expression -> Expression

    Raises:
        ValidationError: If the value has none of these shapes
    """
    if isinstance(raw, CONDITION_TYPES):
        return raw
    if is_identity_value(raw) or isinstance(raw, tuple):
        return Identity(raw)
    if isinstance(raw, Mapping):
        return FieldMatch(raw)
    if isinstance(raw, (ColumnElement, TextClause)):
        return Expression(raw)
    if isinstance(raw, Sequence) and raw and all(isinstance(item, Mapping) for item in raw):
        return any_of(*raw)

    raise ValidationError(
        "Value cannot be interpreted as a condition",
        details={"type": type(raw).__name__},
    )


def as_optional_condition(
    raw: Any, parameters: Mapping[str, Any] | None = None
) -> Condition | None:
    """
    Like ``as_condition`` but None (and an empty mapping) mean "match everything".

    A string passed together with ``parameters`` is SQL text whose
    placeholders those parameters bind, not a primary-key value.
    """
    if raw is None:
        return None
    if isinstance(raw, Mapping) and not raw:
        return None
    if isinstance(raw, str) and parameters:
        return Expression(raw)
    return as_condition(raw)
