"""Translate conditions, ordering and pagination onto SQLAlchemy statements."""

import re
from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy import and_, bindparam, or_, text, true
from sqlalchemy.sql import ColumnElement
from sqlalchemy.sql.elements import BindParameter, TextClause
from sqlalchemy.sql.expression import Select
from sqlalchemy.sql.visitors import replacement_traverse

from crudkit.core.errors import ValidationError
from crudkit.domain.conditions import (
    Condition,
    Expression,
    FieldMatch,
    Group,
    Identity,
)
from crudkit.domain.enums import GroupOperator, SortDirection
from crudkit.repos.registry import RecordType

OrderBySpec = str | Mapping[str, Any] | Sequence[str | tuple[str, Any]]

# Same placeholder syntax text() recognises: ":name", but not "::cast"
_BIND_NAME = re.compile(r"(?<![:\w\\]):(\w+)(?!:)")


def identity_clause(record_type: RecordType, value: Any) -> ColumnElement:
    """Primary key equals ``value``."""
    criteria = record_type.criteria_for(value)
    return and_(*(record_type.attribute(k) == v for k, v in criteria.items()))


def _field_match_clause(record_type: RecordType, condition: FieldMatch) -> ColumnElement:
    if not condition.fields:
        return true()
    clauses = []
    for name, value in condition.fields.items():
        column = record_type.attribute(name)
        clauses.append(column.is_(None) if value is None else column == value)
    return and_(*clauses)


def _bound_text(sql: str, parameters: Mapping[str, Any]) -> ColumnElement:
    # text().bindparams() rejects names the SQL does not use
    used = set(_BIND_NAME.findall(sql))
    clause = text(sql)
    values = {k: v for k, v in parameters.items() if k in used}
    return clause.bindparams(**values) if values else clause


def _rebind(clause: ColumnElement, values: Mapping[str, Any]) -> ColumnElement:
    """Give named bind parameters in a column expression their values."""

    def replace(element: Any, **kw: Any) -> Any:
        if isinstance(element, BindParameter) and not element.unique and element.key in values:
            return bindparam(element.key, values[element.key], type_=element.type)
        return None

    return replacement_traverse(clause, {}, replace)


def _expression_clause(
    record_type: RecordType, condition: Expression, parameters: Mapping[str, Any]
) -> ColumnElement:
    merged = {**parameters, **condition.parameters}
    clause = condition.clause
    if callable(clause) and not isinstance(clause, (str, ColumnElement)):
        clause = clause(record_type.model)
    if isinstance(clause, str):
        return _bound_text(clause, merged)
    if isinstance(clause, TextClause):
        used = set(clause.compile().params)
        values = {k: v for k, v in merged.items() if k in used}
        return clause.bindparams(**values) if values else clause
    if merged:
        clause = _rebind(clause, merged)
    return clause


def condition_clause(
    record_type: RecordType,
    condition: Condition,
    parameters: Mapping[str, Any] | None = None,
) -> ColumnElement:
    """
    Build the WHERE clause for one condition.

    ``parameters`` bind named placeholders in every Expression of the
    condition tree; an Expression's own parameters win on a name clash.

    Raises:
        ValidationError: For unknown attributes or non-condition values
    """
    parameters = parameters or {}
    if isinstance(condition, Identity):
        return identity_clause(record_type, condition.value)
    if isinstance(condition, FieldMatch):
        return _field_match_clause(record_type, condition)
    if isinstance(condition, Expression):
        return _expression_clause(record_type, condition, parameters)
    if isinstance(condition, Group):
        members = [condition_clause(record_type, c, parameters) for c in condition.conditions]
        return and_(*members) if condition.operator == GroupOperator.AND else or_(*members)

    raise ValidationError(
        "Unsupported condition type",
        details={"type": type(condition).__name__},
    )


def apply_condition(
    stmt: Any,
    record_type: RecordType,
    condition: Condition | None,
    parameters: Mapping[str, Any] | None = None,
) -> Any:
    """Narrow ``stmt`` (select, update or delete) by ``condition``."""
    if condition is None:
        return stmt
    return stmt.where(condition_clause(record_type, condition, parameters))


def _parse_direction(raw: Any) -> tuple[SortDirection, str | None]:
    nulls = None
    if isinstance(raw, Mapping):
        nulls = raw.get("nulls")
        raw = raw.get("order", SortDirection.ASC)
    try:
        direction = SortDirection(str(getattr(raw, "value", raw)).upper())
    except ValueError:
        raise ValidationError(
            f"Invalid sort direction '{raw}'",
            details={"allowed": [d.value for d in SortDirection]},
        ) from None
    if nulls is not None:
        nulls = str(nulls).upper().replace("NULLS ", "")
        if nulls not in ("FIRST", "LAST"):
            raise ValidationError(f"Invalid nulls ordering '{nulls}'")
    return direction, nulls


def _order_items(order_by: OrderBySpec) -> list[tuple[str, Any]]:
    if isinstance(order_by, str):
        return [(order_by, SortDirection.ASC)]
    if isinstance(order_by, Mapping):
        return list(order_by.items())
    items = []
    for item in order_by:
        if isinstance(item, str):
            items.append((item, SortDirection.ASC))
        else:
            name, direction = item
            items.append((name, direction))
    return items


def apply_order_by(stmt: Select, record_type: RecordType, order_by: OrderBySpec | None) -> Select:
    """
    Attach ORDER BY clauses.

    Accepts ``{"name": "ASC", "created_at": "DESC"}``, a list of names
    or ``(name, direction)`` pairs, or a single attribute name. A
    direction may also be ``{"order": "DESC", "nulls": "NULLS LAST"}``.
    """
    if not order_by:
        return stmt
    clauses = []
    for name, raw_direction in _order_items(order_by):
        column = record_type.attribute(name)
        direction, nulls = _parse_direction(raw_direction)
        clause = column.asc() if direction == SortDirection.ASC else column.desc()
        if nulls == "FIRST":
            clause = clause.nulls_first()
        elif nulls == "LAST":
            clause = clause.nulls_last()
        clauses.append(clause)
    return stmt.order_by(*clauses)


def validate_pagination(take: int | None, skip: int | None) -> None:
    for label, value in (("take", take), ("skip", skip)):
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(
                f"{label} must be a non-negative integer",
                details={label: value},
            )


def apply_pagination(stmt: Select, take: int | None, skip: int | None) -> Select:
    """Apply LIMIT/OFFSET; None or 0 leaves the statement unbounded."""
    validate_pagination(take, skip)
    if take:
        stmt = stmt.limit(take)
    if skip:
        stmt = stmt.offset(skip)
    return stmt
