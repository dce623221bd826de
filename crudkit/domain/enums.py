"""
Domain enums used across crudkit.

These enums give type-safe names to the lock modes, sort directions and
boolean group operators that callers pass into operations.
"""

from enum import Enum


class LockMode(str, Enum):
    """Row-locking behavior requested for a query."""

    NONE = "none"
    OPTIMISTIC = "optimistic"
    PESSIMISTIC_READ = "pessimistic_read"
    PESSIMISTIC_WRITE = "pessimistic_write"


class SortDirection(str, Enum):
    """Ordering direction for an order-by clause."""

    ASC = "ASC"
    DESC = "DESC"


class GroupOperator(str, Enum):
    """How the members of a condition group are combined."""

    AND = "AND"
    OR = "OR"
