"""
Presence-aware result container.

Single-record reads return ``Maybe[T]``: either ``Present(value)`` or the
``ABSENT`` singleton. Both are pattern-matchable::

    match await find_one(Widget, "w-1"):
        case Present(widget):
            ...
        case Absent():
            ...

Truthiness is deliberately not defined; use ``has_value``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")


class Maybe(Generic[T]):
    """Base of ``Present`` and ``Absent``."""

    __slots__ = ()

    @staticmethod
    def of(value: T | None) -> Maybe[T]:
        """Wrap a possibly-None value."""
        return ABSENT if value is None else Present(value)

    @property
    def has_value(self) -> bool:
        raise NotImplementedError

    def map(self, fn: Callable[[T], U]) -> Maybe[U]:
        raise NotImplementedError

    def value_or(self, default: U) -> T | U:
        raise NotImplementedError

    def value_or_raise(self, error: Exception | Callable[[], Exception]) -> T:
        raise NotImplementedError

    def to_list(self) -> list[T]:
        raise NotImplementedError

    def __bool__(self) -> bool:
        raise TypeError(
            f"{type(self).__name__} has no truth value; use .has_value or pattern matching"
        )


@dataclass(frozen=True, slots=True)
class Present(Maybe[T]):
    """A value that was found."""

    value: T

    @property
    def has_value(self) -> bool:
        return True

    def map(self, fn: Callable[[T], U]) -> Maybe[U]:
        return Present(fn(self.value))

    def value_or(self, default: Any) -> T:
        return self.value

    def value_or_raise(self, error: Exception | Callable[[], Exception]) -> T:
        return self.value

    def to_list(self) -> list[T]:
        return [self.value]


@dataclass(frozen=True, slots=True)
class Absent(Maybe[Any]):
    """No value. Use the ``ABSENT`` singleton rather than constructing new ones."""

    @property
    def has_value(self) -> bool:
        return False

    def map(self, fn: Callable[[Any], U]) -> Maybe[U]:
        return self

    def value_or(self, default: U) -> U:
        return default

    def value_or_raise(self, error: Exception | Callable[[], Exception]) -> Any:
        raise error if isinstance(error, Exception) else error()

    def to_list(self) -> list[Any]:
        return []

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT: Absent = Absent()
