"""Projection of stored records into caller-defined shapes.

A projection is a plain function of one raw record. It is applied after
every read or write that returns records; anything it raises reaches the
caller of the enclosing operation unchanged.
"""

from collections.abc import Callable, Iterable
from typing import Any, TypeVar

from crudkit.domain.optional import Maybe

R = TypeVar("R")
P = TypeVar("P")

Projection = Callable[[Any], Any]


def identity(record: R) -> R:
    return record


def project(raw: R, fn: Callable[[R], P] = identity) -> P:
    return fn(raw)


def project_many(raws: Iterable[R], fn: Callable[[R], P] = identity) -> list[P]:
    return [fn(raw) for raw in raws]


def project_maybe(raw: Maybe[R], fn: Callable[[R], P] = identity) -> Maybe[P]:
    return raw.map(fn)
