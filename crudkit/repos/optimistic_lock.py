"""
Optimistic locking utilities for concurrent modification detection.

An optimistic lock carries the version token the caller read earlier:
- an integer token is compared with the record type's version counter
- a datetime token is compared with its last-updated timestamp

Reads verify the fetched record against the token; updates add the
token to the WHERE clause and bump the counter/timestamp.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.sql import ColumnElement

from crudkit.core.errors import ConfigurationError, ConflictError
from crudkit.domain.locking import LockSpec, VersionToken
from crudkit.repos.registry import RecordType


class ConcurrentModificationError(ConflictError):
    """
    Raised when a read or update fails due to concurrent modification.

    This occurs when the expected version doesn't match the current
    version in the database, indicating another transaction modified
    the entity after it was read.
    """

    def __init__(
        self,
        entity_type: str,
        entity_id: str | None,
        expected_version: VersionToken | None,
        actual_version: Any,
    ):
        super().__init__(
            f"{entity_type} was modified by another transaction. Please refresh and try again.",
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version


def version_attribute(record_type: RecordType, lock: LockSpec) -> str:
    """
    Name of the attribute an optimistic token is compared against.

    Raises:
        ConfigurationError: If the record type has no matching attribute
    """
    if lock.uses_timestamp:
        attr, kind = record_type.updated_attr, "timestamp"
    else:
        attr, kind = record_type.version_attr, "version counter"
    if attr is None:
        raise ConfigurationError(
            f"{record_type.name} has no {kind} attribute for optimistic locking",
            details={"record_type": record_type.name, "token": repr(lock.version)},
        )
    return attr


def _normalize_timestamp(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value


def versions_match(expected: VersionToken, actual: Any) -> bool:
    if isinstance(expected, datetime):
        return isinstance(actual, datetime) and _normalize_timestamp(
            actual
        ) == _normalize_timestamp(expected)
    return not isinstance(actual, bool) and actual == expected


def check_record_version(record_type: RecordType, record: Any, lock: LockSpec) -> Any:
    """
    Check that a fetched record still carries the expected version.

    Returns:
        The record, unchanged, if the version matches

    Raises:
        ConcurrentModificationError: If the version differs
    """
    attr = version_attribute(record_type, lock)
    actual = getattr(record, attr)
    if not versions_match(lock.version, actual):
        raise ConcurrentModificationError(
            entity_type=record_type.name,
            entity_id=str(record_type.identity_of(record)),
            expected_version=lock.version,
            actual_version=actual,
        )
    return record


def version_guard(record_type: RecordType, lock: LockSpec) -> ColumnElement:
    """WHERE clause that only matches rows still at the expected version."""
    column = record_type.attribute(version_attribute(record_type, lock))
    return column == lock.version


def version_bump(record_type: RecordType, lock: LockSpec) -> dict[str, Any]:
    """SET values that advance the version after a guarded update."""
    attr = version_attribute(record_type, lock)
    if lock.uses_timestamp:
        return {attr: datetime.now(UTC)}
    return {attr: record_type.attribute(attr) + 1}


@contextmanager
def stale_data_as_conflict(record_type: RecordType) -> Iterator[None]:
    """Re-raise SQLAlchemy's version-counter StaleDataError as ConcurrentModificationError."""
    try:
        yield
    except StaleDataError as e:
        raise ConcurrentModificationError(
            entity_type=record_type.name,
            entity_id=None,
            expected_version=None,
            actual_version=None,
        ) from e
