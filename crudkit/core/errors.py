"""
Domain-specific exceptions for the crudkit data-access layer.

These exceptions describe failures of the orchestration layer itself.
Failures raised by the underlying store are NOT wrapped: they propagate
unchanged and can be caught as ``StoreError``.
"""

from typing import Any

from sqlalchemy.exc import SQLAlchemyError

# Any failure raised by SQLAlchemy or the database driver it wraps.
StoreError = SQLAlchemyError


class CrudkitError(Exception):
    """Base exception for all crudkit errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(CrudkitError):
    """
    Raised when an operation is requested with an invalid configuration.

    Examples:
    - Optimistic lock requested without a version token
    - Version token that is neither an integer counter nor a datetime
    - Optimistic lock applied to a multi-row read
    - Record type without the version attribute an optimistic lock needs
    """

    pass


class UnknownRecordTypeError(ConfigurationError):
    """
    Raised when a record-type reference cannot be resolved.

    Examples:
    - Name string that was never registered
    - Class that is not mapped by SQLAlchemy
    - Table that no registered mapper selects from
    """

    pass


class UnknownDataSourceError(ConfigurationError):
    """Raised when a data-source name was never registered."""

    pass


class ValidationError(CrudkitError):
    """
    Raised when a condition or query argument is malformed.

    Examples:
    - Field-match condition naming an attribute the record type lacks
    - Negative take/skip
    - Pagination requested on a single-result read
    - Value that cannot be interpreted as a condition
    """

    pass


class NotFoundError(CrudkitError):
    """
    Raised when an update targets a record that does not exist.

    Raised eagerly, before any write is attempted.
    """

    pass


class ConflictError(CrudkitError):
    """
    Raised when an operation conflicts with the current stored state.

    Examples:
    - Optimistic version mismatch on read
    - Optimistic version mismatch on update
    - Stale ORM version counter detected at flush
    """

    pass
