"""
Record-type registration and resolution.

Callers may name the collection an operation targets by mapped class,
by ``Table``, by registered name, or by an already-resolved
``RecordType``. Every public operation resolves the reference once, up
front, and passes only the canonical ``RecordType`` further down.
"""

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Table
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import InstrumentedAttribute, Mapper

from crudkit.core.errors import UnknownRecordTypeError, ValidationError

logger = logging.getLogger(__name__)

RecordRef = Any  # type[Model] | Table | str | RecordType


@dataclass(frozen=True)
class RecordType:
    """Canonical handle for one mapped collection."""

    model: type
    name: str
    version_attr: str | None = None
    updated_attr: str | None = None
    data_source: str | None = None

    @property
    def mapper(self) -> Mapper:
        return sa_inspect(self.model)

    @property
    def table(self) -> Any:
        return self.mapper.local_table

    @property
    def primary_key_names(self) -> tuple[str, ...]:
        mapper = self.mapper
        return tuple(mapper.get_property_by_column(col).key for col in mapper.primary_key)

    @property
    def primary_key(self) -> tuple[InstrumentedAttribute, ...]:
        return tuple(getattr(self.model, name) for name in self.primary_key_names)

    @property
    def is_composite(self) -> bool:
        return len(self.primary_key_names) > 1

    def has_attribute(self, name: str) -> bool:
        return name in self.mapper.column_attrs

    def attribute(self, name: str) -> InstrumentedAttribute:
        """
        Return the mapped column attribute called ``name``.

        Raises:
            ValidationError: If the record type has no such column attribute
        """
        if not self.has_attribute(name):
            raise ValidationError(
                f"{self.name} has no attribute '{name}'",
                details={"record_type": self.name, "attribute": name},
            )
        return getattr(self.model, name)

    def identity_of(self, record: Any) -> Any:
        """Primary-key value of a loaded record (a tuple for composite keys)."""
        values = tuple(getattr(record, name) for name in self.primary_key_names)
        return values if self.is_composite else values[0]

    def criteria_for(self, identity: Any) -> dict[str, Any]:
        """Field-match criteria selecting exactly the record with ``identity``."""
        if self.is_composite:
            if not isinstance(identity, tuple) or len(identity) != len(self.primary_key_names):
                raise ValidationError(
                    f"{self.name} has a composite key; identity must be a tuple",
                    details={"key": list(self.primary_key_names)},
                )
            return dict(zip(self.primary_key_names, identity, strict=True))
        return {self.primary_key_names[0]: identity}


_by_model: dict[type, RecordType] = {}
_by_name: dict[str, RecordType] = {}


def _mapper_for(model: Any) -> Mapper | None:
    if not isinstance(model, type):
        return None
    mapper = sa_inspect(model, raiseerr=False)
    return mapper if isinstance(mapper, Mapper) else None


def _detect_version_attr(mapper: Mapper) -> str | None:
    if mapper.version_id_col is not None:
        return mapper.get_property_by_column(mapper.version_id_col).key
    if "version" in mapper.column_attrs:
        return "version"
    return None


def _detect_updated_attr(mapper: Mapper) -> str | None:
    for candidate in ("updated_at", "updated_date", "modified_at"):
        if candidate in mapper.column_attrs:
            return candidate
    return None


def register_record_type(
    model: type,
    *,
    name: str | None = None,
    version_attr: str | None = None,
    updated_attr: str | None = None,
    data_source: str | None = None,
) -> RecordType:
    """
    Register a mapped class so it can be referenced by name.

    Version and timestamp attributes used by optimistic locks are
    detected from the mapper (``version_id_col``, ``version``,
    ``updated_at``) unless given explicitly.

    Args:
        model: SQLAlchemy-mapped class
        name: Lookup name; defaults to the class name. The table name is
            always registered as an alias too.
        version_attr: Integer counter attribute for optimistic locks
        updated_attr: Timestamp attribute for optimistic locks
        data_source: Default data source for this record type

    Returns:
        The canonical RecordType

    Raises:
        UnknownRecordTypeError: If ``model`` is not a mapped class
    """
    mapper = _mapper_for(model)
    if mapper is None:
        raise UnknownRecordTypeError(
            f"{model!r} is not a SQLAlchemy-mapped class",
            details={"reference": repr(model)},
        )

    for attr in (version_attr, updated_attr):
        if attr is not None and attr not in mapper.column_attrs:
            raise UnknownRecordTypeError(
                f"{model.__name__} has no column attribute '{attr}'",
                details={"record_type": model.__name__, "attribute": attr},
            )

    record_type = RecordType(
        model=model,
        name=name or model.__name__,
        version_attr=version_attr or _detect_version_attr(mapper),
        updated_attr=updated_attr or _detect_updated_attr(mapper),
        data_source=data_source,
    )

    existing = _by_model.get(model)
    if existing == record_type:
        return existing

    _by_model[model] = record_type
    _by_name[record_type.name] = record_type
    _by_name.setdefault(mapper.local_table.name, record_type)
    logger.debug(
        f"Registered record type: {record_type.name}",
        extra={"record_type": record_type.name, "table": mapper.local_table.name},
    )
    return record_type


def resolve_record_type(ref: RecordRef) -> RecordType:
    """
    Resolve any supported reference to its canonical RecordType.

    Mapped classes are registered on first use; names and tables must
    belong to a registered class.

    Raises:
        UnknownRecordTypeError: If the reference cannot be resolved
    """
    if isinstance(ref, RecordType):
        return ref

    if isinstance(ref, str):
        record_type = _by_name.get(ref)
        if record_type is None:
            raise UnknownRecordTypeError(
                f"Record type '{ref}' is not registered",
                details={"reference": ref, "known": sorted(_by_name)},
            )
        return record_type

    if isinstance(ref, Table):
        for record_type in _by_model.values():
            if record_type.table is ref:
                return record_type
        raise UnknownRecordTypeError(
            f"No registered record type maps table '{ref.name}'",
            details={"reference": ref.name},
        )

    record_type = _by_model.get(ref) if isinstance(ref, type) else None
    if record_type is not None:
        return record_type
    return register_record_type(ref)


def clear_registry() -> None:
    """Forget every registered record type (tests only)."""
    _by_model.clear()
    _by_name.clear()
