"""
crudkit: async data-access layer over SQLAlchemy.

Typical use::

    from crudkit import find_one, update_by_id

    widget = await find_one(Widget, {"name": "sprocket"})
    updated = await update_by_id(Widget, "w-1", {"name": "cog"}, notify=publish)
"""

from crudkit.core.errors import (
    ConfigurationError,
    ConflictError,
    CrudkitError,
    NotFoundError,
    StoreError,
    UnknownDataSourceError,
    UnknownRecordTypeError,
    ValidationError,
)
from crudkit.domain.conditions import Expression, FieldMatch, Group, Identity, all_of, any_of
from crudkit.domain.enums import LockMode, SortDirection
from crudkit.domain.locking import LockSpec
from crudkit.domain.optional import ABSENT, Absent, Maybe, Present
from crudkit.repos.accessor import Repository, SaveOptions, get_repository
from crudkit.repos.mutations import (
    create_many,
    create_one,
    delete_by_condition,
    delete_by_id,
    delete_many,
    delete_one,
    update,
    update_by_id,
    update_where,
)
from crudkit.repos.optimistic_lock import ConcurrentModificationError
from crudkit.repos.projection import identity, project, project_many
from crudkit.repos.query_builder import LockedQuery, build_query, select_query
from crudkit.repos.reads import (
    exists,
    find,
    find_by_ids,
    find_one,
    find_one_with_fallback,
    get_by_id,
)
from crudkit.repos.registry import RecordType, register_record_type, resolve_record_type

__all__ = [
    "ABSENT",
    "Absent",
    "ConcurrentModificationError",
    "ConfigurationError",
    "ConflictError",
    "CrudkitError",
    "Expression",
    "FieldMatch",
    "Group",
    "Identity",
    "LockMode",
    "LockSpec",
    "LockedQuery",
    "Maybe",
    "NotFoundError",
    "Present",
    "RecordType",
    "Repository",
    "SaveOptions",
    "SortDirection",
    "StoreError",
    "UnknownDataSourceError",
    "UnknownRecordTypeError",
    "ValidationError",
    "all_of",
    "any_of",
    "build_query",
    "create_many",
    "create_one",
    "delete_by_condition",
    "delete_by_id",
    "delete_many",
    "delete_one",
    "exists",
    "find",
    "find_by_ids",
    "find_one",
    "find_one_with_fallback",
    "get_by_id",
    "get_repository",
    "identity",
    "project",
    "project_many",
    "register_record_type",
    "resolve_record_type",
    "select_query",
    "update",
    "update_by_id",
    "update_where",
]
