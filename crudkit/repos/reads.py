"""
Read operations.

Every function resolves the record type, reads through its repository,
and projects the raw records before returning them. Single-record reads
return ``Maybe``; a missing row is ``ABSENT``, never an exception.

Common keyword arguments:
    project: Projection applied to each raw record (default: identity)
    data_source: Named data source (default: the record type's, then default)
    db: Caller-owned AsyncSession to run inside instead of fresh scopes
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from crudkit.core.observability import operation_context
from crudkit.domain.conditions import Identity
from crudkit.domain.optional import Maybe
from crudkit.repos.accessor import get_repository
from crudkit.repos.predicates import OrderBySpec
from crudkit.repos.projection import Projection, identity, project_many, project_maybe
from crudkit.repos.registry import RecordRef

logger = logging.getLogger(__name__)


async def find_one(
    ref: RecordRef,
    condition: Any = None,
    order_by: OrderBySpec | None = None,
    *,
    parameters: Mapping[str, Any] | None = None,
    project: Projection = identity,
    data_source: str | None = None,
    db: AsyncSession | None = None,
) -> Maybe[Any]:
    """
    First record matching ``condition``.

    A scalar condition (id, UUID, date...) is a primary-key lookup and
    ignores ``order_by``. Any other condition is filtered, ordered and
    the first match taken. No condition takes the first row overall.

    Returns:
        Present(projection) or ABSENT
    """
    repo = get_repository(ref, data_source, db=db)
    with operation_context("find_one", repo.record_type.name):
        found = await repo.find_one(condition, order_by, parameters)
    return project_maybe(found, project)


async def get_by_id(
    ref: RecordRef,
    id: Any,
    *,
    project: Projection = identity,
    data_source: str | None = None,
    db: AsyncSession | None = None,
) -> Maybe[Any]:
    """Primary-key lookup."""
    return await find_one(
        ref, Identity(id), project=project, data_source=data_source, db=db
    )


async def find_one_with_fallback(
    ref: RecordRef,
    condition: Any,
    alt_condition: Any,
    order_by: OrderBySpec | None = None,
    *,
    parameters: Mapping[str, Any] | None = None,
    project: Projection = identity,
    data_source: str | None = None,
    db: AsyncSession | None = None,
) -> Maybe[Any]:
    """
    ``find_one`` with ``condition``; if that finds nothing, with ``alt_condition``.

    The two lookups are independent store calls with the same ordering
    and the same ``parameters``.
    """
    first = await find_one(
        ref,
        condition,
        order_by,
        parameters=parameters,
        project=project,
        data_source=data_source,
        db=db,
    )
    if first.has_value:
        return first

    logger.debug("Primary condition matched nothing; trying alternative condition")
    return await find_one(
        ref,
        alt_condition,
        order_by,
        parameters=parameters,
        project=project,
        data_source=data_source,
        db=db,
    )


async def find(
    ref: RecordRef,
    condition: Any = None,
    order_by: OrderBySpec | None = None,
    take: int | None = None,
    skip: int | None = None,
    *,
    parameters: Mapping[str, Any] | None = None,
    project: Projection = identity,
    data_source: str | None = None,
    db: AsyncSession | None = None,
) -> list[Any]:
    """
    Every record matching ``condition`` (all records when None).

    Returns:
        Fully materialised list, ordered when ``order_by`` is given
    """
    repo = get_repository(ref, data_source, db=db)
    with operation_context("find", repo.record_type.name):
        records = await repo.find(condition, order_by, take, skip, parameters)
        logger.debug(
            f"Found {len(records)} {repo.record_type.name} record(s)",
            extra={"count": len(records), "take": take, "skip": skip},
        )
    return project_many(records, project)


async def exists(
    ref: RecordRef,
    condition: Any = None,
    *,
    parameters: Mapping[str, Any] | None = None,
    data_source: str | None = None,
    db: AsyncSession | None = None,
) -> bool:
    """True iff at least one record matches. Runs a COUNT; no rows are loaded."""
    repo = get_repository(ref, data_source, db=db)
    with operation_context("exists", repo.record_type.name):
        return await repo.count(condition, parameters) > 0


async def find_by_ids(
    ref: RecordRef,
    ids: Iterable[Any],
    extra_condition: Any = None,
    *,
    project: Projection = identity,
    data_source: str | None = None,
    db: AsyncSession | None = None,
) -> list[Any]:
    """
    Records whose primary key is in ``ids``, optionally narrowed further.

    Result order is whatever the store returns; do not rely on it
    matching ``ids``.
    """
    repo = get_repository(ref, data_source, db=db)
    with operation_context("find_by_ids", repo.record_type.name):
        records = await repo.find_by_ids(ids, extra_condition)
    return project_many(records, project)
