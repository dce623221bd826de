"""
Mutating operations.

Each operation writes through the record type's repository and then
hands the affected records to an optional ``notify`` callback. How the
callback is driven differs per operation and is part of its contract:

- awaited, failure propagates: create_one, update, update_by_id,
  delete_one, delete_by_id
- one call per record concurrently, all awaited: create_many
- detached, failures only logged: update_where, delete_many,
  delete_by_condition

Callbacks run after the write. With an unbound repository the write is
already committed by then, so a failing callback does not undo it.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from crudkit.core.errors import NotFoundError, ValidationError
from crudkit.core.notifications import NotifyCallback, dispatch, dispatch_all, dispatch_detached
from crudkit.core.observability import operation_context
from crudkit.domain.conditions import as_optional_condition
from crudkit.domain.enums import LockMode
from crudkit.domain.locking import LockSpec, as_lock_spec
from crudkit.domain.optional import Maybe
from crudkit.repos.accessor import SaveOptions, get_repository
from crudkit.repos.projection import Projection, identity, project_many
from crudkit.repos.projection import project as project_one
from crudkit.repos.reads import get_by_id
from crudkit.repos.registry import RecordRef

logger = logging.getLogger(__name__)

Retrieve = Callable[[], Awaitable[Maybe[Any]] | Maybe[Any]]

DELETE_LOCK = LockSpec(mode=LockMode.PESSIMISTIC_WRITE)


async def _retrieve(retrieve: Retrieve) -> Maybe[Any]:
    found = retrieve()
    if inspect.isawaitable(found):
        found = await found
    if not isinstance(found, Maybe):
        raise ValidationError(
            "retrieve must return a Maybe",
            details={"returned": type(found).__name__},
        )
    return found


# ============================================================================
# Create
# ============================================================================


async def create_many(
    ref: RecordRef,
    records: Iterable[Any],
    *,
    project: Projection = identity,
    notify: NotifyCallback | None = None,
    options: SaveOptions | None = None,
    data_source: str | None = None,
    db: AsyncSession | None = None,
) -> list[Any]:
    """
    Persist ``records`` and return their projections in input order.

    Records may be model instances or attribute mappings. When ``notify``
    is given it is called once per projection, concurrently, and every
    call is awaited before returning.
    """
    repo = get_repository(ref, data_source, db=db)
    name = repo.record_type.name
    with operation_context("create_many", name):
        saved = await repo.save(list(records), options)
        projected = project_many(saved, project)
        if notify is not None:
            await dispatch_all(notify, projected)

        logger.info(f"Created {len(saved)} {name} record(s)", extra={"count": len(saved)})
    return projected


async def create_one(
    ref: RecordRef,
    record: Any,
    *,
    project: Projection = identity,
    notify: NotifyCallback | None = None,
    options: SaveOptions | None = None,
    data_source: str | None = None,
    db: AsyncSession | None = None,
) -> Any:
    """Persist one record, notify with its projection, and return it."""
    repo = get_repository(ref, data_source, db=db)
    name = repo.record_type.name
    with operation_context("create_one", name):
        saved = await repo.save([record], options)
        projected = project_one(saved[0], project)
        if notify is not None:
            await dispatch(notify, projected)

        logger.info(
            f"Created {name}",
            extra={"record_id": str(repo.record_type.identity_of(saved[0]))},
        )
    return projected


# ============================================================================
# Update
# ============================================================================


async def update(
    ref: RecordRef,
    criteria: Any,
    patch: Mapping[str, Any],
    retrieve: Retrieve,
    *,
    notify: NotifyCallback | None = None,
    data_source: str | None = None,
    db: AsyncSession | None = None,
) -> Maybe[Any]:
    """
    Update the records matched by ``criteria`` and return their new state.

    ``retrieve`` is called twice: before the write, to confirm the target
    exists and capture the snapshot passed to ``notify``; and after it,
    to produce the return value.

    Args:
        criteria: Identity, identity list, field mapping or expression
        patch: Attribute values to set
        retrieve: Zero-argument callable returning Maybe (sync or async)

    Raises:
        NotFoundError: If ``retrieve`` finds nothing; no write is issued
    """
    repo = get_repository(ref, data_source, db=db)
    name = repo.record_type.name
    with operation_context("update", name):
        before = await _retrieve(retrieve)
        if not before.has_value:
            raise NotFoundError(
                f"{name} not found, nothing to update",
                details={"record_type": name, "criteria": repr(criteria)},
            )

        updated = await repo.update(criteria, patch)
        # Subscribers receive the record as it was before the write
        if notify is not None:
            await dispatch(notify, before.value)

        logger.info(
            f"Updated {name}",
            extra={"rows": updated, "fields": sorted(patch)},
        )
        return await _retrieve(retrieve)


async def update_by_id(
    ref: RecordRef,
    id: Any,
    patch: Mapping[str, Any],
    *,
    project: Projection = identity,
    notify: NotifyCallback | None = None,
    data_source: str | None = None,
    db: AsyncSession | None = None,
) -> Maybe[Any]:
    """``update`` keyed by primary key, retrieving through ``get_by_id``."""
    repo = get_repository(ref, data_source, db=db)
    criteria = repo.record_type.criteria_for(id)

    async def retrieve() -> Maybe[Any]:
        return await get_by_id(
            repo.record_type, id, project=project, data_source=repo.data_source, db=db
        )

    return await update(
        repo.record_type,
        criteria,
        patch,
        retrieve,
        notify=notify,
        data_source=repo.data_source,
        db=db,
    )


async def update_where(
    ref: RecordRef,
    condition: Any,
    patch: Mapping[str, Any],
    *,
    parameters: Mapping[str, Any] | None = None,
    lock: LockSpec | LockMode | str | None = None,
    project: Projection = identity,
    notify: NotifyCallback | None = None,
    data_source: str | None = None,
    db: AsyncSession | None = None,
) -> list[Any]:
    """
    Locked bulk update by condition.

    Runs the update under ``lock``, re-selects the rows with the same
    condition, and schedules one detached notification per projection.
    Rows the patch moves out of the condition are not returned.

    Raises:
        ValidationError: If the condition is empty
    """
    lock_spec = as_lock_spec(lock)
    repo = get_repository(ref, data_source, db=db)
    name = repo.record_type.name
    if as_optional_condition(condition, parameters) is None:
        raise ValidationError("Bulk update requires a condition", details={"record_type": name})

    with operation_context("update_where", name):
        updated = await repo.query(lock_spec).where(condition, parameters).update(patch)
        rows = await repo.query().where(condition, parameters).get_many()
        projected = project_many(rows, project)
        if notify is not None:
            dispatch_detached(notify, projected)

        logger.info(
            f"Bulk updated {updated} {name} record(s)",
            extra={"rows": updated, "lock": lock_spec.mode.value},
        )
    return projected


# ============================================================================
# Delete
# ============================================================================


async def delete_one(
    ref: RecordRef,
    criteria: Any,
    retrieve: Retrieve,
    *,
    notify: NotifyCallback | None = None,
    data_source: str | None = None,
    db: AsyncSession | None = None,
) -> Maybe[Any]:
    """
    Delete the record matched by ``criteria`` if ``retrieve`` finds it.

    Returns:
        The pre-delete snapshot, or ABSENT (in which case nothing is
        deleted and ``notify`` is not called)
    """
    repo = get_repository(ref, data_source, db=db)
    name = repo.record_type.name
    with operation_context("delete_one", name):
        snapshot = await _retrieve(retrieve)
        if not snapshot.has_value:
            logger.debug(f"{name} not found, nothing to delete")
            return snapshot

        deleted = await repo.delete(criteria)
        if notify is not None:
            await dispatch(notify, snapshot.value)

        logger.info(f"Deleted {name}", extra={"rows": deleted})
    return snapshot


async def delete_by_id(
    ref: RecordRef,
    id: Any,
    *,
    project: Projection = identity,
    notify: NotifyCallback | None = None,
    data_source: str | None = None,
    db: AsyncSession | None = None,
) -> Maybe[Any]:
    """``delete_one`` keyed by primary key, retrieving through ``get_by_id``."""
    repo = get_repository(ref, data_source, db=db)
    criteria = repo.record_type.criteria_for(id)

    async def retrieve() -> Maybe[Any]:
        return await get_by_id(
            repo.record_type, id, project=project, data_source=repo.data_source, db=db
        )

    return await delete_one(
        repo.record_type,
        criteria,
        retrieve,
        notify=notify,
        data_source=repo.data_source,
        db=db,
    )


async def delete_many(
    ref: RecordRef,
    criteria: Any,
    retrieve: Retrieve,
    *,
    notify: NotifyCallback | None = None,
    data_source: str | None = None,
    db: AsyncSession | None = None,
) -> list[Any]:
    """
    Delete the records matched by ``criteria`` and return their snapshots.

    ``retrieve`` returns Maybe of a sequence. When it is absent or empty
    nothing is deleted and an empty list is returned. Otherwise one
    detached notification is scheduled per snapshot after the delete.
    """
    repo = get_repository(ref, data_source, db=db)
    name = repo.record_type.name
    with operation_context("delete_many", name):
        found = await _retrieve(retrieve)
        records = list(found.value_or([]))
        if not records:
            logger.debug(f"No {name} records to delete")
            return []

        deleted = await repo.delete(criteria)
        if notify is not None:
            dispatch_detached(notify, records)

        logger.info(f"Deleted {deleted} {name} record(s)", extra={"rows": deleted})
    return records


async def delete_by_condition(
    ref: RecordRef,
    condition: Any,
    *,
    parameters: Mapping[str, Any] | None = None,
    project: Projection = identity,
    notify: NotifyCallback | None = None,
    lock: LockSpec | LockMode | str | None = DELETE_LOCK,
    data_source: str | None = None,
    db: AsyncSession | None = None,
) -> list[Any]:
    """
    Delete every record matching ``condition`` under a row lock.

    The matching rows are selected first without a lock, detached
    notifications are scheduled for their projections, then the delete
    runs as a separate locked statement with the same condition. Unless
    a session is passed in, select and delete are separate transactions:
    rows inserted in between are deleted without being notified, and
    rows removed in between are notified without being deleted here.

    Returns:
        Projections of the rows selected before the delete

    Raises:
        ValidationError: If the condition is empty
    """
    lock_spec = as_lock_spec(lock)
    repo = get_repository(ref, data_source, db=db)
    name = repo.record_type.name
    if as_optional_condition(condition, parameters) is None:
        raise ValidationError(
            "Conditional delete requires a condition", details={"record_type": name}
        )

    with operation_context("delete_by_condition", name):
        rows = await repo.query().where(condition, parameters).get_many()
        projected = project_many(rows, project)
        if notify is not None:
            dispatch_detached(notify, projected)

        deleted = await repo.query(lock_spec).where(condition, parameters).delete()
        logger.info(
            f"Deleted {deleted} {name} record(s) by condition",
            extra={"selected": len(rows), "rows": deleted, "lock": lock_spec.mode.value},
        )
    return projected
