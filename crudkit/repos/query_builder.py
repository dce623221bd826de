"""
Locked query builder.

``LockedQuery`` wraps a SELECT/UPDATE/DELETE against one record type
with an optional row lock. Builder methods never touch the store; only
``get_one``, ``get_many``, ``get_count``, ``update`` and ``delete``
execute, each inside one session scope of the owning repository.

Lock semantics:
- pessimistic read/write: ``FOR SHARE`` / ``FOR UPDATE`` on selects; for
  updates and deletes the matching rows are first selected with the lock,
  then the DML runs in the same session
- optimistic: ``get_one`` verifies the fetched record's version;
  ``update``/``delete`` only touch rows still at the expected version and
  raise ConcurrentModificationError when the rows exist at another one
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from crudkit.core.errors import ConfigurationError, ValidationError
from crudkit.core.observability import store_metrics
from crudkit.domain.conditions import Condition, all_of, any_of, as_optional_condition
from crudkit.domain.enums import LockMode
from crudkit.domain.locking import NO_LOCK, LockSpec, VersionToken, as_lock_spec
from crudkit.domain.optional import Maybe
from crudkit.repos.optimistic_lock import (
    ConcurrentModificationError,
    check_record_version,
    version_bump,
    version_guard,
)
from crudkit.repos.predicates import (
    OrderBySpec,
    apply_condition,
    apply_order_by,
    apply_pagination,
    validate_pagination,
)
from crudkit.repos.registry import RecordRef, RecordType

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


@dataclass(frozen=True)
class LockedQuery:
    """Generative query builder bound to a record type, a session source and a lock."""

    record_type: RecordType
    session_factory: SessionFactory
    lock: LockSpec = NO_LOCK
    condition: Condition | None = None
    parameters: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    order: OrderBySpec | None = None
    limit: int | None = None
    offset: int | None = None

    # ------------------------------------------------------------------
    # Builder
    # ------------------------------------------------------------------

    def _with_parameters(self, parameters: Mapping[str, Any] | None) -> Mapping[str, Any]:
        if not parameters:
            return self.parameters
        return MappingProxyType({**self.parameters, **parameters})

    def where(self, condition: Any, parameters: Mapping[str, Any] | None = None) -> LockedQuery:
        """
        Replace the filter. None or an empty mapping matches every row.

        A string given with ``parameters`` is applied as SQL text.
        """
        return replace(
            self,
            condition=as_optional_condition(condition, parameters),
            parameters=self._with_parameters(parameters),
        )

    def and_where(self, condition: Any, parameters: Mapping[str, Any] | None = None) -> LockedQuery:
        extra = as_optional_condition(condition, parameters)
        if extra is None:
            return replace(self, parameters=self._with_parameters(parameters))
        combined = extra if self.condition is None else all_of(self.condition, extra)
        return replace(self, condition=combined, parameters=self._with_parameters(parameters))

    def or_where(self, condition: Any, parameters: Mapping[str, Any] | None = None) -> LockedQuery:
        extra = as_optional_condition(condition, parameters)
        if extra is None or self.condition is None:
            # OR with "everything" is everything
            return replace(self, condition=None, parameters=self._with_parameters(parameters))
        return replace(
            self,
            condition=any_of(self.condition, extra),
            parameters=self._with_parameters(parameters),
        )

    def order_by(self, spec: OrderBySpec | None) -> LockedQuery:
        return replace(self, order=spec)

    def take(self, n: int | None) -> LockedQuery:
        validate_pagination(n, None)
        return replace(self, limit=n)

    def skip(self, n: int | None) -> LockedQuery:
        validate_pagination(None, n)
        return replace(self, offset=n)

    def set_lock(
        self,
        lock: LockSpec | LockMode | str | None,
        version: VersionToken | None = None,
    ) -> LockedQuery:
        if isinstance(lock, LockSpec):
            return replace(self, lock=as_lock_spec(lock))
        return replace(self, lock=as_lock_spec(lock_mode=lock, lock_version=version))

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _locked(self, stmt: Any) -> Any:
        if self.lock.mode == LockMode.PESSIMISTIC_READ:
            return stmt.with_for_update(read=True)
        if self.lock.mode == LockMode.PESSIMISTIC_WRITE:
            return stmt.with_for_update()
        return stmt

    def select_statement(self) -> Any:
        """SELECT with filter, ordering, pagination and lock clause applied."""
        model = self.record_type.model
        stmt = select(model).execution_options(populate_existing=True)
        stmt = apply_condition(stmt, self.record_type, self.condition, self.parameters)
        stmt = apply_order_by(stmt, self.record_type, self.order)
        stmt = apply_pagination(stmt, self.limit, self.offset)
        return self._locked(stmt)

    def count_statement(self) -> Any:
        # Row locks cannot be combined with aggregates; counts run unlocked.
        stmt = select(func.count()).select_from(self.record_type.model)
        return apply_condition(stmt, self.record_type, self.condition, self.parameters)

    def _lock_rows_statement(self) -> Any:
        stmt = select(*self.record_type.primary_key)
        stmt = apply_condition(stmt, self.record_type, self.condition, self.parameters)
        if self.lock.mode == LockMode.PESSIMISTIC_READ:
            return stmt.with_for_update(read=True)
        return stmt.with_for_update()

    def _guarded(self, stmt: Any) -> Any:
        stmt = apply_condition(stmt, self.record_type, self.condition, self.parameters)
        if self.lock.is_optimistic:
            stmt = stmt.where(version_guard(self.record_type, self.lock))
        return stmt.execution_options(synchronize_session=False)

    def update_statement(self, patch: Mapping[str, Any]) -> Any:
        values = {}
        for name, value in patch.items():
            self.record_type.attribute(name)
            values[name] = value
        if self.lock.is_optimistic:
            values.update(version_bump(self.record_type, self.lock))
        return self._guarded(update(self.record_type.model).values(**values))

    def delete_statement(self) -> Any:
        return self._guarded(delete(self.record_type.model))

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _session(self) -> AbstractAsyncContextManager[AsyncSession]:
        return self.session_factory()

    async def get_one(self) -> Maybe[Any]:
        """
        Fetch the first matching record.

        Raises:
            ValidationError: If take/skip were set (single-result reads are unpaginated)
            ConcurrentModificationError: Under an optimistic lock, on version mismatch
        """
        if self.limit or self.offset:
            raise ValidationError(
                "take/skip cannot be applied to a single-result read",
                details={"take": self.limit, "skip": self.offset},
            )
        stmt = self.select_statement().limit(1)
        async with self._session() as db:
            with store_metrics.track("select_one", self.record_type.name):
                result = await db.execute(stmt)
            record = result.scalars().first()

        if record is not None and self.lock.is_optimistic:
            check_record_version(self.record_type, record, self.lock)
        return Maybe.of(record)

    async def get_many(self) -> list[Any]:
        """
        Fetch every matching record, fully materialised.

        Raises:
            ConfigurationError: Under an optimistic lock
        """
        if self.lock.is_optimistic:
            raise ConfigurationError(
                "Optimistic lock can only be used with single-result reads",
                details={"record_type": self.record_type.name},
            )
        async with self._session() as db:
            with store_metrics.track("select_many", self.record_type.name):
                result = await db.execute(self.select_statement())
            return list(result.scalars().all())

    async def get_count(self) -> int:
        async with self._session() as db:
            with store_metrics.track("count", self.record_type.name):
                result = await db.execute(self.count_statement())
            return int(result.scalar_one())

    async def _write(self, label: str, stmt: Any) -> int:
        async with self._session() as db:
            if self.lock.is_pessimistic:
                with store_metrics.track("lock_rows", self.record_type.name):
                    await db.execute(self._lock_rows_statement())

            with store_metrics.track(label, self.record_type.name):
                result = await db.execute(stmt)
            rowcount = result.rowcount

            if rowcount == 0 and self.lock.is_optimistic:
                with store_metrics.track("count", self.record_type.name):
                    existing = (await db.execute(self.count_statement())).scalar_one()
                if existing:
                    raise ConcurrentModificationError(
                        entity_type=self.record_type.name,
                        entity_id=None,
                        expected_version=self.lock.version,
                        actual_version=None,
                    )
            await db.flush()

        logger.debug(
            f"{label} affected {rowcount} {self.record_type.name} row(s)",
            extra={"record_type": self.record_type.name, "lock": self.lock.mode.value},
        )
        return rowcount

    async def update(self, patch: Mapping[str, Any]) -> int:
        """
        Apply ``patch`` to every matching row.

        Returns:
            Number of rows updated

        Raises:
            ValidationError: If the patch is empty or names unknown attributes
            ConcurrentModificationError: Under an optimistic lock, on version mismatch
        """
        if not patch:
            raise ValidationError(
                "Update patch is empty", details={"record_type": self.record_type.name}
            )
        return await self._write("update", self.update_statement(patch))

    async def delete(self) -> int:
        """
        Delete every matching row.

        Returns:
            Number of rows deleted
        """
        return await self._write("delete", self.delete_statement())


def build_query(
    ref: RecordRef,
    lock: LockSpec | LockMode | str | None = None,
    *,
    lock_mode: LockMode | str | None = None,
    lock_version: VersionToken | None = None,
    data_source: str | None = None,
    db: AsyncSession | None = None,
) -> LockedQuery:
    """
    Build a query for ``ref`` with an optional row lock.

    Nothing is executed. The lock may be passed as a LockSpec or as the
    ``lock_mode``/``lock_version`` pair.

    Raises:
        ConfigurationError: If an optimistic lock has no version token
        UnknownRecordTypeError: If ``ref`` cannot be resolved
    """
    from crudkit.repos.accessor import get_repository

    spec = as_lock_spec(lock, lock_mode=lock_mode, lock_version=lock_version)
    return get_repository(ref, data_source, db=db).query(spec)


def select_query(
    ref: RecordRef,
    where: Any,
    parameters: Mapping[str, Any] | None = None,
    lock: LockSpec | LockMode | str | None = None,
    *,
    lock_mode: LockMode | str | None = None,
    lock_version: VersionToken | None = None,
    data_source: str | None = None,
    db: AsyncSession | None = None,
) -> LockedQuery:
    """``build_query`` with a filter already applied."""
    query = build_query(
        ref,
        lock,
        lock_mode=lock_mode,
        lock_version=lock_version,
        data_source=data_source,
        db=db,
    )
    return query.where(where, parameters)
