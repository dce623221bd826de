"""
Repository accessor.

``get_repository`` binds a record type to a data source and returns a
``Repository``: the collection handle every read and mutating operation
goes through. A repository either owns its sessions (one committed
session scope per store call) or is bound to a caller's session, in
which case it flushes but never commits.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select, tuple_
from sqlalchemy.ext.asyncio import AsyncSession

from crudkit.core.db import get_async_engine, session_scope
from crudkit.core.errors import ValidationError
from crudkit.core.observability import store_metrics
from crudkit.domain.conditions import Condition, Expression, Identity, as_optional_condition
from crudkit.domain.locking import LockSpec, as_lock_spec
from crudkit.domain.optional import Maybe
from crudkit.repos.optimistic_lock import stale_data_as_conflict
from crudkit.repos.predicates import OrderBySpec, apply_condition
from crudkit.repos.query_builder import LockedQuery
from crudkit.repos.registry import RecordRef, RecordType, resolve_record_type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SaveOptions:
    """
    Options for ``Repository.save``.

    Attributes:
        reload: Refresh each saved record so server-side defaults are visible
        chunk: Flush in batches of this many records (None flushes once)
    """

    reload: bool = True
    chunk: int | None = None

    def __post_init__(self) -> None:
        if self.chunk is not None and (isinstance(self.chunk, bool) or self.chunk <= 0):
            raise ValidationError("chunk must be a positive integer", details={"chunk": self.chunk})


def _chunks(items: list[Any], size: int | None) -> Iterable[list[Any]]:
    if not size:
        yield items
        return
    for start in range(0, len(items), size):
        yield items[start : start + size]


class Repository:
    """Collection handle for one record type within one data source."""

    def __init__(
        self,
        record_type: RecordType,
        data_source: str | None = None,
        db: AsyncSession | None = None,
    ):
        self.record_type = record_type
        self.data_source = data_source
        self._db = db

    def __repr__(self) -> str:
        return (
            f"<Repository(record_type={self.record_type.name}, data_source={self.data_source}, "
            f"bound={self._db is not None})>"
        )

    @property
    def is_bound(self) -> bool:
        return self._db is not None

    def bind(self, db: AsyncSession) -> Repository:
        """Return a copy that runs every store call inside ``db``."""
        return Repository(self.record_type, self.data_source, db)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Session for one store call: the bound one, or a fresh committed scope."""
        with stale_data_as_conflict(self.record_type):
            if self._db is not None:
                yield self._db
            else:
                async with session_scope(self.data_source) as db:
                    yield db

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    def criteria_condition(self, criteria: Any) -> Condition:
        """
        Normalize update/delete criteria.

        A list/set of identities becomes a primary-key IN; everything
        else goes through ``as_condition``. Empty criteria are rejected so
        a typo never turns into "every row".

        Raises:
            ValidationError: If the criteria are empty or malformed
        """
        is_collection = isinstance(criteria, (list, set, frozenset))
        if is_collection and criteria and not any(isinstance(c, Mapping) for c in criteria):
            return Expression(self._ids_clause(criteria))
        condition = None if is_collection and not criteria else as_optional_condition(criteria)
        if condition is None:
            raise ValidationError(
                "Criteria must not be empty",
                details={"record_type": self.record_type.name},
            )
        return condition

    def _ids_clause(self, ids: Iterable[Any]) -> Any:
        ids = list(ids)
        columns = self.record_type.primary_key
        if self.record_type.is_composite:
            return tuple_(*columns).in_(ids)
        return columns[0].in_(ids)

    # ------------------------------------------------------------------
    # Query builders
    # ------------------------------------------------------------------

    def query(self, lock: LockSpec | None = None) -> LockedQuery:
        """A builder scoped to this collection, optionally row-locked. Executes nothing."""
        return LockedQuery(
            record_type=self.record_type,
            session_factory=self.session,
            lock=as_lock_spec(lock),
        )

    # ------------------------------------------------------------------
    # Store primitives
    # ------------------------------------------------------------------

    async def find(
        self,
        condition: Any = None,
        order_by: OrderBySpec | None = None,
        take: int | None = None,
        skip: int | None = None,
        parameters: Mapping[str, Any] | None = None,
    ) -> list[Any]:
        query = self.query().where(condition, parameters).order_by(order_by).take(take).skip(skip)
        return await query.get_many()

    async def find_one(
        self,
        condition: Any,
        order_by: OrderBySpec | None = None,
        parameters: Mapping[str, Any] | None = None,
    ) -> Maybe[Any]:
        """
        First record matching ``condition``.

        Identity conditions go straight to ``AsyncSession.get``.
        """
        resolved = as_optional_condition(condition, parameters)
        if isinstance(resolved, Identity):
            return await self.get(resolved.value)
        return await self.query().where(resolved, parameters).order_by(order_by).get_one()

    async def get(self, identity: Any) -> Maybe[Any]:
        """Primary-key lookup."""
        self.record_type.criteria_for(identity)
        async with self.session() as db:
            with store_metrics.track("get", self.record_type.name):
                record = await db.get(self.record_type.model, identity, populate_existing=True)
        return Maybe.of(record)

    async def count(
        self, condition: Any = None, parameters: Mapping[str, Any] | None = None
    ) -> int:
        return await self.query().where(condition, parameters).get_count()

    async def find_by_ids(self, ids: Iterable[Any], extra: Any = None) -> list[Any]:
        """Records whose primary key is in ``ids``, optionally narrowed by ``extra``."""
        ids = list(dict.fromkeys(ids))
        if not ids:
            return []
        stmt = select(self.record_type.model).where(self._ids_clause(ids))
        stmt = apply_condition(stmt, self.record_type, as_optional_condition(extra))
        stmt = stmt.execution_options(populate_existing=True)
        async with self.session() as db:
            with store_metrics.track("select_by_ids", self.record_type.name):
                result = await db.execute(stmt)
            return list(result.scalars().all())

    def _instantiate(self, record: Any) -> Any:
        model = self.record_type.model
        if isinstance(record, model):
            return record
        if isinstance(record, Mapping):
            for name in record:
                if name not in self.record_type.mapper.attrs:
                    raise ValidationError(
                        f"{self.record_type.name} has no attribute '{name}'",
                        details={"record_type": self.record_type.name, "attribute": name},
                    )
            return model(**record)
        raise ValidationError(
            f"Cannot save {type(record).__name__} as {self.record_type.name}",
            details={"record_type": self.record_type.name},
        )

    async def save(
        self, records: Sequence[Any], options: SaveOptions | None = None
    ) -> list[Any]:
        """
        Insert (or merge pending changes of) records and return them as stored.

        Records may be model instances or attribute mappings.
        """
        options = options or SaveOptions()
        instances = [self._instantiate(record) for record in records]
        if not instances:
            return []

        async with self.session() as db:
            for batch in _chunks(instances, options.chunk):
                db.add_all(batch)
                with store_metrics.track("save", self.record_type.name):
                    await db.flush()
            if options.reload:
                for instance in instances:
                    await db.refresh(instance)

        logger.debug(
            f"Saved {len(instances)} {self.record_type.name} record(s)",
            extra={"record_type": self.record_type.name, "count": len(instances)},
        )
        return instances

    async def update(self, criteria: Any, patch: Mapping[str, Any]) -> int:
        """Apply ``patch`` to every row matching ``criteria``; returns the row count."""
        return await self.query().where(self.criteria_condition(criteria)).update(patch)

    async def delete(self, criteria: Any) -> int:
        """Delete every row matching ``criteria``; returns the row count."""
        return await self.query().where(self.criteria_condition(criteria)).delete()


def get_repository(
    ref: RecordRef,
    data_source: str | None = None,
    *,
    db: AsyncSession | None = None,
) -> Repository:
    """
    Resolve ``ref`` and bind it to a data source.

    Args:
        ref: Mapped class, Table, registered name or RecordType
        data_source: Named data source; defaults to the record type's own,
            then to the default data source
        db: Run every store call inside this session instead

    Returns:
        Repository handle (cheap; safe to call repeatedly)

    Raises:
        UnknownRecordTypeError: If ``ref`` cannot be resolved
        UnknownDataSourceError: If the data source is unknown
    """
    record_type = resolve_record_type(ref)
    source = data_source or record_type.data_source
    if db is None:
        # Fail fast on unknown names rather than at the first store call
        get_async_engine(source)
    return Repository(record_type, source, db)
