"""
Unit tests for the repository accessor and operation preconditions.

Store calls are replaced with AsyncMock so these tests verify what an
operation does (or refuses to do) before it reaches the database.
"""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.ext.asyncio import AsyncSession

from crudkit.core.errors import (
    NotFoundError,
    UnknownDataSourceError,
    UnknownRecordTypeError,
    ValidationError,
)
from crudkit.domain.conditions import Expression, FieldMatch, Identity
from crudkit.domain.optional import ABSENT, Present
from crudkit.repos.accessor import Repository, SaveOptions, get_repository
from crudkit.repos.mutations import (
    delete_by_condition,
    delete_many,
    delete_one,
    update,
    update_where,
)
from crudkit.repos.registry import register_record_type
from tests.models import Placement, Widget


@pytest.fixture
def session() -> AsyncMock:
    """Stand-in for a caller-owned session; never reached in these tests."""
    return AsyncMock(spec=AsyncSession)


@pytest.mark.unit
class TestGetRepository:
    """Tests for get_repository."""

    def test_unknown_record_type(self):
        with pytest.raises(UnknownRecordTypeError):
            get_repository("Sprocket")

    def test_unknown_data_source(self):
        with pytest.raises(UnknownDataSourceError, match="'archive' is not registered"):
            get_repository(Widget, "archive")

    def test_record_type_default_data_source(self, session):
        register_record_type(Widget, data_source="inventory")

        repo = get_repository(Widget, db=session)

        assert repo.data_source == "inventory"
        assert repo.is_bound

    def test_explicit_data_source_wins(self, session):
        register_record_type(Widget, data_source="inventory")

        assert get_repository(Widget, "reporting", db=session).data_source == "reporting"

    def test_bind_returns_bound_copy(self, session):
        repo = Repository(register_record_type(Widget))
        bound = repo.bind(session)

        assert not repo.is_bound
        assert bound.is_bound
        assert bound.record_type is repo.record_type


@pytest.mark.unit
class TestCriteriaCondition:
    """Tests for Repository.criteria_condition."""

    def test_identity_and_mapping(self):
        repo = Repository(register_record_type(Widget))

        assert repo.criteria_condition("w-1") == Identity("w-1")
        assert repo.criteria_condition({"color": "red"}) == FieldMatch({"color": "red"})

    def test_identity_list_becomes_in_clause(self):
        repo = Repository(register_record_type(Widget))

        condition = repo.criteria_condition(["w-1", "w-2"])

        assert isinstance(condition, Expression)
        sql = str(condition.clause.compile(dialect=postgresql.dialect()))
        assert "widgets.id IN" in sql

    def test_composite_identity_list(self):
        repo = Repository(register_record_type(Placement))

        condition = repo.criteria_condition([("A", 1), ("B", 2)])

        sql = str(condition.clause.compile(dialect=postgresql.dialect()))
        assert "(placements.shelf, placements.slot) IN" in sql

    @pytest.mark.parametrize("criteria", [None, {}, [], set()])
    def test_empty_criteria_rejected(self, criteria):
        repo = Repository(register_record_type(Widget))

        with pytest.raises(ValidationError, match="Criteria must not be empty"):
            repo.criteria_condition(criteria)


@pytest.mark.unit
class TestSaveOptions:
    """Tests for SaveOptions."""

    @pytest.mark.parametrize("chunk", [0, -1, True])
    def test_invalid_chunk(self, chunk):
        with pytest.raises(ValidationError):
            SaveOptions(chunk=chunk)

    def test_defaults(self):
        options = SaveOptions()
        assert options.reload is True
        assert options.chunk is None


@pytest.mark.unit
class TestRepositoryShortCircuits:
    """Tests for calls that never need the store."""

    @pytest.mark.anyio
    async def test_find_by_ids_empty(self):
        repo = Repository(register_record_type(Widget))

        with patch.object(Repository, "session") as session_factory:
            assert await repo.find_by_ids([]) == []

        session_factory.assert_not_called()

    @pytest.mark.anyio
    async def test_save_nothing(self):
        repo = Repository(register_record_type(Widget))

        with patch.object(Repository, "session") as session_factory:
            assert await repo.save([]) == []

        session_factory.assert_not_called()

    @pytest.mark.anyio
    async def test_save_rejects_unknown_attribute(self):
        repo = Repository(register_record_type(Widget))

        with pytest.raises(ValidationError, match="no attribute 'weight'"):
            await repo.save([{"id": "w-9", "name": "x", "weight": 3}])


@pytest.mark.unit
class TestMutationPreconditions:
    """Operations must fail before writing when their preconditions do not hold."""

    @pytest.mark.anyio
    async def test_update_absent_raises_without_writing(self, session):
        retrieve = AsyncMock(return_value=ABSENT)
        notify = AsyncMock()

        with patch.object(Repository, "update", new_callable=AsyncMock) as repo_update:
            with pytest.raises(NotFoundError):
                await update(Widget, "w-9", {"name": "x"}, retrieve, notify=notify, db=session)

        repo_update.assert_not_called()
        notify.assert_not_called()
        retrieve.assert_awaited_once()

    @pytest.mark.anyio
    async def test_update_retrieves_twice_and_notifies_snapshot(self, session):
        retrieve = AsyncMock(side_effect=[Present("before"), Present("after")])
        notify = AsyncMock()

        with patch.object(Repository, "update", new_callable=AsyncMock) as repo_update:
            result = await update(
                Widget, "w-1", {"name": "x"}, retrieve, notify=notify, db=session
            )

        assert result == Present("after")
        assert retrieve.await_count == 2
        repo_update.assert_awaited_once_with("w-1", {"name": "x"})
        notify.assert_awaited_once_with("before")

    @pytest.mark.anyio
    async def test_update_accepts_sync_retrieve(self, session):
        with patch.object(Repository, "update", new_callable=AsyncMock):
            result = await update(
                Widget, "w-1", {"name": "x"}, lambda: Present("same"), db=session
            )

        assert result == Present("same")

    @pytest.mark.anyio
    async def test_retrieve_must_return_maybe(self, session):
        with pytest.raises(ValidationError, match="must return a Maybe"):
            await update(Widget, "w-1", {"name": "x"}, AsyncMock(return_value=None), db=session)

    @pytest.mark.anyio
    async def test_delete_one_absent_skips_delete(self, session):
        notify = AsyncMock()

        with patch.object(Repository, "delete", new_callable=AsyncMock) as repo_delete:
            result = await delete_one(
                Widget, "w-9", AsyncMock(return_value=ABSENT), notify=notify, db=session
            )

        assert result is ABSENT
        repo_delete.assert_not_called()
        notify.assert_not_called()

    @pytest.mark.anyio
    @pytest.mark.parametrize("found", [ABSENT, Present([])])
    async def test_delete_many_nothing_found(self, session, found):
        with patch.object(Repository, "delete", new_callable=AsyncMock) as repo_delete:
            result = await delete_many(
                Widget, ["w-1"], AsyncMock(return_value=found), notify=AsyncMock(), db=session
            )

        assert result == []
        repo_delete.assert_not_called()

    @pytest.mark.anyio
    @pytest.mark.parametrize("condition", [None, {}])
    async def test_bulk_operations_require_condition(self, session, condition):
        with pytest.raises(ValidationError):
            await delete_by_condition(Widget, condition, db=session)
        with pytest.raises(ValidationError):
            await update_where(Widget, condition, {"size": 1}, db=session)
