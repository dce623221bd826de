"""Unit tests for the Maybe container."""

import pytest

from crudkit.core.errors import NotFoundError
from crudkit.domain.optional import ABSENT, Absent, Maybe, Present


@pytest.mark.unit
class TestMaybe:
    """Tests for Present / Absent."""

    def test_of_wraps_none_as_absent(self):
        assert Maybe.of(None) is ABSENT
        assert Maybe.of(0) == Present(0)

    def test_map_applies_only_when_present(self):
        assert Present(2).map(lambda v: v * 10) == Present(20)
        assert ABSENT.map(lambda v: v * 10) is ABSENT

    def test_value_or(self):
        assert Present("a").value_or("b") == "a"
        assert ABSENT.value_or("b") == "b"

    def test_value_or_raise(self):
        assert Present(1).value_or_raise(NotFoundError("missing")) == 1
        with pytest.raises(NotFoundError):
            ABSENT.value_or_raise(NotFoundError("missing"))
        with pytest.raises(NotFoundError):
            ABSENT.value_or_raise(lambda: NotFoundError("missing"))

    def test_to_list(self):
        assert Present(1).to_list() == [1]
        assert ABSENT.to_list() == []

    def test_truthiness_is_undefined(self):
        with pytest.raises(TypeError):
            bool(Present(1))
        with pytest.raises(TypeError):
            bool(ABSENT)

    def test_pattern_matching(self):
        def describe(found: Maybe[str]) -> str:
            match found:
                case Present(value):
                    return f"found {value}"
                case Absent():
                    return "missing"
            return "unreachable"

        assert describe(Present("w-1")) == "found w-1"
        assert describe(ABSENT) == "missing"

    def test_absent_repr(self):
        assert repr(ABSENT) == "ABSENT"
