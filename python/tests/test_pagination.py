"""Tests for keyset pagination helpers and sparse patches."""

import pytest

from chatstore.errors import InvalidArgumentError, StoreErrorCode
from chatstore.services.pagination import (
    CreatedAtCursor,
    clamp_limit,
    cursor_clause,
    decode_cursor,
    encode_cursor,
)
from chatstore.services.patch import UNSET, build_patch


class TestClampLimit:
    @pytest.mark.parametrize(
        "limit,expected",
        [
            (None, 20),
            ("abc", 20),
            (0, 20),
            (-5, 20),
            (True, 20),
            (7, 7),
            ("7", 7),
            (500, 100),
        ],
    )
    def test_clamp(self, limit, expected):
        assert clamp_limit(limit, fallback=20, max_limit=100) == expected

    @pytest.mark.parametrize("limit,expected", [(-5, 1), (0, 50), (None, 50), (999, 200), (30, 30)])
    def test_negative_clamped_for_message_pages(self, limit, expected):
        assert clamp_limit(limit, fallback=50, max_limit=200, clamp_negative=True) == expected


class TestCursor:
    def test_round_trip(self):
        cursor = encode_cursor("2024-01-01T00:00:00.000000Z", "abc")
        assert decode_cursor(cursor) == CreatedAtCursor("2024-01-01T00:00:00.000000Z", "abc")

    def test_absent_cursor_is_first_page(self):
        assert decode_cursor(None) is None
        assert decode_cursor("") is None

    def test_bare_created_at(self):
        assert decode_cursor("2024-01-01T00:00:00.000000Z") == CreatedAtCursor(
            "2024-01-01T00:00:00.000000Z"
        )

    @pytest.mark.parametrize("bad", ["|abc", 42])
    def test_invalid_cursor(self, bad):
        with pytest.raises(InvalidArgumentError) as exc_info:
            decode_cursor(bad)
        assert exc_info.value.code == StoreErrorCode.E_INVALID_CURSOR

    def test_clause_binds_params(self):
        params: dict = {}
        clause = cursor_clause(CreatedAtCursor("t", "i"), params, alias="c")
        assert "c.created_at < :cursor_created_at" in clause
        assert params == {"cursor_created_at": "t", "cursor_id": "i"}

    def test_clause_empty_without_cursor(self):
        params: dict = {}
        assert cursor_clause(None, params) == ""
        assert params == {}


class TestBuildPatch:
    def test_skips_unset(self):
        patch = build_patch({"title": "x", "model": UNSET}, {"title": None, "model": None})
        assert patch.set_clause() == "title = :title"
        assert patch.params == {"title": "x"}

    def test_none_is_a_value(self):
        patch = build_patch({"verbosity": None}, {"verbosity": None})
        assert patch
        assert patch.params == {"verbosity": None}

    def test_converter_applied(self):
        patch = build_patch({"tools_enabled": 1}, {"tools_enabled": bool})
        assert patch.params == {"tools_enabled": True}

    def test_empty_patch_is_falsy(self):
        assert not build_patch({"title": UNSET}, {"title": None})

    def test_unknown_column_rejected(self):
        with pytest.raises(InvalidArgumentError) as exc_info:
            build_patch({"user_id": "x"}, {"title": None})
        assert exc_info.value.code == StoreErrorCode.E_INVALID_FIELD

    def test_unset_is_falsy_singleton(self):
        assert not UNSET
        assert repr(UNSET) == "UNSET"
