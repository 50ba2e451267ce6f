"""Tests for the per-run variable store."""

import pytest

from core.constants import CURRENT_INDEX, CURRENT_ITEM
from workflow.variables import VariableStore


@pytest.mark.unit
class TestVariableStore:
    def test_last_write_wins_and_remembers_step(self):
        store = VariableStore()
        store.set("count", 1, step_index=1)
        store.set("count", 2, step_index=3)
        assert store["count"] == 2
        assert store.written_by("count") == 3

    def test_seeded_values_have_no_step(self):
        store = VariableStore(initial={"trigger": {}})
        assert store.written_by("trigger") is None

    def test_get_default(self):
        assert VariableStore().get("missing", "x") == "x"

    def test_missing_raises_key_error(self):
        with pytest.raises(KeyError):
            VariableStore().entry("missing")

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError):
            VariableStore().set("", 1)


@pytest.mark.unit
class TestLoopScope:
    def test_binds_item_and_index(self):
        parent = VariableStore(initial={"customers": ["A", "B"]})
        scope = parent.loop_scope("B", 1)
        assert scope[CURRENT_ITEM] == "B"
        assert scope[CURRENT_INDEX] == 1
        assert scope["customers"] == ["A", "B"]
        assert scope.depth == 1

    def test_writes_stay_in_scope(self):
        parent = VariableStore(initial={"x": 1})
        scope = parent.loop_scope("item", 0)
        scope.set("x", 99)
        scope.set("inner", True)
        assert scope["x"] == 99
        assert parent["x"] == 1
        assert "inner" not in parent
        assert CURRENT_ITEM not in parent

    def test_nested_scopes_shadow_current_item(self):
        outer = VariableStore().loop_scope("outer", 0)
        inner = outer.loop_scope("inner", 0)
        assert inner[CURRENT_ITEM] == "inner"
        assert outer[CURRENT_ITEM] == "outer"

    def test_snapshot_flattens_visible_names(self):
        parent = VariableStore(initial={"a": 1, "b": 2})
        scope = parent.loop_scope("i", 0)
        scope.set("b", 3)
        snapshot = scope.snapshot()
        assert snapshot["a"] == 1
        assert snapshot["b"] == 3
        assert sorted(scope.names()) == sorted(["a", "b", CURRENT_ITEM, CURRENT_INDEX])
