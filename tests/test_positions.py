"""Tests for sibling-group position assignment (outline/positions.py)."""

from __future__ import annotations

import pytest

from actionflow.outline.positions import Placement, PositionManager, Slot, has_ties


def _slots(*pairs: tuple[str, int]) -> list[Slot]:
    return [Slot(item_id, position) for item_id, position in pairs]


@pytest.fixture
def pm() -> PositionManager:
    return PositionManager(stride=1000)


class TestAssignPosition:
    def test_empty_group_starts_at_zero(self, pm: PositionManager) -> None:
        placement = pm.assign_position(None, [], None, "a")
        assert placement.positions == {"a": 0}
        assert placement.renumbered == {}

    def test_append_adds_one_stride(self, pm: PositionManager) -> None:
        placement = pm.assign_position(None, _slots(("a", 0), ("b", 1000)), None, "x")
        assert placement.position == 2000
        assert placement.changes() == {"x": 2000}

    def test_prepend_goes_below_first(self, pm: PositionManager) -> None:
        placement = pm.assign_position(None, _slots(("a", 0), ("b", 1000)), 0, "x")
        assert placement.position == -1000

    def test_insert_between_takes_midpoint(self, pm: PositionManager) -> None:
        placement = pm.assign_position(None, _slots(("a", 0), ("b", 1000)), 1, "x")
        assert placement.position == 500
        assert placement.renumbered == {}

    def test_out_of_range_index_is_clamped(self, pm: PositionManager) -> None:
        siblings = _slots(("a", 0), ("b", 1000))
        assert pm.assign_position(None, siblings, 99, "x").position == 2000
        assert pm.assign_position(None, siblings, -5, "x").position == -1000

    def test_exhausted_gap_renumbers_group(self, pm: PositionManager) -> None:
        placement = pm.assign_position("p", _slots(("a", 0), ("b", 1)), 1, "x")
        assert placement.positions == {"x": 1000}
        assert placement.renumbered == {"b": 2000}
        assert placement.changes() == {"b": 2000, "x": 1000}

    def test_ties_force_renumber(self, pm: PositionManager) -> None:
        placement = pm.assign_position(None, _slots(("a", 5), ("b", 5)), None, "x")
        assert placement.positions == {"x": 2000}
        assert placement.renumbered == {"a": 0, "b": 1000}

    def test_repeated_midpoints_stay_strictly_ordered(self, pm: PositionManager) -> None:
        siblings = _slots(("a", 0), ("b", 1000))
        for i in range(20):
            placement = pm.assign_position(None, siblings, 1, f"x{i}")
            updated = {s.id: s.position for s in siblings}
            updated.update(placement.changes())
            siblings = sorted(
                [Slot(item_id, pos) for item_id, pos in updated.items()],
                key=lambda s: s.position,
            )
            assert siblings[1].id == f"x{i}"
            assert not has_ties(siblings)


class TestAssignRun:
    def test_run_keeps_order_inside_gap(self, pm: PositionManager) -> None:
        placement = pm.assign_run(None, _slots(("a", 0), ("b", 1000)), 1, ["x", "y"])
        assert list(placement.positions) == ["x", "y"]
        assert placement.positions == {"x": 333, "y": 666}

    def test_empty_run_is_noop(self, pm: PositionManager) -> None:
        assert pm.assign_run(None, _slots(("a", 0)), 0, []) == Placement()

    def test_overlap_with_siblings_rejected(self, pm: PositionManager) -> None:
        with pytest.raises(ValueError, match="already in the sibling group"):
            pm.assign_run(None, _slots(("a", 0)), 0, ["a"])

    def test_duplicate_items_rejected(self, pm: PositionManager) -> None:
        with pytest.raises(ValueError, match="Duplicate"):
            pm.assign_run(None, [], 0, ["x", "x"])


class TestRenumberAndNormalize:
    def test_stride_must_be_at_least_two(self) -> None:
        with pytest.raises(ValueError):
            PositionManager(stride=1)

    def test_renumber_uses_stride(self) -> None:
        assert PositionManager(stride=10).renumber(["a", "b", "c"]) == [("a", 0), ("b", 10), ("c", 20)]

    def test_normalize_without_ties_is_empty(self, pm: PositionManager) -> None:
        assert pm.normalize(_slots(("a", 3), ("b", 7))) == {}

    def test_normalize_resolves_ties(self, pm: PositionManager) -> None:
        assert pm.normalize(_slots(("a", 0), ("b", 0), ("c", 0))) == {"b": 1000, "c": 2000}

    def test_has_ties(self) -> None:
        assert has_ties(_slots(("a", 1), ("b", 1)))
        assert not has_ties(_slots(("a", 1), ("b", 2)))
        assert not has_ties([])
