"""Tests for the generic hierarchy manager (outline/hierarchy.py)."""

from __future__ import annotations

from typing import Optional

import pytest

from actionflow.errors import (
    CycleError,
    NoParentError,
    NoPrecedingSiblingError,
    NotFoundError,
    SelfReferenceError,
)
from actionflow.outline.hierarchy import HierarchyManager
from actionflow.outline.model import Action, Folder, Project
from actionflow.outline.positions import PositionManager
from actionflow.outline.session import ACTION_ACCESSORS, PROJECT_ACCESSORS


@pytest.fixture
def tree() -> HierarchyManager[Action]:
    return HierarchyManager({}, ACTION_ACCESSORS, PositionManager(), "action")


def _add(tree: HierarchyManager[Action], node_id: str, parent_id: Optional[str] = None, index: Optional[int] = None) -> Action:
    action = Action(id=node_id, title=node_id)
    tree.place(action, parent_id, index)
    return action


def _ids(tree: HierarchyManager[Action], parent_id: Optional[str] = None) -> list[str]:
    return [a.id for a in tree.children(parent_id)]


class TestPlace:
    def test_appends_in_order(self, tree: HierarchyManager[Action]) -> None:
        for node_id in ("a", "b", "c"):
            _add(tree, node_id)
        assert _ids(tree) == ["a", "b", "c"]
        assert [a.position for a in tree.children(None)] == [0, 1000, 2000]

    def test_insert_at_index(self, tree: HierarchyManager[Action]) -> None:
        _add(tree, "a")
        _add(tree, "b")
        _add(tree, "x", index=0)
        _add(tree, "y", index=2)
        assert _ids(tree) == ["x", "a", "y", "b"]

    def test_missing_parent_leaves_arena_untouched(self, tree: HierarchyManager[Action]) -> None:
        with pytest.raises(NotFoundError):
            _add(tree, "a", parent_id="ghost")
        assert tree.nodes == {}

    def test_duplicate_id_rejected(self, tree: HierarchyManager[Action]) -> None:
        _add(tree, "a")
        with pytest.raises(ValueError, match="already exists"):
            _add(tree, "a")


class TestReparent:
    def test_moves_whole_subtree(self, tree: HierarchyManager[Action]) -> None:
        _add(tree, "a")
        _add(tree, "a1", parent_id="a")
        _add(tree, "b")

        result = tree.reparent("a", "b")

        assert result.old_parent_id is None
        assert result.parent_id == "b"
        assert _ids(tree) == ["b"]
        assert _ids(tree, "b") == ["a"]
        assert _ids(tree, "a") == ["a1"]
        assert tree.depth("a1") == 2
        assert tree.ancestors("a1") == ["a", "b"]
        assert tree.is_descendant("a1", "b")
        assert not tree.is_descendant("b", "a1")

    def test_self_parent_is_a_cycle(self, tree: HierarchyManager[Action]) -> None:
        _add(tree, "a")
        with pytest.raises(SelfReferenceError):
            tree.reparent("a", "a")
        with pytest.raises(CycleError):
            tree.reparent("a", "a")

    def test_into_own_descendant_rejected(self, tree: HierarchyManager[Action]) -> None:
        _add(tree, "a")
        _add(tree, "b", parent_id="a")
        _add(tree, "c", parent_id="b")
        before = {n.id: (n.parent_id, n.position) for n in tree.nodes.values()}

        with pytest.raises(CycleError, match="cycle"):
            tree.reparent("a", "c")

        assert {n.id: (n.parent_id, n.position) for n in tree.nodes.values()} == before

    def test_unknown_ids(self, tree: HierarchyManager[Action]) -> None:
        _add(tree, "a")
        with pytest.raises(NotFoundError):
            tree.reparent("ghost", None)
        with pytest.raises(NotFoundError):
            tree.reparent("a", "ghost")

    def test_move_third_to_front(self, tree: HierarchyManager[Action]) -> None:
        for node_id in ("t1", "t2", "t3"):
            _add(tree, node_id)
        result = tree.move("t3", 0)
        assert _ids(tree) == ["t3", "t1", "t2"]
        assert result.changed == {"t3": -1000}

    def test_move_to_current_index_changes_nothing(self, tree: HierarchyManager[Action]) -> None:
        for node_id in ("t1", "t2", "t3"):
            _add(tree, node_id)
        result = tree.move("t2", 1)
        assert result.changed == {}
        assert _ids(tree) == ["t1", "t2", "t3"]

    def test_move_down(self, tree: HierarchyManager[Action]) -> None:
        for node_id in ("t1", "t2", "t3"):
            _add(tree, node_id)
        tree.move("t1", 2)
        assert _ids(tree) == ["t2", "t3", "t1"]


class TestIndentOutdent:
    def test_indent_under_previous_sibling(self, tree: HierarchyManager[Action]) -> None:
        _add(tree, "a")
        _add(tree, "a1", parent_id="a")
        _add(tree, "b")

        tree.indent("b")

        assert _ids(tree) == ["a"]
        assert _ids(tree, "a") == ["a1", "b"]

    def test_indent_first_child_rejected(self, tree: HierarchyManager[Action]) -> None:
        _add(tree, "a")
        _add(tree, "b")
        with pytest.raises(NoPrecedingSiblingError):
            tree.indent("a")

    def test_outdent_lands_after_parent(self, tree: HierarchyManager[Action]) -> None:
        _add(tree, "a")
        _add(tree, "a1", parent_id="a")
        _add(tree, "a2", parent_id="a")
        _add(tree, "b")

        tree.outdent("a1")

        assert _ids(tree) == ["a", "a1", "b"]
        assert _ids(tree, "a") == ["a2"]

    def test_outdent_root_rejected(self, tree: HierarchyManager[Action]) -> None:
        _add(tree, "a")
        with pytest.raises(NoParentError):
            tree.outdent("a")

    def test_indent_then_outdent_restores_order(self, tree: HierarchyManager[Action]) -> None:
        for node_id in ("a", "b", "c"):
            _add(tree, node_id)
        tree.indent("b")
        assert _ids(tree) == ["a", "c"]
        tree.outdent("b")
        assert _ids(tree) == ["a", "b", "c"]
        assert tree.integrity_problems() == []


class TestReorder:
    def test_listed_ids_come_first(self, tree: HierarchyManager[Action]) -> None:
        for node_id in ("a", "b", "c"):
            _add(tree, node_id)
        changed = tree.reorder(None, ["c", "a"])
        assert _ids(tree) == ["c", "a", "b"]
        assert [n.position for n in tree.children(None)] == [0, 1000, 2000]
        assert changed == {"c": 0, "a": 1000, "b": 2000}

    def test_foreign_id_rejected(self, tree: HierarchyManager[Action]) -> None:
        _add(tree, "a")
        _add(tree, "a1", parent_id="a")
        with pytest.raises(ValueError, match="not a child"):
            tree.reorder(None, ["a1"])

    def test_duplicate_ids_rejected(self, tree: HierarchyManager[Action]) -> None:
        _add(tree, "a")
        with pytest.raises(ValueError, match="Duplicate"):
            tree.reorder(None, ["a", "a"])


class TestRemove:
    def _build(self, tree: HierarchyManager[Action]) -> None:
        _add(tree, "a")
        _add(tree, "b")
        _add(tree, "b1", parent_id="b")
        _add(tree, "b2", parent_id="b")
        _add(tree, "c")

    def test_children_take_the_removed_slot(self, tree: HierarchyManager[Action]) -> None:
        self._build(tree)
        result = tree.remove("b")
        assert result.removed == ["b"]
        assert result.reparented == ["b1", "b2"]
        assert _ids(tree) == ["a", "b1", "b2", "c"]
        assert tree.integrity_problems() == []

    def test_cascade_removes_subtree(self, tree: HierarchyManager[Action]) -> None:
        self._build(tree)
        result = tree.remove("b", cascade=True)
        assert sorted(result.removed) == ["b", "b1", "b2"]
        assert set(tree.nodes) == {"a", "c"}

    def test_descendants_in_display_order(self, tree: HierarchyManager[Action]) -> None:
        self._build(tree)
        _add(tree, "b1x", parent_id="b1")
        assert tree.descendants("b") == ["b1", "b1x", "b2"]


class TestIntegrity:
    def test_corrupt_parent_cycle_is_reported(self, tree: HierarchyManager[Action]) -> None:
        tree.nodes["a"] = Action(id="a", parent_id="b")
        tree.nodes["b"] = Action(id="b", parent_id="a", position=1000)
        problems = tree.integrity_problems()
        assert any("own ancestor" in p for p in problems)
        # ancestor walk terminates on corrupt data
        assert tree.ancestors("a") == ["b"]

    def test_duplicate_positions_reported(self, tree: HierarchyManager[Action]) -> None:
        tree.nodes["a"] = Action(id="a", position=0)
        tree.nodes["b"] = Action(id="b", position=0)
        assert any("duplicate positions" in p for p in tree.integrity_problems())


class TestCrossArenaParents:
    def test_projects_group_by_folder(self) -> None:
        folders = {"f1": Folder(id="f1", name="Work")}
        projects = HierarchyManager(
            {}, PROJECT_ACCESSORS, PositionManager(), "project", parents=folders, parent_kind="folder"
        )
        projects.place(Project(id="p1", name="Alpha"), "f1")
        projects.place(Project(id="p2", name="Beta"), "f1", 0)

        assert [p.id for p in projects.children("f1")] == ["p2", "p1"]
        with pytest.raises(NotFoundError) as excinfo:
            projects.place(Project(id="p3", name="Gamma"), "ghost")
        assert excinfo.value.kind == "folder"

        projects.reparent("p1", None)
        assert projects.nodes["p1"].folder_id is None
        with pytest.raises(NoParentError):
            projects.outdent("p2")
