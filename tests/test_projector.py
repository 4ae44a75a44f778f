"""Tests for tree projection (outline/projector.py)."""

from __future__ import annotations

import pytest

from actionflow.outline.model import Action, EntityKind, Folder, Project, ProjectType, Tag
from actionflow.outline.positions import PositionManager
from actionflow.outline.session import OutlineComponents
from actionflow.outline.store import OutlineSnapshot


@pytest.fixture
def parts() -> OutlineComponents:
    return OutlineComponents(OutlineSnapshot(), PositionManager())


def _action(parts: OutlineComponents, node_id: str, parent_id: str | None = None, **fields) -> Action:
    action = Action(id=node_id, title=node_id.upper(), **fields)
    parts.hierarchy(EntityKind.ACTION).place(action, parent_id)
    return action


class TestActionTree:
    def test_nesting_order_and_depth(self, parts: OutlineComponents) -> None:
        _action(parts, "a")
        _action(parts, "a1", "a")
        _action(parts, "a2", "a")
        _action(parts, "b")
        parts.hierarchy("action").move("a2", 0)

        roots = parts.projector.project("action")

        assert [r.id for r in roots] == ["a", "b"]
        assert [c.id for c in roots[0].children] == ["a2", "a1"]
        assert [c.depth for c in roots[0].children] == [1, 1]
        assert [n.id for n in roots[0].walk()] == ["a", "a2", "a1"]
        assert roots[0].label == "A"

    def test_blocking_is_attached(self, parts: OutlineComponents) -> None:
        _action(parts, "a")
        _action(parts, "b")
        parts.dependencies.add_block("b", "a")

        roots = {r.id: r for r in parts.projector.project("action")}
        assert roots["b"].blocking is not None
        assert roots["b"].blocking.blocked is True
        assert roots["a"].blocking.blocked is False

        parts.snapshot.actions["a"].complete()
        roots = {r.id: r for r in parts.projector.project("action")}
        assert roots["b"].blocking.blocked is False
        assert roots["b"].blocking.blockers[0].completed is True

    def test_attributes(self, parts: OutlineComponents) -> None:
        _action(parts, "a", flagged=True, due_date="2026-01-01T00:00:00+00:00")
        node = parts.projector.project("action")[0]
        assert node.status == "active"
        assert node.attributes["flagged"] is True
        assert node.attributes["due_date"] == "2026-01-01T00:00:00+00:00"

    def test_orphans_become_roots(self, parts: OutlineComponents) -> None:
        _action(parts, "a")
        parts.snapshot.actions["o"] = Action(id="o", parent_id="ghost", position=500)
        assert [r.id for r in parts.projector.project("action")] == ["a", "o"]

    def test_roots_filter(self, parts: OutlineComponents) -> None:
        _action(parts, "a", flagged=True)
        _action(parts, "a1", "a")
        _action(parts, "b")
        roots = parts.projector.project("action", roots_filter=lambda action: action.flagged)
        assert [r.id for r in roots] == ["a"]
        assert [c.id for c in roots[0].children] == ["a1"]

    def test_subtree(self, parts: OutlineComponents) -> None:
        _action(parts, "a")
        _action(parts, "a1", "a")
        _action(parts, "a1x", "a1")
        node = parts.projector.subtree("action", "a1")
        assert node.depth == 1
        assert [c.id for c in node.children] == ["a1x"]
        assert node.children[0].depth == 2

    def test_empty_outline(self, parts: OutlineComponents) -> None:
        assert parts.projector.project("action") == []


class TestFolderAndTagTrees:
    def test_folders_carry_their_projects(self, parts: OutlineComponents) -> None:
        folders = parts.hierarchy(EntityKind.FOLDER)
        folders.place(Folder(id="f1", name="Work"))
        folders.place(Folder(id="f2", name="Clients"), "f1")
        projects = parts.hierarchy(EntityKind.PROJECT)
        projects.place(Project(id="p1", name="Launch", type=ProjectType.SEQUENTIAL), "f1")
        projects.place(Project(id="p2", name="Audit"), "f1", 0)

        roots = parts.projector.project("folder")

        assert [r.id for r in roots] == ["f1"]
        assert [p.id for p in roots[0].projects] == ["p2", "p1"]
        assert [p.type for p in roots[0].projects] == ["parallel", "sequential"]
        assert [c.id for c in roots[0].children] == ["f2"]
        assert roots[0].children[0].projects == []

    def test_tags_expose_availability(self, parts: OutlineComponents) -> None:
        tags = parts.hierarchy(EntityKind.TAG)
        tags.place(Tag(id="t1", name="Errands", available_from="09:00"))
        node = parts.projector.project("tag")[0]
        assert node.kind == "tag"
        assert node.attributes["available_from"] == "09:00"

    def test_projects_are_not_a_tree(self, parts: OutlineComponents) -> None:
        with pytest.raises(ValueError):
            parts.projector.project("project")
