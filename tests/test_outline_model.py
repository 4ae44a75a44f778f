"""Tests for outline entities (outline/model.py)."""

from __future__ import annotations

import pytest

from actionflow.outline.model import (
    Action,
    ActionStatus,
    EntityKind,
    Folder,
    Project,
    ProjectType,
    RepeatMode,
    Tag,
    parse_kind,
)


class TestAction:
    def test_defaults(self) -> None:
        action = Action(title="Write report")
        assert action.id.startswith("act-")
        assert action.status == ActionStatus.ACTIVE
        assert action.blocked_by == []
        assert action.is_inbox
        assert not action.repeats

    def test_round_trip_keeps_enums(self) -> None:
        action = Action(
            title="Water plants",
            repeat_mode=RepeatMode.DEFER_ANOTHER,
            repeat_interval="3d",
            blocked_by=["act-1"],
        )
        data = action.to_dict()
        assert data["status"] == "active"
        assert data["repeat_mode"] == "defer_another"

        restored = Action.from_dict(data)
        assert restored == action
        assert restored.repeats

    def test_from_dict_coerces_unknown_status(self) -> None:
        action = Action.from_dict({"id": "act-1", "status": "bogus", "repeat_mode": "weekly"})
        assert action.status == ActionStatus.ACTIVE
        assert action.repeat_mode is None

    def test_validate_dict(self) -> None:
        assert Action.validate_dict({"id": "act-1", "position": 3}) == []
        errors = Action.validate_dict({"status": "bogus", "blocked_by": "x", "position": "1"})
        assert len(errors) == 4
        assert Action.validate_dict(["not", "a", "dict"]) == ["Expected a dict"]

    def test_validate_dict_rejects_non_integer_fields(self) -> None:
        errors = Action.validate_dict(
            {"id": "act-1", "estimated_minutes": "soon", "repeat_end_count": True, "flagged": "yes"}
        )
        assert errors == [
            "'estimated_minutes' must be an integer",
            "'repeat_end_count' must be an integer",
            "'flagged' must be a boolean",
        ]

    def test_status_transitions(self) -> None:
        action = Action(title="t")
        action.complete()
        assert action.is_completed
        assert action.completed_at is not None

        action.drop()
        assert action.status == ActionStatus.DROPPED
        assert action.completed_at is None
        assert action.dropped_at is not None

        action.reactivate()
        assert action.status == ActionStatus.ACTIVE
        assert action.dropped_at is None

    def test_blocked_by_helpers(self) -> None:
        action = Action(title="t")
        action.add_blocked_by("act-1")
        action.add_blocked_by("act-1")
        assert action.blocked_by == ["act-1"]
        action.remove_blocked_by("act-1")
        action.remove_blocked_by("act-1")
        assert action.blocked_by == []


class TestNamedEntities:
    def test_folder_round_trip(self) -> None:
        folder = Folder(name="Work", parent_id="fld-1", position=1000)
        assert Folder.from_dict(folder.to_dict()) == folder
        assert folder.id.startswith("fld-")

    def test_tag_round_trip(self) -> None:
        tag = Tag(name="Errands", available_until="18:00")
        assert Tag.from_dict(tag.to_dict()) == tag

    def test_project_round_trip(self) -> None:
        project = Project(name="Launch", folder_id="fld-1", type=ProjectType.SEQUENTIAL, review_interval="2w")
        data = project.to_dict()
        assert data["status"] == "active"
        assert data["type"] == "sequential"
        assert Project.from_dict(data) == project

    def test_project_defaults_and_unknown_type(self) -> None:
        project = Project.from_dict({"id": "prj-1", "name": "Errands", "type": "someday"})
        assert project.type == ProjectType.PARALLEL
        assert not project.is_sequential
        assert project.next_review_at is None

    def test_project_status_transitions(self) -> None:
        project = Project(name="Launch")
        project.complete()
        assert project.status == ActionStatus.COMPLETED
        assert project.completed_at is not None
        project.drop()
        assert project.completed_at is None
        assert project.dropped_at is not None
        project.reactivate()
        assert project.status == ActionStatus.ACTIVE
        assert project.dropped_at is None


class TestParseKind:
    def test_accepts_names_and_members(self) -> None:
        assert parse_kind("folder") == EntityKind.FOLDER
        assert parse_kind(EntityKind.TAG) == EntityKind.TAG

    def test_unknown_kind(self) -> None:
        with pytest.raises(ValueError, match="Unknown entity kind"):
            parse_kind("widget")
