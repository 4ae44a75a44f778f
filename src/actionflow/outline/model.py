"""Outline model: actions, folders, tags and projects.

Every entity is a flat record keyed by id. Structure is expressed only through
``parent_id`` (or ``folder_id`` for projects) and ``position``; nothing holds a
live reference to another entity, so the engine can rebuild adjacency views
from a plain collection loaded out of YAML.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

from ..utils import _generate_id, _now_iso


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ActionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    DROPPED = "dropped"


class RepeatMode(str, Enum):
    """How the next instance of a repeating action is scheduled."""

    FIXED = "fixed"  # shift the original dates by the interval
    DEFER_ANOTHER = "defer_another"  # defer again, counted from completion
    DUE_AGAIN = "due_again"  # due again, counted from completion


class ProjectType(str, Enum):
    """Which of a project's actions are available at once."""

    SEQUENTIAL = "sequential"  # one at a time, in outline order
    PARALLEL = "parallel"
    SINGLE_ACTIONS = "single_actions"  # a list of unrelated actions


class EntityKind(str, Enum):
    ACTION = "action"
    FOLDER = "folder"
    TAG = "tag"
    PROJECT = "project"


HIERARCHICAL_KINDS = (EntityKind.ACTION, EntityKind.FOLDER, EntityKind.TAG)


def _coerce_enum(enum_cls: type[Enum], raw: Any, default: Optional[Enum]) -> Optional[Enum]:
    if raw is None:
        return default
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw))
    except ValueError:
        return default


def _serialize(obj: Any) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for k, v in asdict(obj).items():
        data[k] = v.value if isinstance(v, Enum) else v
    return data


# ---------------------------------------------------------------------------
# Action
# ---------------------------------------------------------------------------

@dataclass
class Action:
    """A task in the outline.

    ``blocked_by`` is a list of action ids this action waits on. Whether the
    action is currently blocked is never stored; it is derived from the
    blockers' statuses when read.
    """

    id: str = field(default_factory=lambda: _generate_id("act"))
    title: str = ""
    note: str = ""

    # Structure
    parent_id: Optional[str] = None
    position: int = 0
    project_id: Optional[str] = None  # None = inbox

    status: ActionStatus = ActionStatus.ACTIVE
    blocked_by: list[str] = field(default_factory=list)

    flagged: bool = False
    tag_ids: list[str] = field(default_factory=list)
    defer_date: Optional[str] = None
    due_date: Optional[str] = None
    estimated_minutes: Optional[int] = None

    # Repetition
    repeat_mode: Optional[RepeatMode] = None
    repeat_interval: Optional[str] = None
    repeat_end_date: Optional[str] = None
    repeat_end_count: Optional[int] = None
    repeat_count: int = 0

    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    completed_at: Optional[str] = None
    dropped_at: Optional[str] = None

    @property
    def is_inbox(self) -> bool:
        return self.project_id is None

    @property
    def is_completed(self) -> bool:
        return self.status == ActionStatus.COMPLETED

    @property
    def repeats(self) -> bool:
        return self.repeat_mode is not None and bool(self.repeat_interval)

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Action":
        """Deserialize from a plain dict, coercing enums gracefully."""
        d = dict(data)
        minutes = d.get("estimated_minutes")
        end_count = d.get("repeat_end_count")
        return cls(
            id=str(d.get("id") or _generate_id("act")),
            title=str(d.get("title", "") or ""),
            note=str(d.get("note", "") or ""),
            parent_id=d.get("parent_id"),
            position=int(d.get("position", 0) or 0),
            project_id=d.get("project_id"),
            status=_coerce_enum(ActionStatus, d.get("status"), ActionStatus.ACTIVE),
            blocked_by=[str(b) for b in (d.get("blocked_by") or [])],
            flagged=bool(d.get("flagged", False)),
            tag_ids=[str(t) for t in (d.get("tag_ids") or [])],
            defer_date=d.get("defer_date"),
            due_date=d.get("due_date"),
            estimated_minutes=int(minutes) if minutes is not None else None,
            repeat_mode=_coerce_enum(RepeatMode, d.get("repeat_mode"), None),
            repeat_interval=d.get("repeat_interval"),
            repeat_end_date=d.get("repeat_end_date"),
            repeat_end_count=int(end_count) if end_count is not None else None,
            repeat_count=int(d.get("repeat_count", 0) or 0),
            created_at=str(d.get("created_at") or _now_iso()),
            updated_at=str(d.get("updated_at") or _now_iso()),
            completed_at=d.get("completed_at"),
            dropped_at=d.get("dropped_at"),
        )

    @classmethod
    def validate_dict(cls, data: Any) -> list[str]:
        """Check the constraints a persisted action record must satisfy.

        Returns a list of error strings (empty = valid).
        """
        if not isinstance(data, dict):
            return ["Expected a dict"]
        errors: list[str] = []
        if not data.get("id"):
            errors.append("'id' is required")
        status = data.get("status")
        if status is not None and status not in {s.value for s in ActionStatus}:
            errors.append(f"'status' must be one of {sorted(s.value for s in ActionStatus)}, got '{status}'")
        for list_field in ("blocked_by", "tag_ids"):
            val = data.get(list_field)
            if val is not None and not isinstance(val, list):
                errors.append(f"'{list_field}' must be an array")
        for int_field in ("position", "estimated_minutes", "repeat_end_count", "repeat_count"):
            val = data.get(int_field)
            if val is not None and (isinstance(val, bool) or not isinstance(val, int)):
                errors.append(f"'{int_field}' must be an integer")
        flagged = data.get("flagged")
        if flagged is not None and not isinstance(flagged, bool):
            errors.append("'flagged' must be a boolean")
        return errors

    # ------------------------------------------------------------------
    # Status helpers
    # ------------------------------------------------------------------

    def touch(self) -> None:
        self.updated_at = _now_iso()

    def complete(self, at: Optional[str] = None) -> None:
        self.status = ActionStatus.COMPLETED
        self.completed_at = at or _now_iso()
        self.dropped_at = None
        self.touch()

    def drop(self, at: Optional[str] = None) -> None:
        self.status = ActionStatus.DROPPED
        self.dropped_at = at or _now_iso()
        self.completed_at = None
        self.touch()

    def reactivate(self) -> None:
        self.status = ActionStatus.ACTIVE
        self.completed_at = None
        self.dropped_at = None
        self.touch()

    # ------------------------------------------------------------------
    # Dependency helpers
    # ------------------------------------------------------------------

    def add_blocked_by(self, action_id: str) -> None:
        if action_id not in self.blocked_by:
            self.blocked_by.append(action_id)
            self.touch()

    def remove_blocked_by(self, action_id: str) -> None:
        if action_id in self.blocked_by:
            self.blocked_by.remove(action_id)
            self.touch()


# ---------------------------------------------------------------------------
# Folders, tags, projects
# ---------------------------------------------------------------------------

@dataclass
class Folder:
    id: str = field(default_factory=lambda: _generate_id("fld"))
    name: str = ""
    parent_id: Optional[str] = None
    position: int = 0
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def touch(self) -> None:
        self.updated_at = _now_iso()

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Folder":
        return cls(
            id=str(data.get("id") or _generate_id("fld")),
            name=str(data.get("name", "") or ""),
            parent_id=data.get("parent_id"),
            position=int(data.get("position", 0) or 0),
            created_at=str(data.get("created_at") or _now_iso()),
            updated_at=str(data.get("updated_at") or _now_iso()),
        )


@dataclass
class Tag:
    """A context label. ``available_from``/``available_until`` are carried for
    callers that filter by time window; ordering ignores them."""

    id: str = field(default_factory=lambda: _generate_id("tag"))
    name: str = ""
    parent_id: Optional[str] = None
    position: int = 0
    available_from: Optional[str] = None
    available_until: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def touch(self) -> None:
        self.updated_at = _now_iso()

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Tag":
        return cls(
            id=str(data.get("id") or _generate_id("tag")),
            name=str(data.get("name", "") or ""),
            parent_id=data.get("parent_id"),
            position=int(data.get("position", 0) or 0),
            available_from=data.get("available_from"),
            available_until=data.get("available_until"),
            created_at=str(data.get("created_at") or _now_iso()),
            updated_at=str(data.get("updated_at") or _now_iso()),
        )


@dataclass
class Project:
    """A leaf listed under a folder. Its sibling group is keyed by ``folder_id``.

    ``review_interval`` (``2w``, ``1m`` ...) drives ``next_review_at``; a
    project with no interval is never due for review.
    """

    id: str = field(default_factory=lambda: _generate_id("prj"))
    name: str = ""
    folder_id: Optional[str] = None
    position: int = 0
    type: ProjectType = ProjectType.PARALLEL
    status: ActionStatus = ActionStatus.ACTIVE
    review_interval: Optional[str] = None
    last_reviewed_at: Optional[str] = None
    next_review_at: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    completed_at: Optional[str] = None
    dropped_at: Optional[str] = None

    @property
    def is_sequential(self) -> bool:
        return self.type == ProjectType.SEQUENTIAL

    def touch(self) -> None:
        self.updated_at = _now_iso()

    def complete(self, at: Optional[str] = None) -> None:
        self.status = ActionStatus.COMPLETED
        self.completed_at = at or _now_iso()
        self.dropped_at = None
        self.touch()

    def drop(self, at: Optional[str] = None) -> None:
        self.status = ActionStatus.DROPPED
        self.dropped_at = at or _now_iso()
        self.completed_at = None
        self.touch()

    def reactivate(self) -> None:
        self.status = ActionStatus.ACTIVE
        self.completed_at = None
        self.dropped_at = None
        self.touch()

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        return cls(
            id=str(data.get("id") or _generate_id("prj")),
            name=str(data.get("name", "") or ""),
            folder_id=data.get("folder_id"),
            position=int(data.get("position", 0) or 0),
            type=_coerce_enum(ProjectType, data.get("type"), ProjectType.PARALLEL),
            status=_coerce_enum(ActionStatus, data.get("status"), ActionStatus.ACTIVE),
            review_interval=data.get("review_interval"),
            last_reviewed_at=data.get("last_reviewed_at"),
            next_review_at=data.get("next_review_at"),
            created_at=str(data.get("created_at") or _now_iso()),
            updated_at=str(data.get("updated_at") or _now_iso()),
            completed_at=data.get("completed_at"),
            dropped_at=data.get("dropped_at"),
        )

ENTITY_TYPES: dict[EntityKind, type] = {
    EntityKind.ACTION: Action,
    EntityKind.FOLDER: Folder,
    EntityKind.TAG: Tag,
    EntityKind.PROJECT: Project,
}


def parse_kind(kind: "EntityKind | str") -> EntityKind:
    """Coerce a kind name to :class:`EntityKind`, raising ``ValueError`` if unknown."""
    if isinstance(kind, EntityKind):
        return kind
    try:
        return EntityKind(str(kind))
    except ValueError:
        raise ValueError(
            f"Unknown entity kind '{kind}'. Valid kinds: {[k.value for k in EntityKind]}"
        ) from None
