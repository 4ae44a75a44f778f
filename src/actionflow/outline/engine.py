"""Outline engine: mutation and query entry-point for the task manager.

Wraps :class:`OutlineStore` with the hierarchy, dependency and projection
components. Every mutation runs inside one store transaction: the
components validate against the loaded snapshot, apply their changes in
memory, and the store persists the whole batch on success. A typed error
raised anywhere in between leaves the persisted outline untouched.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from loguru import logger

from ..config import get_cleanup_days, get_position_stride, load_engine_config
from ..constants import (
    ARTIFACTS_DIR,
    DEFAULT_CLEANUP_DAYS,
    DEFAULT_POSITION_STRIDE,
    EVENTS_FILENAME,
    STATE_DIR_NAME,
)
from ..errors import NotFoundError
from ..intervals import add_interval, format_interval, parse_interval
from ..utils import _now_iso, _parse_iso
from .hierarchy import MoveResult
from .model import (
    Action,
    ActionStatus,
    HIERARCHICAL_KINDS,
    EntityKind,
    Folder,
    Project,
    ProjectType,
    RepeatMode,
    Tag,
    parse_kind,
)
from .positions import PositionManager
from .projector import RootsFilter
from .session import OutlineComponents, OutlineSession
from .store import OutlineStore, _OutlineTx
from .views import BlockingStatus, TreeNode


# Fields update_action() accepts. Structure, status and dependencies have
# dedicated operations.
_EDITABLE_ACTION_FIELDS = {
    "title",
    "note",
    "flagged",
    "project_id",
    "tag_ids",
    "defer_date",
    "due_date",
    "estimated_minutes",
    "repeat_mode",
    "repeat_interval",
    "repeat_end_date",
    "repeat_end_count",
}

_STRUCTURAL_HINTS = {
    "parent_id": "reparent()",
    "position": "move() or reorder()",
    "status": "complete_action(), drop_action() or reactivate_action()",
    "blocked_by": "add_block(), remove_block() or replace_blockers()",
}


@dataclass
class Completion:
    action: Action
    next_action: Optional[Action] = None


@dataclass
class DeleteResult:
    removed: list[str] = field(default_factory=list)
    reparented: list[str] = field(default_factory=list)
    changed: dict[str, int] = field(default_factory=dict)
    pruned: dict[str, list[str]] = field(default_factory=dict)


def _coerce_repeat_mode(value: Any) -> Optional[RepeatMode]:
    if value is None or isinstance(value, RepeatMode):
        return value
    try:
        return RepeatMode(str(value))
    except ValueError:
        raise ValueError(
            f"'repeat_mode' must be one of {[m.value for m in RepeatMode]}, got '{value}'"
        ) from None


def _coerce_project_type(value: Any) -> ProjectType:
    if isinstance(value, ProjectType):
        return value
    try:
        return ProjectType(str(value))
    except ValueError:
        raise ValueError(
            f"'type' must be one of {[t.value for t in ProjectType]}, got '{value}'"
        ) from None


def _due_for_review(projects: Iterable[Project], now: datetime) -> list[Project]:
    due: list[tuple[datetime, Project]] = []
    for project in projects:
        if project.status != ActionStatus.ACTIVE:
            continue
        at = _parse_iso(project.next_review_at)
        if at is not None and at <= now:
            due.append((at, project))
    due.sort(key=lambda item: (item[0], item[1].name, item[1].id))
    return [project for _, project in due]


def _check_action_fields(values: dict[str, Any]) -> dict[str, Any]:
    """Validate and normalise plain action fields before anything is mutated.

    Returns a copy with ``repeat_mode`` coerced to :class:`RepeatMode` and
    ``tag_ids`` as a list (``None`` means no tags).

    Raises:
        ValueError: If a value has the wrong type or is out of range.
    """
    out = dict(values)
    for key in ("title", "note"):
        if key in out and not isinstance(out[key], str):
            raise ValueError(f"'{key}' must be a string, got {out[key]!r}")
    if "flagged" in out and not isinstance(out["flagged"], bool):
        raise ValueError(f"'flagged' must be true or false, got {out['flagged']!r}")
    for key in ("estimated_minutes", "repeat_end_count"):
        val = out.get(key)
        if val is None:
            continue
        if isinstance(val, bool) or not isinstance(val, int):
            raise ValueError(f"'{key}' must be an integer, got {val!r}")
        if val < 0:
            raise ValueError(f"'{key}' must be non-negative, got {val}")
    for key in ("project_id", "defer_date", "due_date", "repeat_end_date"):
        val = out.get(key)
        if val is not None and not isinstance(val, str):
            raise ValueError(f"'{key}' must be a string, got {val!r}")
    for key in ("defer_date", "due_date", "repeat_end_date"):
        if out.get(key) and _parse_iso(out[key]) is None:
            raise ValueError(f"'{key}' is not an ISO 8601 timestamp: {out[key]!r}")
    if "tag_ids" in out:
        tags = out["tag_ids"]
        if tags is None:
            out["tag_ids"] = []
        elif isinstance(tags, str) or not isinstance(tags, (list, tuple)) or not all(isinstance(t, str) for t in tags):
            raise ValueError(f"'tag_ids' must be a list of tag ids, got {tags!r}")
        else:
            out["tag_ids"] = list(tags)
    if "repeat_mode" in out:
        out["repeat_mode"] = _coerce_repeat_mode(out["repeat_mode"])
    if out.get("repeat_interval") is not None:
        parse_interval(out["repeat_interval"])
    return out


class OutlineEngine:
    """Manage actions, folders, tags and projects stored under one state directory.

    Parameters
    ----------
    state_dir:
        Path to the ``.actionflow/`` directory.
    stride:
        Spacing used when a sibling group is renumbered.
    cleanup_days:
        Default age, in days, for :meth:`cleanup_completed`.
    """

    def __init__(
        self,
        state_dir: Path,
        stride: int = DEFAULT_POSITION_STRIDE,
        cleanup_days: int = DEFAULT_CLEANUP_DAYS,
    ) -> None:
        self.store = OutlineStore(state_dir)
        self.positions = PositionManager(stride)
        self.cleanup_days = cleanup_days
        self._state_dir = state_dir
        self._events_path = state_dir / ARTIFACTS_DIR / EVENTS_FILENAME

    @classmethod
    def from_project(cls, project_dir: Path) -> "OutlineEngine":
        """Build an engine for *project_dir*, honouring its optional config file."""
        config, err = load_engine_config(project_dir)
        if err:
            logger.warning("Ignoring unreadable config: {}", err)
        return cls(
            project_dir.resolve() / STATE_DIR_NAME,
            stride=get_position_stride(config),
            cleanup_days=get_cleanup_days(config),
        )

    def session(self) -> OutlineSession:
        """Open a request-scoped session over the current outline."""
        return OutlineSession(self.store, self.positions)

    @contextmanager
    def _mutate(self) -> Iterator[tuple[_OutlineTx, OutlineComponents]]:
        with self.store.transaction() as tx:
            yield tx, OutlineComponents(tx.snapshot, self.positions)

    def _read(self) -> OutlineComponents:
        return OutlineComponents(self.store.read_snapshot(), self.positions)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _emit_event(self, event_type: str, kind: EntityKind | str, entity_id: str, **details: Any) -> None:
        """Append a committed-mutation event."""
        try:
            self._events_path.parent.mkdir(parents=True, exist_ok=True)
            payload: dict[str, Any] = {
                "ts": _now_iso(),
                "type": event_type,
                "entity": parse_kind(kind).value,
                "id": entity_id,
            }
            if details:
                payload["details"] = details
            with self._events_path.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(payload, default=str) + "\n")
        except Exception:
            logger.exception("Failed to append outline event {} for {}", event_type, entity_id)

    def get_recent_events(self, limit: int = 100) -> list[dict[str, Any]]:
        if limit < 1 or not self._events_path.exists():
            return []
        lines = self._events_path.read_text(encoding="utf-8").splitlines()
        events: list[dict[str, Any]] = []
        for line in lines[-limit:]:
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(payload, dict):
                events.append(payload)
        return events

    def get_entity_events(self, entity_id: str, limit: int = 100) -> list[dict[str, Any]]:
        events = self.get_recent_events(limit=max(limit * 5, limit))
        return [e for e in events if e.get("id") == entity_id][-limit:]

    # ------------------------------------------------------------------
    # Actions: CRUD
    # ------------------------------------------------------------------

    def create_action(
        self,
        title: str,
        *,
        parent_id: Optional[str] = None,
        index: Optional[int] = None,
        project_id: Optional[str] = None,
        note: str = "",
        flagged: bool = False,
        tag_ids: Optional[list[str]] = None,
        defer_date: Optional[str] = None,
        due_date: Optional[str] = None,
        estimated_minutes: Optional[int] = None,
        repeat_mode: Optional[str] = None,
        repeat_interval: Optional[str] = None,
        repeat_end_date: Optional[str] = None,
        repeat_end_count: Optional[int] = None,
        blocked_by: Optional[list[str]] = None,
    ) -> Action:
        """Create and persist a new action, appended to its sibling group by default.

        A subtask created without a project inherits its parent's project.
        """
        fields = _check_action_fields({
            "title": title,
            "note": note,
            "project_id": project_id,
            "flagged": flagged,
            "tag_ids": tag_ids,
            "defer_date": defer_date,
            "due_date": due_date,
            "estimated_minutes": estimated_minutes,
            "repeat_mode": repeat_mode,
            "repeat_interval": repeat_interval,
            "repeat_end_date": repeat_end_date,
            "repeat_end_count": repeat_end_count,
        })

        with self._mutate() as (tx, parts):
            if parent_id is not None:
                parent = parts.hierarchy(EntityKind.ACTION).get(parent_id)
                if fields["project_id"] is None:
                    fields["project_id"] = parent.project_id
            self._require_refs(tx, project_id=fields["project_id"], tag_ids=fields["tag_ids"])
            for blocker_id in blocked_by or []:
                if blocker_id not in tx.actions:
                    raise NotFoundError("action", blocker_id)

            action = Action(**fields)
            result = parts.hierarchy(EntityKind.ACTION).place(action, parent_id, index)
            if blocked_by:
                parts.dependencies.replace_blockers(action.id, blocked_by)
            tx.dirty = True

        logger.info("Created action {}: {}", action.id, title)
        self._emit_event("action.created", EntityKind.ACTION, action.id, parent_id=parent_id, changed=result.changed)
        return action

    def get_action(self, action_id: str) -> Optional[Action]:
        return self.store.read_snapshot().actions.get(action_id)

    def list_actions(
        self,
        *,
        status: Optional[str] = None,
        project_id: Optional[str] = None,
        tag_id: Optional[str] = None,
        flagged: Optional[bool] = None,
        inbox: bool = False,
        due_before: Optional[str] = None,
        due_after: Optional[str] = None,
        available: bool = False,
    ) -> list[Action]:
        """Return actions matching every given filter, ordered by position then creation time.

        ``available`` keeps active, unblocked actions whose defer date is absent
        or already passed.
        """
        if status is not None:
            status = ActionStatus(status).value
        parts = self._read()
        before = _parse_iso(due_before)
        after = _parse_iso(due_after)
        now = datetime.now(timezone.utc)

        out: list[Action] = []
        for action in parts.snapshot.actions.values():
            if status and action.status.value != status:
                continue
            if project_id is not None and action.project_id != project_id:
                continue
            if tag_id is not None and tag_id not in action.tag_ids:
                continue
            if flagged is not None and action.flagged != flagged:
                continue
            if inbox and not action.is_inbox:
                continue
            due = _parse_iso(action.due_date)
            if before is not None and (due is None or due > before):
                continue
            if after is not None and (due is None or due < after):
                continue
            if available:
                defer = _parse_iso(action.defer_date)
                if action.status != ActionStatus.ACTIVE:
                    continue
                if defer is not None and defer > now:
                    continue
                if parts.dependencies.is_blocked(action.id):
                    continue
                if not self._open_in_project(parts, action):
                    continue
            out.append(action)
        out.sort(key=lambda a: (a.position, a.created_at, a.id))
        return out

    @staticmethod
    def _open_in_project(parts: OutlineComponents, action: Action) -> bool:
        """Whether the action's project lets it be worked on now.

        Inbox actions always pass. Actions of a completed or dropped project
        never do. In a sequential project an action must be the first active
        one among its siblings in that project, and so must each of its
        ancestors inside the project.
        """
        project = parts.snapshot.projects.get(action.project_id) if action.project_id else None
        if project is None:
            return True
        if project.status != ActionStatus.ACTIVE:
            return False
        if not project.is_sequential:
            return True

        hierarchy = parts.hierarchy(EntityKind.ACTION)
        node: Optional[Action] = action
        while node is not None and node.project_id == project.id:
            first = next(
                (
                    a for a in hierarchy.children(node.parent_id)
                    if a.project_id == project.id and a.status == ActionStatus.ACTIVE
                ),
                None,
            )
            if first is None or first.id != node.id:
                return False
            node = hierarchy.nodes.get(node.parent_id) if node.parent_id else None
        return True

    def update_action(self, action_id: str, changes: dict[str, Any]) -> Action:
        """Apply partial updates to an action's plain fields."""
        for key in changes:
            if key in _STRUCTURAL_HINTS:
                raise ValueError(f"'{key}' cannot be updated directly; use {_STRUCTURAL_HINTS[key]}")
            if key not in _EDITABLE_ACTION_FIELDS:
                raise ValueError(f"Unknown action field '{key}'")
        changes = _check_action_fields(changes)

        with self._mutate() as (tx, parts):
            action = parts.hierarchy(EntityKind.ACTION).get(action_id)
            self._require_refs(
                tx,
                project_id=changes.get("project_id"),
                tag_ids=changes.get("tag_ids") or [],
            )
            for key, value in changes.items():
                setattr(action, key, value)
            action.touch()
            tx.dirty = True

        self._emit_event("action.updated", EntityKind.ACTION, action_id, fields=sorted(changes))
        return action

    def delete_action(self, action_id: str, cascade: bool = False) -> DeleteResult:
        """Delete an action.

        Its subtasks move up to take its place (or are deleted too with
        *cascade*), and every other action's blocked-by list is pruned of the
        removed ids.
        """
        with self._mutate() as (tx, parts):
            removal = parts.hierarchy(EntityKind.ACTION).remove(action_id, cascade=cascade)
            pruned = parts.dependencies.prune(removal.removed)
            tx.dirty = True

        logger.info("Deleted action {} ({} removed, cascade={})", action_id, len(removal.removed), cascade)
        self._emit_event("action.deleted", EntityKind.ACTION, action_id, removed=removal.removed, cascade=cascade)
        return DeleteResult(
            removed=removal.removed,
            reparented=removal.reparented,
            changed=removal.changed,
            pruned=pruned,
        )

    def cleanup_completed(self, older_than_days: Optional[int] = None) -> int:
        """Delete completed actions finished more than *older_than_days* ago.

        Uses the normal deletion rules (subtasks move up, references pruned).
        Returns the number of deleted actions.
        """
        days = self.cleanup_days if older_than_days is None else older_than_days
        if days < 0:
            raise ValueError("older_than_days must be non-negative")
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)

        with self._mutate() as (tx, parts):
            stale = [
                a.id
                for a in tx.actions.values()
                if a.status == ActionStatus.COMPLETED
                and (_parse_iso(a.completed_at) or cutoff) < cutoff
            ]
            hierarchy = parts.hierarchy(EntityKind.ACTION)
            for action_id in stale:
                hierarchy.remove(action_id)
            parts.dependencies.prune(stale)
            if stale:
                tx.dirty = True

        if stale:
            logger.info("Cleaned up {} completed action(s) older than {} day(s)", len(stale), days)
        return len(stale)

    # ------------------------------------------------------------------
    # Actions: status
    # ------------------------------------------------------------------

    def complete_action(self, action_id: str) -> Completion:
        """Mark an action completed and schedule the next instance of a repeating one.

        Completing never touches any other action's blocked-by list; the
        dependents' blocking status changes on their next read.
        """
        with self._mutate() as (tx, parts):
            action = parts.hierarchy(EntityKind.ACTION).get(action_id)
            if action.status == ActionStatus.COMPLETED:
                return Completion(action=action)
            completed_at = datetime.now(timezone.utc)
            action.complete(completed_at.isoformat())
            next_action = self._next_repeat(parts, action, completed_at)
            tx.dirty = True

        logger.info("Completed action {}", action_id)
        self._emit_event(
            "action.completed",
            EntityKind.ACTION,
            action_id,
            next_action=next_action.id if next_action else None,
        )
        return Completion(action=action, next_action=next_action)

    def drop_action(self, action_id: str) -> Action:
        with self._mutate() as (tx, parts):
            action = parts.hierarchy(EntityKind.ACTION).get(action_id)
            action.drop()
            tx.dirty = True
        self._emit_event("action.dropped", EntityKind.ACTION, action_id)
        return action

    def reactivate_action(self, action_id: str) -> Action:
        with self._mutate() as (tx, parts):
            action = parts.hierarchy(EntityKind.ACTION).get(action_id)
            action.reactivate()
            tx.dirty = True
        self._emit_event("action.reactivated", EntityKind.ACTION, action_id)
        return action

    def _next_repeat(self, parts: OutlineComponents, action: Action, completed_at: datetime) -> Optional[Action]:
        if not action.repeats:
            return None
        if action.repeat_end_count is not None and action.repeat_count >= action.repeat_end_count:
            return None
        end = _parse_iso(action.repeat_end_date)
        if end is not None and datetime.now(timezone.utc) > end:
            return None

        interval = parse_interval(action.repeat_interval or "")
        defer = _parse_iso(action.defer_date)
        due = _parse_iso(action.due_date)
        new_defer: Optional[datetime] = None
        new_due: Optional[datetime] = None

        if action.repeat_mode == RepeatMode.FIXED:
            new_defer = add_interval(defer, interval) if defer else None
            new_due = add_interval(due, interval) if due else None
        elif action.repeat_mode == RepeatMode.DEFER_ANOTHER:
            new_defer = add_interval(completed_at, interval)
            if defer and due:
                new_due = new_defer + (due - defer)
        elif action.repeat_mode == RepeatMode.DUE_AGAIN:
            new_due = add_interval(completed_at, interval)
            if defer and due:
                new_defer = new_due - (due - defer)

        follow_up = Action(
            title=action.title,
            note=action.note,
            flagged=action.flagged,
            estimated_minutes=action.estimated_minutes,
            project_id=action.project_id,
            tag_ids=list(action.tag_ids),
            defer_date=new_defer.isoformat() if new_defer else None,
            due_date=new_due.isoformat() if new_due else None,
            repeat_mode=action.repeat_mode,
            repeat_interval=action.repeat_interval,
            repeat_end_date=action.repeat_end_date,
            repeat_end_count=action.repeat_end_count,
            repeat_count=action.repeat_count + 1,
        )
        hierarchy = parts.hierarchy(EntityKind.ACTION)
        hierarchy.place(follow_up, action.parent_id, hierarchy.index_of(action.id) + 1)
        logger.debug(
            "Scheduled repeat {} of action {} (every {})", follow_up.id, action.id, format_interval(interval)
        )
        return follow_up

    # ------------------------------------------------------------------
    # Structure (actions, folders, tags; projects for reparent/move/reorder)
    # ------------------------------------------------------------------

    def reparent(
        self,
        kind: EntityKind | str,
        node_id: str,
        new_parent_id: Optional[str],
        index: Optional[int] = None,
    ) -> MoveResult:
        """Move a node and its subtree under *new_parent_id* at *index* (append when None).

        For projects the parent is a folder.
        """
        kind = parse_kind(kind)
        with self._mutate() as (tx, parts):
            result = parts.hierarchy(kind).reparent(node_id, new_parent_id, index)
            tx.dirty = bool(result.changed) or result.old_parent_id != result.parent_id
        self._log_move("reparent", kind, result)
        return result

    def move(self, kind: EntityKind | str, node_id: str, index: int) -> MoveResult:
        """Reorder a node within its current sibling group."""
        kind = parse_kind(kind)
        with self._mutate() as (tx, parts):
            result = parts.hierarchy(kind).move(node_id, index)
            tx.dirty = bool(result.changed)
        self._log_move("move", kind, result)
        return result

    def indent(self, kind: EntityKind | str, node_id: str) -> MoveResult:
        kind = self._nesting_kind(kind)
        with self._mutate() as (tx, parts):
            result = parts.hierarchy(kind).indent(node_id)
            tx.dirty = True
        self._log_move("indent", kind, result)
        return result

    def outdent(self, kind: EntityKind | str, node_id: str) -> MoveResult:
        kind = self._nesting_kind(kind)
        with self._mutate() as (tx, parts):
            result = parts.hierarchy(kind).outdent(node_id)
            tx.dirty = True
        self._log_move("outdent", kind, result)
        return result

    def reorder(self, kind: EntityKind | str, parent_id: Optional[str], ordered_ids: list[str]) -> dict[str, int]:
        """Renumber a sibling group so *ordered_ids* come first, in that order."""
        kind = parse_kind(kind)
        with self._mutate() as (tx, parts):
            changed = parts.hierarchy(kind).reorder(parent_id, ordered_ids)
            tx.dirty = bool(changed)
        if changed:
            self._emit_event("node.reordered", kind, parent_id or "", changed=changed)
        return changed

    @staticmethod
    def _nesting_kind(kind: EntityKind | str) -> EntityKind:
        kind = parse_kind(kind)
        if kind not in HIERARCHICAL_KINDS:
            raise ValueError("Projects cannot be indented or outdented; reparent them into a folder instead")
        return kind

    def _log_move(self, op: str, kind: EntityKind, result: MoveResult) -> None:
        logger.info(
            "{} {} {}: parent {} -> {}, position {} ({} row(s) changed)",
            op, kind.value, result.node_id, result.old_parent_id, result.parent_id,
            result.position, len(result.changed),
        )
        if result.changed or result.old_parent_id != result.parent_id:
            self._emit_event(
                f"node.{op}",
                kind,
                result.node_id,
                parent_id=result.parent_id,
                changed=result.changed,
            )

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def add_block(self, action_id: str, blocker_id: str) -> bool:
        """Make *action_id* wait on *blocker_id*. Returns False if the edge already existed."""
        with self._mutate() as (tx, parts):
            added = parts.dependencies.add_block(action_id, blocker_id)
            tx.dirty = added
        if added:
            logger.info("Action {} is now blocked by {}", action_id, blocker_id)
            self._emit_event("block.added", EntityKind.ACTION, action_id, blocker=blocker_id)
        return added

    def remove_block(self, action_id: str, blocker_id: str) -> bool:
        with self._mutate() as (tx, parts):
            removed = parts.dependencies.remove_block(action_id, blocker_id)
            tx.dirty = removed
        if removed:
            self._emit_event("block.removed", EntityKind.ACTION, action_id, blocker=blocker_id)
        return removed

    def replace_blockers(self, action_id: str, blocker_ids: list[str]) -> list[str]:
        with self._mutate() as (tx, parts):
            result = parts.dependencies.replace_blockers(action_id, blocker_ids)
            tx.dirty = True
        self._emit_event("block.replaced", EntityKind.ACTION, action_id, blockers=result)
        return result

    def is_blocked(self, action_id: str) -> bool:
        return self._read().dependencies.is_blocked(action_id)

    def blocking_status(self, action_id: str) -> BlockingStatus:
        return self._read().dependencies.blocking_status(action_id)

    def dependency_graph(self) -> dict[str, list[str]]:
        """Return adjacency list: ``{action_id: [blocked_by_ids]}``."""
        return self._read().dependencies.adjacency()

    def dependents_of(self, blocker_id: str) -> list[str]:
        return self._read().dependencies.dependents_of(blocker_id)

    # ------------------------------------------------------------------
    # Folders, tags, projects
    # ------------------------------------------------------------------

    def create_folder(self, name: str, parent_id: Optional[str] = None, index: Optional[int] = None) -> Folder:
        folder = Folder(name=name)
        with self._mutate() as (tx, parts):
            parts.hierarchy(EntityKind.FOLDER).place(folder, parent_id, index)
            tx.dirty = True
        logger.info("Created folder {}: {}", folder.id, name)
        self._emit_event("folder.created", EntityKind.FOLDER, folder.id, parent_id=parent_id)
        return folder

    def create_tag(
        self,
        name: str,
        parent_id: Optional[str] = None,
        index: Optional[int] = None,
        available_from: Optional[str] = None,
        available_until: Optional[str] = None,
    ) -> Tag:
        tag = Tag(name=name, available_from=available_from, available_until=available_until)
        with self._mutate() as (tx, parts):
            parts.hierarchy(EntityKind.TAG).place(tag, parent_id, index)
            tx.dirty = True
        logger.info("Created tag {}: {}", tag.id, name)
        self._emit_event("tag.created", EntityKind.TAG, tag.id, parent_id=parent_id)
        return tag

    def create_project(
        self,
        name: str,
        folder_id: Optional[str] = None,
        index: Optional[int] = None,
        project_type: ProjectType | str = ProjectType.PARALLEL,
        review_interval: Optional[str] = None,
    ) -> Project:
        """Create a project; with a *review_interval* its first review is due one interval from now."""
        project = Project(name=name, type=_coerce_project_type(project_type), review_interval=review_interval)
        if review_interval is not None:
            next_review = add_interval(datetime.now(timezone.utc), parse_interval(review_interval))
            project.next_review_at = next_review.isoformat()
        with self._mutate() as (tx, parts):
            parts.hierarchy(EntityKind.PROJECT).place(project, folder_id, index)
            tx.dirty = True
        logger.info("Created project {}: {}", project.id, name)
        self._emit_event("project.created", EntityKind.PROJECT, project.id, folder_id=folder_id)
        return project

    def get(self, kind: EntityKind | str, entity_id: str) -> Optional[Any]:
        return self.store.read_snapshot().arena(kind).get(entity_id)

    def list_entities(self, kind: EntityKind | str) -> list[Any]:
        """All entities of *kind* in (parent, position) display order."""
        parts = self._read()
        manager = parts.hierarchy(kind)
        return sorted(manager.nodes.values(), key=lambda e: (str(manager.acc.get_parent(e) or ""), manager.sort_key(e)))

    def rename(self, kind: EntityKind | str, entity_id: str, name: str) -> Any:
        """Rename a folder, tag or project (for actions use ``update_action``)."""
        kind = parse_kind(kind)
        if kind == EntityKind.ACTION:
            raise ValueError("Actions have titles; use update_action(id, {'title': ...})")
        with self._mutate() as (tx, parts):
            entity = parts.hierarchy(kind).get(entity_id)
            entity.name = name
            entity.touch()
            tx.dirty = True
        self._emit_event(f"{kind.value}.renamed", kind, entity_id, name=name)
        return entity

    def delete_folder(self, folder_id: str, cascade: bool = False) -> DeleteResult:
        """Delete a folder.

        Child folders take its place (or are deleted with *cascade*). Projects
        of every removed folder move to the deleted folder's parent, appended
        in their existing order.
        """
        with self._mutate() as (tx, parts):
            removal = parts.hierarchy(EntityKind.FOLDER).remove(folder_id, cascade=cascade)
            projects = parts.hierarchy(EntityKind.PROJECT)
            moved: dict[str, int] = {}
            for removed_id in removal.removed:
                for project in projects.children(removed_id):
                    moved.update(projects.reparent(project.id, removal.parent_id, None).changed)
            tx.dirty = True

        logger.info("Deleted folder {} ({} removed, cascade={})", folder_id, len(removal.removed), cascade)
        self._emit_event("folder.deleted", EntityKind.FOLDER, folder_id, removed=removal.removed, cascade=cascade)
        changed = dict(removal.changed)
        changed.update(moved)
        return DeleteResult(removed=removal.removed, reparented=removal.reparented, changed=changed)

    def delete_tag(self, tag_id: str, cascade: bool = False) -> DeleteResult:
        """Delete a tag and strip every removed tag id from the actions carrying it."""
        with self._mutate() as (tx, parts):
            removal = parts.hierarchy(EntityKind.TAG).remove(tag_id, cascade=cascade)
            removed = set(removal.removed)
            pruned: dict[str, list[str]] = {}
            for action in tx.actions.values():
                stale = [t for t in action.tag_ids if t in removed]
                if stale:
                    action.tag_ids = [t for t in action.tag_ids if t not in removed]
                    action.touch()
                    pruned[action.id] = stale
            tx.dirty = True

        self._emit_event("tag.deleted", EntityKind.TAG, tag_id, removed=removal.removed, cascade=cascade)
        return DeleteResult(
            removed=removal.removed,
            reparented=removal.reparented,
            changed=removal.changed,
            pruned=pruned,
        )

    def delete_project(self, project_id: str) -> DeleteResult:
        """Delete a project; its actions move to the inbox."""
        with self._mutate() as (tx, parts):
            removal = parts.hierarchy(EntityKind.PROJECT).remove(project_id)
            moved = []
            for action in tx.actions.values():
                if action.project_id == project_id:
                    action.project_id = None
                    action.touch()
                    moved.append(action.id)
            tx.dirty = True

        self._emit_event("project.deleted", EntityKind.PROJECT, project_id, moved_to_inbox=moved)
        return DeleteResult(removed=removal.removed, reparented=moved)

    def update_project(
        self,
        project_id: str,
        *,
        project_type: Optional[ProjectType | str] = None,
        review_interval: Optional[str] = None,
        clear_review: bool = False,
    ) -> Project:
        """Change a project's type or review interval.

        A new interval is counted from the last review (or from now if the
        project was never reviewed). *clear_review* removes the schedule.
        """
        new_type = _coerce_project_type(project_type) if project_type is not None else None
        interval = parse_interval(review_interval) if review_interval is not None else None

        with self._mutate() as (tx, parts):
            project = parts.hierarchy(EntityKind.PROJECT).get(project_id)
            if new_type is not None:
                project.type = new_type
            if clear_review:
                project.review_interval = None
                project.next_review_at = None
            elif interval is not None:
                since = _parse_iso(project.last_reviewed_at) or datetime.now(timezone.utc)
                project.review_interval = review_interval
                project.next_review_at = add_interval(since, interval).isoformat()
            project.touch()
            tx.dirty = True

        self._emit_event("project.updated", EntityKind.PROJECT, project_id, type=project.type.value,
                         review_interval=project.review_interval)
        return project

    def review_project(self, project_id: str) -> Project:
        """Mark a project reviewed now and schedule its next review."""
        now = datetime.now(timezone.utc)
        with self._mutate() as (tx, parts):
            project = parts.hierarchy(EntityKind.PROJECT).get(project_id)
            project.last_reviewed_at = now.isoformat()
            project.next_review_at = (
                add_interval(now, parse_interval(project.review_interval)).isoformat()
                if project.review_interval
                else None
            )
            project.touch()
            tx.dirty = True

        logger.info("Reviewed project {}; next review {}", project_id, project.next_review_at or "not scheduled")
        self._emit_event("project.reviewed", EntityKind.PROJECT, project_id, next_review_at=project.next_review_at)
        return project

    def projects_due_for_review(self, now: Optional[datetime] = None) -> list[Project]:
        """Active projects whose next review is at or before *now*, soonest first."""
        return _due_for_review(self.store.read_snapshot().projects.values(), now or datetime.now(timezone.utc))

    def project_available_actions(self, project_id: str) -> list[Action]:
        """Actions of a project that can be worked on now, honouring its type."""
        if project_id not in self.store.read_snapshot().projects:
            raise NotFoundError("project", project_id)
        return self.list_actions(project_id=project_id, available=True)

    def complete_project(self, project_id: str) -> Project:
        """Mark a project completed. Its actions keep their own status."""
        return self._set_project_status(project_id, "completed", Project.complete)

    def drop_project(self, project_id: str) -> Project:
        return self._set_project_status(project_id, "dropped", Project.drop)

    def reactivate_project(self, project_id: str) -> Project:
        return self._set_project_status(project_id, "reactivated", Project.reactivate)

    def _set_project_status(self, project_id: str, verb: str, transition: Any) -> Project:
        with self._mutate() as (tx, parts):
            project = parts.hierarchy(EntityKind.PROJECT).get(project_id)
            transition(project)
            tx.dirty = True
        logger.info("Project {} {}", project_id, verb)
        self._emit_event(f"project.{verb}", EntityKind.PROJECT, project_id)
        return project

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def project_tree(self, kind: EntityKind | str, roots_filter: Optional[RootsFilter] = None) -> list[TreeNode]:
        """Nested, ordered tree of actions, folders (with projects) or tags."""
        return self._read().projector.project(kind, roots_filter)

    def subtree(self, kind: EntityKind | str, node_id: str) -> TreeNode:
        return self._read().projector.subtree(kind, node_id)

    def summary(self) -> dict[str, Any]:
        parts = self._read()
        actions = list(parts.snapshot.actions.values())

        def _count(status: ActionStatus) -> int:
            return sum(1 for a in actions if a.status == status)

        projects = list(parts.snapshot.projects.values())

        def _count_projects(status: ActionStatus) -> int:
            return sum(1 for p in projects if p.status == status)

        return {
            "actions": {
                "total": len(actions),
                "active": _count(ActionStatus.ACTIVE),
                "completed": _count(ActionStatus.COMPLETED),
                "dropped": _count(ActionStatus.DROPPED),
                "blocked": sum(
                    1 for a in actions
                    if a.status == ActionStatus.ACTIVE and parts.dependencies.is_blocked(a.id)
                ),
            },
            "projects": {
                "total": len(projects),
                "active": _count_projects(ActionStatus.ACTIVE),
                "completed": _count_projects(ActionStatus.COMPLETED),
                "dropped": _count_projects(ActionStatus.DROPPED),
                "due_for_review": len(_due_for_review(projects, datetime.now(timezone.utc))),
            },
            "folders": {"total": len(parts.snapshot.folders)},
            "tags": {"total": len(parts.snapshot.tags)},
        }

    def integrity_problems(self) -> list[str]:
        """List every invariant violation in the stored outline (empty = consistent)."""
        return self._read().integrity_problems()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_refs(tx: _OutlineTx, *, project_id: Optional[str], tag_ids: list[str]) -> None:
        if project_id is not None and project_id not in tx.projects:
            raise NotFoundError("project", project_id)
        for tag_id in tag_ids:
            if tag_id not in tx.tags:
                raise NotFoundError("tag", tag_id)
