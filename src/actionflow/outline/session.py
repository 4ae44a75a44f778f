"""Wire arenas to managers, and scope the in-memory outline to a session.

A session is the unit of caching for readers: it loads one snapshot on first
use, serves trees and blocking status from it, and is discarded or refreshed
explicitly. Nothing is cached at module level, so concurrent requests and
tests each work on their own instance.
"""

from __future__ import annotations

from typing import Any, Optional

from loguru import logger

from ..errors import ConcurrentModificationError
from .dependencies import DependencyGraph
from .hierarchy import HierarchyManager, attribute_accessors
from .model import EntityKind, parse_kind
from .positions import PositionManager
from .projector import RootsFilter, TreeProjector
from .store import OutlineSnapshot, OutlineStore
from .views import BlockingStatus, TreeNode


# Ties inside a sibling group break on creation time for actions, on name otherwise.
ACTION_ACCESSORS = attribute_accessors(tie_attr="created_at")
NAMED_ACCESSORS = attribute_accessors(tie_attr="name")
PROJECT_ACCESSORS = attribute_accessors(parent_attr="folder_id", tie_attr="name")


class OutlineComponents:
    """The four engine components bound to one snapshot."""

    def __init__(self, snapshot: OutlineSnapshot, positions: PositionManager) -> None:
        self.snapshot = snapshot
        self.positions = positions
        self.hierarchies: dict[EntityKind, HierarchyManager[Any]] = {
            EntityKind.ACTION: HierarchyManager(snapshot.actions, ACTION_ACCESSORS, positions, "action"),
            EntityKind.FOLDER: HierarchyManager(snapshot.folders, NAMED_ACCESSORS, positions, "folder"),
            EntityKind.TAG: HierarchyManager(snapshot.tags, NAMED_ACCESSORS, positions, "tag"),
        }
        self.project_positions = HierarchyManager(
            snapshot.projects,
            PROJECT_ACCESSORS,
            positions,
            "project",
            parents=snapshot.folders,
            parent_kind="folder",
        )
        self.dependencies = DependencyGraph(snapshot.actions)
        self.projector = TreeProjector(self.hierarchies, self.dependencies, snapshot.projects)

    def hierarchy(self, kind: EntityKind | str) -> HierarchyManager[Any]:
        kind = parse_kind(kind)
        if kind == EntityKind.PROJECT:
            return self.project_positions
        return self.hierarchies[kind]

    def integrity_problems(self) -> list[str]:
        problems: list[str] = []
        for manager in self.hierarchies.values():
            problems.extend(manager.integrity_problems())
        problems.extend(self.project_positions.integrity_problems())
        problems.extend(self.dependencies.integrity_problems())
        return problems


class OutlineSession:
    """Request-scoped outline cache with optimistic commit.

    Usage::

        with OutlineSession(store) as session:
            session.components.hierarchy("action").indent(action_id)
            session.commit()

    Leaving the block without committing discards the in-memory changes.
    """

    def __init__(self, store: OutlineStore, positions: Optional[PositionManager] = None) -> None:
        self.store = store
        self.positions = positions or PositionManager()
        self._components: Optional[OutlineComponents] = None

    def __enter__(self) -> "OutlineSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.invalidate()

    @property
    def loaded(self) -> bool:
        return self._components is not None

    @property
    def components(self) -> OutlineComponents:
        if self._components is None:
            self._components = OutlineComponents(self.store.read_snapshot(), self.positions)
        return self._components

    @property
    def snapshot(self) -> OutlineSnapshot:
        return self.components.snapshot

    @property
    def revision(self) -> int:
        return self.snapshot.revision

    def invalidate(self) -> None:
        """Drop the cached snapshot; the next access reloads it."""
        self._components = None

    def refresh(self) -> OutlineComponents:
        self.invalidate()
        return self.components

    def commit(self) -> int:
        """Persist the session's snapshot if nobody committed since it was loaded.

        On conflict the cache is dropped so the caller can re-read and retry.
        """
        if self._components is None:
            return self.store.revision()
        try:
            revision = self.store.commit(self._components.snapshot)
        except ConcurrentModificationError:
            logger.debug("Session commit rejected; dropping stale snapshot")
            self.invalidate()
            raise
        return revision

    # -- read helpers -------------------------------------------------------

    def project(self, kind: EntityKind | str, roots_filter: Optional[RootsFilter] = None) -> list[TreeNode]:
        return self.components.projector.project(kind, roots_filter)

    def blocking_status(self, action_id: str) -> BlockingStatus:
        return self.components.dependencies.blocking_status(action_id)
