"""Tree projector: nested, ordered, read-only views of the flat arenas."""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

from loguru import logger

from .dependencies import DependencyGraph
from .hierarchy import HierarchyManager
from .model import Action, EntityKind, Project, Tag, parse_kind
from .views import ProjectNode, TreeNode


RootsFilter = Callable[[Any], bool]


class TreeProjector:
    """Build nested trees for actions, folders and tags.

    The projector holds no state of its own; every call walks the arenas
    behind the given hierarchy managers, so it always reflects the latest
    mutations.
    """

    def __init__(
        self,
        hierarchies: Mapping[EntityKind, HierarchyManager[Any]],
        dependencies: DependencyGraph,
        projects: Mapping[str, Project],
    ) -> None:
        self.hierarchies = hierarchies
        self.dependencies = dependencies
        self.projects = projects

    def project(self, kind: EntityKind | str, roots_filter: Optional[RootsFilter] = None) -> list[TreeNode]:
        """Return the root-level nodes of *kind*, each with its subtree.

        Roots are nodes without a parent; a node whose parent id points at a
        missing entity is treated as a root. *roots_filter* receives the root
        entity and decides whether its subtree is included.
        """
        kind = parse_kind(kind)
        if kind not in self.hierarchies:
            raise ValueError(f"{kind.value} is not a hierarchical kind")
        manager = self.hierarchies[kind]
        index = manager.child_index()

        roots = list(index.get(None, []))
        orphans = [
            node
            for parent_id, group in index.items()
            if parent_id is not None and parent_id not in manager.nodes
            for node in group
        ]
        if orphans:
            logger.warning(
                "{} {} node(s) reference a missing parent; projecting them as roots",
                len(orphans), kind.value,
            )
            roots = sorted(roots + orphans, key=manager.sort_key)
        if roots_filter is not None:
            roots = [r for r in roots if roots_filter(r)]

        projects_by_folder = self._projects_by_folder() if kind == EntityKind.FOLDER else {}
        seen: set[str] = set()
        trees = [self._build(kind, manager, index, root, 0, seen, projects_by_folder) for root in roots]

        if roots_filter is None:
            unreachable = len(manager.nodes) - len(seen)
            if unreachable:
                logger.warning("{} {} node(s) are unreachable from the root (parent cycle)", unreachable, kind.value)
        return trees

    def subtree(self, kind: EntityKind | str, node_id: str) -> TreeNode:
        kind = parse_kind(kind)
        manager = self.hierarchies[kind]
        node = manager.get(node_id)
        projects_by_folder = self._projects_by_folder() if kind == EntityKind.FOLDER else {}
        return self._build(
            kind, manager, manager.child_index(), node, manager.depth(node_id), set(), projects_by_folder
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _projects_by_folder(self) -> dict[Optional[str], list[ProjectNode]]:
        grouped: dict[Optional[str], list[Project]] = {}
        for project in self.projects.values():
            grouped.setdefault(project.folder_id, []).append(project)
        return {
            folder_id: [
                ProjectNode(id=p.id, name=p.name, position=p.position, status=p.status.value, type=p.type.value)
                for p in sorted(group, key=lambda p: (p.position, p.name, p.id))
            ]
            for folder_id, group in grouped.items()
        }

    def _build(
        self,
        kind: EntityKind,
        manager: HierarchyManager[Any],
        index: dict[Optional[str], list[Any]],
        entity: Any,
        depth: int,
        seen: set[str],
        projects_by_folder: dict[Optional[str], list[ProjectNode]],
    ) -> TreeNode:
        seen.add(entity.id)
        node = self._node(kind, entity, depth)
        if kind == EntityKind.FOLDER:
            node.projects = list(projects_by_folder.get(entity.id, []))
        for child in index.get(entity.id, []):
            if child.id in seen:
                continue
            node.children.append(
                self._build(kind, manager, index, child, depth + 1, seen, projects_by_folder)
            )
        return node

    def _node(self, kind: EntityKind, entity: Any, depth: int) -> TreeNode:
        if isinstance(entity, Action):
            return TreeNode(
                id=entity.id,
                kind=kind.value,
                label=entity.title,
                position=entity.position,
                parent_id=entity.parent_id,
                depth=depth,
                status=entity.status.value,
                blocking=self.dependencies.blocking_status(entity.id),
                attributes={
                    "flagged": entity.flagged,
                    "project_id": entity.project_id,
                    "tag_ids": list(entity.tag_ids),
                    "defer_date": entity.defer_date,
                    "due_date": entity.due_date,
                },
            )
        attributes: dict[str, Any] = {}
        if isinstance(entity, Tag):
            attributes = {
                "available_from": entity.available_from,
                "available_until": entity.available_until,
            }
        return TreeNode(
            id=entity.id,
            kind=kind.value,
            label=entity.name,
            position=entity.position,
            parent_id=entity.parent_id,
            depth=depth,
            attributes=attributes,
        )
