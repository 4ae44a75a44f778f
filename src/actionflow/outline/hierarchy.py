"""Generic parent/child hierarchy over an id-keyed arena.

Actions, folders and tags share one implementation: the manager is told how
to read and write an entity's id, parent id and position through
:class:`NodeAccessors`, and works against a plain ``{id: entity}`` mapping.
Adjacency is rebuilt from that mapping on demand, so there are no child
pointers to keep in sync and a cycle can only be introduced through
``reparent``, which checks for it.

Every operation validates first and mutates last: when an error is raised
the arena is untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Generic, MutableMapping, Mapping, Optional, Sequence, TypeVar

from loguru import logger

from ..errors import (
    CycleError,
    NoParentError,
    NoPrecedingSiblingError,
    NotFoundError,
    SelfReferenceError,
)
from .positions import Placement, PositionManager, Slot, has_ties

T = TypeVar("T")


@dataclass(frozen=True)
class NodeAccessors(Generic[T]):
    get_id: Callable[[T], str]
    get_parent: Callable[[T], Optional[str]]
    set_parent: Callable[[T, Optional[str]], None]
    get_position: Callable[[T], int]
    set_position: Callable[[T, int], None]
    tie_key: Callable[[T], Any]


def attribute_accessors(parent_attr: str = "parent_id", tie_attr: str = "created_at") -> NodeAccessors[Any]:
    """Accessors for dataclass entities with ``id``/``position`` attributes.

    Setters call ``touch()`` on the entity when it has one.
    """

    def _touch(node: Any) -> None:
        touch = getattr(node, "touch", None)
        if callable(touch):
            touch()

    def _set_parent(node: Any, value: Optional[str]) -> None:
        setattr(node, parent_attr, value)
        _touch(node)

    def _set_position(node: Any, value: int) -> None:
        node.position = value
        _touch(node)

    return NodeAccessors(
        get_id=lambda node: node.id,
        get_parent=lambda node: getattr(node, parent_attr),
        set_parent=_set_parent,
        get_position=lambda node: node.position,
        set_position=_set_position,
        tie_key=lambda node: getattr(node, tie_attr) or "",
    )


@dataclass
class MoveResult:
    node_id: str
    old_parent_id: Optional[str]
    parent_id: Optional[str]
    position: int
    changed: dict[str, int] = field(default_factory=dict)


@dataclass
class RemoveResult:
    removed: list[str] = field(default_factory=list)
    reparented: list[str] = field(default_factory=list)
    parent_id: Optional[str] = None
    changed: dict[str, int] = field(default_factory=dict)


class HierarchyManager(Generic[T]):
    """Reparent, indent, outdent and reorder nodes of one entity kind.

    Parameters
    ----------
    nodes:
        The arena, mutated in place.
    accessors:
        How to read/write id, parent and position on an entity.
    positions:
        Position manager used for every placement.
    kind:
        Entity kind name, used in error messages.
    parents:
        When the parent of a node lives in a different arena (projects under
        folders), the mapping to validate parent ids against. Ancestor checks
        are skipped in that case since the two kinds cannot form a cycle.
    parent_kind:
        Kind name of the entities in *parents*.
    """

    def __init__(
        self,
        nodes: MutableMapping[str, T],
        accessors: NodeAccessors[T],
        positions: PositionManager,
        kind: str,
        parents: Optional[Mapping[str, Any]] = None,
        parent_kind: Optional[str] = None,
    ) -> None:
        self.nodes = nodes
        self.acc = accessors
        self.positions = positions
        self.kind = kind
        self._parents = parents
        self.parent_kind = parent_kind or kind

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, node_id: Optional[str]) -> T:
        node = self.nodes.get(node_id) if node_id is not None else None
        if node is None:
            raise NotFoundError(self.kind, node_id)
        return node

    def sort_key(self, node: T) -> tuple[int, Any, str]:
        return (self.acc.get_position(node), self.acc.tie_key(node), self.acc.get_id(node))

    def child_index(self) -> dict[Optional[str], list[T]]:
        """Group every node by parent id, each group sorted in display order."""
        index: dict[Optional[str], list[T]] = {}
        for node in self.nodes.values():
            index.setdefault(self.acc.get_parent(node), []).append(node)
        for group in index.values():
            group.sort(key=self.sort_key)
        return index

    def children(self, parent_id: Optional[str]) -> list[T]:
        group = [n for n in self.nodes.values() if self.acc.get_parent(n) == parent_id]
        group.sort(key=self.sort_key)
        return group

    def siblings(self, node_id: str) -> list[T]:
        """The node's sibling group, including the node itself."""
        return self.children(self.acc.get_parent(self.get(node_id)))

    def index_of(self, node_id: str) -> int:
        for index, node in enumerate(self.siblings(node_id)):
            if self.acc.get_id(node) == node_id:
                return index
        raise NotFoundError(self.kind, node_id)

    def ancestors(self, node_id: str) -> list[str]:
        """Parent chain of *node_id*, nearest first."""
        if self._parents is not None:
            return []
        chain: list[str] = []
        seen = {node_id}
        current = self.acc.get_parent(self.get(node_id))
        while current is not None:
            if current in seen:
                # Only reachable with corrupted persisted data.
                logger.warning("Parent cycle detected in {} hierarchy at {}", self.kind, current)
                break
            seen.add(current)
            chain.append(current)
            node = self.nodes.get(current)
            if node is None:
                break
            current = self.acc.get_parent(node)
        return chain

    def descendants(self, node_id: str) -> list[str]:
        """All nodes below *node_id*, depth-first in display order."""
        self.get(node_id)
        index = self.child_index()
        out: list[str] = []
        seen = {node_id}
        stack = [node_id]
        while stack:
            current = stack.pop()
            kids = [self.acc.get_id(n) for n in index.get(current, [])]
            for kid in reversed(kids):
                if kid in seen:
                    continue
                seen.add(kid)
                stack.append(kid)
            if current != node_id:
                out.append(current)
        return out

    def is_descendant(self, candidate_id: str, ancestor_id: str) -> bool:
        return ancestor_id in self.ancestors(candidate_id)

    def depth(self, node_id: str) -> int:
        return len(self.ancestors(node_id))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def place(self, node: T, parent_id: Optional[str] = None, index: Optional[int] = None) -> MoveResult:
        """Insert a new node under *parent_id* at *index* (append when None)."""
        node_id = self.acc.get_id(node)
        if node_id in self.nodes:
            raise ValueError(f"{self.kind} {node_id} already exists")
        if parent_id is not None and parent_id == node_id:
            raise SelfReferenceError(f"{self.kind} {node_id} cannot be its own parent")
        self._require_parent(parent_id)

        placement = self._placement(parent_id, self.children(parent_id), index, node_id)
        self.acc.set_parent(node, parent_id)
        self.nodes[node_id] = node
        self._apply(placement)
        return MoveResult(
            node_id=node_id,
            old_parent_id=None,
            parent_id=parent_id,
            position=placement.position,
            changed=placement.changes(),
        )

    def reparent(
        self,
        node_id: str,
        new_parent_id: Optional[str],
        desired_index: Optional[int] = None,
    ) -> MoveResult:
        """Move *node_id* (with its subtree) under *new_parent_id* at *desired_index*.

        Raises:
            NotFoundError: The node or the new parent does not exist.
            SelfReferenceError: *new_parent_id* is the node itself.
            CycleError: *new_parent_id* is a descendant of the node.
        """
        node = self.get(node_id)
        if new_parent_id is not None:
            if new_parent_id == node_id:
                raise SelfReferenceError(f"{self.kind} {node_id} cannot be its own parent")
            self._require_parent(new_parent_id)
            if self._parents is None and node_id in self.ancestors(new_parent_id):
                raise CycleError(
                    f"Moving {self.kind} {node_id} under {new_parent_id} would create a cycle: "
                    f"{new_parent_id} is inside its subtree"
                )

        old_parent_id = self.acc.get_parent(node)
        group = self.children(new_parent_id)
        if old_parent_id == new_parent_id and desired_index is not None and not has_ties(self._slots(group)):
            current = next(i for i, n in enumerate(group) if self.acc.get_id(n) == node_id)
            target = max(0, min(int(desired_index), len(group) - 1))
            if current == target:
                return MoveResult(node_id, old_parent_id, new_parent_id, self.acc.get_position(node))

        others = [n for n in group if self.acc.get_id(n) != node_id]
        placement = self._placement(new_parent_id, others, desired_index, node_id)
        if old_parent_id != new_parent_id:
            self.acc.set_parent(node, new_parent_id)
        self._apply(placement)
        logger.debug(
            "Reparented {} {} from {} to {} at position {}",
            self.kind, node_id, old_parent_id, new_parent_id, placement.position,
        )
        return MoveResult(
            node_id=node_id,
            old_parent_id=old_parent_id,
            parent_id=new_parent_id,
            position=placement.position,
            changed=placement.changes(),
        )

    def move(self, node_id: str, desired_index: int) -> MoveResult:
        """Reorder *node_id* within its current sibling group."""
        return self.reparent(node_id, self.acc.get_parent(self.get(node_id)), desired_index)

    def indent(self, node_id: str) -> MoveResult:
        """Make *node_id* the last child of its preceding sibling."""
        group = self.siblings(node_id)
        index = next(i for i, n in enumerate(group) if self.acc.get_id(n) == node_id)
        if index == 0:
            raise NoPrecedingSiblingError(
                f"{self.kind} {node_id} is the first child of its parent; nothing to indent under"
            )
        new_parent_id = self.acc.get_id(group[index - 1])
        return self.reparent(node_id, new_parent_id, None)

    def outdent(self, node_id: str) -> MoveResult:
        """Move *node_id* to its grandparent, right after its current parent."""
        parent_id = self.acc.get_parent(self.get(node_id))
        if parent_id is None:
            raise NoParentError(f"{self.kind} {node_id} is already at the root")
        if self._parents is not None:
            raise NoParentError(f"{self.kind} {node_id} has no nesting level to leave")
        parent = self.get(parent_id)
        grandparent_id = self.acc.get_parent(parent)
        group = self.children(grandparent_id)
        parent_index = next(i for i, n in enumerate(group) if self.acc.get_id(n) == parent_id)
        return self.reparent(node_id, grandparent_id, parent_index + 1)

    def reorder(self, parent_id: Optional[str], ordered_ids: Sequence[str]) -> dict[str, int]:
        """Put *ordered_ids* first, in that order; other siblings follow in their current order.

        The group is renumbered with the stride. Returns the changed positions.
        """
        self._require_parent(parent_id)
        if len(set(ordered_ids)) != len(ordered_ids):
            raise ValueError("Duplicate ids in reorder request")
        for node_id in ordered_ids:
            node = self.get(node_id)
            if self.acc.get_parent(node) != parent_id:
                raise ValueError(f"{self.kind} {node_id} is not a child of {parent_id}")

        listed = set(ordered_ids)
        rest = [self.acc.get_id(n) for n in self.children(parent_id) if self.acc.get_id(n) not in listed]
        changed: dict[str, int] = {}
        for node_id, position in self.positions.renumber(list(ordered_ids) + rest):
            node = self.nodes[node_id]
            if self.acc.get_position(node) != position:
                self.acc.set_position(node, position)
                changed[node_id] = position
        return changed

    def remove(self, node_id: str, cascade: bool = False) -> RemoveResult:
        """Delete *node_id* from the arena.

        Without *cascade*, its children take its place in the parent's sibling
        group, keeping their relative order. With *cascade*, the whole subtree
        is removed.
        """
        node = self.get(node_id)
        parent_id = self.acc.get_parent(node)

        if cascade:
            removed = [node_id] + self.descendants(node_id)
            for rid in removed:
                del self.nodes[rid]
            return RemoveResult(removed=removed, parent_id=parent_id)

        kids = [self.acc.get_id(n) for n in self.children(node_id)]
        group = self.children(parent_id)
        index = next(i for i, n in enumerate(group) if self.acc.get_id(n) == node_id)
        others = [n for n in group if self.acc.get_id(n) != node_id]
        placement = self.positions.assign_run(parent_id, self._slots(others), index, kids)

        for kid in kids:
            self.acc.set_parent(self.nodes[kid], parent_id)
        self._apply(placement)
        del self.nodes[node_id]
        return RemoveResult(
            removed=[node_id],
            reparented=kids,
            parent_id=parent_id,
            changed=placement.changes(),
        )

    def integrity_problems(self) -> list[str]:
        """Describe every invariant violation in the arena (empty = consistent)."""
        problems: list[str] = []
        for node_id, node in self.nodes.items():
            parent_id = self.acc.get_parent(node)
            lookup = self._parents if self._parents is not None else self.nodes
            if parent_id is not None and parent_id not in lookup:
                problems.append(f"{self.kind} {node_id} references missing parent {parent_id}")
            if self._parents is None and self._on_parent_cycle(node_id):
                problems.append(f"{self.kind} {node_id} is its own ancestor")
        for parent_id, group in self.child_index().items():
            if has_ties(self._slots(group)):
                problems.append(f"{self.kind} siblings under {parent_id} have duplicate positions")
        return problems

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_parent(self, parent_id: Optional[str]) -> None:
        if parent_id is None:
            return
        if self._parents is not None:
            if parent_id not in self._parents:
                raise NotFoundError(self.parent_kind, parent_id)
            return
        self.get(parent_id)

    def _on_parent_cycle(self, node_id: str) -> bool:
        seen: set[str] = set()
        current = self.acc.get_parent(self.nodes[node_id])
        while current is not None and current not in seen:
            if current == node_id:
                return True
            seen.add(current)
            node = self.nodes.get(current)
            current = self.acc.get_parent(node) if node is not None else None
        return False

    def _slots(self, group: Sequence[T]) -> list[Slot]:
        return [Slot(self.acc.get_id(n), self.acc.get_position(n)) for n in group]

    def _placement(
        self,
        parent_id: Optional[str],
        group: Sequence[T],
        index: Optional[int],
        node_id: str,
    ) -> Placement:
        return self.positions.assign_position(parent_id, self._slots(group), index, node_id)

    def _apply(self, placement: Placement) -> None:
        for node_id, position in placement.changes().items():
            node = self.nodes[node_id]
            if self.acc.get_position(node) != position:
                self.acc.set_position(node, position)
