"""Blocked-by dependency graph between actions.

Edges live on the actions themselves (``Action.blocked_by``) and point from a
dependent to its blockers. The graph is independent of the parent/child tree.
Blocked state is derived on every read from the direct blockers' current
status; a blocker's own blockers do not propagate.
"""

from __future__ import annotations

from typing import Iterable, MutableMapping

from loguru import logger

from ..errors import CycleError, NotFoundError, SelfBlockError
from .model import Action, ActionStatus
from .views import BlockerInfo, BlockingStatus


class DependencyGraph:
    """Add, remove and evaluate blocked-by edges over an action arena."""

    def __init__(self, actions: MutableMapping[str, Action]) -> None:
        self.actions = actions

    def _get(self, action_id: str) -> Action:
        action = self.actions.get(action_id)
        if action is None:
            raise NotFoundError("action", action_id)
        return action

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_block(self, action_id: str, blocker_id: str) -> bool:
        """Make *action_id* wait on *blocker_id*.

        Returns False if the edge already existed.

        Raises:
            SelfBlockError: Both ids are the same.
            NotFoundError: Either action does not exist.
            CycleError: *blocker_id* already (transitively) waits on *action_id*.
        """
        if action_id == blocker_id:
            raise SelfBlockError(f"Action {action_id} cannot block itself")
        action = self._get(action_id)
        self._get(blocker_id)
        if blocker_id in action.blocked_by:
            return False
        if self.reaches(blocker_id, action_id):
            raise CycleError(
                f"Blocking {action_id} on {blocker_id} would create a cycle: "
                f"{blocker_id} already waits on {action_id}"
            )
        action.add_blocked_by(blocker_id)
        return True

    def remove_block(self, action_id: str, blocker_id: str) -> bool:
        """Drop the edge if present. The blocker need not exist any more."""
        action = self._get(action_id)
        if blocker_id not in action.blocked_by:
            return False
        action.remove_blocked_by(blocker_id)
        return True

    def replace_blockers(self, action_id: str, blocker_ids: Iterable[str]) -> list[str]:
        """Set the full blocked-by list of *action_id*, validating every edge first."""
        action = self._get(action_id)
        wanted: list[str] = []
        for blocker_id in blocker_ids:
            if blocker_id in wanted:
                continue
            if blocker_id == action_id:
                raise SelfBlockError(f"Action {action_id} cannot block itself")
            self._get(blocker_id)
            # Every new edge starts at action_id, so checking each one alone is enough.
            if self.reaches(blocker_id, action_id):
                raise CycleError(
                    f"Blocking {action_id} on {blocker_id} would create a cycle: "
                    f"{blocker_id} already waits on {action_id}"
                )
            wanted.append(blocker_id)
        if wanted != action.blocked_by:
            action.blocked_by = wanted
            action.touch()
        return wanted

    def prune(self, removed_ids: Iterable[str]) -> dict[str, list[str]]:
        """Remove references to deleted actions from every remaining action.

        Returns ``{action_id: [pruned ids]}`` for each action that changed.
        """
        removed = set(removed_ids)
        pruned: dict[str, list[str]] = {}
        for action in self.actions.values():
            if action.id in removed:
                continue
            stale = [b for b in action.blocked_by if b in removed]
            for blocker_id in stale:
                action.remove_blocked_by(blocker_id)
            if stale:
                pruned[action.id] = stale
        if pruned:
            logger.debug("Pruned blocked-by references to {} from {} action(s)", sorted(removed), len(pruned))
        return pruned

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def reaches(self, start_id: str, target_id: str) -> bool:
        """True if *target_id* is reachable from *start_id* along blocked-by edges."""
        visited: set[str] = set()
        stack = [start_id]
        while stack:
            current = stack.pop()
            if current == target_id:
                return True
            if current in visited:
                continue
            visited.add(current)
            node = self.actions.get(current)
            if node is not None:
                stack.extend(node.blocked_by)
        return False

    def blockers_of(self, action_id: str) -> list[Action]:
        """Existing direct blockers of *action_id*, in edge order."""
        return [self.actions[b] for b in self._get(action_id).blocked_by if b in self.actions]

    def dependents_of(self, blocker_id: str) -> list[str]:
        return [a.id for a in self.actions.values() if blocker_id in a.blocked_by]

    def is_blocked(self, action_id: str) -> bool:
        return any(b.status != ActionStatus.COMPLETED for b in self.blockers_of(action_id))

    def blocking_status(self, action_id: str) -> BlockingStatus:
        blockers = [
            BlockerInfo(id=b.id, completed=b.status == ActionStatus.COMPLETED)
            for b in self.blockers_of(action_id)
        ]
        return BlockingStatus(
            blocked=any(not info.completed for info in blockers),
            blockers=blockers,
        )

    def adjacency(self) -> dict[str, list[str]]:
        """Return ``{action_id: [blocked_by ids]}`` for every action."""
        return {a.id: list(a.blocked_by) for a in self.actions.values()}

    def integrity_problems(self) -> list[str]:
        problems: list[str] = []
        for action in self.actions.values():
            for blocker_id in action.blocked_by:
                if blocker_id not in self.actions:
                    problems.append(f"action {action.id} references missing blocker {blocker_id}")
                elif self.reaches(blocker_id, action.id):
                    problems.append(f"action {action.id} is on a blocked-by cycle through {blocker_id}")
        return problems
