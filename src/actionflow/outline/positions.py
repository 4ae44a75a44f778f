"""Position manager: ordering keys within one sibling group.

Positions are plain integers. Inserting between two neighbours takes a point
inside their gap, so most moves rewrite a single row. When the gap is
exhausted, or the group already contains a tie, the whole group is renumbered
with a fixed stride and every changed ``(id, position)`` pair is reported so
the caller can persist the batch as one unit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

from loguru import logger

from ..constants import DEFAULT_POSITION_STRIDE


@dataclass(frozen=True)
class Slot:
    """One sibling as seen by the position manager."""

    id: str
    position: int


@dataclass
class Placement:
    """Result of placing one or more items into a sibling group.

    ``positions`` holds the new keys of the placed items, in placement order.
    ``renumbered`` holds the other siblings whose keys had to change.
    """

    positions: dict[str, int] = field(default_factory=dict)
    renumbered: dict[str, int] = field(default_factory=dict)

    @property
    def position(self) -> int:
        return next(iter(self.positions.values()))

    def changes(self) -> dict[str, int]:
        merged = dict(self.renumbered)
        merged.update(self.positions)
        return merged


def _clamp(index: Optional[int], size: int) -> int:
    if index is None:
        return size
    return max(0, min(int(index), size))


def has_ties(siblings: Sequence[Slot]) -> bool:
    """True if the (already sorted) group is not strictly increasing."""
    return any(a.position >= b.position for a, b in zip(siblings, siblings[1:]))


class PositionManager:
    """Assign and renumber ordering keys among the siblings of one parent.

    Parameters
    ----------
    stride:
        Distance between neighbours after a renumber, and the step used when
        appending or prepending.
    """

    def __init__(self, stride: int = DEFAULT_POSITION_STRIDE) -> None:
        if stride < 2:
            raise ValueError(f"Position stride must be at least 2, got {stride}")
        self.stride = stride

    def renumber(self, ordered_ids: Sequence[str]) -> list[tuple[str, int]]:
        """Return ``(id, position)`` for every id, spaced by the stride from 0."""
        return [(item_id, index * self.stride) for index, item_id in enumerate(ordered_ids)]

    def assign_position(
        self,
        parent_id: Optional[str],
        siblings: Sequence[Slot],
        desired_index: Optional[int],
        item_id: str,
    ) -> Placement:
        """Place *item_id* so that it ends up at *desired_index* in the group.

        *siblings* must be sorted in display order and must not contain the
        item being placed. ``None`` appends.
        """
        return self.assign_run(parent_id, siblings, desired_index, [item_id])

    def assign_run(
        self,
        parent_id: Optional[str],
        siblings: Sequence[Slot],
        desired_index: Optional[int],
        item_ids: Sequence[str],
    ) -> Placement:
        """Place a contiguous run of items starting at *desired_index*.

        The run keeps the given order. Siblings originally before the index
        stay before the run and the rest stay after it.
        """
        if not item_ids:
            return Placement()
        sibling_ids = {s.id for s in siblings}
        overlap = sibling_ids.intersection(item_ids)
        if overlap:
            raise ValueError(f"Items {sorted(overlap)} are already in the sibling group")
        if len(set(item_ids)) != len(item_ids):
            raise ValueError("Duplicate ids in placement run")

        n = len(siblings)
        k = _clamp(desired_index, n)
        m = len(item_ids)

        if not has_ties(siblings):
            keys = self._keys_in_gap(
                siblings[k - 1].position if k > 0 else None,
                siblings[k].position if k < n else None,
                m,
            )
            if keys is not None:
                return Placement(positions=dict(zip(item_ids, keys)))

        logger.debug("Renumbering sibling group of parent {} ({} items)", parent_id, n + m)
        ordered = [s.id for s in siblings[:k]] + list(item_ids) + [s.id for s in siblings[k:]]
        current = {s.id: s.position for s in siblings}
        placed = set(item_ids)
        placement = Placement()
        for item_id, position in self.renumber(ordered):
            if item_id in placed:
                placement.positions[item_id] = position
            elif current[item_id] != position:
                placement.renumbered[item_id] = position
        # Keep the run's own order in the mapping.
        placement.positions = {item_id: placement.positions[item_id] for item_id in item_ids}
        return placement

    def normalize(self, siblings: Sequence[Slot]) -> dict[str, int]:
        """Resolve ties in a sorted group. Returns the changed positions (empty if none)."""
        if not has_ties(siblings):
            return {}
        return {
            item_id: position
            for (item_id, position), slot in zip(self.renumber([s.id for s in siblings]), siblings)
            if slot.position != position
        }

    def _keys_in_gap(self, before: Optional[int], after: Optional[int], count: int) -> Optional[list[int]]:
        if before is None and after is None:
            return [i * self.stride for i in range(count)]
        if before is None:
            return [after - self.stride * (count - i) for i in range(count)]
        if after is None:
            return [before + self.stride * (i + 1) for i in range(count)]
        gap = after - before
        if gap <= count:
            return None
        step = gap // (count + 1)
        return [before + step * (i + 1) for i in range(count)]
