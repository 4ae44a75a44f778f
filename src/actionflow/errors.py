"""Typed failures raised by the outline engine.

Every error is detected before any state is mutated, so a caller that catches
one of these can assume the hierarchy and dependency graph are unchanged.
"""

from __future__ import annotations

from typing import Optional


class EngineError(Exception):
    """Base class for all engine failures."""


class NotFoundError(EngineError, KeyError):
    """A referenced id does not exist at call time."""

    def __init__(self, kind: str, entity_id: Optional[str]) -> None:
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id} not found")

    def __str__(self) -> str:
        # KeyError would otherwise wrap the message in quotes.
        return str(self.args[0])


class CycleError(EngineError):
    """A reparent or a new blockedBy edge would introduce a cycle."""


class SelfReferenceError(CycleError):
    """A node was set as its own parent or its own blocker."""


SelfBlockError = SelfReferenceError


class NoPrecedingSiblingError(EngineError):
    """Indent was requested for the first child of its parent."""


class NoParentError(EngineError):
    """Outdent was requested for a root-level node."""


class ConcurrentModificationError(EngineError):
    """Persisted state changed between the read and the commit of a batch."""

    def __init__(self, expected_revision: int, actual_revision: int) -> None:
        self.expected_revision = expected_revision
        self.actual_revision = actual_revision
        super().__init__(
            f"outline changed since it was read (expected revision {expected_revision}, "
            f"found {actual_revision}); re-read and retry"
        )
