"""File-based outline store with locking and revision checks.

Stores every entity in a single YAML file (``outline.yaml``) inside the
project's ``.actionflow/`` directory. Writes go either through
:meth:`OutlineStore.transaction`, which holds an exclusive file lock from
read to write, or through :meth:`OutlineStore.commit`, which writes a
snapshot read earlier only if nobody committed in between.

Every save bumps ``revision`` and replaces the file atomically, so a batch
of position updates is persisted as one unit or not at all.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Optional

from loguru import logger

from ..constants import LOCK_FILENAME, STORE_FILENAME, STORE_VERSION
from ..errors import ConcurrentModificationError
from ..io_utils import FileLock, _atomic_write_yaml, _load_yaml_with_error
from .model import ENTITY_TYPES, Action, EntityKind, Folder, Project, Tag, parse_kind


_SECTIONS = {
    EntityKind.ACTION: "actions",
    EntityKind.FOLDER: "folders",
    EntityKind.TAG: "tags",
    EntityKind.PROJECT: "projects",
}


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

@dataclass
class OutlineSnapshot:
    """All entities at one revision, as id-keyed arenas."""

    revision: int = 0
    actions: dict[str, Action] = field(default_factory=dict)
    folders: dict[str, Folder] = field(default_factory=dict)
    tags: dict[str, Tag] = field(default_factory=dict)
    projects: dict[str, Project] = field(default_factory=dict)

    def arena(self, kind: EntityKind | str) -> dict[str, Any]:
        return getattr(self, _SECTIONS[parse_kind(kind)])

    def to_payload(self, revision: int) -> dict[str, Any]:
        payload: dict[str, Any] = {"version": STORE_VERSION, "revision": revision}
        for kind, section in _SECTIONS.items():
            payload[section] = [e.to_dict() for e in self.arena(kind).values()]
        return payload


# ---------------------------------------------------------------------------
# Low-level I/O
# ---------------------------------------------------------------------------

def _load_raw(path: Path) -> dict[str, Any]:
    data, err = _load_yaml_with_error(path, {})
    if err:
        # Refuse to continue: a later save would overwrite the unreadable file.
        raise RuntimeError(f"Cannot read outline store: {err}")
    return data


def _parse_snapshot(data: dict[str, Any]) -> OutlineSnapshot:
    snapshot = OutlineSnapshot(revision=int(data.get("revision", 0) or 0))
    for kind, section in _SECTIONS.items():
        rows = data.get(section) or []
        if not isinstance(rows, list):
            logger.warning("Ignoring malformed '{}' section in outline store", section)
            continue
        arena = snapshot.arena(kind)
        entity_cls = ENTITY_TYPES[kind]
        for raw in rows:
            if kind == EntityKind.ACTION:
                errors = Action.validate_dict(raw)
                if errors:
                    logger.warning("Skipping invalid action record {}: {}", raw, errors)
                    continue
            elif not isinstance(raw, dict):
                logger.warning("Skipping invalid {} record {}", kind.value, raw)
                continue
            entity = entity_cls.from_dict(raw)
            if entity.id in arena:
                logger.warning("Duplicate {} id {}; keeping the first record", kind.value, entity.id)
                continue
            arena[entity.id] = entity
    return snapshot


# ---------------------------------------------------------------------------
# OutlineStore
# ---------------------------------------------------------------------------

class OutlineStore:
    """Thread-safe, file-backed store for the outline.

    Parameters
    ----------
    state_dir:
        Path to the ``.actionflow/`` directory for the project.
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = state_dir
        self._store_path = state_dir / STORE_FILENAME
        self._lock_path = state_dir / LOCK_FILENAME

    @property
    def path(self) -> Path:
        return self._store_path

    # -- internal helpers ---------------------------------------------------

    def _locked(self) -> FileLock:
        # A fresh handle per acquisition: flock excludes across handles, even between threads.
        return FileLock(self._lock_path)

    def _load(self) -> OutlineSnapshot:
        return _parse_snapshot(_load_raw(self._store_path))

    def _current_revision(self) -> int:
        return int(_load_raw(self._store_path).get("revision", 0) or 0)

    def _save(self, snapshot: OutlineSnapshot) -> int:
        revision = snapshot.revision + 1
        _atomic_write_yaml(self._store_path, snapshot.to_payload(revision))
        snapshot.revision = revision
        return revision

    # -- public API ---------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[_OutlineTx]:
        """Acquire the lock, load the outline, yield a transaction, and save on exit.

        Nothing is written if the body raises or never marks the transaction
        dirty.

        Usage::

            with store.transaction() as tx:
                tx.actions["act-1a2b3c4d"].title = "Renamed"
                tx.dirty = True
        """
        with self._locked():
            tx = _OutlineTx(self._load())
            yield tx
            if tx.dirty:
                self._save(tx.snapshot)

    def read_snapshot(self) -> OutlineSnapshot:
        """Return a detached snapshot (no lock held after return)."""
        with self._locked():
            return self._load()

    def revision(self) -> int:
        with self._locked():
            return self._current_revision()

    def commit(self, snapshot: OutlineSnapshot) -> int:
        """Write *snapshot* if the store is still at the revision it was read from.

        Returns the new revision and updates ``snapshot.revision``.

        Raises:
            ConcurrentModificationError: Another writer committed since the read.
        """
        with self._locked():
            actual = self._current_revision()
            if actual != snapshot.revision:
                raise ConcurrentModificationError(snapshot.revision, actual)
            return self._save(snapshot)


class _OutlineTx:
    """In-memory transaction over one loaded snapshot.

    Mutations are collected and flushed back to disk when the ``transaction``
    context-manager exits.
    """

    def __init__(self, snapshot: OutlineSnapshot) -> None:
        self.snapshot = snapshot
        self.dirty = False

    @property
    def actions(self) -> dict[str, Action]:
        return self.snapshot.actions

    @property
    def folders(self) -> dict[str, Folder]:
        return self.snapshot.folders

    @property
    def tags(self) -> dict[str, Tag]:
        return self.snapshot.tags

    @property
    def projects(self) -> dict[str, Project]:
        return self.snapshot.projects

    def get(self, kind: EntityKind | str, entity_id: str) -> Optional[Any]:
        return self.snapshot.arena(kind).get(entity_id)

    def list_all(self, kind: EntityKind | str) -> list[Any]:
        return list(self.snapshot.arena(kind).values())

    def add(self, kind: EntityKind | str, entity: Any) -> Any:
        arena = self.snapshot.arena(kind)
        if entity.id in arena:
            raise ValueError(f"{parse_kind(kind).value} {entity.id} already exists")
        arena[entity.id] = entity
        self.dirty = True
        return entity
