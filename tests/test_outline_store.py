"""Tests for the YAML outline store (outline/store.py) and sessions (outline/session.py)."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from actionflow.errors import ConcurrentModificationError
from actionflow.outline.model import Action, EntityKind, Folder
from actionflow.outline.session import OutlineSession
from actionflow.outline.store import OutlineStore


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    d = tmp_path / ".actionflow"
    d.mkdir()
    return d


@pytest.fixture
def store(state_dir: Path) -> OutlineStore:
    return OutlineStore(state_dir)


class TestOutlineStore:
    def test_empty_read(self, store: OutlineStore) -> None:
        snapshot = store.read_snapshot()
        assert snapshot.revision == 0
        assert snapshot.actions == {}
        assert not store.path.exists()

    def test_transaction_persists_and_bumps_revision(self, store: OutlineStore) -> None:
        with store.transaction() as tx:
            tx.add(EntityKind.ACTION, Action(id="a1", title="First"))
            tx.add("folder", Folder(id="f1", name="Work"))

        snapshot = store.read_snapshot()
        assert snapshot.revision == 1
        assert snapshot.actions["a1"].title == "First"
        assert snapshot.folders["f1"].name == "Work"

        raw = yaml.safe_load(store.path.read_text(encoding="utf-8"))
        assert raw["version"] == 1
        assert raw["revision"] == 1
        assert [a["id"] for a in raw["actions"]] == ["a1"]

    def test_clean_transaction_does_not_write(self, store: OutlineStore) -> None:
        with store.transaction() as tx:
            assert tx.list_all("action") == []
        assert not store.path.exists()
        assert store.revision() == 0

    def test_exception_discards_changes(self, store: OutlineStore) -> None:
        with store.transaction() as tx:
            tx.add("action", Action(id="a1", title="Keep"))

        with pytest.raises(RuntimeError):
            with store.transaction() as tx:
                tx.actions["a1"].title = "Lost"
                tx.dirty = True
                raise RuntimeError("boom")

        snapshot = store.read_snapshot()
        assert snapshot.actions["a1"].title == "Keep"
        assert snapshot.revision == 1

    def test_duplicate_add_raises(self, store: OutlineStore) -> None:
        with store.transaction() as tx:
            tx.add("action", Action(id="a1"))
            assert tx.get("action", "a1") is not None
            assert tx.get("folder", "a1") is None
            with pytest.raises(ValueError, match="already exists"):
                tx.add("action", Action(id="a1"))

    def test_commit_checks_revision(self, store: OutlineStore) -> None:
        with store.transaction() as tx:
            tx.add("action", Action(id="a1", title="v1"))

        first = store.read_snapshot()
        second = store.read_snapshot()

        first.actions["a1"].title = "v2"
        assert store.commit(first) == 2
        assert first.revision == 2

        second.actions["a1"].title = "v3"
        with pytest.raises(ConcurrentModificationError) as excinfo:
            store.commit(second)
        assert excinfo.value.expected_revision == 1
        assert excinfo.value.actual_revision == 2
        assert store.read_snapshot().actions["a1"].title == "v2"

    def test_unreadable_file_is_not_overwritten(self, store: OutlineStore) -> None:
        store.path.write_text("actions: [unclosed\n", encoding="utf-8")
        with pytest.raises(RuntimeError, match="Cannot read outline store"):
            store.read_snapshot()
        with pytest.raises(RuntimeError):
            with store.transaction() as tx:
                tx.dirty = True
        assert store.path.read_text(encoding="utf-8") == "actions: [unclosed\n"

    def test_invalid_and_duplicate_records_are_skipped(self, store: OutlineStore) -> None:
        store.path.write_text(
            yaml.safe_dump(
                {
                    "revision": 4,
                    "actions": [
                        {"id": "a1", "title": "ok"},
                        {"title": "no id"},
                        {"id": "a2", "position": "high"},
                        {"id": "a3", "estimated_minutes": "soon"},
                        {"id": "a4", "repeat_end_count": 2.5, "flagged": "yes"},
                        {"id": "a1", "title": "dup"},
                    ],
                    "folders": "not-a-list",
                }
            ),
            encoding="utf-8",
        )
        snapshot = store.read_snapshot()
        assert snapshot.revision == 4
        assert list(snapshot.actions) == ["a1"]
        assert snapshot.actions["a1"].title == "ok"
        assert snapshot.folders == {}


class TestOutlineSession:
    def test_loads_lazily_and_commits(self, store: OutlineStore) -> None:
        with store.transaction() as tx:
            tx.add("action", Action(id="a1", title="A"))
            tx.add("action", Action(id="a2", title="B", position=1000))

        with OutlineSession(store) as session:
            assert not session.loaded
            session.components.hierarchy("action").indent("a2")
            assert session.loaded
            assert session.commit() == 2

        assert store.read_snapshot().actions["a2"].parent_id == "a1"

    def test_conflicting_sessions(self, store: OutlineStore) -> None:
        with store.transaction() as tx:
            tx.add("action", Action(id="a1", title="A"))
            tx.add("action", Action(id="a2", title="B", position=1000))

        first = OutlineSession(store)
        second = OutlineSession(store)
        first.components.hierarchy("action").move("a2", 0)
        second.components.hierarchy("action").indent("a2")

        first.commit()
        with pytest.raises(ConcurrentModificationError):
            second.commit()
        assert not second.loaded

        # after a refresh the retry sees the committed order
        second.refresh()
        assert [n.id for n in second.project("action")] == ["a2", "a1"]

    def test_blocking_status_from_session(self, store: OutlineStore) -> None:
        with store.transaction() as tx:
            tx.add("action", Action(id="a1"))
            tx.add("action", Action(id="a2", blocked_by=["a1"], position=1000))
        session = OutlineSession(store)
        assert session.blocking_status("a2").blocked is True
        assert session.revision == 1

    def test_integrity_of_fresh_outline(self, store: OutlineStore) -> None:
        assert OutlineSession(store).components.integrity_problems() == []
