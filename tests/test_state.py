"""Tests for autodeploy.state: durable change flag."""

from __future__ import annotations

import json
from pathlib import Path

from autodeploy.models import ChangeRecord
from autodeploy.state import ChangeFlagStore


def _change(changed: bool, prev: str | None = "abc123", new: str = "def456") -> ChangeRecord:
    return ChangeRecord(previous_revision=prev, new_revision=new, changed=changed)


class TestChangeFlagStore:
    """Tests for record()/mark_deployed()/load()."""

    def test_defaults_when_missing(self, tmp_path: Path) -> None:
        store = ChangeFlagStore(tmp_path / "changed")
        state = store.load()
        assert state["changed"] is False
        assert state["pending"] is False
        assert store.pending is False

    def test_change_sets_pending(self, tmp_path: Path) -> None:
        store = ChangeFlagStore(tmp_path / "changed")
        store.record(_change(True))

        state = store.load()
        assert state["changed"] is True
        assert state["pending"] is True
        assert state["previous_revision"] == "abc123"
        assert state["new_revision"] == "def456"
        assert state["checked_at"]

    def test_pending_survives_unchanged_sync(self, tmp_path: Path) -> None:
        store = ChangeFlagStore(tmp_path / "changed")
        store.record(_change(True))
        store.record(_change(False, prev="def456"))

        state = store.load()
        assert state["changed"] is False
        assert state["pending"] is True

    def test_mark_deployed_clears_pending(self, tmp_path: Path) -> None:
        store = ChangeFlagStore(tmp_path / "changed")
        store.record(_change(True))
        store.mark_deployed()

        assert store.pending is False
        assert store.load()["deployed_at"]

    def test_corrupt_file_reads_as_default(self, tmp_path: Path) -> None:
        path = tmp_path / "changed"
        path.write_text("true\n", encoding="utf-8")

        store = ChangeFlagStore(path)
        assert store.load()["pending"] is False

        path.write_text("{not json", encoding="utf-8")
        assert store.pending is False

    def test_write_is_atomic_json(self, tmp_path: Path) -> None:
        path = tmp_path / "state" / "changed"
        store = ChangeFlagStore(path)
        store.record(_change(True))

        assert json.loads(path.read_text(encoding="utf-8"))["pending"] is True
        assert not path.with_suffix(".tmp").exists()
