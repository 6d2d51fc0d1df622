"""Durable last-known change flag.

Survives between invocations so a change detected by a run that crashed or
failed before deploying is still acted on by the next one.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from autodeploy.logging import get_logger
from autodeploy.models import ChangeRecord, now_iso

log = get_logger("autodeploy.state")


class ChangeFlagStore:
    """JSON file holding the latest ``ChangeRecord`` and a ``pending`` flag."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def pending(self) -> bool:
        """True while a detected change has not been deployed successfully."""
        return bool(self.load().get("pending", False))

    def _default_state(self) -> dict[str, Any]:
        return {
            "changed": False,
            "pending": False,
            "previous_revision": None,
            "new_revision": None,
            "checked_at": None,
            "deployed_at": None,
        }

    def load(self) -> dict[str, Any]:
        default = self._default_state()
        if not self._path.exists():
            return default
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            log.warning("change_flag_load_failed", path=str(self._path))
            return default
        if not isinstance(data, dict):
            return default
        return {**default, **data}

    def record(self, change: ChangeRecord) -> None:
        """Persist a sync result. ``pending`` only ever goes up here."""
        state = self.load()
        state.update(
            {
                "changed": change.changed,
                "pending": bool(state.get("pending")) or change.changed,
                "previous_revision": change.previous_revision,
                "new_revision": change.new_revision,
                "checked_at": now_iso(),
            }
        )
        self._save(state)

    def mark_deployed(self) -> None:
        state = self.load()
        state.update({"changed": False, "pending": False, "deployed_at": now_iso()})
        self._save(state)

    def _save(self, state: dict[str, Any]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(state, indent=2, sort_keys=True), encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError:
            log.exception("change_flag_save_failed", path=str(self._path))
