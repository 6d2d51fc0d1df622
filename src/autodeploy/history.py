"""Append-only, human-readable record of every invocation's outcome.

One line per invocation, e.g.::

    2026-10-18T12:00:03+00:00 deployed-success attempted=yes succeeded=yes \
previous=abc123 new=def456 reason="deployed def456"

Read by operators; the agent itself never reads it back.
"""

from __future__ import annotations

import json
from pathlib import Path

from autodeploy.logging import get_logger
from autodeploy.models import DeploymentOutcome

log = get_logger("autodeploy.history")


def _short(revision: str | None) -> str:
    return revision[:12] if revision else "-"


def format_outcome(outcome: DeploymentOutcome) -> str:
    """Render one outcome as a single log line."""
    parts = [
        outcome.timestamp,
        outcome.kind.value,
        f"attempted={'yes' if outcome.attempted else 'no'}",
        f"succeeded={'yes' if outcome.succeeded else 'no'}",
        f"previous={_short(outcome.previous_revision)}",
        f"new={_short(outcome.new_revision)}",
        # json.dumps quotes and escapes newlines so the entry stays on one line
        f"reason={json.dumps(outcome.reason)}",
    ]
    return " ".join(parts)


class OutcomeLog:
    """Appends ``DeploymentOutcome`` entries to a fixed file."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def append(self, outcome: DeploymentOutcome) -> None:
        line = format_outcome(outcome)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
                if outcome.logs:
                    for logline in outcome.logs.rstrip().splitlines():
                        fh.write(f"    | {logline}\n")
        except OSError:
            log.exception("outcome_log_write_failed", path=str(self._path))

    def tail(self, count: int = 20) -> list[str]:
        """Return the last ``count`` outcome lines (captured logs excluded)."""
        if not self._path.exists():
            return []
        lines = self._path.read_text(encoding="utf-8").splitlines()
        entries = [line for line in lines if line and not line.startswith("    | ")]
        return entries[-count:] if count > 0 else []
