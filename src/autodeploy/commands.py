"""Subprocess helper shared by the git and compose layers.

All shell commands the agent issues go through ``CommandRunner`` so tests
can script their results with a single ``patch.object``.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from autodeploy.logging import get_logger

log = get_logger("autodeploy.commands")

DEFAULT_TIMEOUT = 120
MAX_ERROR_CHARS = 20_000


class CommandRunner:
    """Runs shell commands in a working directory with a bounded timeout."""

    def __init__(self, cwd: Path | str | None = None) -> None:
        self._cwd = str(cwd) if cwd is not None else None
        self.last_error = ""

    async def run(
        self,
        cmd: str,
        timeout: int = DEFAULT_TIMEOUT,
        cwd: Path | str | None = None,
    ) -> str | None:
        """Run a shell command and return stdout, or None on failure."""
        workdir = str(cwd) if cwd is not None else self._cwd
        try:
            proc = await asyncio.create_subprocess_shell(
                cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=workdir,
            )
            try:
                stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
            except (TimeoutError, asyncio.CancelledError):
                proc.kill()
                await proc.wait()
                raise

            if proc.returncode != 0:
                self.last_error = stderr.decode(errors="replace")[-MAX_ERROR_CHARS:]
                log.warning(
                    "cmd_failed",
                    cmd=cmd,
                    returncode=proc.returncode,
                    stderr=self.last_error[:500],
                )
                return None

            return stdout.decode(errors="replace")

        except TimeoutError:
            self.last_error = f"timed out after {timeout}s"
            log.warning("cmd_timeout", cmd=cmd, timeout=timeout)
            return None
        except OSError as exc:
            self.last_error = str(exc)
            log.warning("cmd_error", cmd=cmd, error=str(exc))
            return None

    async def capture(
        self,
        cmd: str,
        timeout: int = DEFAULT_TIMEOUT,
        cwd: Path | str | None = None,
    ) -> str:
        """Run a command and return stdout+stderr whatever the exit status.

        Used for diagnostics only; never raises.
        """
        workdir = str(cwd) if cwd is not None else self._cwd
        try:
            proc = await asyncio.create_subprocess_shell(
                cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=workdir,
            )
            try:
                stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
            except TimeoutError:
                proc.kill()
                await proc.wait()
                return f"<timed out after {timeout}s: {cmd}>"
            return stdout.decode(errors="replace")
        except OSError as exc:
            return f"<failed to run {cmd}: {exc}>"
