"""Keeps the deploy checkout identical to the tip of the tracked branch.

The checkout is deploy-only: with ``discard_local_changes`` (the default)
every sync hard-resets to the remote tip and removes untracked files, so
the remote always wins.
"""

from __future__ import annotations

import shlex
import shutil
from pathlib import Path

from autodeploy.commands import CommandRunner
from autodeploy.config import Settings
from autodeploy.errors import SourceCorrupt, SourceUnavailable
from autodeploy.logging import get_logger
from autodeploy.models import ChangeRecord, RepositoryState
from autodeploy.state import ChangeFlagStore

log = get_logger("autodeploy.source_sync")


class SourceSync:
    """Clones or fast-forwards ``app_dir`` and reports whether HEAD moved."""

    def __init__(
        self,
        repo_url: str,
        branch: str,
        app_dir: Path | str,
        runner: CommandRunner | None = None,
        flags: ChangeFlagStore | None = None,
        discard_local_changes: bool = True,
        git_timeout: int = 300,
    ) -> None:
        self._repo_url = repo_url
        self._branch = branch
        self._app_dir = Path(app_dir)
        self._runner = runner or CommandRunner(self._app_dir)
        self._flags = flags
        self._discard = discard_local_changes
        self._git_timeout = git_timeout

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        runner: CommandRunner | None = None,
        flags: ChangeFlagStore | None = None,
    ) -> SourceSync:
        return cls(
            repo_url=settings.repo_url,
            branch=settings.branch,
            app_dir=settings.app_dir,
            runner=runner,
            flags=flags,
            discard_local_changes=settings.discard_local_changes,
            git_timeout=settings.git_timeout,
        )

    @property
    def remote_ref(self) -> str:
        return f"origin/{self._branch}"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def sync(self) -> ChangeRecord:
        """Bring the checkout to the remote tip.

        Raises ``SourceUnavailable`` when the remote cannot be reached and
        ``SourceCorrupt`` when the existing checkout is unusable. A failed
        fetch leaves the checkout untouched.
        """
        state = await self.inspect()
        if not state.cloned:
            change = await self._clone()
        else:
            change = await self._update(state)

        if self._flags is not None:
            self._flags.record(change)
        return change

    async def inspect(self) -> RepositoryState:
        """Describe the checkout without modifying it."""
        state = RepositoryState(path=self._app_dir, remote_branch=self._branch)
        if not self._app_dir.exists():
            return state
        if not (self._app_dir / ".git").exists():
            if any(self._app_dir.iterdir()):
                raise SourceCorrupt(f"{self._app_dir} exists but is not a git checkout")
            return state

        revision = await self._git("rev-parse --verify HEAD")
        if revision is None:
            raise SourceCorrupt(f"{self._app_dir} is not a valid git repository")

        current_branch = await self._git("rev-parse --abbrev-ref HEAD")
        if current_branch is None or current_branch.strip() != self._branch:
            found = current_branch.strip() if current_branch else "unknown"
            raise SourceCorrupt(
                f"{self._app_dir} is on branch {found!r}, expected {self._branch!r}"
            )

        state.current_revision = revision.strip()
        return state

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _clone(self) -> ChangeRecord:
        log.info("sync_cloning", repo=self._repo_url, branch=self._branch, path=str(self._app_dir))
        self._app_dir.parent.mkdir(parents=True, exist_ok=True)
        existed = self._app_dir.exists()
        cmd = (
            f"git clone --branch {shlex.quote(self._branch)} "
            f"{shlex.quote(self._repo_url)} {shlex.quote(str(self._app_dir))}"
        )
        try:
            ok = await self._runner.run(cmd, timeout=self._git_timeout, cwd=self._app_dir.parent)
            if ok is None:
                raise SourceUnavailable(f"git clone of {self._repo_url} ({self._branch}) failed")

            revision = await self._git("rev-parse HEAD")
            if revision is None:
                raise SourceCorrupt(f"fresh clone at {self._app_dir} has no HEAD")
        except BaseException:
            # also on cancellation: a killed clone leaves a .git with no HEAD
            self._remove_partial_clone(existed)
            raise

        new_revision = revision.strip()
        log.info("sync_cloned", revision=new_revision)
        return ChangeRecord(
            previous_revision=None, new_revision=new_revision, changed=True, cloned=True
        )

    def _remove_partial_clone(self, existed: bool) -> None:
        """Undo a failed clone. Only called when app_dir was absent or empty."""
        try:
            if not existed:
                shutil.rmtree(self._app_dir)
            else:
                for child in self._app_dir.iterdir():
                    if child.is_dir() and not child.is_symlink():
                        shutil.rmtree(child)
                    else:
                        child.unlink()
        except FileNotFoundError:
            return
        except OSError:
            log.exception("sync_clone_cleanup_failed", path=str(self._app_dir))
            return
        log.warning("sync_partial_clone_removed", path=str(self._app_dir))

    async def _update(self, state: RepositoryState) -> ChangeRecord:
        previous = state.current_revision
        branch = self._branch
        refspec = shlex.quote(f"+refs/heads/{branch}:refs/remotes/origin/{branch}")
        ok = await self._git(f"fetch --force origin {refspec}", timeout=self._git_timeout)
        if ok is None:
            raise SourceUnavailable(f"git fetch of {self.remote_ref} failed")

        if self._discard:
            await self.discard_local_changes()
        else:
            await self._fast_forward()

        revision = await self._git("rev-parse HEAD")
        if revision is None:
            raise SourceCorrupt(f"cannot read HEAD in {self._app_dir} after update")
        new_revision = revision.strip()

        change = ChangeRecord(
            previous_revision=previous,
            new_revision=new_revision,
            changed=previous != new_revision,
        )
        if change.changed:
            log.info("sync_changes_detected", previous=previous, new=new_revision)
        else:
            log.info("sync_no_changes", revision=new_revision)
        return change

    async def discard_local_changes(self) -> None:
        """Hard-reset to the fetched tip and delete untracked files."""
        ref = shlex.quote(self.remote_ref)
        if await self._git(f"reset --hard {ref}") is None:
            raise SourceCorrupt(f"git reset --hard {self.remote_ref} failed")
        if await self._git("clean -fd") is None:
            raise SourceCorrupt(f"git clean failed in {self._app_dir}")

    async def _fast_forward(self) -> None:
        ref = shlex.quote(self.remote_ref)
        if await self._git(f"merge --ff-only {ref}") is None:
            raise SourceCorrupt(
                f"{self._app_dir} cannot fast-forward to {self.remote_ref} (local changes?)"
            )

    async def _git(self, args: str, timeout: int = 60) -> str | None:
        return await self._runner.run(f"git {args}", timeout=timeout, cwd=self._app_dir)
