"""SourceSync against real git repositories on disk."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from autodeploy.errors import SourceUnavailable
from autodeploy.source_sync import SourceSync

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def _git(*args: str, cwd: Path) -> str:
    result = subprocess.run(
        [
            "git",
            "-c",
            "user.name=Deploy Test",
            "-c",
            "user.email=deploy@example.com",
            "-c",
            "commit.gpgsign=false",
            *args,
        ],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


def _commit(repo: Path, name: str, content: str) -> str:
    (repo / name).write_text(content, encoding="utf-8")
    _git("add", name, cwd=repo)
    _git("commit", "-m", f"update {name}", cwd=repo)
    return _git("rev-parse", "HEAD", cwd=repo)


@pytest.fixture
def upstream(tmp_path: Path) -> Path:
    repo = tmp_path / "upstream"
    repo.mkdir()
    _git("init", "-b", "main", cwd=repo)
    _commit(repo, "docker-compose.yml", "services: {}\n")
    return repo


@pytest.fixture
def sync(tmp_path: Path, upstream: Path) -> SourceSync:
    return SourceSync(repo_url=str(upstream), branch="main", app_dir=tmp_path / "app")


class TestRealGit:
    """End-to-end clone, update, and discard behaviour."""

    async def test_clone_then_noop_then_change(
        self, sync: SourceSync, upstream: Path, tmp_path: Path
    ) -> None:
        first = await sync.sync()
        assert first.cloned is True
        assert (tmp_path / "app" / "docker-compose.yml").exists()

        second = await sync.sync()
        assert second.changed is False

        new_head = _commit(upstream, "README.md", "hello\n")
        third = await sync.sync()
        assert third.changed is True
        assert third.previous_revision == first.new_revision
        assert third.new_revision == new_head

    async def test_remote_always_wins(self, sync: SourceSync, tmp_path: Path) -> None:
        await sync.sync()
        app_dir = tmp_path / "app"
        (app_dir / "docker-compose.yml").write_text("tampered\n", encoding="utf-8")
        (app_dir / "untracked.txt").write_text("junk\n", encoding="utf-8")

        change = await sync.sync()

        assert change.changed is False
        assert (app_dir / "docker-compose.yml").read_text(encoding="utf-8") == "services: {}\n"
        assert not (app_dir / "untracked.txt").exists()

    async def test_unreachable_remote_keeps_local_state(
        self, sync: SourceSync, tmp_path: Path
    ) -> None:
        await sync.sync()
        app_dir = tmp_path / "app"
        _git("remote", "set-url", "origin", str(tmp_path / "gone"), cwd=app_dir)
        (app_dir / "docker-compose.yml").write_text("local edit\n", encoding="utf-8")

        with pytest.raises(SourceUnavailable):
            await sync.sync()

        assert (app_dir / "docker-compose.yml").read_text(encoding="utf-8") == "local edit\n"
