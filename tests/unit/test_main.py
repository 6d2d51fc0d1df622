"""Unit tests for the autodeploy entry point."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from autodeploy import __main__ as entry
from autodeploy.config import Settings
from autodeploy.models import DeploymentOutcome, OutcomeKind


def _settings_without_env_file() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture(autouse=True)
def _isolated(monkeypatch):
    monkeypatch.setattr(entry, "setup_logging", MagicMock())
    monkeypatch.setattr(entry, "get_settings", _settings_without_env_file)


class TestRun:
    async def test_invalid_configuration_exits_2(self, monkeypatch) -> None:
        monkeypatch.delenv("REPO_URL", raising=False)
        with patch.object(entry.DeployAgent, "from_settings") as from_settings:
            assert await entry.run() == 2
        from_settings.assert_not_called()

    @pytest.mark.parametrize(
        ("kind", "code"),
        [
            (OutcomeKind.DEPLOYED_SUCCESS, 0),
            (OutcomeKind.SKIPPED_NO_CHANGE, 0),
            (OutcomeKind.SKIPPED_LOCKED, 0),
            (OutcomeKind.DEPLOYED_FAILURE, 1),
            (OutcomeKind.SYNC_FAILURE, 1),
            (OutcomeKind.PRECONDITION_FAILURE, 2),
        ],
    )
    async def test_exit_code_follows_outcome(self, monkeypatch, kind, code) -> None:
        monkeypatch.setenv("REPO_URL", "https://example.com/acme/shop.git")
        agent = MagicMock()
        agent.run_once = AsyncMock(return_value=DeploymentOutcome(kind=kind))

        with patch.object(entry.DeployAgent, "from_settings", return_value=agent):
            assert await entry.run() == code

        agent.run_once.assert_awaited_once()


class TestMain:
    def test_main_exits_with_run_status(self) -> None:
        with patch.object(entry, "run", new=AsyncMock(return_value=1)):
            with pytest.raises(SystemExit) as excinfo:
                entry.main()
        assert excinfo.value.code == 1
