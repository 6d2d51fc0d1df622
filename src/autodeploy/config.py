"""Configuration management for Autodeploy."""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ENV_FILE = "/opt/autodeploy/.env"
DEFAULT_INSTALL_DIR = Path("/opt/autodeploy")


class Settings(BaseSettings):
    """Agent settings loaded from environment variables and the install ``.env``.

    Keys match the installer-written ``.env`` (``REPO_URL``, ``BRANCH``,
    ``APP_DIR``, ``WEB_PORT``, ``FORCE_REBUILD``, ...). Loaded once per
    invocation and never mutated afterwards.
    """

    model_config = SettingsConfigDict(
        env_file=os.environ.get("AUTODEPLOY_ENV_FILE", DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Source
    repo_url: str = Field(description="Git remote to deploy from")
    branch: str = Field(default="main", min_length=1, description="Branch to track")
    discard_local_changes: bool = Field(
        default=True,
        description="Hard-reset the checkout to the remote tip and remove untracked files",
    )

    # Layout
    install_dir: Path = Field(default=DEFAULT_INSTALL_DIR, description="Install root")
    app_dir: Path = Field(description="Checkout directory (defaults to <install_dir>/app)")
    compose_file: str = Field(
        default="docker-compose.yml", description="Composition file, relative to app_dir"
    )
    lock_file: Path = Field(
        default=Path("/tmp/autodeploy-deploy.lock"), description="Deployment lock file"
    )
    changed_file: Path = Field(
        default=Path("/tmp/autodeploy-changed"), description="Last-known change flag"
    )
    outcome_log: Path = Field(
        description="Append-only outcome log (defaults to <install_dir>/logs/deploy.log)"
    )

    # Runtime
    compose_command: str = Field(default="docker compose", description="Compose CLI")
    web_port: int = Field(default=8080, ge=1, le=65535, description="Published web port")
    force_rebuild: bool = Field(default=False, description="Deploy even without changes")
    settle_seconds: float = Field(default=15.0, ge=0, description="Wait after start")
    health_url: str | None = Field(
        default=None, description="Optional HTTP endpoint probed after the settle wait"
    )
    git_timeout: int = Field(default=300, gt=0, description="Timeout for git network ops")
    build_timeout: int = Field(default=1800, gt=0, description="Timeout for image builds")
    compose_timeout: int = Field(default=300, gt=0, description="Timeout for compose ops")

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    @model_validator(mode="before")
    @classmethod
    def _fill_install_paths(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        install_dir = Path(data.get("install_dir") or DEFAULT_INSTALL_DIR)
        if not data.get("app_dir"):
            data["app_dir"] = install_dir / "app"
        if not data.get("outcome_log"):
            data["outcome_log"] = install_dir / "logs" / "deploy.log"
        return data

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def compose_path(self) -> Path:
        """Absolute path of the composition file inside the checkout."""
        return self.app_dir / self.compose_file


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
