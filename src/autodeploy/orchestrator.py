"""Docker Compose operations for a deployment.

Lifecycle of ``deploy()``:
1. Stop and remove the current containers, orphans included (best effort)
2. Rebuild every image with no layer cache, pulling fresh base images
3. Start the new set detached
4. Wait the settle interval, then require at least one running container
   (and a healthy HTTP endpoint, when one is configured)
5. Prune dangling images (best effort)

The orchestrator keeps no state of its own; everything it reports comes
from querying the compose CLI.
"""

from __future__ import annotations

import asyncio
import shlex
import socket
from pathlib import Path

from autodeploy.commands import CommandRunner
from autodeploy.config import Settings
from autodeploy.errors import ContainerVerificationFailed, MissingCompositionFile
from autodeploy.health import HealthCheckConfig, check_service_health
from autodeploy.logging import get_logger
from autodeploy.models import DeploymentOutcome, OutcomeKind

log = get_logger("autodeploy.orchestrator")

LOG_TAIL_LINES = 200

# Documentation range (RFC 5737); connecting a UDP socket sends nothing.
DEFAULT_ROUTE_TARGET = ("192.0.2.1", 80)


def primary_address() -> str:
    """Address of the interface holding the default route, like ``hostname -I``."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(DEFAULT_ROUTE_TARGET)
            return str(sock.getsockname()[0])
    except OSError:
        return "localhost"


class ContainerOrchestrator:
    """Translates a deploy decision into compose stop/build/start calls."""

    def __init__(
        self,
        compose_path: Path | str,
        runner: CommandRunner | None = None,
        compose_command: str = "docker compose",
        settle_seconds: float = 15.0,
        web_port: int = 8080,
        health_url: str | None = None,
        health_config: HealthCheckConfig | None = None,
        build_timeout: int = 1800,
        compose_timeout: int = 300,
    ) -> None:
        self._compose_path = Path(compose_path)
        self._runner = runner or CommandRunner(self._compose_path.parent)
        self._compose_command = compose_command
        self._settle_seconds = settle_seconds
        self._web_port = web_port
        self._health_url = health_url
        self._health_config = health_config or HealthCheckConfig()
        self._build_timeout = build_timeout
        self._compose_timeout = compose_timeout

    @classmethod
    def from_settings(
        cls, settings: Settings, runner: CommandRunner | None = None
    ) -> ContainerOrchestrator:
        return cls(
            compose_path=settings.compose_path,
            runner=runner,
            compose_command=settings.compose_command,
            settle_seconds=settings.settle_seconds,
            web_port=settings.web_port,
            health_url=settings.health_url,
            build_timeout=settings.build_timeout,
            compose_timeout=settings.compose_timeout,
        )

    @property
    def compose_path(self) -> Path:
        return self._compose_path

    def ensure_compose_file(self) -> None:
        """Fail fast before any container operation if the definition is absent."""
        if not self._compose_path.is_file():
            raise MissingCompositionFile(str(self._compose_path))

    async def has_running_containers(self) -> bool:
        """True if any service from the composition file is running."""
        self.ensure_compose_file()
        output = await self._compose("ps --services --filter status=running")
        if output is None:
            log.warning("compose_ps_failed", compose_file=str(self._compose_path))
            return False
        services = [line.strip() for line in output.splitlines() if line.strip()]
        return bool(services)

    async def deploy(self) -> DeploymentOutcome:
        """Stop, rebuild from scratch, start and verify the application."""
        self.ensure_compose_file()
        steps: list[str] = []

        log.info("deploy_stopping", compose_file=str(self._compose_path))
        if await self._compose("down --remove-orphans") is None:
            # nothing running is not an error; carry on to the build
            log.warning("deploy_stop_failed_continuing")
        else:
            steps.append("stop")

        log.info("deploy_building")
        if await self._compose("build --no-cache --pull", timeout=self._build_timeout) is None:
            return self._failure("image build failed", steps, self._runner.last_error)
        steps.append("build")

        log.info("deploy_starting")
        if await self._compose("up -d") is None:
            start_error = self._runner.last_error
            logs = await self.collect_logs()
            return self._failure("containers failed to start", steps, start_error + logs)
        steps.append("start")

        await asyncio.sleep(self._settle_seconds)

        try:
            await self.verify_running()
        except ContainerVerificationFailed as exc:
            return self._failure(str(exc), steps, exc.logs)
        steps.append("verify")

        await self.prune_images()

        url = self.app_url()
        log.info("deploy_succeeded", url=url)
        return DeploymentOutcome(
            kind=OutcomeKind.DEPLOYED_SUCCESS,
            reason=f"application available at {url}",
            steps_completed=tuple(steps),
        )

    async def verify_running(self) -> None:
        """Raise ``ContainerVerificationFailed`` with captured logs if not up."""
        if not await self.has_running_containers():
            raise ContainerVerificationFailed(
                "no container reached a running state", logs=await self.collect_logs()
            )
        if self._health_url and not await check_service_health(
            self._health_url, self._health_config
        ):
            raise ContainerVerificationFailed(
                f"health check failed for {self._health_url}", logs=await self.collect_logs()
            )

    async def collect_logs(self) -> str:
        return await self._runner.capture(
            self._compose_cmd(f"logs --no-color --tail {LOG_TAIL_LINES}"),
            timeout=self._compose_timeout,
        )

    async def prune_images(self) -> None:
        """Remove dangling images; failures are only logged."""
        if await self._runner.run("docker image prune -f", timeout=self._compose_timeout) is None:
            log.warning("image_prune_failed")

    def app_url(self) -> str:
        return f"http://{primary_address()}:{self._web_port}"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _failure(self, reason: str, steps: list[str], logs: str = "") -> DeploymentOutcome:
        log.error("deploy_failed", reason=reason, steps_completed=steps)
        return DeploymentOutcome(
            kind=OutcomeKind.DEPLOYED_FAILURE,
            reason=reason,
            logs=logs,
            steps_completed=tuple(steps),
        )

    def _compose_cmd(self, args: str) -> str:
        return f"{self._compose_command} -f {shlex.quote(str(self._compose_path))} {args}"

    async def _compose(self, args: str, timeout: int | None = None) -> str | None:
        return await self._runner.run(
            self._compose_cmd(args),
            timeout=timeout or self._compose_timeout,
            cwd=self._compose_path.parent,
        )
