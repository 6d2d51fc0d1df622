"""Deployment agent: one invocation per scheduler tick.

States within an invocation::

    IDLE -> LOCK_ACQUIRED -> SYNCING -> DECIDING -> DEPLOYING -> REPORTING -> IDLE

An invocation that cannot take the lock goes straight to REPORTING with
``skipped-locked`` and touches neither the checkout nor the containers.
Every other path runs inside the lock's scoped acquisition, so the lock is
released on success, failure, unexpected errors and cancellation alike.
"""

from __future__ import annotations

import asyncio
import shutil
from dataclasses import replace

from autodeploy.commands import CommandRunner
from autodeploy.config import Settings
from autodeploy.errors import (
    DeployError,
    MissingCompositionFile,
    PreconditionFailed,
    SourceCorrupt,
    SourceUnavailable,
)
from autodeploy.history import OutcomeLog
from autodeploy.lock import DeploymentLock
from autodeploy.logging import get_logger
from autodeploy.models import (
    AgentState,
    ChangeRecord,
    DeployDecision,
    DeploymentOutcome,
    OutcomeKind,
)
from autodeploy.orchestrator import ContainerOrchestrator
from autodeploy.source_sync import SourceSync
from autodeploy.state import ChangeFlagStore

log = get_logger("autodeploy.agent")


class DeployAgent:
    """Runs lock -> sync -> decide -> deploy -> report once."""

    def __init__(
        self,
        source: SourceSync,
        lock: DeploymentLock,
        orchestrator: ContainerOrchestrator,
        flags: ChangeFlagStore,
        history: OutcomeLog,
        force_rebuild: bool = False,
        required_tools: tuple[str, ...] = (),
    ) -> None:
        self._source = source
        self._lock = lock
        self._orchestrator = orchestrator
        self._flags = flags
        self._history = history
        self._force_rebuild = force_rebuild
        self._required_tools = required_tools
        self._state = AgentState.IDLE

    @classmethod
    def from_settings(cls, settings: Settings) -> DeployAgent:
        """Wire every component from one settings object."""
        runner = CommandRunner(settings.app_dir)
        flags = ChangeFlagStore(settings.changed_file)
        compose_tool = settings.compose_command.split()[0]
        return cls(
            source=SourceSync.from_settings(settings, runner=runner, flags=flags),
            lock=DeploymentLock(settings.lock_file),
            orchestrator=ContainerOrchestrator.from_settings(settings, runner=runner),
            flags=flags,
            history=OutcomeLog(settings.outcome_log),
            force_rebuild=settings.force_rebuild,
            required_tools=tuple(dict.fromkeys(("git", compose_tool, "docker"))),
        )

    @property
    def state(self) -> AgentState:
        return self._state

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run_once(self) -> DeploymentOutcome:
        """Execute one invocation and return its (already logged) outcome."""
        log.info("agent_invocation_started")
        try:
            with self._lock.held() as acquired:
                if not acquired:
                    outcome = DeploymentOutcome(
                        kind=OutcomeKind.SKIPPED_LOCKED,
                        reason="another deployment is in progress",
                    )
                else:
                    self._state = AgentState.LOCK_ACQUIRED
                    outcome = await self._run_locked()
        except asyncio.CancelledError:
            interrupted_in = self._state
            self._state = AgentState.REPORTING
            kind = (
                OutcomeKind.DEPLOYED_FAILURE
                if interrupted_in is AgentState.DEPLOYING
                else OutcomeKind.SYNC_FAILURE
            )
            self._report(
                DeploymentOutcome(kind=kind, reason=f"interrupted during {interrupted_in.value}")
            )
            self._state = AgentState.IDLE
            raise
        except OSError as exc:
            # lock file unusable: missing permissions or a bad LOCK_FILE path
            log.error("lock_unavailable", path=str(self._lock.path), error=str(exc))
            outcome = DeploymentOutcome(
                kind=OutcomeKind.PRECONDITION_FAILURE,
                reason=f"cannot use lock file {self._lock.path}: {exc}",
            )

        self._state = AgentState.REPORTING
        self._report(outcome)
        self._state = AgentState.IDLE
        return outcome

    async def decide(self, change: ChangeRecord) -> DeployDecision:
        """Deploy on a new revision, a still-pending one, force, or nothing running.

        "Nothing running" triggers a deploy even without a change: it covers a
        host reboot or containers stopped by hand, where the runtime state was
        lost rather than the source changing.
        """
        reasons: list[str] = []
        if change.cloned:
            reasons.append("initial clone")
        elif change.changed:
            reasons.append("revision changed")
        elif self._flags.pending:
            reasons.append("change from an earlier run not yet deployed")
        if self._force_rebuild:
            reasons.append("force rebuild")
        if not await self._orchestrator.has_running_containers():
            reasons.append("no running containers")
        return DeployDecision(deploy=bool(reasons), reasons=tuple(reasons))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_locked(self) -> DeploymentOutcome:
        change: ChangeRecord | None = None
        try:
            self._preflight()

            self._state = AgentState.SYNCING
            try:
                change = await self._source.sync()
            except (SourceUnavailable, SourceCorrupt) as exc:
                log.error("sync_failed", error=str(exc), error_type=type(exc).__name__)
                return DeploymentOutcome(kind=OutcomeKind.SYNC_FAILURE, reason=str(exc))

            self._state = AgentState.DECIDING
            decision = await self.decide(change)
            if not decision.deploy:
                log.info("deploy_not_required", revision=change.new_revision)
                return self._with_revisions(
                    DeploymentOutcome(
                        kind=OutcomeKind.SKIPPED_NO_CHANGE, reason="no changes detected"
                    ),
                    change,
                )

            self._state = AgentState.DEPLOYING
            log.info("deploy_started", reasons=list(decision.reasons), change=change.to_dict())
            outcome = await self._orchestrator.deploy()
            if outcome.succeeded:
                self._flags.mark_deployed()
            else:
                log.error(
                    "deploy_outcome_failed",
                    reason=outcome.reason,
                    previous=change.previous_revision,
                    new=change.new_revision,
                    logs=outcome.logs[-2000:],
                )
            return self._with_revisions(outcome, change, prefix="; ".join(decision.reasons))

        except (MissingCompositionFile, PreconditionFailed) as exc:
            log.error("precondition_failed", error=str(exc))
            return self._with_revisions(
                DeploymentOutcome(kind=OutcomeKind.PRECONDITION_FAILURE, reason=str(exc)),
                change,
            )
        except DeployError as exc:
            log.error("deploy_error", error=str(exc), error_type=type(exc).__name__)
            return self._with_revisions(self._unexpected(str(exc)), change)
        except Exception as exc:
            log.exception("agent_unexpected_error")
            return self._with_revisions(self._unexpected(f"unexpected error: {exc}"), change)

    def _preflight(self) -> None:
        missing = [tool for tool in self._required_tools if shutil.which(tool) is None]
        if missing:
            raise PreconditionFailed(f"required tools not found on PATH: {', '.join(missing)}")

    def _unexpected(self, reason: str) -> DeploymentOutcome:
        kind = (
            OutcomeKind.DEPLOYED_FAILURE
            if self._state is AgentState.DEPLOYING
            else OutcomeKind.SYNC_FAILURE
        )
        return DeploymentOutcome(kind=kind, reason=reason)

    @staticmethod
    def _with_revisions(
        outcome: DeploymentOutcome, change: ChangeRecord | None, prefix: str = ""
    ) -> DeploymentOutcome:
        reason = f"{prefix}: {outcome.reason}" if prefix else outcome.reason
        if change is None:
            return replace(outcome, reason=reason)
        return replace(
            outcome,
            reason=reason,
            previous_revision=change.previous_revision,
            new_revision=change.new_revision,
        )

    def _report(self, outcome: DeploymentOutcome) -> None:
        self._history.append(outcome)
        log_fn = log.error if outcome.exit_code else log.info
        log_fn("agent_invocation_finished", outcome=outcome.to_dict())
