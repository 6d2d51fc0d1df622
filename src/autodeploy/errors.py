"""Failure taxonomy for a deployment invocation.

Every error here is caught at the ``DeployAgent`` boundary and turned into
a ``DeploymentOutcome``; none of them escape to the scheduler.
"""

from __future__ import annotations


class DeployError(Exception):
    """Base class for agent failures."""


class SourceUnavailable(DeployError):
    """The remote could not be reached (clone or fetch failed).

    Transient: the next scheduled invocation retries.
    """


class SourceCorrupt(DeployError):
    """A local checkout exists but is not a usable checkout of the branch.

    Needs manual intervention (or removing ``app_dir`` to force a re-clone).
    """


class MissingCompositionFile(DeployError):
    """The checkout has no composition file; repeats until fixed."""

    def __init__(self, path: str) -> None:
        super().__init__(f"composition file not found: {path}")
        self.path = path


class PreconditionFailed(DeployError):
    """A host tool the agent depends on (git, compose CLI) is unavailable."""


class ContainerVerificationFailed(DeployError):
    """Containers were started but none reached a running state."""

    def __init__(self, message: str, logs: str = "") -> None:
        super().__init__(message)
        self.logs = logs
