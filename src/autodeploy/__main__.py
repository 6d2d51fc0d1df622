"""Entry point invoked by the scheduler (cron, systemd timer).

Takes no arguments. Exit status: 0 when nothing needed doing or the deploy
succeeded (or another run holds the lock), 1 on a sync or deployment
failure, 2 when configuration or host preconditions are not met.
"""

import asyncio
import signal
import sys

from pydantic import ValidationError

from autodeploy.agent import DeployAgent
from autodeploy.config import get_settings
from autodeploy.logging import get_logger, setup_logging

EXIT_INTERRUPTED = 1
EXIT_BAD_CONFIG = 2


async def run() -> int:
    """Run one invocation and return the process exit code."""
    try:
        settings = get_settings()
    except ValidationError as exc:
        setup_logging()
        get_logger("autodeploy.main").error("invalid_configuration", error=str(exc))
        return EXIT_BAD_CONFIG

    setup_logging(settings)
    log = get_logger("autodeploy.main")
    log.info(
        "starting_autodeploy",
        repo=settings.repo_url,
        branch=settings.branch,
        app_dir=str(settings.app_dir),
        force_rebuild=settings.force_rebuild,
    )

    # SIGTERM/SIGINT cancel the run; the lock is released on the way out.
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    assert task is not None  # noqa: S101
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, task.cancel)

    agent = DeployAgent.from_settings(settings)
    try:
        outcome = await agent.run_once()
    except asyncio.CancelledError:
        log.warning("autodeploy_interrupted")
        return EXIT_INTERRUPTED
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

    return outcome.exit_code


def main() -> None:
    """Run the agent once and exit with its status."""
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
