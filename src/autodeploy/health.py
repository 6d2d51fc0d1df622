"""HTTP health probing for a freshly started application."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx

from autodeploy.logging import get_logger

log = get_logger("autodeploy.health")


@dataclass
class HealthCheckConfig:
    """Bounded retry policy for a health probe."""

    retries: int = 6
    delay_seconds: float = 5.0
    timeout_seconds: float = 10.0


async def check_service_health(url: str, config: HealthCheckConfig | None = None) -> bool:
    """Return True once ``url`` answers 200, False after all retries fail."""
    cfg = config or HealthCheckConfig()
    for attempt in range(cfg.retries):
        try:
            async with httpx.AsyncClient(timeout=cfg.timeout_seconds) as client:
                resp = await client.get(url)
            if resp.status_code == 200:
                log.debug("health_ok", url=url, attempt=attempt + 1)
                return True
            log.debug("health_bad_status", url=url, status=resp.status_code)
        except httpx.HTTPError as exc:
            log.debug("health_request_failed", url=url, error=str(exc))

        if attempt < cfg.retries - 1:
            await asyncio.sleep(cfg.delay_seconds)

    log.warning("health_check_exhausted", url=url, retries=cfg.retries)
    return False
