"""Unit tests for autodeploy.health: HTTP probe with bounded retries."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx

from autodeploy.health import HealthCheckConfig, check_service_health


def _mock_response(status_code: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    return resp


def _mock_client(**get_kwargs) -> AsyncMock:
    client = AsyncMock()
    client.get = AsyncMock(**get_kwargs)
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    return client


def _fast(retries: int = 3) -> HealthCheckConfig:
    return HealthCheckConfig(retries=retries, delay_seconds=0, timeout_seconds=5)


class TestCheckServiceHealth:
    async def test_passes_on_200(self) -> None:
        client = _mock_client(return_value=_mock_response(200))
        with patch("httpx.AsyncClient", return_value=client):
            assert await check_service_health("http://localhost:8080/", _fast()) is True
        assert client.get.await_count == 1

    async def test_retries_until_ok(self) -> None:
        client = _mock_client(side_effect=[_mock_response(503), _mock_response(200)])
        with patch("httpx.AsyncClient", return_value=client):
            assert await check_service_health("http://localhost:8080/", _fast(5)) is True
        assert client.get.await_count == 2

    async def test_gives_up_after_retries(self) -> None:
        client = _mock_client(side_effect=httpx.ConnectError("refused"))
        with patch("httpx.AsyncClient", return_value=client):
            assert await check_service_health("http://localhost:8080/", _fast(3)) is False
        assert client.get.await_count == 3
