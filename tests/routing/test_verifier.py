"""Tests for post-apply route verification."""

from unittest.mock import AsyncMock, patch

import pytest

from vpnbypass.models.routes import ActiveRoute
from vpnbypass.routing.verifier import RouteVerifier
from vpnbypass.utils.commands import CommandResult


class TestRouteVerifier:
    @pytest.fixture(autouse=True)
    def _verifier(self, settings):
        settings.verify_sample_size = 2
        self.verifier = RouteVerifier(settings)

    @pytest.mark.asyncio
    async def test_samples_host_routes_only(self, ping_output):
        routes = [
            ActiveRoute(destination="91.108.56.0/22", gateway="192.168.1.1", source="Telegram", is_network=True),
            ActiveRoute(destination="203.0.113.10", gateway="192.168.1.1", source="a"),
            ActiveRoute(destination="203.0.113.11", gateway="192.168.1.1", source="a"),
            ActiveRoute(destination="203.0.113.12", gateway="192.168.1.1", source="a"),
        ]
        ok = CommandResult(args=("ping",), returncode=0, stdout=ping_output)
        with patch("vpnbypass.routing.verifier.run_command", new_callable=AsyncMock, return_value=ok) as mock_run:
            results = await self.verifier.verify(routes)

        assert [r.destination for r in results] == ["203.0.113.10", "203.0.113.11"]
        assert all(r.reachable and r.latency_ms == 14.532 for r in results)
        assert mock_run.await_count == 2

    @pytest.mark.asyncio
    async def test_unreachable(self):
        lost = CommandResult(args=("ping",), returncode=2, stdout="1 packets transmitted, 0 packets received")
        with patch("vpnbypass.routing.verifier.run_command", new_callable=AsyncMock, return_value=lost):
            result = await self.verifier.verify_one("203.0.113.99")
        assert result.reachable is False
        assert result.error == "exit status 2"
