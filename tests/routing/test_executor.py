"""Tests for the helper client and the direct sudo executor."""

import asyncio
import json
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from vpnbypass.exceptions import ExecutorError, HelperRejectedError
from vpnbypass.models.routes import ActiveRoute, HostsEntry
from vpnbypass.routing.application import RouteApplicationGateway
from vpnbypass.routing.executor import DirectExecutor, HelperExecutor
from vpnbypass.routing.hosts import MARKER_START
from vpnbypass.utils.commands import CommandResult


def _ok() -> CommandResult:
    return CommandResult(args=("sudo",), returncode=0)


def _fail(stderr: str) -> CommandResult:
    return CommandResult(args=("sudo",), returncode=1, stderr=stderr)


class FakeHelper:
    """Minimal line-delimited JSON server standing in for the helper daemon."""

    def __init__(self, results: dict):
        self.results = results
        self.requests = []

    async def handle(self, reader, writer):
        line = await reader.readline()
        request = json.loads(line)
        self.requests.append(request)
        method = request["method"]
        if method in self.results:
            response = {"id": request["id"], "result": self.results[method]}
        else:
            response = {"id": request["id"], "error": f"unknown method {method}"}
        writer.write((json.dumps(response) + "\n").encode())
        await writer.drain()
        writer.close()


class TestHelperExecutor:
    @pytest.fixture
    def socket_path(self):
        # Unix socket paths are length limited; keep it short
        with tempfile.TemporaryDirectory(dir="/tmp") as d:
            yield Path(d) / "h.sock"

    @pytest.mark.asyncio
    async def test_batch_round_trip(self, socket_path):
        fake = FakeHelper({
            "getVersion": {"version": "1.2.0"},
            "addRoutesBatch": {"successCount": 1, "failureCount": 1, "error": "File exists"},
        })
        server = await asyncio.start_unix_server(fake.handle, path=str(socket_path))
        try:
            helper = HelperExecutor(socket_path, timeout=2)
            assert await helper.get_version() == "1.2.0"
            result = await helper.add_routes_batch([
                ActiveRoute(destination="1.2.3.4", gateway="192.168.1.1", source="a"),
                ActiveRoute(destination="10.0.0.0/8", gateway="192.168.1.1", source="b", is_network=True),
            ])
        finally:
            server.close()
            await server.wait_closed()

        assert (result.success_count, result.failure_count, result.error) == (1, 1, "File exists")
        params = fake.requests[1]["params"]
        assert params["routes"][1] == {"destination": "10.0.0.0/8", "gateway": "192.168.1.1", "isNetwork": True}

    @pytest.mark.asyncio
    async def test_error_response_raises(self, socket_path):
        server = await asyncio.start_unix_server(FakeHelper({}).handle, path=str(socket_path))
        try:
            with pytest.raises(HelperRejectedError):
                await HelperExecutor(socket_path, timeout=2).flush_dns_cache()
        finally:
            server.close()
            await server.wait_closed()

    @pytest.mark.asyncio
    async def test_refused_batch_keeps_helper_selected(self, socket_path):
        fake = FakeHelper({"getVersion": {"version": "1.2.0"}})
        server = await asyncio.start_unix_server(fake.handle, path=str(socket_path))
        direct = AsyncMock()
        try:
            gateway = RouteApplicationGateway(HelperExecutor(socket_path, timeout=2), direct)
            assert await gateway.check_helper() is True

            result = await gateway.apply([ActiveRoute("1.2.3.4", "192.168.1.1", "example.com")])

            assert result.failure_count == 1
            assert result.error == "unknown method addRoutesBatch"
            assert gateway.helper_available is True
            direct.add_routes_batch.assert_not_called()
        finally:
            server.close()
            await server.wait_closed()

    @pytest.mark.asyncio
    async def test_missing_socket_raises(self, socket_path):
        with pytest.raises(ExecutorError):
            await HelperExecutor(socket_path, timeout=1).get_version()


class TestDirectExecutor:
    @pytest.fixture(autouse=True)
    def _executor(self, settings):
        self.settings = settings
        self.executor = DirectExecutor(settings)

    @pytest.mark.asyncio
    async def test_add_route_deletes_then_adds(self):
        with patch("vpnbypass.routing.executor.run_command", new_callable=AsyncMock, return_value=_ok()) as mock_run:
            ok, error = await self.executor.add_route("1.2.3.4", "192.168.1.1")
        assert ok and error is None
        calls = [c.args[0] for c in mock_run.call_args_list]
        assert calls[0][-2:] == ["delete", "1.2.3.4"]
        assert calls[1][-4:] == ["add", "-host", "1.2.3.4", "192.168.1.1"]
        assert calls[1][:2] == [self.settings.sudo_path, "-n"]

    @pytest.mark.asyncio
    async def test_network_route_flag(self):
        with patch("vpnbypass.routing.executor.run_command", new_callable=AsyncMock, return_value=_ok()) as mock_run:
            await self.executor.add_route("91.108.56.0/22", "192.168.1.1", is_network=True)
        assert "-net" in mock_run.call_args.args[0]

    @pytest.mark.asyncio
    async def test_rejects_invalid_input_without_running(self):
        with patch("vpnbypass.routing.executor.run_command", new_callable=AsyncMock) as mock_run:
            ok, error = await self.executor.add_route("1.2.3.4; reboot", "192.168.1.1")
        assert not ok
        assert "Invalid" in error
        mock_run.assert_not_called()

    @pytest.mark.asyncio
    async def test_batch_continues_after_failure(self):
        results = [_ok(), _fail("route: writing to routing socket: not permitted"), _ok(), _ok()]
        with patch("vpnbypass.routing.executor.run_command", new_callable=AsyncMock, side_effect=results):
            batch = await self.executor.add_routes_batch([
                ActiveRoute(destination="1.1.1.1", gateway="192.168.1.1", source="a"),
                ActiveRoute(destination="2.2.2.2", gateway="192.168.1.1", source="a"),
            ])
        assert (batch.success_count, batch.failure_count) == (1, 1)
        assert "not permitted" in batch.error

    @pytest.mark.asyncio
    async def test_update_hosts_writes_via_tee(self):
        self.settings.hosts_file.write_text("127.0.0.1 localhost\n")
        with patch("vpnbypass.routing.executor.run_command", new_callable=AsyncMock, return_value=_ok()) as mock_run:
            ok, _ = await self.executor.update_hosts_file([HostsEntry("example.com", "1.2.3.4")])
        assert ok
        args = mock_run.call_args.args[0]
        assert args[-2:] == ["tee", str(self.settings.hosts_file)]
        written = mock_run.call_args.kwargs["input_text"]
        assert MARKER_START in written
        assert "1.2.3.4 example.com" in written

    @pytest.mark.asyncio
    async def test_update_hosts_noop_when_unchanged(self):
        self.settings.hosts_file.write_text("127.0.0.1 localhost\n")
        with patch("vpnbypass.routing.executor.run_command", new_callable=AsyncMock) as mock_run:
            ok, _ = await self.executor.update_hosts_file([])
        assert ok
        mock_run.assert_not_called()
