"""Tests for the command-line entry point."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from vpnbypass.__main__ import _main, build_parser
from vpnbypass.engine import ApplyReport
from vpnbypass.exceptions import DuplicateDomainError
from vpnbypass.models.entries import DomainEntry
from vpnbypass.models.snapshot import EngineSnapshot
from vpnbypass.models.vpn import VPNState


class TestParser:
    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_add_domain(self):
        args = build_parser().parse_args(["--debug", "add-domain", "example.com"])
        assert args.debug is True
        assert args.command == "add-domain"
        assert args.domain == "example.com"

    def test_toggle_service(self):
        args = build_parser().parse_args(["toggle-service", "youtube"])
        assert args.service_id == "youtube"


class TestCommands:
    @pytest.fixture(autouse=True)
    def _engine(self, settings):
        self.engine = MagicMock()
        self.engine.prepare = AsyncMock()
        self.engine.check_status = AsyncMock(
            return_value=EngineSnapshot(vpn=VPNState(connected=True), local_gateway="192.168.1.1")
        )
        with patch("vpnbypass.__main__.get_settings", return_value=settings), \
             patch("vpnbypass.__main__.BypassEngine", return_value=self.engine):
            yield

    async def _run(self, *argv) -> int:
        return await _main(build_parser().parse_args(list(argv)))

    @pytest.mark.asyncio
    async def test_add_domain_skips_probing(self, capsys):
        self.engine.add_domain = AsyncMock(return_value=DomainEntry(domain="example.com"))

        assert await self._run("add-domain", "example.com") == 0
        self.engine.prepare.assert_not_called()
        assert '"domain": "example.com"' in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_duplicate_domain_exit_code(self, capsys):
        self.engine.add_domain = AsyncMock(side_effect=DuplicateDomainError("example.com"))

        assert await self._run("add-domain", "example.com") == 1
        assert capsys.readouterr().err.startswith("error:")

    @pytest.mark.asyncio
    async def test_status_does_not_apply(self, capsys):
        assert await self._run("status") == 0
        self.engine.check_status.assert_awaited_once_with(apply_on_connect=False)
        assert '"local_gateway": "192.168.1.1"' in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_apply_reports_failures(self):
        self.engine.apply_all_routes = AsyncMock(
            return_value=ApplyReport(trigger="manual", planned=3, succeeded=2, failed=1)
        )
        assert await self._run("apply") == 1

    @pytest.mark.asyncio
    async def test_clear_includes_configured_routes(self):
        self.engine.remove_all_routes = AsyncMock(return_value=True)
        assert await self._run("clear") == 0
        self.engine.remove_all_routes.assert_awaited_once_with(include_configured=True)
