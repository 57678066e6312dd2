"""Runs the diagnostic commands and hands parsed facts to the classifier.

Every query is bounded by a timeout. A failed or timed-out query returns
None (or False for yes/no questions) so callers can tell "no data" apart
from "empty data".
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from ..config import BypassSettings
from ..utils.commands import run_command
from ..utils.logging import get_logger
from ..utils.validators import is_valid_ipv4
from .parsers import (
    InterfaceBlock,
    ResolverBlock,
    parse_interface_blocks,
    parse_mesh_exit_node,
    parse_networksetup_router,
    parse_process_list,
    parse_route_gateway,
    parse_scutil_dns,
    parse_wifi_ssid,
)

logger = get_logger("probe.system")

# Interface name prefixes that identify tunnels and virtual adapters
TUNNEL_PREFIXES = ("utun", "tun", "tap", "ppp", "ipsec", "gpd", "feth", "zt")


@dataclass
class ProbeFacts:
    """Inputs for one classification pass. None marks a failed probe."""
    processes: Optional[list[str]] = None
    interfaces: Optional[list[InterfaceBlock]] = None
    collected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def complete(self) -> bool:
        return self.interfaces is not None


class SystemProbe:
    """Thin async wrapper over the diagnostic command surface."""

    def __init__(self, settings: BypassSettings):
        self._settings = settings

    async def process_list(self) -> Optional[list[str]]:
        result = await run_command(
            [self._settings.ps_path, "-axo", "comm="],
            timeout=self._settings.probe_timeout,
        )
        if not result.ok:
            logger.warning("process_probe_failed", error=result.error)
            return None
        return parse_process_list(result.stdout)

    async def interface_listing(self) -> Optional[list[InterfaceBlock]]:
        result = await run_command([self._settings.ifconfig_path], timeout=self._settings.probe_timeout)
        if not result.ok:
            logger.warning("interface_probe_failed", error=result.error)
            return None
        return parse_interface_blocks(result.stdout)

    async def collect(self) -> ProbeFacts:
        """Process list and interface listing for the classifier."""
        processes, interfaces = await asyncio.gather(self.process_list(), self.interface_listing())
        return ProbeFacts(processes=processes, interfaces=interfaces)

    async def mesh_exit_node_active(self) -> bool:
        """Ask the mesh client whether an exit node is in use. False on any failure."""
        result = await run_command(
            [self._settings.tailscale_path, "status", "--json"],
            timeout=self._settings.mesh_status_timeout,
        )
        if not result.ok:
            return False
        return parse_mesh_exit_node(result.stdout)

    async def service_router(self, service: str) -> Optional[str]:
        result = await run_command(
            [self._settings.networksetup_path, "-getinfo", service],
            timeout=self._settings.gateway_query_timeout,
        )
        if not result.ok:
            return None
        return parse_networksetup_router(result.stdout)

    async def default_route_gateway(self) -> Optional[str]:
        result = await run_command(
            [self._settings.route_path, "-n", "get", "default"],
            timeout=self._settings.gateway_query_timeout,
        )
        if not result.ok:
            return None
        return parse_route_gateway(result.stdout)

    async def resolver_config(self) -> Optional[list[ResolverBlock]]:
        result = await run_command([self._settings.scutil_path, "--dns"], timeout=self._settings.probe_timeout)
        if not result.ok:
            logger.warning("resolver_probe_failed", error=result.error)
            return None
        return parse_scutil_dns(result.stdout)

    async def detect_pre_vpn_dns(self) -> Optional[str]:
        """First nameserver reachable on a physical (non-tunnel) interface."""
        blocks = await self.resolver_config()
        if not blocks:
            return None
        for block in blocks:
            if block.interface and block.interface.startswith(TUNNEL_PREFIXES):
                continue
            for server in block.nameservers:
                if is_valid_ipv4(server) and not server.startswith("127."):
                    logger.info("pre_vpn_dns_detected", server=server, interface=block.interface)
                    return server
        return None

    async def wifi_ssid(self, device: str = "en0") -> Optional[str]:
        result = await run_command(
            [self._settings.networksetup_path, "-getairportnetwork", device],
            timeout=self._settings.gateway_query_timeout,
        )
        if not result.ok:
            return None
        return parse_wifi_ssid(result.stdout)
