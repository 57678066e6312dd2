"""Tests for VPN classification."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from vpnbypass.models.vpn import VPNState, VPNType
from vpnbypass.probe.parsers import InterfaceBlock, parse_interface_blocks
from vpnbypass.probe.system_probe import ProbeFacts
from vpnbypass.vpn.classifier import (
    VPNClassifier,
    is_vpn_like_ip,
    process_hint,
    type_from_name,
)


class TestIsVPNLikeIP:
    def test_cgnat_mesh_requires_exit_node(self):
        assert is_vpn_like_ip("100.70.1.2") is False
        assert is_vpn_like_ip("100.70.1.2", exit_node_confirmed=True) is True

    def test_warp_range_always(self):
        assert is_vpn_like_ip("100.100.1.2") is True
        assert is_vpn_like_ip("100.96.0.1") is True
        assert is_vpn_like_ip("100.111.255.255") is True

    def test_private_ranges(self):
        assert is_vpn_like_ip("10.5.5.5") is True
        assert is_vpn_like_ip("172.16.0.1") is True
        assert is_vpn_like_ip("172.31.255.1") is True
        assert is_vpn_like_ip("192.168.10.2") is True

    def test_never(self):
        for ip in ["127.0.0.1", "169.254.3.4", "8.8.8.8", "172.32.0.1", "100.112.0.1", "garbage"]:
            assert is_vpn_like_ip(ip, exit_node_confirmed=True) is False, ip


class TestHints:
    def test_process_hint_first_match(self):
        assert process_hint(["/bin/zsh", "/opt/cisco/anyconnect/bin/vpnagentd"]) is VPNType.CISCO_ANYCONNECT
        assert process_hint(["/usr/local/bin/tailscaled"]) is None
        assert process_hint(None) is None

    def test_type_from_name(self):
        assert type_from_name("gpd0") is VPNType.GLOBAL_PROTECT
        assert type_from_name("tun0") is VPNType.OPENVPN
        assert type_from_name("tap1") is VPNType.OPENVPN
        assert type_from_name("ipsec0") is VPNType.CISCO_ANYCONNECT
        assert type_from_name("utun3") is VPNType.UNKNOWN
        assert type_from_name("utun4", "100.70.1.2") is VPNType.TAILSCALE_EXIT_NODE
        assert type_from_name("utun4", "100.100.0.2") is VPNType.CLOUDFLARE_WARP


class TestVPNClassifier:
    def setup_method(self):
        self.probe = MagicMock()
        self.probe.mesh_exit_node_active = AsyncMock(return_value=False)
        self.classifier = VPNClassifier(self.probe)

    @pytest.mark.asyncio
    async def test_connected_with_process_hint(self, ifconfig_vpn_output):
        facts = ProbeFacts(
            processes=["/applications/globalprotect.app/contents/macos/pangpa"],
            interfaces=parse_interface_blocks(ifconfig_vpn_output),
        )
        state = await self.classifier.classify(facts)
        assert state.connected is True
        assert state.interface_name == "utun3"
        assert state.vpn_type is VPNType.GLOBAL_PROTECT

    @pytest.mark.asyncio
    async def test_connected_without_hint_uses_name(self, ifconfig_vpn_output):
        facts = ProbeFacts(processes=[], interfaces=parse_interface_blocks(ifconfig_vpn_output))
        state = await self.classifier.classify(facts)
        assert state.vpn_type is VPNType.UNKNOWN

    @pytest.mark.asyncio
    async def test_not_connected(self, ifconfig_no_vpn_output):
        facts = ProbeFacts(processes=[], interfaces=parse_interface_blocks(ifconfig_no_vpn_output))
        state = await self.classifier.classify(facts)
        assert state.connected is False
        assert state.interface_name is None
        self.probe.mesh_exit_node_active.assert_not_called()

    @pytest.mark.asyncio
    async def test_mesh_without_exit_node_is_not_vpn(self, ifconfig_mesh_output):
        facts = ProbeFacts(processes=[], interfaces=parse_interface_blocks(ifconfig_mesh_output))
        state = await self.classifier.classify(facts)
        assert state.connected is False
        self.probe.mesh_exit_node_active.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_mesh_with_exit_node(self, ifconfig_mesh_output):
        self.probe.mesh_exit_node_active.return_value = True
        facts = ProbeFacts(processes=[], interfaces=parse_interface_blocks(ifconfig_mesh_output))
        state = await self.classifier.classify(facts)
        assert state.connected is True
        assert state.vpn_type is VPNType.TAILSCALE_EXIT_NODE

    @pytest.mark.asyncio
    async def test_exit_node_query_once_per_pass(self):
        interfaces = [
            InterfaceBlock(name="utun4", flags=frozenset({"UP"}), ipv4=["100.70.1.2"]),
            InterfaceBlock(name="utun5", flags=frozenset({"UP"}), ipv4=["100.80.1.2"]),
        ]
        await self.classifier.classify(ProbeFacts(processes=[], interfaces=interfaces))
        assert self.probe.mesh_exit_node_active.await_count == 1

    @pytest.mark.asyncio
    async def test_exit_node_query_error_means_false(self, ifconfig_mesh_output):
        self.probe.mesh_exit_node_active.side_effect = RuntimeError("tailscale crashed")
        facts = ProbeFacts(processes=[], interfaces=parse_interface_blocks(ifconfig_mesh_output))
        state = await self.classifier.classify(facts)
        assert state.connected is False

    @pytest.mark.asyncio
    async def test_down_tunnel_ignored(self):
        interfaces = [InterfaceBlock(name="utun3", flags=frozenset({"POINTOPOINT"}), ipv4=["10.1.1.1"])]
        state = await self.classifier.classify(ProbeFacts(processes=[], interfaces=interfaces))
        assert state.connected is False

    @pytest.mark.asyncio
    async def test_missing_facts_hold_prior_state(self):
        prior = VPNState(connected=True, interface_name="utun3", vpn_type=VPNType.OPENVPN)
        state = await self.classifier.classify(ProbeFacts(processes=None, interfaces=None), prior)
        assert state is prior

    @pytest.mark.asyncio
    async def test_detect_remembers_state(self, ifconfig_vpn_output):
        self.probe.collect = AsyncMock(return_value=ProbeFacts(
            processes=[], interfaces=parse_interface_blocks(ifconfig_vpn_output),
        ))
        await self.classifier.detect()
        assert self.classifier.state.connected is True

        self.probe.collect.return_value = ProbeFacts(processes=[], interfaces=None)
        state = await self.classifier.detect()
        assert state.connected is True
        assert state.interface_name == "utun3"
