"""VPN detection from process and interface facts.

Decides whether a corporate/consumer VPN tunnel currently carries the
default route, and which client owns it. Mesh overlays (Tailscale) only
count when they act as an exit node.
"""

from enum import Enum
from typing import Awaitable, Callable, Optional

from ..models.vpn import VPNState, VPNType
from ..probe.parsers import InterfaceBlock
from ..probe.system_probe import TUNNEL_PREFIXES, ProbeFacts, SystemProbe
from ..utils.logging import get_logger
from ..utils.validators import ipv4_octets

logger = get_logger("vpn.classifier")

# Substring signatures in the process list, first match wins.
# Tailscale is deliberately absent: it is classified by address below.
PROCESS_SIGNATURES: list[tuple[str, VPNType]] = [
    ("globalprotect", VPNType.GLOBAL_PROTECT),
    ("pangps", VPNType.GLOBAL_PROTECT),
    ("anyconnect", VPNType.CISCO_ANYCONNECT),
    ("vpnagentd", VPNType.CISCO_ANYCONNECT),
    ("openvpn", VPNType.OPENVPN),
    ("wireguard", VPNType.WIREGUARD),
    ("wg-go", VPNType.WIREGUARD),
    ("forticlient", VPNType.FORTINET),
    ("fortitray", VPNType.FORTINET),
    ("zscaler", VPNType.ZSCALER),
    ("warp-cli", VPNType.CLOUDFLARE_WARP),
    ("warp-svc", VPNType.CLOUDFLARE_WARP),
    ("paloalto", VPNType.PALO_ALTO),
    ("pulsesecure", VPNType.PULSE_SECURE),
    ("pulse secure", VPNType.PULSE_SECURE),
]

NAME_HINTS: list[tuple[str, VPNType]] = [
    ("gpd", VPNType.GLOBAL_PROTECT),
    ("ipsec", VPNType.CISCO_ANYCONNECT),
    ("tap", VPNType.OPENVPN),
    ("tun", VPNType.OPENVPN),
]


class AddressClass(str, Enum):
    NEVER = "never"
    ALWAYS = "always"
    MESH = "mesh"  # CGNAT mesh range, VPN only behind an exit node


def classify_address(ip: str) -> AddressClass:
    """Bucket an IPv4 interface address by how it relates to VPN tunnels."""
    octets = ipv4_octets(ip)
    if octets is None:
        return AddressClass.NEVER
    first, second = octets[0], octets[1]

    if first == 127 or (first == 169 and second == 254):
        return AddressClass.NEVER
    if first == 100 and 96 <= second <= 111:
        # Cloudflare WARP sub-range of CGNAT
        return AddressClass.ALWAYS
    if first == 100 and 64 <= second <= 95:
        return AddressClass.MESH
    if first == 10:
        return AddressClass.ALWAYS
    if first == 172 and 16 <= second <= 31:
        return AddressClass.ALWAYS
    if first == 192 and second == 168:
        return AddressClass.ALWAYS
    return AddressClass.NEVER


def is_vpn_like_ip(ip: str, exit_node_confirmed: bool = False) -> bool:
    """True if an interface holding `ip` looks like a VPN tunnel endpoint."""
    cls = classify_address(ip)
    if cls is AddressClass.MESH:
        return exit_node_confirmed
    return cls is AddressClass.ALWAYS


def process_hint(processes: Optional[list[str]]) -> Optional[VPNType]:
    """VPN client type suggested by the running processes."""
    for name in processes or []:
        lowered = name.lower()
        for signature, vpn_type in PROCESS_SIGNATURES:
            if signature in lowered:
                return vpn_type
    return None


def type_from_name(interface_name: str, address: Optional[str] = None) -> VPNType:
    """Best guess at the VPN type from the interface name and its address."""
    if address is not None:
        cls = classify_address(address)
        if cls is AddressClass.MESH:
            return VPNType.TAILSCALE_EXIT_NODE
        octets = ipv4_octets(address)
        if octets and octets[0] == 100 and cls is AddressClass.ALWAYS:
            return VPNType.CLOUDFLARE_WARP
    for prefix, vpn_type in NAME_HINTS:
        if interface_name.startswith(prefix):
            return vpn_type
    return VPNType.UNKNOWN


class _ExitNodeCheck:
    """Asks the mesh client at most once per classification pass."""

    def __init__(self, query: Callable[[], Awaitable[bool]]):
        self._query = query
        self._answer: Optional[bool] = None

    async def confirmed(self) -> bool:
        if self._answer is None:
            try:
                self._answer = bool(await self._query())
            except Exception as e:
                logger.debug("exit_node_query_failed", error=str(e))
                self._answer = False
        return self._answer


class VPNClassifier:
    """Turns probe facts into a `VPNState`, holding the last good answer."""

    def __init__(self, probe: SystemProbe):
        self._probe = probe
        self._state = VPNState()

    @property
    def state(self) -> VPNState:
        return self._state

    async def classify(self, facts: ProbeFacts, prior: Optional[VPNState] = None) -> VPNState:
        """Classify one set of facts.

        A failed interface probe returns `prior` unchanged so a slow
        diagnostic call never reads as "VPN dropped".
        """
        prior = prior if prior is not None else self._state
        if not facts.complete:
            logger.warning("vpn_probe_incomplete_state_held", connected=prior.connected)
            return prior

        hint = process_hint(facts.processes)
        exit_node = _ExitNodeCheck(self._probe.mesh_exit_node_active)

        for block in facts.interfaces or []:
            if not self._is_candidate_shape(block):
                continue
            address = await self._vpn_address(block, exit_node)
            if address is None:
                continue
            vpn_type = hint or type_from_name(block.name, address)
            return VPNState(connected=True, interface_name=block.name, vpn_type=vpn_type)

        return VPNState(connected=False)

    async def detect(self) -> VPNState:
        """Collect fresh facts, classify, and remember the result."""
        facts = await self._probe.collect()
        state = await self.classify(facts, self._state)
        if state.connected != self._state.connected or state.interface_name != self._state.interface_name:
            logger.info(
                "vpn_state_changed",
                connected=state.connected,
                interface=state.interface_name,
                vpn_type=state.vpn_type.value if state.vpn_type else None,
            )
        self._state = state
        return state

    @staticmethod
    def _is_candidate_shape(block: InterfaceBlock) -> bool:
        return block.name.startswith(TUNNEL_PREFIXES) and block.is_up and bool(block.ipv4)

    @staticmethod
    async def _vpn_address(block: InterfaceBlock, exit_node: _ExitNodeCheck) -> Optional[str]:
        for address in block.ipv4:
            cls = classify_address(address)
            if cls is AddressClass.ALWAYS:
                return address
            if cls is AddressClass.MESH and await exit_node.confirmed():
                return address
        return None
