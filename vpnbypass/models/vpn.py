"""VPN connection state as derived by the classifier."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class VPNType(str, Enum):
    GLOBAL_PROTECT = "GlobalProtect"
    CISCO_ANYCONNECT = "CiscoAnyConnect"
    OPENVPN = "OpenVPN"
    WIREGUARD = "WireGuard"
    TAILSCALE_EXIT_NODE = "TailscaleExitNode"
    FORTINET = "Fortinet"
    ZSCALER = "Zscaler"
    CLOUDFLARE_WARP = "CloudflareWARP"
    PALO_ALTO = "PaloAlto"
    PULSE_SECURE = "PulseSecure"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class VPNState:
    """Result of one classification pass."""
    connected: bool = False
    interface_name: Optional[str] = None
    vpn_type: Optional[VPNType] = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "connected": self.connected,
            "interface_name": self.interface_name,
            "vpn_type": self.vpn_type.value if self.vpn_type else None,
            "checked_at": self.checked_at.isoformat(),
        }
