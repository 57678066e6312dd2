"""VPN detection and local gateway discovery."""

from .classifier import VPNClassifier, classify_address, is_vpn_like_ip, process_hint, type_from_name
from .gateway import GatewayResolver

__all__ = [
    "GatewayResolver",
    "VPNClassifier",
    "classify_address",
    "is_vpn_like_ip",
    "process_hint",
    "type_from_name",
]
