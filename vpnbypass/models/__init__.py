"""Engine data model."""

from .bypass_config import BypassConfig, ConfigStore, default_services
from .entries import DomainEntry, ServiceEntry, normalize_domain
from .routes import ActiveRoute, BatchResult, HostsEntry, PlanResult, RouteDelta, RouteVerificationResult
from .snapshot import EngineSnapshot
from .vpn import VPNState, VPNType

__all__ = [
    "ActiveRoute",
    "BatchResult",
    "BypassConfig",
    "ConfigStore",
    "DomainEntry",
    "EngineSnapshot",
    "HostsEntry",
    "PlanResult",
    "RouteDelta",
    "RouteVerificationResult",
    "ServiceEntry",
    "VPNState",
    "VPNType",
    "default_services",
    "normalize_domain",
]
