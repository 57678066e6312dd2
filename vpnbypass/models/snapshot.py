"""Read-only view of engine state handed to status displays."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .routes import ActiveRoute, RouteVerificationResult
from .vpn import VPNState


@dataclass(frozen=True)
class EngineSnapshot:
    """Committed engine state; `version` increases with every publish."""
    version: int = 0
    vpn: VPNState = field(default_factory=VPNState)
    local_gateway: Optional[str] = None
    active_routes: tuple[ActiveRoute, ...] = ()
    last_update: Optional[datetime] = None
    is_applying: bool = False
    helper_available: Optional[bool] = None
    failed_domains: tuple[str, ...] = ()
    verification: tuple[RouteVerificationResult, ...] = ()
    recent_logs: tuple[dict, ...] = ()

    @property
    def route_count(self) -> int:
        return len(self.active_routes)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "vpn": self.vpn.to_dict(),
            "local_gateway": self.local_gateway,
            "active_routes": [r.to_dict() for r in self.active_routes],
            "last_update": self.last_update.isoformat() if self.last_update else None,
            "is_applying": self.is_applying,
            "helper_available": self.helper_available,
            "failed_domains": list(self.failed_domains),
            "verification": [v.to_dict() for v in self.verification],
            "recent_logs": list(self.recent_logs),
        }
