"""Route values exchanged between the planner, the engine and the executor."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ActiveRoute:
    """A bypass route pointing `destination` at the local gateway."""
    destination: str
    gateway: str
    source: str
    created_at: datetime = field(default_factory=_now)
    is_network: bool = False

    def to_dict(self) -> dict:
        return {
            "destination": self.destination,
            "gateway": self.gateway,
            "source": self.source,
            "created_at": self.created_at.isoformat(),
            "is_network": self.is_network,
        }


@dataclass(frozen=True)
class HostsEntry:
    domain: str
    ip: str


@dataclass(frozen=True)
class RouteVerificationResult:
    """Reachability of one bypass destination. Never persisted."""
    destination: str
    reachable: bool
    latency_ms: Optional[float] = None
    error: Optional[str] = None
    checked_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "destination": self.destination,
            "reachable": self.reachable,
            "latency_ms": self.latency_ms,
            "error": self.error,
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass(frozen=True)
class PlanResult:
    """Desired route set from a full plan."""
    routes: tuple[ActiveRoute, ...] = ()
    failed_domains: tuple[str, ...] = ()
    hosts_entries: tuple[HostsEntry, ...] = ()


@dataclass(frozen=True)
class RouteDelta:
    """Routes to install and destinations to withdraw."""
    add: tuple[ActiveRoute, ...] = ()
    remove: tuple[ActiveRoute, ...] = ()
    failed_domains: tuple[str, ...] = ()
    hosts_entries: tuple[HostsEntry, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.add and not self.remove


@dataclass(frozen=True)
class BatchResult:
    """Outcome of one submission to the executor."""
    success_count: int = 0
    failure_count: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.failure_count == 0
