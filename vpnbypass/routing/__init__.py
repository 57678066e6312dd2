"""Route planning and application."""

from .application import RouteApplicationGateway
from .executor import DirectExecutor, HelperExecutor, RouteExecutor
from .hosts import managed_entries, render_hosts
from .planner import RoutePlanner, RouteSource, sources_for
from .verifier import RouteVerifier

__all__ = [
    "DirectExecutor",
    "HelperExecutor",
    "RouteApplicationGateway",
    "RouteExecutor",
    "RoutePlanner",
    "RouteSource",
    "RouteVerifier",
    "managed_entries",
    "render_hosts",
    "sources_for",
]
