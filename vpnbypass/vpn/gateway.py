"""Discovery of the physical (non-VPN) default gateway."""

from typing import Optional

from ..probe.system_probe import SystemProbe
from ..utils.logging import get_logger

logger = get_logger("vpn.gateway")


class GatewayResolver:
    """Finds the router of the first configured network service that has one.

    Each network service is queried with its own timeout; a service that
    does not answer in time is skipped. The default route table is the
    last resort; under a full-tunnel VPN it may already point into the tunnel.
    """

    def __init__(self, probe: SystemProbe, services: list[str]):
        self._probe = probe
        self._services = list(services)
        self._last_gateway: Optional[str] = None

    async def resolve_gateway(self) -> Optional[str]:
        for service in self._services:
            gateway = await self._probe.service_router(service)
            if gateway:
                self._remember(gateway, source=service)
                return gateway

        gateway = await self._probe.default_route_gateway()
        if gateway:
            self._remember(gateway, source="route_table")
            return gateway

        logger.warning("local_gateway_not_found", services=self._services)
        return None

    def _remember(self, gateway: str, source: str) -> None:
        if gateway != self._last_gateway:
            logger.info("local_gateway_detected", gateway=gateway, source=source)
        self._last_gateway = gateway
