"""Post-apply reachability checks for a sample of bypass routes."""

import asyncio
from typing import Iterable

from ..config import BypassSettings
from ..models.routes import ActiveRoute, RouteVerificationResult
from ..probe.parsers import parse_ping_latency
from ..utils.commands import run_command
from ..utils.logging import get_logger

logger = get_logger("routing.verifier")


class RouteVerifier:
    """Pings host routes with bounded concurrency. Results are never persisted."""

    def __init__(self, settings: BypassSettings):
        self._settings = settings

    async def verify_one(self, destination: str) -> RouteVerificationResult:
        timeout = self._settings.ping_timeout
        result = await run_command(
            [self._settings.ping_path, "-c", "1", "-t", str(max(1, int(timeout))), destination],
            timeout=timeout + 1,
        )
        if not result.ok:
            return RouteVerificationResult(destination=destination, reachable=False, error=result.error or "no reply")
        return RouteVerificationResult(
            destination=destination,
            reachable=True,
            latency_ms=parse_ping_latency(result.stdout),
        )

    async def verify(self, routes: Iterable[ActiveRoute]) -> list[RouteVerificationResult]:
        sample = [r.destination for r in routes if not r.is_network][: self._settings.verify_sample_size]
        if not sample:
            return []

        semaphore = asyncio.Semaphore(self._settings.verify_concurrency)

        async def _check(destination: str) -> RouteVerificationResult:
            async with semaphore:
                return await self.verify_one(destination)

        results = await asyncio.gather(*(_check(d) for d in sample))
        unreachable = [r.destination for r in results if not r.reachable]
        if unreachable:
            logger.warning("route_verification_failed", checked=len(results), unreachable=unreachable)
        else:
            logger.info("route_verification_passed", checked=len(results))
        return list(results)
