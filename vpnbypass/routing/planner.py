"""Turns configuration plus fresh DNS answers into route sets and deltas.

Every destination appears at most once in a planned set. When two sources
want the same destination the first one in planning order (custom domains,
then services in configured order; a service's domains before its ranges)
owns the route.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..dns.resolver import DNSResolutionPipeline
from ..models.entries import DomainEntry, ServiceEntry
from ..models.routes import ActiveRoute, HostsEntry, PlanResult, RouteDelta
from ..utils.logging import get_logger
from ..utils.validators import is_network_destination

logger = get_logger("routing.planner")


@dataclass(frozen=True)
class RouteSource:
    """Something that owns routes: a custom domain or a service."""
    name: str
    domains: tuple[str, ...] = ()
    ip_ranges: tuple[str, ...] = ()

    @classmethod
    def from_domain(cls, entry: DomainEntry) -> "RouteSource":
        return cls(name=entry.domain, domains=(entry.domain,))

    @classmethod
    def from_service(cls, service: ServiceEntry) -> "RouteSource":
        return cls(name=service.name, domains=tuple(service.domains), ip_ranges=tuple(service.ip_ranges))


def sources_for(domains: Iterable[DomainEntry], services: Iterable[ServiceEntry]) -> list[RouteSource]:
    """Enabled sources in planning order."""
    sources = [RouteSource.from_domain(d) for d in domains if d.enabled]
    sources.extend(RouteSource.from_service(s) for s in services if s.enabled)
    return sources


@dataclass
class _Accumulator:
    gateway: str
    taken: set[str] = field(default_factory=set)
    routes: list[ActiveRoute] = field(default_factory=list)

    def offer(self, destination: str, source: str) -> Optional[ActiveRoute]:
        if destination in self.taken:
            return None
        self.taken.add(destination)
        route = ActiveRoute(
            destination=destination,
            gateway=self.gateway,
            source=source,
            is_network=is_network_destination(destination),
        )
        self.routes.append(route)
        return route


class RoutePlanner:
    """Stateless planning over a resolver; the engine owns the active set."""

    def __init__(self, resolver: DNSResolutionPipeline):
        self._resolver = resolver

    async def _resolve(self, sources: list[RouteSource]) -> dict[str, Optional[list[str]]]:
        names = [d for s in sources for d in s.domains]
        if not names:
            return {}
        return await self._resolver.resolve_many(names)

    async def plan(
        self,
        domains: Iterable[DomainEntry],
        services: Iterable[ServiceEntry],
        gateway: str,
    ) -> PlanResult:
        """Full desired route set for the enabled entries."""
        sources = sources_for(domains, services)
        answers = await self._resolve(sources)
        acc = _Accumulator(gateway)
        failed: list[str] = []
        hosts: dict[str, str] = {}

        for source in sources:
            for domain in source.domains:
                ips = answers.get(domain)
                if not ips:
                    if domain not in failed:
                        failed.append(domain)
                    continue
                hosts.setdefault(domain, ips[0])
                for ip in ips:
                    acc.offer(ip, source.name)
            for cidr in source.ip_ranges:
                acc.offer(cidr, source.name)

        logger.info(
            "routes_planned",
            sources=len(sources),
            routes=len(acc.routes),
            failed_domains=len(failed),
        )
        return PlanResult(
            routes=tuple(acc.routes),
            failed_domains=tuple(failed),
            hosts_entries=tuple(HostsEntry(domain=d, ip=ip) for d, ip in hosts.items()),
        )

    async def plan_for_source(
        self,
        source: RouteSource,
        enabled: bool,
        active: Iterable[ActiveRoute],
        gateway: Optional[str],
    ) -> RouteDelta:
        """Delta for a single source being switched on or off.

        Switching off withdraws exactly the routes tagged with the source.
        Switching on adds its destinations that no active route already covers.
        """
        active = list(active)
        if not enabled:
            owned = tuple(r for r in active if r.source == source.name)
            return RouteDelta(remove=owned)

        if gateway is None:
            return RouteDelta()

        answers = await self._resolve([source])
        acc = _Accumulator(gateway, taken={r.destination for r in active})
        failed = []
        hosts = []
        for domain in source.domains:
            ips = answers.get(domain)
            if not ips:
                failed.append(domain)
                continue
            hosts.append(HostsEntry(domain=domain, ip=ips[0]))
            for ip in ips:
                acc.offer(ip, source.name)
        for cidr in source.ip_ranges:
            acc.offer(cidr, source.name)

        return RouteDelta(add=tuple(acc.routes), failed_domains=tuple(failed), hosts_entries=tuple(hosts))

    async def plan_refresh(
        self,
        active: Iterable[ActiveRoute],
        domains: Iterable[DomainEntry],
        services: Iterable[ServiceEntry],
        gateway: str,
    ) -> RouteDelta:
        """Re-resolve every enabled domain and diff against the active host routes.

        Network (CIDR) routes are never touched. A source with any failed
        lookup keeps all of its existing host routes; only additions apply.
        """
        active = list(active)
        sources = sources_for(domains, services)
        answers = await self._resolve(sources)

        fresh: dict[str, list[str]] = {}
        incomplete: set[str] = set()
        failed: list[str] = []
        hosts: dict[str, str] = {}
        for source in sources:
            ips: list[str] = fresh.setdefault(source.name, [])
            for domain in source.domains:
                answer = answers.get(domain)
                if not answer:
                    incomplete.add(source.name)
                    if domain not in failed:
                        failed.append(domain)
                    continue
                hosts.setdefault(domain, answer[0])
                ips.extend(ip for ip in answer if ip not in ips)

        remove = []
        for route in active:
            if route.is_network or route.source not in fresh or route.source in incomplete:
                continue
            if route.destination not in fresh[route.source]:
                remove.append(route)

        removed = {id(r) for r in remove}
        remaining = {r.destination for r in active if id(r) not in removed}
        acc = _Accumulator(gateway, taken=remaining)
        for source in sources:
            for ip in fresh[source.name]:
                acc.offer(ip, source.name)

        logger.info(
            "routes_refresh_planned",
            added=len(acc.routes),
            removed=len(remove),
            failed_domains=len(failed),
        )
        return RouteDelta(
            add=tuple(acc.routes),
            remove=tuple(remove),
            failed_domains=tuple(failed),
            hosts_entries=tuple(HostsEntry(domain=d, ip=ip) for d, ip in hosts.items()),
        )
