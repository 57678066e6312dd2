"""Multi-tier IPv4 resolution that works while a VPN owns the resolver.

Tiers, first non-empty answer wins:
    1. the DNS server the machine used before the VPN came up (dig)
    2. configured fallbacks, in order: plain DNS (dig), DNS-over-HTTPS
       (JSON API via httpx), DNS-over-TLS (kdig, skipped if absent)
    3. the operating system resolver
    4. the on-disk cache of earlier answers
"""

import asyncio
import socket
from dataclasses import dataclass
from typing import Optional

import httpx

from ..config import BypassSettings
from ..probe.parsers import parse_dig_short, parse_doh_answer
from ..utils.commands import command_available, run_command
from ..utils.logging import get_logger
from ..utils.validators import filter_ipv4, is_valid_ipv4
from .disk_cache import DiskDNSCache

logger = get_logger("dns.resolver")

DOT_PORT = 853


@dataclass(frozen=True)
class FallbackServer:
    """One parsed fallback DNS entry."""
    kind: str  # "dns", "doh" or "dot"
    target: str


def parse_fallback_entry(entry: str) -> Optional[FallbackServer]:
    """Interpret a fallback DNS setting.

    `1.1.1.1` -> classic DNS, `https://...` -> DoH, `tls://host` or
    `host:853` -> DoT. Anything else is rejected.
    """
    entry = entry.strip()
    if not entry:
        return None
    if entry.startswith("https://"):
        return FallbackServer("doh", entry)
    if entry.startswith("tls://"):
        host = entry[len("tls://"):].rstrip("/")
        if host.endswith(f":{DOT_PORT}"):
            host = host[: -len(f":{DOT_PORT}")]
        return FallbackServer("dot", host) if host else None
    if entry.endswith(f":{DOT_PORT}"):
        host = entry[: -len(f":{DOT_PORT}")]
        return FallbackServer("dot", host) if host else None
    if is_valid_ipv4(entry):
        return FallbackServer("dns", entry)
    return None


class DNSResolutionPipeline:
    """Resolves domains to IPv4 addresses with bounded fan-out."""

    def __init__(
        self,
        settings: BypassSettings,
        disk_cache: DiskDNSCache,
        fallback_dns: Optional[list[str]] = None,
        detected_dns: Optional[str] = None,
    ):
        self._settings = settings
        self._disk_cache = disk_cache
        self.detected_dns = detected_dns
        self._fallbacks: list[FallbackServer] = []
        self._dot_available: Optional[bool] = None
        self.set_fallback_dns(fallback_dns or [])

    def set_fallback_dns(self, entries: list[str]) -> None:
        servers = []
        for entry in entries:
            server = parse_fallback_entry(entry)
            if server is None:
                logger.warning("fallback_dns_entry_ignored", entry=entry)
                continue
            servers.append(server)
        self._fallbacks = servers

    @property
    def fallbacks(self) -> list[FallbackServer]:
        return list(self._fallbacks)

    # -- public API ------------------------------------------------------

    async def resolve(self, domain: str) -> Optional[list[str]]:
        """All IPv4 addresses for `domain`, or None when every tier failed."""
        ips = await self._resolve_network(domain)
        if ips:
            self._disk_cache.update(domain, ips[0])
            return ips

        cached = self._disk_cache.get(domain)
        if cached:
            logger.info("dns_disk_cache_used", domain=domain, ip=cached)
            return [cached]

        logger.warning("dns_resolution_failed", domain=domain)
        return None

    async def resolve_many(self, domains: list[str]) -> dict[str, Optional[list[str]]]:
        """Resolve in batches of `dns_batch_size` concurrent lookups.

        Returns only after every lookup finished; keys keep input order
        with duplicates collapsed.
        """
        unique = list(dict.fromkeys(domains))
        results: dict[str, Optional[list[str]]] = {}
        batch_size = self._settings.dns_batch_size

        for start in range(0, len(unique), batch_size):
            batch = unique[start:start + batch_size]
            answers = await asyncio.gather(*(self.resolve(d) for d in batch), return_exceptions=True)
            for domain, answer in zip(batch, answers):
                if isinstance(answer, BaseException):
                    logger.error("dns_resolution_error", domain=domain, error=str(answer))
                    answer = None
                results[domain] = answer

        failed = sum(1 for v in results.values() if not v)
        logger.info("dns_batch_resolved", total=len(unique), failed=failed)
        return results

    # -- tiers -----------------------------------------------------------

    async def _resolve_network(self, domain: str) -> list[str]:
        if self.detected_dns:
            ips = await self._query_dns(self.detected_dns, domain, self._settings.detected_dns_timeout, attempts=2)
            if ips:
                return ips

        for server in self._fallbacks:
            if server.kind == "dns":
                ips = await self._query_dns(server.target, domain, self._settings.fallback_dns_timeout)
            elif server.kind == "doh":
                ips = await self._query_doh(server.target, domain)
            else:
                ips = await self._query_dot(server.target, domain)
            if ips:
                return ips

        return await self._query_system(domain)

    async def _query_dns(self, server: str, domain: str, timeout: float, attempts: int = 1) -> list[str]:
        wait = max(1, int(timeout))
        args = [self._settings.dig_path, f"@{server}", "+short", f"+time={wait}", "+tries=1", domain, "A"]
        for _ in range(attempts):
            result = await run_command(args, timeout=timeout + 0.5)
            if result.not_found:
                return []
            if result.ok:
                ips = parse_dig_short(result.stdout)
                if ips:
                    return ips
        return []

    async def _query_doh(self, url: str, domain: str) -> list[str]:
        try:
            async with httpx.AsyncClient(timeout=self._settings.doh_timeout) as client:
                response = await client.get(
                    url,
                    params={"name": domain, "type": "A"},
                    headers={"Accept": "application/dns-json"},
                )
                response.raise_for_status()
                return parse_doh_answer(response.json())
        except httpx.HTTPError as e:
            logger.debug("doh_query_failed", url=url, domain=domain, error=str(e))
        except ValueError as e:
            logger.debug("doh_bad_response", url=url, domain=domain, error=str(e))
        return []

    async def _query_dot(self, host: str, domain: str) -> list[str]:
        if self._dot_available is None:
            self._dot_available = command_available(self._settings.kdig_path)
            if not self._dot_available:
                logger.info("dot_tool_missing", tool=self._settings.kdig_path)
        if not self._dot_available:
            return []

        timeout = self._settings.dot_timeout
        result = await run_command(
            [self._settings.kdig_path, f"@{host}", "+tls", "+short", f"+time={max(1, int(timeout))}", domain, "A"],
            timeout=timeout + 0.5,
        )
        if not result.ok:
            return []
        return parse_dig_short(result.stdout)

    async def _query_system(self, domain: str) -> list[str]:
        loop = asyncio.get_running_loop()
        try:
            infos = await asyncio.wait_for(
                loop.getaddrinfo(domain, None, family=socket.AF_INET, type=socket.SOCK_STREAM),
                timeout=self._settings.system_dns_timeout,
            )
        except (asyncio.TimeoutError, OSError) as e:
            logger.debug("system_resolver_failed", domain=domain, error=str(e) or type(e).__name__)
            return []
        return filter_ipv4(info[4][0] for info in infos)
