"""Bypass engine: the single owner of configuration, active routes and DNS cache.

Coordinates VPN classification, gateway discovery, DNS resolution, route
planning and route application. Every route-set mutation runs under one
asyncio.Lock; full apply and refresh are additionally rejected while
another one is in flight.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional

from .config import BypassSettings, get_settings
from .dns.disk_cache import DiskDNSCache
from .dns.resolver import DNSResolutionPipeline
from .models.bypass_config import BypassConfig, ConfigStore
from .models.entries import DomainEntry, ServiceEntry
from .models.routes import ActiveRoute, HostsEntry
from .models.snapshot import EngineSnapshot
from .models.vpn import VPNState
from .probe.system_probe import SystemProbe
from .routing.application import RouteApplicationGateway
from .routing.executor import DirectExecutor, HelperExecutor
from .routing.planner import RoutePlanner, RouteSource
from .routing.verifier import RouteVerifier
from .utils.event_bus import EventBus
from .utils.logging import get_logger, recent_logs
from .vpn.classifier import VPNClassifier
from .vpn.gateway import GatewayResolver

logger = get_logger("engine")

TRIGGER_VPN_CONNECT = "vpn_connect"
TRIGGER_MANUAL = "manual"
TRIGGER_IMPORT = "import"


@dataclass(frozen=True)
class ApplyReport:
    """Summary of one full apply."""
    trigger: str
    planned: int
    succeeded: int
    failed: int
    failed_domains: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "trigger": self.trigger,
            "planned": self.planned,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failed_domains": list(self.failed_domains),
        }


@dataclass(frozen=True)
class RefreshReport:
    """Summary of one DNS refresh."""
    added: int
    removed: int
    failed_domains: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "added": self.added,
            "removed": self.removed,
            "failed_domains": list(self.failed_domains),
        }


class BypassEngine:
    """Serialized owner of all mutable bypass state.

    Collaborators can be injected for testing; otherwise they are built
    from `settings`.
    """

    def __init__(
        self,
        settings: Optional[BypassSettings] = None,
        *,
        store: Optional[ConfigStore] = None,
        config: Optional[BypassConfig] = None,
        probe: Optional[SystemProbe] = None,
        classifier: Optional[VPNClassifier] = None,
        gateway_resolver: Optional[GatewayResolver] = None,
        disk_cache: Optional[DiskDNSCache] = None,
        resolver: Optional[DNSResolutionPipeline] = None,
        planner: Optional[RoutePlanner] = None,
        application: Optional[RouteApplicationGateway] = None,
        verifier: Optional[RouteVerifier] = None,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or get_settings()
        self.store = store or ConfigStore(self.settings.config_path)
        self.config = config if config is not None else self.store.load()

        self.probe = probe or SystemProbe(self.settings)
        self.classifier = classifier or VPNClassifier(self.probe)
        self.gateway_resolver = gateway_resolver or GatewayResolver(self.probe, self.settings.gateway_services)
        self.disk_cache = disk_cache or DiskDNSCache(self.settings.dns_cache_path)
        self.resolver = resolver or DNSResolutionPipeline(
            self.settings, self.disk_cache, fallback_dns=self.config.fallback_dns
        )
        self.planner = planner or RoutePlanner(self.resolver)
        self.application = application or RouteApplicationGateway(
            helper=HelperExecutor(self.settings.helper_socket, timeout=self.settings.helper_timeout),
            direct=DirectExecutor(self.settings),
            probe_timeout=self.settings.probe_timeout,
            on_helper_unavailable=self._on_helper_unavailable,
        )
        self.verifier = verifier or RouteVerifier(self.settings)
        self.event_bus = event_bus or EventBus()
        self._clock = clock

        self._lock = asyncio.Lock()
        self._is_applying = False
        self._last_apply_at: Optional[float] = None
        self._vpn_state = VPNState()
        self._local_gateway: Optional[str] = None
        self._active_routes: list[ActiveRoute] = []
        self._dns_cache: dict[str, str] = {}
        self._failed_domains: tuple[str, ...] = ()
        self._verification: tuple = ()
        self._last_update: Optional[datetime] = None
        self._ssid: Optional[str] = None
        self._version = 0
        self._snapshot = EngineSnapshot()

        self.running = False
        self.health_status = "initialized"
        self.started_at: Optional[datetime] = None
        self.last_heartbeat: Optional[datetime] = None

    # -- lifecycle -------------------------------------------------------

    async def prepare(self) -> None:
        """Load the disk DNS cache, pick the executor path and find the pre-VPN resolver."""
        self.disk_cache.load()
        await self.application.check_helper()

        # Finds the Wi-Fi resolver even when the tunnel already owns the default one
        detected = await self.probe.detect_pre_vpn_dns()
        if detected:
            self.resolver.detected_dns = detected

    async def start(self) -> None:
        self.running = True
        self.health_status = "starting"
        self.started_at = datetime.now(timezone.utc)
        logger.info("engine_starting", config=str(self.store.path))

        await self.event_bus.start()
        await self.prepare()
        await self.check_status()
        self.health_status = "running"
        logger.info(
            "engine_started",
            vpn_connected=self._vpn_state.connected,
            helper_available=self.application.helper_available,
        )

    async def stop(self) -> None:
        logger.info("engine_stopping")
        self.running = False
        self.disk_cache.save()
        await self.event_bus.stop()
        self.health_status = "stopped"
        logger.info("engine_stopped")

    async def health_check(self) -> dict:
        self.heartbeat()
        return {
            "status": self.health_status,
            "details": {
                "vpn_connected": self._vpn_state.connected,
                "interface": self._vpn_state.interface_name,
                "local_gateway": self._local_gateway,
                "active_routes": len(self._active_routes),
                "helper_available": self.application.helper_available,
                "helper_version": self.application.helper_version,
                "is_applying": self._is_applying,
                "event_bus": self.event_bus.get_stats(),
            },
        }

    def heartbeat(self) -> None:
        self.last_heartbeat = datetime.now(timezone.utc)

    def uptime_seconds(self) -> float:
        if self.started_at is None:
            return 0.0
        return (datetime.now(timezone.utc) - self.started_at).total_seconds()

    # -- snapshot --------------------------------------------------------

    @property
    def snapshot(self) -> EngineSnapshot:
        return self._snapshot

    @property
    def is_applying(self) -> bool:
        return self._is_applying

    @property
    def dns_cache(self) -> dict[str, str]:
        return dict(self._dns_cache)

    def _publish_snapshot(self) -> EngineSnapshot:
        self._version += 1
        self._snapshot = EngineSnapshot(
            version=self._version,
            vpn=self._vpn_state,
            local_gateway=self._local_gateway,
            active_routes=tuple(self._active_routes),
            last_update=self._last_update,
            is_applying=self._is_applying,
            helper_available=self.application.helper_available,
            failed_domains=self._failed_domains,
            verification=tuple(self._verification),
            recent_logs=tuple(recent_logs.entries()),
        )
        self.event_bus.publish("snapshot_updated", self._snapshot)
        return self._snapshot

    def _on_helper_unavailable(self, reason: str) -> None:
        self.event_bus.publish("helper_unavailable", {"reason": reason})

    # -- status ----------------------------------------------------------

    async def check_status(self, apply_on_connect: bool = True) -> EngineSnapshot:
        """Classify the VPN, find the gateway and act on connection transitions."""
        previous = self._vpn_state
        state = await self.classifier.detect()
        gateway = await self.gateway_resolver.resolve_gateway()

        self._vpn_state = state
        if gateway is not None:
            self._local_gateway = gateway
        await self._check_network()
        self.heartbeat()

        if state.connected and not previous.connected:
            self.event_bus.publish("vpn_connected", state.to_dict())
            if apply_on_connect and self.config.auto_apply_on_vpn:
                await self.apply_all_routes(trigger=TRIGGER_VPN_CONNECT)
        elif previous.connected and not state.connected:
            self.event_bus.publish("vpn_disconnected", previous.to_dict())
            await self._forget_routes()

        return self._publish_snapshot()

    async def _check_network(self) -> None:
        ssid = await self.probe.wifi_ssid()
        if ssid is None or ssid == self._ssid:
            return
        if self._ssid is not None:
            logger.info("network_changed", previous=self._ssid, current=ssid)
            self.event_bus.publish("network_changed", {"previous": self._ssid, "current": ssid})
        self._ssid = ssid

    async def _forget_routes(self) -> None:
        async with self._lock:
            count = len(self._active_routes)
            self._active_routes = []
            self._failed_domains = ()
            self._verification = ()
            self._last_update = datetime.now(timezone.utc)
        logger.info("vpn_disconnected_routes_cleared", routes=count)

    async def detect_and_apply(self) -> Optional[ApplyReport]:
        """Status check followed by a full apply, unless the check already applied."""
        applied_before = self._last_apply_at
        await self.check_status()
        if self._last_apply_at != applied_before:
            return None
        if self._local_gateway is None:
            logger.error("detect_and_apply_no_gateway")
            return None
        return await self.apply_all_routes(trigger=TRIGGER_MANUAL)

    # -- full apply / remove ---------------------------------------------

    async def apply_all_routes(self, trigger: str = TRIGGER_MANUAL) -> Optional[ApplyReport]:
        """Plan and submit the full route set. Returns None when skipped."""
        if self._is_applying:
            logger.info("apply_skipped_in_progress", trigger=trigger)
            return None
        if trigger == TRIGGER_VPN_CONNECT and self._last_apply_at is not None:
            elapsed = self._clock() - self._last_apply_at
            if elapsed < self.settings.apply_cooldown_seconds:
                logger.info("apply_skipped_duplicate_trigger", trigger=trigger, seconds_since_apply=round(elapsed, 2))
                return None

        self._is_applying = True
        self._publish_snapshot()
        try:
            async with self._lock:
                return await self._apply_all(trigger)
        finally:
            self._is_applying = False
            self._publish_snapshot()

    async def _apply_all(self, trigger: str) -> Optional[ApplyReport]:
        gateway = self._local_gateway or await self.gateway_resolver.resolve_gateway()
        if gateway is None:
            logger.error("apply_aborted_no_gateway", trigger=trigger)
            return None
        self._local_gateway = gateway

        logger.info("apply_started", trigger=trigger, gateway=gateway)
        self._dns_cache.clear()
        plan = await self.planner.plan(self.config.domains, self.config.services, gateway)

        planned = {r.destination for r in plan.routes}
        stale = [r for r in self._active_routes if r.destination not in planned]
        if stale:
            await self.application.withdraw(stale)

        result = await self.application.apply(plan.routes)
        self._active_routes = list(plan.routes)
        self._failed_domains = plan.failed_domains
        self._record_resolutions(plan.hosts_entries)
        self.disk_cache.save()

        if self.config.manage_hosts_file:
            await self.application.sync_hosts(plan.hosts_entries)

        self._last_apply_at = self._clock()
        self._last_update = datetime.now(timezone.utc)

        if self.config.verify_routes_after_apply:
            await self._verify(plan.routes)

        report = ApplyReport(
            trigger=trigger,
            planned=len(plan.routes),
            succeeded=result.success_count,
            failed=result.failure_count,
            failed_domains=plan.failed_domains,
        )
        logger.info("apply_completed", **report.to_dict())
        self.event_bus.publish("routes_applied", report.to_dict())
        return report

    async def _verify(self, routes: Iterable[ActiveRoute]) -> None:
        results = await self.verifier.verify(routes)
        self._verification = tuple(results)
        unreachable = [r.destination for r in results if not r.reachable]
        if unreachable:
            self.event_bus.publish("route_verification_failed", {"unreachable": unreachable})

    async def remove_all_routes(self, include_configured: bool = False) -> bool:
        """Withdraw every active route and the managed hosts block.

        With `include_configured`, destinations the current configuration
        resolves to are withdrawn too, covering routes installed by an
        earlier process.
        """
        if self._is_applying:
            logger.info("remove_skipped_in_progress")
            return False

        self._is_applying = True
        self._publish_snapshot()
        try:
            async with self._lock:
                routes = list(self._active_routes)
                if include_configured and self._local_gateway is not None:
                    plan = await self.planner.plan(self.config.domains, self.config.services, self._local_gateway)
                    routes.extend(plan.routes)
                result = await self.application.withdraw(routes)
                self._active_routes = []
                self._failed_domains = ()
                self._verification = ()
                self._last_update = datetime.now(timezone.utc)
                if self.config.manage_hosts_file:
                    await self.application.clear_hosts()
        finally:
            self._is_applying = False
            self._publish_snapshot()

        logger.info("all_routes_removed", count=len(routes), failed=result.failure_count)
        self.event_bus.publish("routes_removed", {"count": len(routes), "failed": result.failure_count})
        return result.ok

    # -- refresh ---------------------------------------------------------

    async def refresh_routes(self) -> Optional[RefreshReport]:
        """Re-resolve all enabled domains and apply only the difference."""
        if self._is_applying:
            logger.info("refresh_skipped_in_progress")
            return None
        if not self._vpn_state.connected or self._local_gateway is None:
            logger.info("refresh_skipped_not_connected")
            return None

        self._is_applying = True
        self._publish_snapshot()
        try:
            async with self._lock:
                report = await self._refresh()
        finally:
            self._is_applying = False
            self._publish_snapshot()

        self.event_bus.publish("dns_refresh_completed", report.to_dict())
        return report

    async def _refresh(self) -> RefreshReport:
        delta = await self.planner.plan_refresh(
            self._active_routes, self.config.domains, self.config.services, self._local_gateway
        )
        if delta.remove:
            await self.application.withdraw(delta.remove)
            self._active_routes = [r for r in self._active_routes if r not in delta.remove]
        if delta.add:
            await self.application.apply(delta.add)
            self._active_routes.extend(delta.add)

        hosts_changed = self._record_resolutions(delta.hosts_entries)
        self.disk_cache.save()
        if hosts_changed and self.config.manage_hosts_file:
            await self.application.sync_hosts(self._hosts_entries())

        self._failed_domains = delta.failed_domains
        self._last_update = datetime.now(timezone.utc)
        report = RefreshReport(added=len(delta.add), removed=len(delta.remove), failed_domains=delta.failed_domains)
        logger.info("dns_refresh_completed", **report.to_dict())
        return report

    # -- incremental patches ---------------------------------------------

    async def _patch_source(self, source: RouteSource, enabled: bool) -> None:
        if not self._vpn_state.connected or self._local_gateway is None:
            return
        async with self._lock:
            delta = await self.planner.plan_for_source(source, enabled, self._active_routes, self._local_gateway)
            if delta.remove:
                await self.application.withdraw(delta.remove)
                self._active_routes = [r for r in self._active_routes if r not in delta.remove]
            if delta.add:
                await self.application.apply(delta.add)
                self._active_routes.extend(delta.add)

            if enabled:
                hosts_changed = self._record_resolutions(delta.hosts_entries)
            else:
                hosts_changed = self._forget_resolutions(self._uncovered(source.domains))
            if hosts_changed and self.config.manage_hosts_file:
                await self.application.sync_hosts(self._hosts_entries())
            self._last_update = datetime.now(timezone.utc)

        logger.info(
            "source_routes_patched",
            source=source.name,
            enabled=enabled,
            added=len(delta.add),
            removed=len(delta.remove),
        )
        self._publish_snapshot()

    def _record_resolutions(self, entries: Iterable[HostsEntry]) -> bool:
        """Fold fresh answers into the DNS cache and the domain entries."""
        changed = False
        now = datetime.now(timezone.utc)
        by_domain = {d.domain: d for d in self.config.domains}
        touched = False
        for entry in entries:
            if self._dns_cache.get(entry.domain) != entry.ip:
                self._dns_cache[entry.domain] = entry.ip
                changed = True
            domain_entry = by_domain.get(entry.domain)
            if domain_entry is not None:
                domain_entry.last_resolved_ip = entry.ip
                domain_entry.last_resolved_at = now
                touched = True
        if touched:
            self._save_config()
        return changed

    def _uncovered(self, domains: Iterable[str]) -> list[str]:
        """Domains that no enabled custom entry or service still routes."""
        covered = {d.domain for d in self.config.enabled_domains()}
        covered.update(d for s in self.config.enabled_services() for d in s.domains)
        return [d for d in domains if d not in covered]

    def _forget_resolutions(self, domains: Iterable[str]) -> bool:
        changed = False
        for domain in domains:
            if self._dns_cache.pop(domain, None) is not None:
                changed = True
        return changed

    def _hosts_entries(self) -> list[HostsEntry]:
        return [HostsEntry(domain=d, ip=ip) for d, ip in self._dns_cache.items()]

    # -- configuration mutations -----------------------------------------

    def _save_config(self) -> None:
        self.store.save(self.config)

    async def add_domain(self, domain: str) -> DomainEntry:
        """Add a custom domain; raises InvalidDomainError or DuplicateDomainError."""
        entry = self.config.add_domain(domain)
        self._save_config()
        logger.info("domain_added", domain=entry.domain)
        self.event_bus.publish("domain_added", {"domain": entry.domain, "id": entry.id})
        await self._patch_source(RouteSource.from_domain(entry), True)
        return entry

    async def remove_domain(self, domain_or_id: str) -> DomainEntry:
        entry = self.config.remove_domain(domain_or_id)
        self._save_config()
        logger.info("domain_removed", domain=entry.domain)
        self.event_bus.publish("domain_removed", {"domain": entry.domain, "id": entry.id})
        await self._patch_source(RouteSource.from_domain(entry), False)
        return entry

    async def toggle_domain(self, domain_or_id: str) -> DomainEntry:
        entry = self.config.get_domain(domain_or_id)
        entry = self.config.set_domain_enabled(entry.id, not entry.enabled)
        self._save_config()
        logger.info("domain_toggled", domain=entry.domain, enabled=entry.enabled)
        await self._patch_source(RouteSource.from_domain(entry), entry.enabled)
        return entry

    async def toggle_service(self, service_id: str) -> ServiceEntry:
        """Flip a service; raises UnknownEntryError for an unknown id."""
        service = self.config.get_service(service_id)
        service = self.config.set_service_enabled(service_id, not service.enabled)
        self._save_config()
        logger.info("service_toggled", service=service.name, enabled=service.enabled)
        self.event_bus.publish("service_toggled", {"id": service.id, "name": service.name, "enabled": service.enabled})
        await self._patch_source(RouteSource.from_service(service), service.enabled)
        return service

    def update_settings(self, **changes) -> BypassConfig:
        """Change behaviour flags (e.g. fallback DNS, refresh interval) and persist them."""
        for key, value in changes.items():
            if key in ("domains", "services") or key not in BypassConfig.model_fields:
                raise ValueError(f"Not a settings field: {key}")
            setattr(self.config, key, value)
        if "fallback_dns" in changes:
            self.resolver.set_fallback_dns(self.config.fallback_dns)
        self._save_config()
        logger.info("settings_updated", fields=sorted(changes))
        return self.config

    # -- import / export -------------------------------------------------

    def export_config(self, path: Path) -> bool:
        path = Path(path)
        try:
            path.write_text(self.config.encode_json(), encoding="utf-8")
        except OSError as e:
            logger.error("config_export_failed", path=str(path), error=str(e))
            return False
        logger.info("config_exported", path=str(path))
        return True

    async def import_config(self, path: Path) -> bool:
        """Replace the configuration with the file at `path` and re-apply if connected."""
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.error("config_import_failed", path=str(path), error=str(e))
            return False

        self.config = BypassConfig.decode_json(text)
        self.resolver.set_fallback_dns(self.config.fallback_dns)
        self._save_config()
        logger.info("config_imported", path=str(path), domains=len(self.config.domains))

        if self._vpn_state.connected:
            await self.apply_all_routes(trigger=TRIGGER_IMPORT)
        else:
            self._publish_snapshot()
        return True

    # -- shutdown --------------------------------------------------------

    async def cleanup_on_quit(self) -> None:
        """Withdraw bypass routes and the hosts block, then stop."""
        if self._active_routes:
            await self.remove_all_routes()
        elif self.config.manage_hosts_file:
            await self.application.clear_hosts()
        await self.stop()
