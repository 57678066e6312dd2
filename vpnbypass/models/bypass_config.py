"""Persisted bypass configuration.

Decoding is forward-compatible: every field has a default, unknown keys are
ignored, and a field that fails validation is dropped (falling back to its
default) instead of invalidating the whole document. A document that cannot
be read at all yields the default configuration.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..exceptions import DuplicateDomainError, InvalidDomainError, UnknownEntryError
from ..utils.logging import get_logger
from ..utils.validators import is_valid_hostname
from .entries import DomainEntry, ServiceEntry, normalize_domain

logger = get_logger("models.bypass_config")

DEFAULT_REFRESH_INTERVAL = 3600.0
MIN_REFRESH_INTERVAL = 60.0


def default_services() -> list[ServiceEntry]:
    """Built-in service catalogue."""
    return [
        ServiceEntry(
            id="telegram", name="Telegram", enabled=True,
            domains=[
                "telegram.org", "t.me", "telegram.me",
                "core.telegram.org", "api.telegram.org", "web.telegram.org",
            ],
            ip_ranges=[
                "91.108.56.0/22", "91.108.4.0/22", "91.108.8.0/22",
                "91.108.16.0/22", "91.108.12.0/22", "149.154.160.0/20",
                "91.105.192.0/23", "185.76.151.0/24",
            ],
        ),
        ServiceEntry(
            id="youtube", name="YouTube",
            domains=[
                "youtube.com", "www.youtube.com", "m.youtube.com", "youtu.be",
                "youtube-nocookie.com", "googlevideo.com", "ytimg.com",
            ],
        ),
        ServiceEntry(
            id="whatsapp", name="WhatsApp",
            domains=["whatsapp.com", "web.whatsapp.com", "whatsapp.net"],
            ip_ranges=["3.33.221.0/24", "15.197.206.0/24", "52.26.198.0/24", "169.45.71.0/24"],
        ),
        ServiceEntry(
            id="spotify", name="Spotify",
            domains=["spotify.com", "scdn.co", "spotifycdn.com"],
        ),
        ServiceEntry(
            id="tailscale", name="Tailscale", enabled=True,
            domains=[
                "login.tailscale.com", "controlplane.tailscale.com",
                "tailscale.com", "pkgs.tailscale.com",
            ],
        ),
        ServiceEntry(
            id="slack", name="Slack",
            domains=["slack.com", "slack-edge.com", "slack-imgs.com"],
        ),
        ServiceEntry(
            id="discord", name="Discord",
            domains=["discord.com", "discord.gg", "discordapp.com", "discord.media", "discordcdn.com"],
        ),
        ServiceEntry(
            id="twitch", name="Twitch",
            domains=["twitch.tv", "twitchcdn.net", "jtvnw.net"],
        ),
    ]


class BypassConfig(BaseModel):
    """Domains, services and behaviour flags."""

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    domains: list[DomainEntry] = []
    services: list[ServiceEntry] = Field(default_factory=default_services)
    auto_apply_on_vpn: bool = True
    manage_hosts_file: bool = False
    verify_routes_after_apply: bool = False
    auto_dns_refresh: bool = True
    dns_refresh_interval: float = DEFAULT_REFRESH_INTERVAL
    fallback_dns: list[str] = ["1.1.1.1", "8.8.8.8"]

    @field_validator("dns_refresh_interval")
    @classmethod
    def clamp_interval(cls, v: float) -> float:
        return max(v, MIN_REFRESH_INTERVAL)

    @field_validator("fallback_dns")
    @classmethod
    def strip_entries(cls, v: list[str]) -> list[str]:
        return [s.strip() for s in v if s and s.strip()]

    @field_validator("domains")
    @classmethod
    def drop_duplicate_domains(cls, v: list[DomainEntry]) -> list[DomainEntry]:
        """Keep the first entry per normalized domain (and per id)."""
        seen_domains: set[str] = set()
        seen_ids: set[str] = set()
        kept = []
        for entry in v:
            if entry.domain in seen_domains or entry.id in seen_ids:
                logger.warning("config_duplicate_domain_dropped", domain=entry.domain, id=entry.id)
                continue
            seen_domains.add(entry.domain)
            seen_ids.add(entry.id)
            kept.append(entry)
        return kept

    @field_validator("services")
    @classmethod
    def drop_duplicate_services(cls, v: list[ServiceEntry]) -> list[ServiceEntry]:
        seen: set[str] = set()
        kept = []
        for service in v:
            if service.id in seen:
                logger.warning("config_duplicate_service_dropped", id=service.id)
                continue
            seen.add(service.id)
            kept.append(service)
        return kept

    # -- lookups ---------------------------------------------------------

    def service_map(self) -> dict[str, ServiceEntry]:
        """Services keyed by stable id, in configured order."""
        return {s.id: s for s in self.services}

    def get_service(self, service_id: str) -> ServiceEntry:
        service = self.service_map().get(service_id)
        if service is None:
            raise UnknownEntryError("service", service_id)
        return service

    def find_domain(self, domain: str) -> Optional[DomainEntry]:
        cleaned = normalize_domain(domain)
        return next((d for d in self.domains if d.domain == cleaned), None)

    def enabled_domains(self) -> list[DomainEntry]:
        return [d for d in self.domains if d.enabled]

    def enabled_services(self) -> list[ServiceEntry]:
        return [s for s in self.services if s.enabled]

    # -- mutations -------------------------------------------------------

    def add_domain(self, domain: str) -> DomainEntry:
        """Append a new entry; raises DuplicateDomainError on a normalized clash."""
        entry = DomainEntry(domain=domain)
        if not is_valid_hostname(entry.domain):
            raise InvalidDomainError(domain)
        if self.find_domain(entry.domain) is not None:
            raise DuplicateDomainError(entry.domain)
        self.domains = [*self.domains, entry]
        return entry

    def remove_domain(self, domain_or_id: str) -> DomainEntry:
        entry = self.get_domain(domain_or_id)
        self.domains = [d for d in self.domains if d.id != entry.id]
        return entry

    def set_domain_enabled(self, domain_or_id: str, enabled: bool) -> DomainEntry:
        entry = self.get_domain(domain_or_id)
        entry.enabled = enabled
        return entry

    def set_service_enabled(self, service_id: str, enabled: bool) -> ServiceEntry:
        service = self.get_service(service_id)
        service.enabled = enabled
        return service

    def get_domain(self, domain_or_id: str) -> DomainEntry:
        entry = next((d for d in self.domains if d.id == domain_or_id), None) or self.find_domain(domain_or_id)
        if entry is None:
            raise UnknownEntryError("domain", domain_or_id)
        return entry

    # -- decoding --------------------------------------------------------

    @classmethod
    def decode(cls, data: object) -> "BypassConfig":
        """Validate `data`, replacing any invalid field by its default."""
        if not isinstance(data, dict):
            logger.warning("config_not_an_object", type=type(data).__name__)
            return cls()

        payload = dict(data)
        # Each pass removes what failed: single list items where the error
        # points into a list, otherwise the whole top-level field.
        for _ in range(64):
            try:
                return cls.model_validate(payload)
            except ValidationError as e:
                if not cls._discard_invalid(payload, e):
                    break
        return cls()

    @staticmethod
    def _discard_invalid(payload: dict, error: ValidationError) -> bool:
        bad_fields: set[str] = set()
        bad_items: dict[str, set[int]] = {}
        for err in error.errors():
            loc = err.get("loc") or ()
            if not loc or loc[0] not in payload:
                continue
            key = loc[0]
            if len(loc) > 1 and isinstance(loc[1], int) and isinstance(payload[key], list):
                bad_items.setdefault(key, set()).add(loc[1])
            else:
                bad_fields.add(key)

        for key, indexes in bad_items.items():
            if key in bad_fields:
                continue
            logger.warning("config_items_dropped", field=key, count=len(indexes))
            payload[key] = [item for i, item in enumerate(payload[key]) if i not in indexes]
        for key in bad_fields:
            logger.warning("config_field_reset", field=key)
            payload.pop(key, None)
        return bool(bad_fields or bad_items)

    @classmethod
    def decode_json(cls, text: str) -> "BypassConfig":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("config_decode_failed", error=str(e))
            return cls()
        return cls.decode(data)

    def encode_json(self) -> str:
        return self.model_dump_json(indent=2)


class ConfigStore:
    """Reads and writes the bypass configuration file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> BypassConfig:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("config_default_used", path=str(self.path))
            return BypassConfig()
        except OSError as e:
            logger.warning("config_read_failed", path=str(self.path), error=str(e))
            return BypassConfig()
        config = BypassConfig.decode_json(text)
        logger.info("config_loaded", path=str(self.path), domains=len(config.domains), services=len(config.services))
        return config

    def save(self, config: BypassConfig) -> bool:
        """Atomically replace the config file. Returns False on I/O failure."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".config-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(config.encode_json())
            os.replace(tmp_name, self.path)
        except OSError as e:
            logger.error("config_save_failed", path=str(self.path), error=str(e))
            return False
        logger.debug("config_saved", path=str(self.path))
        return True
