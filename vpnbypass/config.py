"""Process settings using Pydantic Settings.

These are the engine's operational knobs (paths, timeouts, command
locations). The user-editable bypass configuration (domains, services,
behaviour flags) lives in `models.bypass_config` and is persisted as JSON.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_app_dir() -> Path:
    return Path.home() / "Library" / "Application Support" / "VPNBypass"


class BypassSettings(BaseSettings):
    """Loads from a .env file and VPNBYPASS_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="VPNBYPASS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    debug: bool = False

    # Files
    app_dir: Path = _default_app_dir()
    config_filename: str = "config.json"
    dns_cache_filename: str = "dns_cache.json"
    log_dir: str = "logs"
    log_max_bytes: int = 5_000_000
    log_backup_count: int = 3
    hosts_file: Path = Path("/etc/hosts")

    # Privileged helper
    helper_socket: Path = Path("/var/run/vpnbypass-helper.sock")
    helper_timeout: float = 30.0

    # Timing
    status_check_interval: float = 30.0
    watchdog_interval: float = 12 * 60 * 60
    apply_cooldown_seconds: float = 5.0
    probe_timeout: float = 5.0
    gateway_query_timeout: float = 3.0
    mesh_status_timeout: float = 2.0
    detected_dns_timeout: float = 1.5
    fallback_dns_timeout: float = 2.0
    doh_timeout: float = 3.0
    dot_timeout: float = 3.0
    system_dns_timeout: float = 3.0
    ping_timeout: float = 2.0

    # Concurrency
    dns_batch_size: int = 100
    verify_sample_size: int = 10
    verify_concurrency: int = 5

    # Commands
    ps_path: str = "/bin/ps"
    ifconfig_path: str = "/sbin/ifconfig"
    networksetup_path: str = "/usr/sbin/networksetup"
    route_path: str = "/sbin/route"
    scutil_path: str = "/usr/sbin/scutil"
    tailscale_path: str = "tailscale"
    dig_path: str = "dig"
    kdig_path: str = "kdig"
    ping_path: str = "/sbin/ping"
    sudo_path: str = "/usr/bin/sudo"
    dscacheutil_path: str = "/usr/bin/dscacheutil"
    killall_path: str = "/usr/bin/killall"

    gateway_services: list[str] = [
        "Wi-Fi",
        "Ethernet",
        "USB 10/100/1000 LAN",
        "Thunderbolt Ethernet",
    ]

    @field_validator("dns_batch_size", "verify_concurrency")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @property
    def config_path(self) -> Path:
        return self.app_dir / self.config_filename

    @property
    def dns_cache_path(self) -> Path:
        return self.app_dir / self.dns_cache_filename


def get_settings() -> BypassSettings:
    """Factory function to create a settings instance."""
    return BypassSettings()
