"""Domain resolution that survives a VPN-controlled resolver."""

from .disk_cache import DiskDNSCache
from .resolver import DNSResolutionPipeline, FallbackServer, parse_fallback_entry

__all__ = [
    "DNSResolutionPipeline",
    "DiskDNSCache",
    "FallbackServer",
    "parse_fallback_entry",
]
