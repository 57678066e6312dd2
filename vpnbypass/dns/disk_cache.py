"""On-disk domain -> IP cache, the last tier of resolution."""

import json
import os
import tempfile
from pathlib import Path
from typing import Optional

from ..utils.logging import get_logger
from ..utils.validators import is_valid_ipv4

logger = get_logger("dns.disk_cache")


class DiskDNSCache:
    """Remembers the last IP each domain resolved to, across restarts."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._entries: dict[str, str] = {}
        self._dirty = False

    def load(self) -> int:
        """Read the cache file; unreadable or malformed content means an empty cache."""
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return 0
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("dns_cache_load_failed", path=str(self.path), error=str(e))
            return 0

        if not isinstance(data, dict):
            return 0
        self._entries = {
            str(domain): ip for domain, ip in data.items()
            if isinstance(ip, str) and is_valid_ipv4(ip)
        }
        self._dirty = False
        logger.debug("dns_cache_loaded", entries=len(self._entries))
        return len(self._entries)

    def get(self, domain: str) -> Optional[str]:
        return self._entries.get(domain)

    def update(self, domain: str, ip: str) -> None:
        if self._entries.get(domain) != ip:
            self._entries[domain] = ip
            self._dirty = True

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, domain: str) -> bool:
        return domain in self._entries

    def save(self) -> bool:
        """Write the cache if it changed since the last load/save."""
        if not self._dirty:
            return True
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".dns-cache-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._entries, f, indent=2, sort_keys=True)
            os.replace(tmp_name, self.path)
        except OSError as e:
            logger.warning("dns_cache_save_failed", path=str(self.path), error=str(e))
            return False
        self._dirty = False
        return True
