"""The managed block inside the system hosts file."""

from typing import Iterable

from ..models.routes import HostsEntry
from ..utils.validators import is_valid_hostname, is_valid_ipv4

MARKER = "# VPN-BYPASS-MANAGED"
MARKER_START = f"{MARKER} - START"
MARKER_END = f"{MARKER} - END"


def strip_managed_block(content: str) -> list[str]:
    """Lines of `content` with any managed block removed.

    An unterminated block runs to the end of the file.
    """
    kept = []
    inside = False
    for line in content.split("\n"):
        if MARKER_START in line:
            inside = True
            continue
        if MARKER_END in line:
            inside = False
            continue
        if not inside:
            kept.append(line)
    return kept


def render_hosts(content: str, entries: Iterable[HostsEntry]) -> str:
    """Replace the managed block in `content` with `entries`.

    Everything outside the markers is kept verbatim apart from trailing
    blank lines. Invalid entries are skipped; no entries removes the block.
    """
    lines = strip_managed_block(content)
    while lines and not lines[-1].strip():
        lines.pop()

    valid = [e for e in entries if is_valid_ipv4(e.ip) and is_valid_hostname(e.domain)]
    if valid:
        lines.append("")
        lines.append(MARKER_START)
        lines.extend(f"{e.ip} {e.domain}" for e in valid)
        lines.append(MARKER_END)

    return "\n".join(lines) + "\n"


def managed_entries(content: str) -> list[HostsEntry]:
    """Entries currently inside the managed block."""
    entries = []
    inside = False
    for line in content.split("\n"):
        if MARKER_START in line:
            inside = True
            continue
        if MARKER_END in line:
            break
        if inside:
            parts = line.split()
            if len(parts) >= 2 and is_valid_ipv4(parts[0]):
                entries.append(HostsEntry(domain=parts[1], ip=parts[0]))
    return entries
