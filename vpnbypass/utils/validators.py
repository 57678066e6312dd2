"""Address and hostname validation shared by parsers, planner and executors.

Everything that ends up as a `route` or hosts-file argument passes one of
these checks first, so no shell metacharacter ever reaches a command line.
"""

import ipaddress
import re
from typing import Iterable, Optional

_DOTTED_QUAD_RE = re.compile(r"^([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})$")

_HOSTNAME_RE = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?)*$"
)


def ipv4_octets(value: str) -> Optional[tuple[int, int, int, int]]:
    """Return the four octets of a dotted-quad, or None if it is not one."""
    match = _DOTTED_QUAD_RE.match(value.strip())
    if not match:
        return None
    octets = tuple(int(part) for part in match.groups())
    if any(o > 255 for o in octets):
        return None
    return octets  # type: ignore[return-value]


def is_valid_ipv4(value: str) -> bool:
    """True for dotted-quad IPv4 strings with every octet in [0, 255]."""
    return ipv4_octets(value) is not None


def is_valid_destination(value: str) -> bool:
    """Host IPv4 address or IPv4 CIDR with a prefix length in [0, 32]."""
    if "/" not in value:
        return is_valid_ipv4(value)
    address, _, prefix = value.partition("/")
    if not is_valid_ipv4(address) or not prefix.isdigit():
        return False
    return 0 <= int(prefix) <= 32


def is_network_destination(value: str) -> bool:
    return "/" in value


def is_valid_hostname(value: str) -> bool:
    return bool(value) and len(value) <= 253 and bool(_HOSTNAME_RE.match(value))


def validate_cidr(value: str) -> str:
    """Validate and normalize an IPv4 network; raises ValueError."""
    try:
        return str(ipaddress.IPv4Network(value.strip(), strict=False))
    except ValueError:
        raise ValueError(f"Invalid IPv4 network: {value!r}")


def filter_ipv4(tokens: Iterable[str]) -> list[str]:
    """Keep only valid IPv4 tokens, stripped, preserving order and dropping repeats."""
    seen: set[str] = set()
    result = []
    for token in tokens:
        token = token.strip()
        if token and token not in seen and is_valid_ipv4(token):
            seen.add(token)
            result.append(token)
    return result
