"""Parsers for diagnostic command output.

Each function takes raw text (or decoded JSON) and returns structured
values. None of them raise on malformed input; anything they cannot make
sense of is skipped.

Grammars:
    ifconfig      block   := header-line (indented-line)*
                  header  := NAME ':' ' flags=' HEX '<' FLAG (',' FLAG)* '>' ...
                  inet    := ws 'inet ' IPV4 ...
    scutil --dns  block   := 'resolver #' N (ws KEY ws? ':' ws VALUE)*
    networksetup  line    := 'Router: ' VALUE
    route get     line    := ws 'gateway: ' VALUE
    dig +short    line    := IPV4 | CNAME-target
    ping          line    := ... 'time=' FLOAT ' ms'
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from ..utils.validators import filter_ipv4, is_valid_ipv4

_FLAGS_RE = re.compile(r"<([^>]*)>")
_RESOLVER_RE = re.compile(r"^resolver\s+#\d+")
_NAMESERVER_RE = re.compile(r"^nameserver\[\d+\]\s*:\s*(\S+)")
_IF_INDEX_RE = re.compile(r"^if_index\s*:\s*\d+\s*\(([^)]+)\)")
_PING_TIME_RE = re.compile(r"time[=<]\s*([\d.]+)\s*ms")
_SSID_RE = re.compile(r"^Current Wi-Fi Network:\s*(.+)$")


@dataclass
class InterfaceBlock:
    """One interface section of an `ifconfig` listing."""
    name: str
    flags: frozenset = frozenset()
    ipv4: list[str] = field(default_factory=list)

    @property
    def is_up(self) -> bool:
        return "UP" in self.flags


@dataclass
class ResolverBlock:
    """One `resolver #N` section of `scutil --dns`."""
    nameservers: list[str] = field(default_factory=list)
    interface: Optional[str] = None
    scoped: bool = False


def parse_process_list(output: str) -> list[str]:
    """`ps -axo comm=` output to a list of lowercased command names."""
    names = []
    for line in output.splitlines():
        line = line.strip()
        if line:
            names.append(line.lower())
    return names


def parse_interface_blocks(output: str) -> list[InterfaceBlock]:
    """Split an `ifconfig` listing into interface blocks."""
    blocks: list[InterfaceBlock] = []
    current: Optional[InterfaceBlock] = None

    for line in output.splitlines():
        if not line.strip():
            continue
        if not line[0].isspace() and ":" in line:
            name = line.split(":", 1)[0].strip()
            if not name:
                current = None
                continue
            flags_match = _FLAGS_RE.search(line)
            flags = frozenset(
                f.strip().upper() for f in flags_match.group(1).split(",") if f.strip()
            ) if flags_match else frozenset()
            current = InterfaceBlock(name=name, flags=flags)
            blocks.append(current)
            continue

        if current is None:
            continue
        tokens = line.split()
        if len(tokens) >= 2 and tokens[0] == "inet":
            address = tokens[1]
            if address.startswith("addr:"):
                address = address[len("addr:"):]
            if is_valid_ipv4(address):
                current.ipv4.append(address)

    return blocks


def parse_networksetup_router(output: str) -> Optional[str]:
    """`networksetup -getinfo <service>` to the Router address, if any."""
    for line in output.splitlines():
        if line.startswith("Router:"):
            value = line[len("Router:"):].strip()
            if value and value.lower() != "none" and is_valid_ipv4(value):
                return value
    return None


def parse_route_gateway(output: str) -> Optional[str]:
    """`route -n get default` to the gateway address, if any."""
    for line in output.splitlines():
        key, sep, value = line.strip().partition(":")
        if sep and key.strip() == "gateway":
            value = value.strip()
            if is_valid_ipv4(value):
                return value
    return None


def parse_scutil_dns(output: str) -> list[ResolverBlock]:
    """`scutil --dns` to resolver blocks, unscoped ones first as listed."""
    blocks: list[ResolverBlock] = []
    current: Optional[ResolverBlock] = None
    scoped = False

    for raw in output.splitlines():
        line = raw.strip()
        if not line:
            continue
        if line.startswith("DNS configuration (for scoped queries)"):
            scoped = True
            current = None
            continue
        if _RESOLVER_RE.match(line):
            current = ResolverBlock(scoped=scoped)
            blocks.append(current)
            continue
        if current is None:
            continue
        ns = _NAMESERVER_RE.match(line)
        if ns:
            current.nameservers.append(ns.group(1))
            continue
        idx = _IF_INDEX_RE.match(line)
        if idx:
            current.interface = idx.group(1).strip()

    return blocks


def parse_dig_short(output: str) -> list[str]:
    """`dig +short` output to IPv4 addresses; CNAME targets and noise dropped."""
    return filter_ipv4(output.splitlines())


def parse_doh_answer(data: Any) -> list[str]:
    """DNS JSON (application/dns-json) response to A-record addresses."""
    if not isinstance(data, dict):
        return []
    answers = data.get("Answer")
    if not isinstance(answers, list):
        return []
    values = []
    for answer in answers:
        if isinstance(answer, dict) and answer.get("type") == 1 and isinstance(answer.get("data"), str):
            values.append(answer["data"])
    return filter_ipv4(values)


def parse_mesh_exit_node(output: str) -> bool:
    """`tailscale status --json`: True when an exit node is carrying traffic."""
    try:
        data = json.loads(output)
    except (json.JSONDecodeError, TypeError):
        return False
    if not isinstance(data, dict):
        return False

    status = data.get("ExitNodeStatus")
    if isinstance(status, dict) and status.get("Online", True):
        return True

    peers = data.get("Peer")
    if isinstance(peers, dict):
        for peer in peers.values():
            if isinstance(peer, dict) and peer.get("ExitNode") and peer.get("Online", True):
                return True
    return False


def parse_ping_latency(output: str) -> Optional[float]:
    """Round-trip time of the first reply in `ping` output, in ms."""
    match = _PING_TIME_RE.search(output)
    if not match:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


def parse_wifi_ssid(output: str) -> Optional[str]:
    """`networksetup -getairportnetwork <device>` to the SSID."""
    for line in output.splitlines():
        match = _SSID_RE.match(line.strip())
        if match:
            return match.group(1).strip() or None
    return None
