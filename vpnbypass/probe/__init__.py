"""Diagnostic command probes and their output parsers."""

from .parsers import InterfaceBlock, ResolverBlock
from .system_probe import TUNNEL_PREFIXES, ProbeFacts, SystemProbe

__all__ = [
    "InterfaceBlock",
    "ProbeFacts",
    "ResolverBlock",
    "SystemProbe",
    "TUNNEL_PREFIXES",
]
