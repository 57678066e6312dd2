"""Selective VPN bypass: route chosen domains and services around an active tunnel."""

__version__ = "1.4.0"
