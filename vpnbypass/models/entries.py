"""User-configured bypass entries: single domains and service bundles."""

import uuid
from datetime import datetime
from typing import Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..utils.validators import validate_cidr


def normalize_domain(value: str) -> str:
    """Reduce user input to a bare lowercase hostname.

    Strips surrounding whitespace, any scheme, credentials, port, path,
    query, fragment and trailing dots. Applying it twice gives the same
    result as applying it once.
    """
    text = value.strip()
    if "://" in text:
        host = urlsplit(text).netloc
    else:
        host = text
    for sep in ("/", "?", "#"):
        host = host.split(sep, 1)[0]
    host = host.rsplit("@", 1)[-1]
    if host.count(":") == 1:
        host = host.split(":", 1)[0]
    return host.strip().rstrip(".").lower()


class DomainEntry(BaseModel):
    """A single domain routed around the VPN."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    domain: str
    enabled: bool = True
    last_resolved_ip: Optional[str] = None
    last_resolved_at: Optional[datetime] = None

    @field_validator("domain")
    @classmethod
    def normalize(cls, v: str) -> str:
        return normalize_domain(v)


class ServiceEntry(BaseModel):
    """A named bundle of domains and static IPv4 ranges (e.g. Telegram)."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    enabled: bool = False
    domains: list[str] = []
    ip_ranges: list[str] = []

    @field_validator("domains")
    @classmethod
    def normalize_domains(cls, v: list[str]) -> list[str]:
        return [d for d in (normalize_domain(x) for x in v) if d]

    @field_validator("ip_ranges")
    @classmethod
    def validate_ranges(cls, v: list[str]) -> list[str]:
        return [validate_cidr(r) for r in v]
