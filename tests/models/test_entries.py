"""Tests for domain normalization and entry models."""

import pytest
from pydantic import ValidationError

from vpnbypass.models.entries import DomainEntry, ServiceEntry, normalize_domain


class TestNormalizeDomain:
    @pytest.mark.parametrize("raw,expected", [
        ("Example.COM", "example.com"),
        ("  example.com  ", "example.com"),
        ("https://example.com/path?q=1#frag", "example.com"),
        ("http://user:pw@Example.com:8080/", "example.com"),
        ("example.com:443", "example.com"),
        ("example.com.", "example.com"),
        ("example.com/", "example.com"),
        ("", ""),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_domain(raw) == expected

    @pytest.mark.parametrize("raw", [
        "HTTPS://Foo.Example.com:8443/a/b/",
        "foo.example.com.",
        "  ftp://bar.example.org ",
    ])
    def test_idempotent(self, raw):
        once = normalize_domain(raw)
        assert normalize_domain(once) == once


class TestDomainEntry:
    def test_domain_normalized_on_construction(self):
        entry = DomainEntry(domain="https://Example.com/")
        assert entry.domain == "example.com"
        assert entry.enabled is True
        assert entry.id

    def test_ids_unique(self):
        assert DomainEntry(domain="a.com").id != DomainEntry(domain="a.com").id


class TestServiceEntry:
    def test_ranges_normalized(self):
        service = ServiceEntry(id="x", name="X", ip_ranges=["91.108.56.1/22"])
        assert service.ip_ranges == ["91.108.56.0/22"]

    def test_invalid_range_rejected(self):
        with pytest.raises(ValidationError):
            ServiceEntry(id="x", name="X", ip_ranges=["999.0.0.0/8"])

    def test_blank_domains_dropped(self):
        service = ServiceEntry(id="x", name="X", domains=["A.com", "  ", "https://b.com/"])
        assert service.domains == ["a.com", "b.com"]
