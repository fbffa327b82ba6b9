import httpx
import pytest

from breach_detection.geolocation import (
    LOCAL,
    GeoResolver,
    HttpCountryLookup,
    StaticCountryTable,
    is_private_ip,
    mask_ip,
)


@pytest.mark.parametrize("ip", ["10.0.0.1", "172.16.5.4", "172.31.255.255", "192.168.1.1", "127.0.0.1"])
def test_private_ranges(ip):
    assert is_private_ip(ip)


@pytest.mark.parametrize("ip", ["172.32.0.1", "8.8.8.8", "::1", "garbage"])
def test_public_or_unparseable(ip):
    assert not is_private_ip(ip)


def test_mask_ip():
    assert mask_ip("203.0.113.42") == "203.0.xxx.xxx"
    assert mask_ip("2001:db8:85a3::8a2e:370:7334") == "2001:db8:8..."


def test_resolver_short_circuits_private_and_invalid():
    calls = []
    resolver = GeoResolver(lambda ip: calls.append(ip) or "US")

    assert resolver.resolve_country("192.168.0.4") == LOCAL
    assert resolver.resolve_country("not an ip") is None
    assert resolver.resolve_country("") is None
    assert calls == []


def test_resolver_swallows_lookup_errors():
    def broken(ip):
        raise httpx.ConnectError("no route")

    assert GeoResolver(broken).resolve_country("8.8.8.8") is None


def test_unconfigured_resolver_returns_none():
    assert GeoResolver().resolve_country("8.8.8.8") is None


def test_resolve_many_looks_up_each_address_once():
    calls = []

    def lookup(ip):
        calls.append(ip)
        return "FR"

    resolved = GeoResolver(lookup).resolve_many(["9.9.9.9", "9.9.9.9", "10.0.0.1"])
    assert resolved == {"9.9.9.9": "FR", "10.0.0.1": LOCAL}
    assert calls == ["9.9.9.9"]


def test_static_table_matches_cidrs():
    table = StaticCountryTable({"203.0.113.0/24": "au", "2001:db8::/32": "nl"})
    assert table("203.0.113.9") == "AU"
    assert table("2001:db8::1") == "NL"
    assert table("198.51.100.1") is None


def test_http_lookup_parses_country_code():
    def handler(request):
        assert request.url.path == "/8.8.8.8/country/"
        return httpx.Response(200, text="us\n")

    client = httpx.Client(transport=httpx.MockTransport(handler))
    assert HttpCountryLookup("https://geo.example/", client=client)("8.8.8.8") == "US"


def test_http_lookup_rejects_non_codes():
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, text="Undefined")))
    assert HttpCountryLookup("https://geo.example", client=client)("8.8.8.8") is None


def test_http_lookup_raises_on_server_error():
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
    with pytest.raises(httpx.HTTPStatusError):
        HttpCountryLookup("https://geo.example", client=client)("8.8.8.8")
