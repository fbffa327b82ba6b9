from __future__ import annotations

import ipaddress
import logging
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import httpx


logger = logging.getLogger(__name__)

LOCAL = "LOCAL"

_PRIVATE_NETWORKS = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
]

CountryLookup = Callable[[str], Optional[str]]


def is_private_ip(ip: str) -> bool:
    try:
        address = ipaddress.IPv4Address(ip.strip())
    except ValueError:
        return False
    return any(address in network for network in _PRIVATE_NETWORKS)


def mask_ip(ip: str) -> str:
    """Hide the host part of an address before it is logged or emailed."""
    parts = ip.split(".")
    if len(parts) == 4:
        return f"{parts[0]}.{parts[1]}.xxx.xxx"
    return ip[:10] + "..."


class StaticCountryTable:
    """CIDR -> ISO country table, useful for tests and air-gapped deployments."""

    def __init__(self, entries: Mapping[str, str] | Iterable[Tuple[str, str]] = ()):
        items = entries.items() if isinstance(entries, Mapping) else entries
        self.networks: List[Tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, str]] = [
            (ipaddress.ip_network(cidr, strict=False), country.upper()) for cidr, country in items
        ]

    def __call__(self, ip: str) -> Optional[str]:
        address = ipaddress.ip_address(ip)
        for network, country in self.networks:
            if address.version == network.version and address in network:
                return country
        return None


class HttpCountryLookup:
    """Resolves countries against an ipapi-style ``GET {base_url}/{ip}/country/`` endpoint."""

    def __init__(self, base_url: str, timeout: float = 2.0, client: httpx.Client | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = client

    def __call__(self, ip: str) -> Optional[str]:
        url = f"{self.base_url}/{ip}/country/"
        if self.client is not None:
            response = self.client.get(url, timeout=self.timeout)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(url)
        response.raise_for_status()
        country = response.text.strip().upper()
        if len(country) != 2 or not country.isalpha():
            return None
        return country


class GeoResolver:
    def __init__(self, lookup: CountryLookup | None = None):
        self.lookup = lookup

    def resolve_country(self, ip: str) -> Optional[str]:
        if not ip:
            return None
        if is_private_ip(ip):
            return LOCAL
        try:
            ipaddress.ip_address(ip.strip())
        except ValueError:
            return None
        if self.lookup is None:
            logger.debug("IP geolocation not configured, skipping lookup for %s", mask_ip(ip))
            return None
        try:
            return self.lookup(ip.strip())
        except Exception as exc:
            logger.warning("Failed to resolve country for %s: %s", mask_ip(ip), exc)
            return None

    def resolve_many(self, ips: Iterable[str]) -> Dict[str, Optional[str]]:
        resolved: Dict[str, Optional[str]] = {}
        for ip in ips:
            if ip not in resolved:
                resolved[ip] = self.resolve_country(ip)
        return resolved
