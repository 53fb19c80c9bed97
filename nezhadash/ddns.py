"""Dynamic DNS updating: SOA discovery and record setting through a provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Callable, Protocol

import dns.message
import dns.query
import dns.rdatatype

from .utils import DNS_SERVERS

logger = logging.getLogger(__name__)

DNS_TIMEOUT = 10.0

_custom_dns_servers: list[str] = []

_RECORD_TYPES = {True: "A", False: "AAAA"}


@dataclass
class IP:
    """The addresses a host currently has."""

    ipv4_addr: str = ""
    ipv6_addr: str = ""


@dataclass
class Record:
    """A DNS record to be set at a provider."""

    type: str
    name: str
    value: str
    ttl: timedelta = field(default_factory=lambda: timedelta(minutes=1))


@dataclass
class DDNSProfile:
    """Settings of one dynamic DNS configuration."""

    domains: list[str] = field(default_factory=list)
    max_retries: int = 1
    enable_ipv4: bool = False
    enable_ipv6: bool = False
    access_id: str = ""
    access_secret: str = ""
    webhook_url: str = ""
    webhook_method: int = 0
    webhook_request_type: int = 0
    webhook_request_body: str = ""
    webhook_headers: str = ""


class _RecordSetter(Protocol):
    def set_records(self, zone: str, records: list[Record]) -> list[Record]: ...


class DummySetter:
    """A record setter that accepts everything and changes nothing at any provider."""

    def set_records(self, zone: str, records: list[Record]) -> list[Record]:
        """Return copies of the records as if they had been set in zone."""
        return [replace(record) for record in records]


def init_dns_servers(servers: str) -> None:
    """Use the comma separated servers for SOA lookups, if any are given."""
    if servers:
        _custom_dns_servers[:] = servers.split(",")


def relative_name(fqdn: str, zone: str) -> str:
    """Return the name of fqdn relative to zone, ignoring trailing dots."""
    return fqdn.removesuffix(".").removesuffix(zone.removesuffix(".")).removesuffix(".")


def get_record_type(is_ipv4: bool) -> str:
    """Return the record type for an address family."""
    return _RECORD_TYPES[bool(is_ipv4)]


def _label_starts(name: str) -> list[int]:
    if name in ("", "."):
        return []
    starts = [0]
    escaped = False
    for pos, ch in enumerate(name):
        if escaped:
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == "." and pos + 1 < len(name):
            starts.append(pos + 1)
    return starts


def _host_port(server: str) -> tuple[str, int]:
    host, sep, port = server.rpartition(":")
    if not sep or not port.isdigit():
        return server.strip("[]"), 53
    return host.strip("[]"), int(port)


def split_domain_soa(domain: str) -> tuple[str, str]:
    """Find the zone of a domain through SOA queries; return (prefix, zone)."""
    fqdn = domain + "."
    servers = list(_custom_dns_servers) or DNS_SERVERS
    for start in _label_starts(fqdn):
        query = dns.message.make_query(fqdn[start:], dns.rdatatype.SOA)
        for server in servers:
            host, port = _host_port(server)
            response = dns.query.udp(query, host, timeout=DNS_TIMEOUT, port=port)
            if response.answer and response.answer[0].rdtype == dns.rdatatype.SOA:
                zone = response.answer[0].name.to_text()
                return relative_name(fqdn, zone), zone
    raise LookupError(f"SOA record not found for domain: {fqdn}")


@dataclass
class Provider:
    """Updates the domains of a profile with the host's addresses."""

    profile: DDNSProfile
    ip_addrs: IP
    setter: _RecordSetter
    soa_lookup: Callable[[str], tuple[str, str]] = split_domain_soa

    def update_domain(self) -> dict[str, bool]:
        """Update every domain, retrying as the profile allows; report success per domain."""
        results: dict[str, bool] = {}
        for domain in self.profile.domains:
            results[domain] = False
            for attempt in range(1, self.profile.max_retries + 1):
                logger.info("updating DDNS for %s (%d/%d)", domain, attempt, self.profile.max_retries)
                try:
                    self._update_one(domain)
                except Exception as err:  # any provider failure is retried
                    logger.warning("DDNS update for %s failed: %s", domain, err)
                else:
                    logger.info("DDNS update for %s succeeded", domain)
                    results[domain] = True
                    break
        return results

    def _update_one(self, domain: str) -> None:
        prefix, zone = self.soa_lookup(domain)
        # Both address families must succeed for the update to count.
        if self.profile.enable_ipv4:
            self._add_record(prefix, zone, get_record_type(True), self.ip_addrs.ipv4_addr)
        if self.profile.enable_ipv6:
            self._add_record(prefix, zone, get_record_type(False), self.ip_addrs.ipv6_addr)

    def _add_record(self, prefix: str, zone: str, record_type: str, ip_addr: str) -> None:
        self.setter.set_records(zone, [Record(type=record_type, name=prefix, value=ip_addr)])