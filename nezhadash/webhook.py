"""A dynamic DNS provider that calls a configurable HTTP webhook."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import IntEnum
from urllib.parse import parse_qsl, quote_plus, urlencode, urlsplit, urlunsplit

import requests
from requests.structures import CaseInsensitiveDict

from .ddns import DDNSProfile, Record
from .utils import parse_string_map

HTTP_TIMEOUT = 600.0


class Method(IntEnum):
    GET = 1
    POST = 2
    PATCH = 3
    DELETE = 4
    PUT = 5


class RequestType(IntEnum):
    JSON = 1
    FORM = 2


def record_to_ip_type(record: str) -> str:
    """Map a record type to the address family name."""
    return {"A": "ipv4", "AAAA": "ipv6"}.get(record, "")


def _method_name(value: int) -> str:
    try:
        return Method(value).name
    except ValueError:
        return "GET"


@dataclass
class WebhookProvider:
    """Sets records by sending a templated HTTP request."""

    profile: DDNSProfile
    ip_addr: str = ""
    ip_type: str = ""
    record_type: str = ""
    domain: str = ""
    session: requests.Session = field(default_factory=requests.Session)

    def set_records(self, zone: str, records: list[Record]) -> list[Record]:
        """Send one webhook request per record."""
        for record in records:
            self.record_type = record.type
            self.ip_type = record_to_ip_type(record.type)
            self.ip_addr = record.value
            self.domain = f"{record.name}.{zone.removesuffix('.')}"
            try:
                prepared = self.prepare_request()
                self.session.send(prepared, timeout=HTTP_TIMEOUT)
            except (requests.RequestException, ValueError) as err:
                raise RuntimeError(f"failed to update a domain: {self.domain}. Cause by: {err}") from err
        return records

    def prepare_request(self) -> requests.PreparedRequest:
        """Build the webhook request for the current record."""
        url = self.request_url()
        body = self.request_body()
        custom = parse_string_map(self.format_webhook_string(self.profile.webhook_headers)) or {}
        headers: CaseInsensitiveDict[str] = CaseInsensitiveDict()
        if self.profile.webhook_method != Method.GET:
            if self.profile.webhook_request_type == RequestType.FORM:
                headers["Content-Type"] = "application/x-www-form-urlencoded"
            else:
                headers["Content-Type"] = "application/json"
        headers.update(custom)
        request = requests.Request(
            _method_name(self.profile.webhook_method),
            url,
            headers=dict(headers),
            data=body.encode("utf-8") if body else None,
        )
        return request.prepare()

    def request_url(self) -> str:
        """Return the webhook URL with its query values templated."""
        parts = urlsplit(self.profile.webhook_url.replace("#", "%23"))
        grouped: dict[str, list[str]] = {}
        for key, value in parse_qsl(parts.query, keep_blank_values=True):
            grouped.setdefault(key, []).append(self.format_webhook_string(value))
        query = urlencode(
            [(key, value) for key in sorted(grouped) for value in grouped[key]],
            quote_via=quote_plus,
        )
        return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))

    def request_body(self) -> str:
        """Return the templated request body."""
        if self.profile.webhook_method in (Method.GET, Method.DELETE):
            return ""
        if self.profile.webhook_request_type == RequestType.JSON:
            return self.format_webhook_string(self.profile.webhook_request_body)
        if self.profile.webhook_request_type == RequestType.FORM:
            data = parse_string_map(self.profile.webhook_request_body) or {}
            return urlencode(
                sorted((key, self.format_webhook_string(value)) for key, value in data.items()),
                quote_via=quote_plus,
            )
        raise ValueError("request type not supported")

    def format_webhook_string(self, s: str) -> str:
        """Replace the #placeholders# in s with the current record's values."""
        replacements = {
            "#ip#": self.ip_addr,
            "#domain#": self.domain,
            "#type#": self.ip_type,
            "#record#": self.record_type,
            "#access_id#": self.profile.access_id,
            "#access_secret#": self.profile.access_secret,
            "\r": "",
        }
        pattern = re.compile("|".join(re.escape(key) for key in replacements))
        return pattern.sub(lambda m: replacements[m.group(0)], s.strip())