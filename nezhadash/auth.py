"""Client-secret authentication for agent connections."""

from __future__ import annotations

import threading
from collections.abc import Container, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any


class AuthenticationError(Exception):
    """The caller could not be authenticated."""


@dataclass
class AuthHandler:
    """Supplies the client secret as per-request metadata."""

    client_secret: str = ""

    def get_request_metadata(self, *args: Any) -> dict[str, str]:
        """Return the metadata sent with every request."""
        return {"client_secret": self.client_secret}

    def require_transport_security(self) -> bool:
        """The secret may be sent without transport security."""
        return False


@dataclass
class ClientAuthenticator:
    """Maps the secret in incoming metadata to a known server id."""

    secret_to_id: Mapping[str, int]
    server_ids: Container[int]
    lock: Any = field(default_factory=threading.RLock)

    def check(self, metadata: Mapping[str, Sequence[str] | str] | None) -> int:
        """Return the client id for the metadata, or raise AuthenticationError."""
        if metadata is None:
            raise AuthenticationError("failed to read metadata")
        value = metadata.get("client_secret")
        if isinstance(value, str):
            client_secret = value
        elif value:
            client_secret = value[0]
        else:
            client_secret = ""
        with self.lock:
            client_id = self.secret_to_id.get(client_secret)
            if client_id is None or client_id not in self.server_ids:
                raise AuthenticationError("client authentication failed")
            return client_id