"""Notification groups, anti-spam muting and delivery."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

FIRST_NOTIFICATION_DELAY = timedelta(minutes=15)
MAX_NOTIFICATION_DELAY = timedelta(hours=24)
CACHE_GRACE = timedelta(minutes=10)


class _Notification(Protocol):
    id: int
    tag: str
    name: str


Sender = Callable[[Any, str, Any], None]


def _default_sender(notification: Any, desc: str, server: Any) -> None:
    notification.send(desc, server)


def ip_changed_label(server_id: int) -> str:
    """Mute label for an IP change of a server."""
    return f"bf::ic-{server_id}"


def server_incident_label(alert_id: int, server_id: int) -> str:
    """Mute label for an alert rule firing on a server."""
    return f"bf::sei-{alert_id}-{server_id}"


def server_incident_resolved_label(alert_id: int, server_id: int) -> str:
    """Mute label for an alert rule recovering on a server."""
    return f"bf::seir-{alert_id}-{server_id}"


def append_notification_tag(label: str, notification_tag: str) -> str:
    """Qualify a mute label with the notification group it is sent to."""
    return f"{label}:{notification_tag}"


def service_latency_min_label(service_id: int) -> str:
    """Mute label for a service's latency rising above its maximum."""
    return f"bf::sln-{service_id}"


def service_latency_max_label(service_id: int) -> str:
    """Mute label for a service's latency falling below its minimum."""
    return f"bf::slm-{service_id}"


def service_state_changed_label(service_id: int) -> str:
    """Mute label for a service's availability state change."""
    return f"bf::ssc-{service_id}"


def service_ssl_label(service_id: int, extra_info: str) -> str:
    """Mute label for an SSL certificate notice of a service."""
    return f"bf::sssl-{service_id}-{extra_info}"


@dataclass
class NotificationHistory:
    """How long a repeated notification stays muted."""

    duration: timedelta
    until: datetime


class NotificationCenter:
    """Holds notification methods by group and sends messages to a group.

    Repeated messages with the same mute label are held back: the wait doubles
    after each delivery, up to one day.
    """

    def __init__(
        self,
        sender: Sender = _default_sender,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.by_tag: dict[str, dict[int, Any]] = {}
        self.id_to_tag: dict[int, str] = {}
        self._sender = sender
        self._clock = clock
        self._lock = threading.RLock()
        self._mute_cache: dict[str, tuple[NotificationHistory, datetime]] = {}
        self._cache_lock = threading.Lock()

    def add(self, notification: _Notification) -> None:
        """Put a notification method into its group."""
        with self._lock:
            self.by_tag.setdefault(notification.tag, {})[notification.id] = notification
            self.id_to_tag[notification.id] = notification.tag

    def update(self, notification: _Notification) -> None:
        """Replace a known notification method, moving it if its group changed."""
        with self._lock:
            old_tag = self.id_to_tag.get(notification.id)
            if notification.tag != old_tag:
                self.by_tag.get(old_tag, {}).pop(notification.id, None)
                self.id_to_tag.pop(notification.id, None)
                self.add(notification)
            else:
                self.by_tag.setdefault(notification.tag, {})[notification.id] = notification

    def refresh_or_add(self, notification: _Notification) -> None:
        """Update the notification method if it is known, otherwise add it."""
        with self._lock:
            if notification.id in self.id_to_tag:
                self.update(notification)
            else:
                self.add(notification)

    def delete(self, notification_id: int) -> None:
        """Forget a notification method; unknown ids are ignored."""
        with self._lock:
            tag = self.id_to_tag.pop(notification_id, None)
            if tag is not None:
                self.by_tag.get(tag, {}).pop(notification_id, None)

    def unmute(self, notification_tag: str, mute_label: str) -> None:
        """Drop the mute state of a label in a group."""
        full_label = append_notification_tag(mute_label, notification_tag)
        with self._cache_lock:
            self._mute_cache.pop(full_label, None)

    def _may_send(self, full_label: str) -> bool:
        now = self._clock()
        with self._cache_lock:
            cached = self._mute_cache.get(full_label)
            if cached is not None and cached[1] <= now:
                del self._mute_cache[full_label]
                cached = None
            if cached is None:
                history = NotificationHistory(
                    duration=FIRST_NOTIFICATION_DELAY,
                    until=now + FIRST_NOTIFICATION_DELAY,
                )
                self._mute_cache[full_label] = (
                    history,
                    now + FIRST_NOTIFICATION_DELAY + CACHE_GRACE,
                )
                return True
            history = cached[0]
            if now <= history.until:
                return False
            duration = min(history.duration * 2, MAX_NOTIFICATION_DELAY)
            renewed = NotificationHistory(duration=duration, until=now + duration)
            self._mute_cache[full_label] = (renewed, now + duration + CACHE_GRACE)
            return True

    def send(
        self,
        notification_tag: str,
        desc: str,
        mute_label: str | None = None,
        server: Any = None,
    ) -> bool:
        """Send desc to every method of a group; return False if it was muted.

        A failing method is logged and does not stop the others.
        """
        if mute_label is not None:
            full_label = append_notification_tag(mute_label, notification_tag)
            if not self._may_send(full_label):
                logger.debug("muted repeated notification: %s %s", desc, full_label)
                return False
        with self._lock:
            targets = list(self.by_tag.get(notification_tag, {}).values())
        for notification in targets:
            logger.info("trying to notify %s", notification.name)
        for notification in targets:
            try:
                self._sender(notification, desc, server)
            except Exception as err:  # one method failing must not stop the rest
                logger.warning("notifying %s failed: %s", notification.name, err)
            else:
                logger.info("notified %s", notification.name)
        return True