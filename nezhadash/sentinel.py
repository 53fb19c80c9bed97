"""Service monitoring: aggregation of check results, availability statistics and alerting."""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from .notification import (
    NotificationCenter,
    service_latency_max_label,
    service_latency_min_label,
    service_ssl_label,
    service_state_changed_label,
)
from .status import ServiceStatus, get_status_code, status_code_to_string

logger = logging.getLogger(__name__)

_CURRENT_STATUS_SIZE = 30  # results kept for the "current" state
_MONTH_DAYS = 30
_SAMPLE_INTERVAL = timedelta(seconds=30)
_TASK_TYPE_ICMP_PING = 2
_TASK_TYPE_TCP_PING = 3
_SSL_ERROR_PREFIX = "SSL证书错误："
_SSL_TRANSIENT_SUFFIXES = ("timeout", "EOF", "timed out")
_CERT_TIME_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})(?:\.(\d+))? ([+-]\d{4}) \S+$"
)
_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


class _Scheduler(Protocol):
    def add(self, spec: str, func: Callable[[], None]) -> Any: ...

    def remove(self, job_id: Any) -> None: ...


@dataclass
class Monitor:
    """A service check and how its results are alerted on."""

    id: int
    name: str = ""
    cron_spec: str = ""
    notify: bool = False
    notification_tag: str = "default"
    latency_notify: bool = False
    max_latency: float = 0.0
    min_latency: float = 0.0
    enable_trigger_task: bool = False
    fail_trigger_tasks: list[int] = field(default_factory=list)
    recover_trigger_tasks: list[int] = field(default_factory=list)


@dataclass
class TaskResult:
    """One check result reported by an agent."""

    id: int
    type: int = 0
    delay: float = 0.0
    data: str = ""
    successful: bool = False


@dataclass
class ServiceItemResponse:
    """Thirty days of availability of one monitor, the last day being today."""

    monitor: Monitor
    delay: list[float] = field(default_factory=lambda: [0.0] * _MONTH_DAYS)
    up: list[int] = field(default_factory=lambda: [0] * _MONTH_DAYS)
    down: list[int] = field(default_factory=lambda: [0] * _MONTH_DAYS)
    total_up: int = 0
    total_down: int = 0
    current_up: int = 0
    current_down: int = 0


@dataclass
class _HistoryRecord:
    monitor_id: int
    avg_delay: float
    data: str
    server_id: int = 0
    up: int = 0
    down: int = 0


@dataclass
class _TodayStats:
    up: int = 0
    down: int = 0
    delay: float = 0.0


@dataclass
class _IndexStore:
    index: int
    t: datetime


@dataclass
class _PingStore:
    count: int = 0
    ping: float = 0.0


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.astimezone()


def _parse_cert_time(text: str) -> datetime:
    match = _CERT_TIME_RE.match(text.strip())
    if match is None:
        return _ZERO_TIME
    stamp, fraction, offset = match.groups()
    try:
        parsed = datetime.strptime(f"{stamp} {offset}", "%Y-%m-%d %H:%M:%S %z")
    except ValueError:
        return _ZERO_TIME
    if fraction:
        parsed = parsed.replace(microsecond=int(fraction[:6].ljust(6, "0")))
    return parsed


def _format_time(moment: datetime) -> str:
    return (
        f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d} "
        f"{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
    )


class ServiceSentinel:
    """Collects service check results, keeps availability statistics and raises alerts.

    ``histories`` are earlier persisted records (objects with ``monitor_id``,
    ``created_at``, ``avg_delay``, ``up`` and ``down``) used to fill the last
    thirty days and today's counters.
    """

    def __init__(
        self,
        monitors: Iterable[Monitor] = (),
        histories: Iterable[Any] = (),
        *,
        notifications: NotificationCenter | None = None,
        dispatch: Callable[[Monitor], None] | None = None,
        scheduler: _Scheduler | None = None,
        save_history: Callable[[_HistoryRecord], None] | None = None,
        trigger_tasks: Callable[[list[int], int], None] | None = None,
        server_names: Mapping[int, str] | None = None,
        avg_ping_count: int = 2,
        max_tcp_ping_value: float = 1000,
        ping_task_types: Iterable[int] = (_TASK_TYPE_ICMP_PING, _TASK_TYPE_TCP_PING),
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._notifications = notifications if notifications is not None else NotificationCenter()
        self._dispatch = dispatch
        self._scheduler = scheduler
        self._save_history = save_history
        self._trigger_tasks = trigger_tasks
        self._server_names: Mapping[int, str] = server_names if server_names is not None else {}
        self._avg_ping_count = avg_ping_count
        self._max_tcp_ping_value = max_tcp_ping_value
        self._ping_task_types = frozenset(ping_task_types)
        self._clock = clock
        self._lock = threading.RLock()

        self._monitors: dict[int, Monitor] = {}
        self._jobs: dict[int, Any] = {}
        self._today: dict[int, _TodayStats] = {}
        self._current_index: dict[int, _IndexStore] = {}
        self._current_data: dict[int, list[TaskResult | None]] = {}
        self._current_up: dict[int, int] = {}
        self._current_down: dict[int, int] = {}
        self._current_avg_delay: dict[int, float] = {}
        self._ping: dict[int, dict[int, _PingStore]] = {}
        self._last_status: dict[int, int] = {}
        self._ssl_cert_cache: dict[int, str] = {}
        self._monthly: dict[int, ServiceItemResponse] = {}

        initial = list(monitors)
        for monitor in initial:
            if not monitor.notification_tag:
                monitor.notification_tag = "default"
            self._jobs[monitor.id] = self._schedule(monitor)
            self._monitors[monitor.id] = monitor
            self._current_data[monitor.id] = [None] * _CURRENT_STATUS_SIZE
            self._today[monitor.id] = _TodayStats()
        for monitor in initial:
            self._monthly[monitor.id] = ServiceItemResponse(monitor=monitor)
        self._load_history(list(histories))

    def _today_start(self) -> datetime:
        return self._clock().replace(hour=0, minute=0, second=0, microsecond=0)

    def _dispatch_monitor(self, monitor: Monitor) -> None:
        if self._dispatch is not None:
            self._dispatch(monitor)

    def _schedule(self, monitor: Monitor) -> Any:
        if self._scheduler is None:
            return None
        return self._scheduler.add(monitor.cron_spec, lambda: self._dispatch_monitor(monitor))

    def _persist(self, record: _HistoryRecord) -> None:
        if self._save_history is None:
            return
        try:
            self._save_history(record)
        except Exception as err:  # persistence failures are only logged
            logger.error("saving service history failed: %s", err)

    def _trigger(self, task_ids: list[int], server_id: int) -> None:
        if self._trigger_tasks is not None:
            self._trigger_tasks(task_ids, server_id)

    def _load_history(self, histories: list[Any]) -> None:
        today = self._today_start()
        month_start = today - timedelta(days=_MONTH_DAYS - 1)
        delay_count: dict[int, int] = {}
        for record in histories:
            if not (month_start < record.created_at < today):
                continue
            item = self._monthly.get(record.monitor_id)
            if item is None:
                continue
            hours = int((today - record.created_at) / timedelta(hours=1))
            day_index = _MONTH_DAYS - 2 - hours // 24
            if day_index < 0:
                continue
            count = delay_count.get(day_index, 0)
            item.delay[day_index] = (item.delay[day_index] * count + record.avg_delay) / (count + 1)
            delay_count[day_index] = count + 1
            item.up[day_index] += record.up
            item.total_up += record.up
            item.down[day_index] += record.down
            item.total_down += record.down

        total_delay: dict[int, float] = {}
        delay_samples: dict[int, int] = {}
        for record in histories:
            if record.created_at < today:
                continue
            stats = self._today.get(record.monitor_id)
            item = self._monthly.get(record.monitor_id)
            if stats is None or item is None:
                continue
            total_delay[record.monitor_id] = total_delay.get(record.monitor_id, 0.0) + record.avg_delay
            delay_samples[record.monitor_id] = delay_samples.get(record.monitor_id, 0) + 1
            stats.up += record.up
            item.total_up += record.up
            stats.down += record.down
            item.total_down += record.down
        for monitor_id, delay in total_delay.items():
            self._today[monitor_id].delay = delay / delay_samples[monitor_id]

    def monitors(self) -> list[Monitor]:
        """Return the monitors ordered by id."""
        with self._lock:
            return sorted(self._monitors.values(), key=lambda m: m.id)

    def on_monitor_update(self, monitor: Monitor) -> None:
        """Add a monitor or replace a known one, rescheduling its check."""
        with self._lock:
            job = self._schedule(monitor)
            if monitor.id in self._monitors:
                if self._scheduler is not None:
                    self._scheduler.remove(self._jobs.get(monitor.id))
            else:
                self._monthly[monitor.id] = ServiceItemResponse(monitor=monitor)
                self._current_data[monitor.id] = [None] * _CURRENT_STATUS_SIZE
                self._today[monitor.id] = _TodayStats()
            self._jobs[monitor.id] = job
            self._monitors[monitor.id] = monitor

    def on_monitor_delete(self, monitor_id: int) -> None:
        """Forget a monitor and all its statistics; raise KeyError if it is unknown."""
        with self._lock:
            if monitor_id not in self._monitors:
                raise KeyError(monitor_id)
            for store in (
                self._current_index,
                self._current_data,
                self._last_status,
                self._current_up,
                self._current_down,
                self._current_avg_delay,
                self._ssl_cert_cache,
                self._today,
                self._monthly,
            ):
                store.pop(monitor_id, None)
            job = self._jobs.pop(monitor_id, None)
            if self._scheduler is not None:
                self._scheduler.remove(job)
            del self._monitors[monitor_id]

    def load_stats(self) -> dict[int, ServiceItemResponse]:
        """Fold today's counters into the thirty-day view and return it."""
        with self._lock:
            for monitor_id, monitor in self._monitors.items():
                item = self._monthly[monitor_id]
                item.monitor = monitor
                today = self._today[monitor_id]
                # Replace the previously folded-in today figures instead of adding twice.
                item.total_up += today.up - item.up[-1]
                item.total_down += today.down - item.down[-1]
                item.up[-1] = today.up
                item.down[-1] = today.down
                item.delay[-1] = today.delay
            for monitor_id, down in self._current_down.items():
                self._monthly[monitor_id].current_down = down
            for monitor_id, up in self._current_up.items():
                self._monthly[monitor_id].current_up = up
            return dict(self._monthly)

    def refresh_monthly_service_status(self) -> None:
        """Move the thirty-day window one day on and start a fresh today."""
        self.load_stats()
        with self._lock:
            for monitor_id, item in self._monthly.items():
                item.total_down -= item.down[0]
                item.total_up -= item.up[0]
                item.up[:] = item.up[1:] + [0]
                item.down[:] = item.down[1:] + [0]
                item.delay[:] = item.delay[1:] + [0.0]
                self._current_up[monitor_id] = 0
                self._current_down[monitor_id] = 0
                self._current_avg_delay[monitor_id] = 0.0
                self._today[monitor_id] = _TodayStats()

    def _server_name(self, server_id: int) -> str:
        return self._server_names.get(server_id, "")

    def handle_report(self, result: TaskResult, reporter: int) -> bool:
        """Process one check result from an agent; return False if its monitor is unknown."""
        monitor = self._monitors.get(result.id)
        if monitor is None or monitor.id == 0:
            logger.warning("service report for unknown monitor: %r from %s", result, reporter)
            return False
        monitor_id = result.id

        if result.type in self._ping_task_types:
            self._record_ping(result, reporter)

        with self._lock:
            state = self._update_state(result)
            self._latency_alert(monitor, result, reporter)
            self._state_alert(monitor, result, reporter, state)
        self._ssl_alert(monitor, monitor_id, result)
        return True

    def _record_ping(self, result: TaskResult, reporter: int) -> None:
        stores = self._ping.setdefault(result.id, {})
        store = stores.get(reporter) or _PingStore()
        store.count += 1
        store.ping = (store.ping * (store.count - 1) + result.delay) / store.count
        if store.count == self._avg_ping_count:
            store.ping = min(store.ping, float(self._max_tcp_ping_value))
            store.count = 0
            self._persist(
                _HistoryRecord(
                    monitor_id=result.id,
                    avg_delay=store.ping,
                    data=result.data,
                    server_id=reporter,
                )
            )
        stores[reporter] = store

    def _update_state(self, result: TaskResult) -> ServiceStatus:
        monitor_id = result.id
        today = self._today[monitor_id]
        if result.successful:
            today.delay = (today.delay * today.up + result.delay) / (today.up + 1)
            today.up += 1
        else:
            today.down += 1

        now = self._clock()
        index = self._current_index.setdefault(monitor_id, _IndexStore(index=0, t=now))
        if index.t < now:
            index.t = now + _SAMPLE_INTERVAL
            self._current_data[monitor_id][index.index] = result
            index.index += 1

        up = down = 0
        avg_delay = 0.0
        for sample in self._current_data[monitor_id]:
            if sample is None or sample.id <= 0:
                continue
            if sample.successful:
                up += 1
                avg_delay = (avg_delay * (up - 1) + sample.delay) / up
            else:
                down += 1
        self._current_up[monitor_id] = up
        self._current_down[monitor_id] = down
        self._current_avg_delay[monitor_id] = avg_delay

        up_percent = up * 100 // (up + down) if up + down > 0 else 0
        state = get_status_code(up_percent)

        if index.index == _CURRENT_STATUS_SIZE:
            self._current_index[monitor_id] = _IndexStore(index=0, t=now)
            self._persist(
                _HistoryRecord(
                    monitor_id=monitor_id,
                    avg_delay=avg_delay,
                    data=result.data,
                    up=up,
                    down=down,
                )
            )
        return state

    def _latency_alert(self, monitor: Monitor, result: TaskResult, reporter: int) -> None:
        if result.delay <= 0 or not monitor.latency_notify:
            return
        tag = monitor.notification_tag
        min_label = service_latency_min_label(result.id)
        max_label = service_latency_max_label(result.id)
        if result.delay > monitor.max_latency:
            message = (
                f"[Latency] {monitor.name} {result.delay:2f} > {monitor.max_latency:2f}, "
                f"Reporter: {self._server_name(reporter)}"
            )
            self._notifications.send(tag, message, min_label)
        elif result.delay < monitor.min_latency:
            message = (
                f"[Latency] {monitor.name} {result.delay:2f} < {monitor.min_latency:2f}, "
                f"Reporter: {self._server_name(reporter)}"
            )
            self._notifications.send(tag, message, max_label)
        else:
            self._notifications.unmute(tag, min_label)
            self._notifications.unmute(tag, max_label)

    def _state_alert(
        self, monitor: Monitor, result: TaskResult, reporter: int, state: ServiceStatus
    ) -> None:
        monitor_id = result.id
        last = self._last_status.get(monitor_id, 0)
        if state != ServiceStatus.DOWN and state == last:
            return
        self._last_status[monitor_id] = state

        if monitor.notify and (last != 0 or state == ServiceStatus.DOWN):
            tag = monitor.notification_tag
            message = (
                f"[{status_code_to_string(state)}] {monitor.name} "
                f"Reporter: {self._server_name(reporter)}, Error: {result.data}"
            )
            label = service_state_changed_label(monitor_id)
            if state != last:
                self._notifications.unmute(tag, label)
            self._notifications.send(tag, message, label)

        if monitor.enable_trigger_task and last != 0:
            if state == ServiceStatus.GOOD and last != state:
                self._trigger(monitor.recover_trigger_tasks, reporter)
            elif last == ServiceStatus.GOOD and last != state:
                self._trigger(monitor.fail_trigger_tasks, reporter)

    def _ssl_alert(self, monitor: Monitor, monitor_id: int, result: TaskResult) -> None:
        data = result.data
        tag = monitor.notification_tag
        network_label = service_ssl_label(monitor_id, "network")
        if data.startswith(_SSL_ERROR_PREFIX):
            if data.endswith(_SSL_TRANSIENT_SUFFIXES):
                return
            if monitor.notify:
                self._notifications.send(
                    tag, f"[SSL] Fetch cert info failed, {monitor.name} {data}", network_label
                )
            return

        self._notifications.unmute(tag, network_label)
        new_cert = data.split("|")
        if len(new_cert) <= 1:
            return

        with self._lock:
            if not self._ssl_cert_cache.get(monitor_id):
                self._ssl_cert_cache[monitor_id] = data
            old_cert = self._ssl_cert_cache[monitor_id].split("|")
            expires_old = _parse_cert_time(old_cert[1])
            expires_new = _parse_cert_time(new_cert[1])
            changed = old_cert[0] != new_cert[0] and expires_new != expires_old
            if changed:
                self._ssl_cert_cache[monitor_id] = data

        if not monitor.notify:
            return
        if expires_new < _aware(self._clock()) + timedelta(days=7):
            expires_text = _format_time(expires_new)
            message = (
                "The SSL certificate will expire within seven days. "
                f"Expiration time: {expires_text}"
            )
            label = service_ssl_label(monitor_id, f"expire_{expires_text}")
            self._notifications.send(tag, f"[SSL] {monitor.name} {message}", label)
        if changed:
            message = (
                f"SSL certificate changed, old: {old_cert[0]}, {_format_time(expires_old)} expired; "
                f"new: {new_cert[0]}, {_format_time(expires_new)} expired."
            )
            self._notifications.send(tag, f"[SSL] {monitor.name} {message}", None)