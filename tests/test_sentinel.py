from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import pytest

from nezhadash.notification import NotificationCenter
from nezhadash.sentinel import Monitor, ServiceItemResponse, ServiceSentinel, TaskResult

SSL_PREFIX = "SSL证书错误："


@dataclass
class FakeNotification:
    id: int
    tag: str
    name: str


@dataclass
class FakeHistory:
    monitor_id: int
    created_at: datetime
    avg_delay: float = 0.0
    up: int = 0
    down: int = 0


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class Scheduler:
    def __init__(self) -> None:
        self.jobs: dict[int, tuple[str, Any]] = {}
        self.removed: list[int] = []
        self._next = 0

    def add(self, spec, func):
        self._next += 1
        self.jobs[self._next] = (spec, func)
        return self._next

    def remove(self, job_id):
        self.removed.append(job_id)
        self.jobs.pop(job_id, None)


@dataclass
class Harness:
    sentinel: ServiceSentinel
    clock: Clock
    scheduler: Scheduler
    sent: list[str] = field(default_factory=list)
    saved: list[Any] = field(default_factory=list)
    triggered: list[tuple[list[int], int]] = field(default_factory=list)
    dispatched: list[Monitor] = field(default_factory=list)

    def report(self, result: TaskResult, reporter: int = 5) -> bool:
        self.clock.advance(31)
        return self.sentinel.handle_report(result, reporter)


def make(monitors=(), histories=(), now=datetime(2024, 6, 10, 12, 0, 0), **kwargs) -> Harness:
    clock = Clock(now)
    scheduler = Scheduler()
    sent: list[str] = []
    center = NotificationCenter(sender=lambda n, desc, server: sent.append(desc), clock=clock)
    center.add(FakeNotification(1, "default", "ops"))
    harness = Harness(sentinel=None, clock=clock, scheduler=scheduler, sent=sent)  # type: ignore[arg-type]
    harness.sentinel = ServiceSentinel(
        monitors,
        histories,
        notifications=center,
        dispatch=harness.dispatched.append,
        scheduler=scheduler,
        save_history=harness.saved.append,
        trigger_tasks=lambda ids, server: harness.triggered.append((ids, server)),
        server_names={5: "node", 7: "edge"},
        clock=clock,
        **kwargs,
    )
    return harness


def test_monitors_sorted_and_scheduled():
    h = make([Monitor(id=3, name="c", cron_spec="*/30 * * * * *"), Monitor(id=1, name="a", cron_spec="0 * * * * *")])
    assert [m.id for m in h.sentinel.monitors()] == [1, 3]
    specs = sorted(spec for spec, _ in h.scheduler.jobs.values())
    assert specs == ["*/30 * * * * *", "0 * * * * *"]
    for _, func in h.scheduler.jobs.values():
        func()
    assert sorted(m.id for m in h.dispatched) == [1, 3]


def test_empty_notification_tag_defaults():
    h = make([Monitor(id=1, notification_tag="")])
    assert h.sentinel.monitors()[0].notification_tag == "default"


def test_unknown_monitor_report_rejected():
    h = make([Monitor(id=1)])
    assert h.report(TaskResult(id=99, successful=True)) is False


def test_update_adds_and_replaces():
    h = make()
    h.sentinel.on_monitor_update(Monitor(id=4, name="old"))
    stats = h.sentinel.load_stats()
    assert stats[4].up == [0] * 30
    first_job = max(h.scheduler.jobs)
    h.sentinel.on_monitor_update(Monitor(id=4, name="new"))
    assert h.scheduler.removed == [first_job]
    assert h.sentinel.monitors()[0].name == "new"
    assert h.sentinel.load_stats()[4].monitor.name == "new"


def test_delete_removes_monitor():
    h = make([Monitor(id=1), Monitor(id=2)])
    h.sentinel.on_monitor_delete(1)
    assert [m.id for m in h.sentinel.monitors()] == [2]
    assert 1 not in h.sentinel.load_stats()
    assert len(h.scheduler.removed) == 1
    with pytest.raises(KeyError):
        h.sentinel.on_monitor_delete(1)


def test_load_stats_does_not_double_count():
    h = make([Monitor(id=1)])
    for _ in range(3):
        h.report(TaskResult(id=1, successful=True, delay=10.0))
    first = h.sentinel.load_stats()[1]
    assert first.up[-1] == 3
    assert first.total_up == 3
    again = h.sentinel.load_stats()[1]
    assert again.total_up == 3


def test_history_loading_and_refresh():
    histories = [
        FakeHistory(1, datetime(2024, 6, 9, 12, 0), avg_delay=40.0, up=5, down=1),
        FakeHistory(1, datetime(2024, 6, 10, 6, 0), avg_delay=40.0, up=3, down=2),
    ]
    h = make([Monitor(id=1)], histories)
    item: ServiceItemResponse = h.sentinel.load_stats()[1]
    assert item.up[28] == 5
    assert item.down[28] == 1
    assert item.up[29] == 3
    assert item.delay[29] == 40.0
    assert item.total_up == 8
    assert item.total_down == 3

    h.sentinel.refresh_monthly_service_status()
    item = h.sentinel.load_stats()[1]
    assert item.up[27:] == [5, 3, 0]
    assert item.total_up == 8
    assert item.total_down == 3


def test_current_window_persisted_after_full_cycle():
    h = make([Monitor(id=1)])
    for _ in range(31):
        h.report(TaskResult(id=1, successful=True, delay=1.0, data="ok"))
    window_records = [r for r in h.saved if r.server_id == 0]
    assert len(window_records) == 1
    assert window_records[0].up == 30
    assert window_records[0].down == 0
    assert h.sentinel.load_stats()[1].current_up == 30


def test_state_change_notifications_and_triggers():
    monitor = Monitor(
        id=1, name="web", notify=True, enable_trigger_task=True,
        fail_trigger_tasks=[11], recover_trigger_tasks=[12],
    )
    h = make([monitor])
    h.report(TaskResult(id=1, successful=True, data="ok"))
    assert h.sent == []
    h.report(TaskResult(id=1, successful=True, data="ok"))
    h.report(TaskResult(id=1, successful=False, data="refused"))
    assert h.sent == [
        "[Good] web Reporter: node, Error: ok",
        "[Down] web Reporter: node, Error: refused",
    ]
    assert h.triggered == [([12], 5), ([11], 5)]


def test_latency_alert_and_unmute():
    monitor = Monitor(id=1, name="web", latency_notify=True, max_latency=100.0, min_latency=10.0)
    h = make([monitor])
    h.report(TaskResult(id=1, successful=True, delay=150.0))
    assert h.sent == ["[Latency] web 150.000000 > 100.000000, Reporter: node"]
    h.report(TaskResult(id=1, successful=True, delay=150.0))
    assert len(h.sent) == 1
    h.report(TaskResult(id=1, successful=True, delay=50.0))
    h.report(TaskResult(id=1, successful=True, delay=150.0))
    assert len(h.sent) == 2


def test_ping_average_persisted_and_capped():
    h = make([Monitor(id=1)], avg_ping_count=2, max_tcp_ping_value=100)
    h.report(TaskResult(id=1, type=3, delay=10.0, successful=True), reporter=7)
    h.report(TaskResult(id=1, type=3, delay=30.0, successful=True), reporter=7)
    pings = [r for r in h.saved if r.server_id == 7]
    assert len(pings) == 1
    assert pings[0].avg_delay == 20.0
    h.report(TaskResult(id=1, type=3, delay=500.0, successful=True), reporter=7)
    h.report(TaskResult(id=1, type=3, delay=500.0, successful=True), reporter=7)
    pings = [r for r in h.saved if r.server_id == 7]
    assert pings[-1].avg_delay == 100.0


def test_ssl_fetch_failure_notifies():
    h = make([Monitor(id=1, name="web", notify=True)])
    data = SSL_PREFIX + "unknown authority"
    h.report(TaskResult(id=1, successful=False, data=data))
    assert h.sent == [f"[SSL] Fetch cert info failed, web {data}"]


def test_ssl_transient_failure_ignored():
    h = make([Monitor(id=1, name="web", notify=True)])
    h.report(TaskResult(id=1, successful=False, data=SSL_PREFIX + "i/o timeout"))
    assert [m for m in h.sent if m.startswith("[SSL]")] == []


def test_ssl_expiry_notice():
    h = make([Monitor(id=1, name="web", notify=True)], now=datetime(2024, 6, 1))
    h.report(TaskResult(id=1, successful=True, data="CN=example|2024-06-03 12:00:00 +0000 UTC"))
    assert h.sent == [
        "[SSL] web The SSL certificate will expire within seven days. "
        "Expiration time: 2024-06-03 12:00:00"
    ]


def test_ssl_certificate_change_notice():
    h = make([Monitor(id=1, name="web", notify=True)], now=datetime(2024, 6, 1))
    h.report(TaskResult(id=1, successful=True, data="CN=old|2030-01-01 00:00:00 +0000 UTC"))
    h.report(TaskResult(id=1, successful=True, data="CN=new|2031-01-01 00:00:00 +0000 UTC"))
    ssl_messages = [m for m in h.sent if m.startswith("[SSL]")]
    assert ssl_messages == [
        "[SSL] web SSL certificate changed, old: CN=old, 2030-01-01 00:00:00 expired; "
        "new: CN=new, 2031-01-01 00:00:00 expired."
    ]