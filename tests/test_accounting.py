import logging
import threading
from datetime import datetime

import pytest

from webview import accounting
from webview.accounting import DebugStats, RequestLogEntry, StatsReporter


def entry(i, size=100):
    return RequestLogEntry(timestamp=datetime(2026, 1, 1), url=f"/?url=http://s{i}.com", duration=0.01, status=200, size=size)


def test_disabled_record_is_a_no_op():
    stats = DebugStats(enabled=False)
    before = stats.snapshot()
    for i in range(5):
        stats.record(entry(i))
    after = stats.snapshot()
    assert after["requestCount"] == before["requestCount"] == 0
    assert after["bytesProcessed"] == before["bytesProcessed"] == 0
    assert after["lastRequests"] == before["lastRequests"] == []
    assert stats.request_log == []


def test_disabled_record_does_not_take_the_lock():
    stats = DebugStats(enabled=False)
    with stats.lock:
        stats.record(entry(0))


@pytest.mark.parametrize("n", [0, 1, 9, 10, 11, 25])
def test_enabled_snapshot_clamps_recent_entries(n):
    stats = DebugStats(enabled=True)
    for i in range(n):
        stats.record(entry(i, size=i))
    snap = stats.snapshot()
    assert snap["requestCount"] == n
    assert snap["bytesProcessed"] == sum(range(n))
    assert len(snap["lastRequests"]) == min(n, 10)
    if n:
        assert snap["lastRequests"][-1]["url"] == f"/?url=http://s{n - 1}.com"
        assert snap["lastRequests"][0]["url"] == f"/?url=http://s{max(0, n - 10)}.com"


def test_snapshot_fields():
    stats = DebugStats(enabled=True)
    stats.record(entry(1))
    snap = stats.snapshot(limit=5)
    assert set(snap) == {"uptime", "requestCount", "bytesProcessed", "lastRequests", "workers", "memoryUsageMB"}
    assert snap["workers"] >= 1
    assert snap["memoryUsageMB"] > 0
    assert snap["lastRequests"][0] == {
        "timestamp": "2026-01-01T00:00:00",
        "url": "/?url=http://s1.com",
        "durationMs": 10.0,
        "status": 200,
        "size": 100,
    }


def test_concurrent_records_are_all_counted():
    stats = DebugStats(enabled=True)

    def worker():
        for i in range(200):
            stats.record(entry(i, size=1))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert stats.request_count == 1600
    assert stats.bytes_processed == 1600
    assert len(stats.request_log) == 1600


def test_tick_logs_summary(caplog):
    stats = DebugStats(enabled=True)
    stats.record(entry(1, size=2 * 1024 * 1024))
    with caplog.at_level(logging.INFO, logger="webview.accounting"):
        stats.tick()
    assert "Total Requests: 1" in caplog.text
    assert "Total Bytes Processed: 2.00 MB" in caplog.text


def test_tick_survives_unreadable_memory(monkeypatch, caplog):
    def broken():
        raise accounting.psutil.AccessDenied()

    monkeypatch.setattr(accounting.psutil, "Process", lambda pid: broken())
    stats = DebugStats(enabled=True)
    with caplog.at_level(logging.INFO, logger="webview.accounting"):
        stats.tick()
    assert "Memory Usage: unavailable" in caplog.text
    assert stats.snapshot()["memoryUsageMB"] is None


def test_reporter_ticks_and_stops():
    ticked = threading.Event()

    class Probe:
        def tick(self):
            ticked.set()

    reporter = StatsReporter(Probe(), interval=0.01)
    reporter.start()
    assert ticked.wait(2)
    reporter.stop()
    reporter.join(2)
    assert not reporter.is_alive()


def test_reporter_keeps_running_after_tick_failure():
    calls = []
    done = threading.Event()

    class Flaky:
        def tick(self):
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("stats unavailable")
            done.set()

    reporter = StatsReporter(Flaky(), interval=0.01)
    reporter.start()
    assert done.wait(2)
    reporter.stop()
    reporter.join(2)
