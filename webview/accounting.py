"""
Optional request accounting.
Tracks per-request timing and size with thread-safe operations and emits a
periodic summary. Everything is a no-op when accounting is disabled.
"""

import logging
import os
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta

import psutil

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestLogEntry:
    timestamp: datetime
    url: str
    duration: float
    status: int
    size: int

    def to_dict(self):
        return {
            "timestamp": self.timestamp.isoformat(),
            "url": self.url,
            "durationMs": round(self.duration * 1000, 3),
            "status": self.status,
            "size": self.size,
        }


def memory_usage_mb():
    """Resident memory of this process, or None when it cannot be read."""
    try:
        return psutil.Process(os.getpid()).memory_info().rss / 1024 / 1024
    except (psutil.Error, OSError) as e:
        logger.warning("Could not read memory usage: %s", e)
        return None


class DebugStats:
    """
    Process-wide counters shared by all request threads.
    Built once at startup and handed to the HTTP layer.
    """

    def __init__(self, enabled=False, recent=10):
        self.enabled = enabled
        self.recent = recent
        self.lock = threading.Lock()
        self.start_time = time.time()
        self.request_count = 0
        self.bytes_processed = 0
        self.request_log = []

    def record(self, entry):
        if not self.enabled:
            return
        with self.lock:
            self.request_count += 1
            self.bytes_processed += entry.size
            self.request_log.append(entry)
        logger.debug(
            "Request: %s, Duration: %.1fms, Status: %d, Size: %d bytes",
            entry.url, entry.duration * 1000, entry.status, entry.size,
        )

    def uptime(self):
        return timedelta(seconds=int(time.time() - self.start_time))

    def snapshot(self, limit=None):
        limit = self.recent if limit is None else limit
        with self.lock:
            recent = self.request_log[max(0, len(self.request_log) - limit):] if limit > 0 else []
            return {
                "uptime": str(self.uptime()),
                "requestCount": self.request_count,
                "bytesProcessed": self.bytes_processed,
                "lastRequests": [entry.to_dict() for entry in recent],
                "workers": threading.active_count(),
                "memoryUsageMB": memory_usage_mb(),
            }

    def tick(self):
        """Log a human-readable summary."""
        if not self.enabled:
            return
        with self.lock:
            uptime = self.uptime()
            count = self.request_count
            processed = self.bytes_processed
        memory = memory_usage_mb()

        logger.info("=== Debug Statistics ===")
        logger.info("Uptime: %s", uptime)
        logger.info("Total Requests: %d", count)
        logger.info("Total Bytes Processed: %.2f MB", processed / 1024 / 1024)
        if memory is None:
            logger.info("Memory Usage: unavailable")
        else:
            logger.info("Memory Usage: %.2f MB", memory)
        logger.info("Workers: %d", threading.active_count())
        logger.info("========================")


class StatsReporter(threading.Thread):
    """Calls stats.tick() every interval seconds until stopped."""

    def __init__(self, stats, interval=60.0):
        super().__init__(name="stats-reporter", daemon=True)
        self.stats = stats
        self.interval = interval
        self._stopped = threading.Event()

    def run(self):
        while not self._stopped.wait(self.interval):
            try:
                self.stats.tick()
            except Exception:
                logger.exception("Printing debug statistics failed")

    def stop(self):
        self._stopped.set()
