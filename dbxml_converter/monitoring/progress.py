"""
Thread-safe progress counter shared by export pages and import batches.
"""

import logging
import threading
import time

from typing import Any, Dict, Optional


class ProgressCounter:
    """
    Monotonically increasing processed/total counter a caller may poll.

    Export pages advance it from several threads at once; reads never block
    writers for longer than a couple of integer updates.
    """

    def __init__(self, name: str = "job", total: int = 0, log_interval: int = 10000,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize the counter.

        Args:
            name: Label used in progress log lines
            total: Expected number of units
            log_interval: Log an INFO line every this many units (0 disables)
            logger: Optional logger instance
        """
        self.name = name
        self.log_interval = log_interval
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._total = total
        self._processed = 0
        self._next_log = log_interval
        self._start_time = time.time()

    def reset(self, total: int) -> None:
        with self._lock:
            self._total = total
            self._processed = 0
            self._next_log = self.log_interval
            self._start_time = time.time()

    def advance(self, count: int = 1) -> int:
        """Add ``count`` processed units; returns the new processed value."""
        if count < 0:
            raise ValueError("progress can only move forward")
        with self._lock:
            self._processed += count
            processed = self._processed
            should_log = self.log_interval and processed >= self._next_log
            if should_log:
                while self._next_log <= processed:
                    self._next_log += self.log_interval
        if should_log:
            self._log_progress(processed)
        return processed

    @property
    def processed(self) -> int:
        with self._lock:
            return self._processed

    @property
    def total(self) -> int:
        with self._lock:
            return self._total

    @property
    def fraction(self) -> float:
        with self._lock:
            if self._total <= 0:
                return 1.0 if self._processed else 0.0
            return min(1.0, self._processed / self._total)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            processed, total = self._processed, self._total
            elapsed = time.time() - self._start_time
        return {
            'name': self.name,
            'processed': processed,
            'total': total,
            'elapsed_seconds': elapsed,
            'rate_per_second': processed / elapsed if elapsed > 0 else 0.0,
        }

    def _log_progress(self, processed: int):
        snapshot = self.snapshot()
        total = snapshot['total']
        percent = (processed / total * 100) if total else 0.0
        self.logger.info(
            f"{self.name}: {processed}/{total} ({percent:.1f}%) "
            f"{snapshot['rate_per_second']:.1f}/s"
        )
