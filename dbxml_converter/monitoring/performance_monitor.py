"""
Performance monitoring for conversion jobs.

A job (one export, import or inference run) reports the rows it moved and the
stages it went through; a background ResourceSampler records the process'
memory and CPU with psutil meanwhile. Stopping the monitor folds everything
into a ProcessingResult the CLI logs at DEBUG level.
"""

import time
import logging
import threading

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import psutil

from ..models import ProcessingResult


class ResourceSampler(threading.Thread):
    """Daemon thread sampling RSS (MB) and CPU percent of this process."""

    def __init__(self, interval: float, logger: logging.Logger):
        super().__init__(name="resource-sampler", daemon=True)
        self.interval = interval
        self.logger = logger
        self.memory_mb: List[float] = []
        self.cpu_percent: List[float] = []
        self._halt = threading.Event()

    def run(self):
        process = psutil.Process()
        process.cpu_percent(interval=None)
        while True:
            try:
                self.memory_mb.append(process.memory_info().rss / (1024 * 1024))
                self.cpu_percent.append(process.cpu_percent(interval=None))
            except psutil.Error as e:
                self.logger.warning(f"Resource sampling stopped: {e}")
                return
            if self._halt.wait(self.interval):
                return

    def halt(self):
        self._halt.set()
        self.join(timeout=max(1.0, self.interval * 2))


@dataclass
class PerformanceMetrics:
    """Counters gathered for one job."""
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    rows_ok: int = 0
    rows_failed: int = 0
    stage_seconds: Dict[str, float] = field(default_factory=dict)
    custom: Dict[str, Any] = field(default_factory=dict)

    @property
    def rows_total(self) -> int:
        return self.rows_ok + self.rows_failed

    @property
    def elapsed(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return self.finished_at - self.started_at


class PerformanceMonitor:
    """
    Collects timings, row counts and resource usage for one conversion job.

    Usage:
        monitor = PerformanceMonitor()
        monitor.start_monitoring()
        monitor.start_stage('pages')
        ...
        monitor.end_stage('pages')
        result = monitor.stop_monitoring()

    Stages may be entered several times (e.g. once per page); their durations
    add up.
    """

    def __init__(self, sample_interval: float = 0.5):
        """
        Initialize the performance monitor.

        Args:
            sample_interval: Seconds between resource samples
        """
        self.logger = logging.getLogger(__name__)
        self.sample_interval = sample_interval
        self.metrics = PerformanceMetrics()
        self._sampler: Optional[ResourceSampler] = None
        self._open_stages: Dict[str, float] = {}
        self._lock = threading.Lock()

    @property
    def is_monitoring(self) -> bool:
        return self._sampler is not None

    def start_monitoring(self) -> None:
        if self.is_monitoring:
            self.logger.warning("Monitor is already running; start ignored")
            return
        self.metrics = PerformanceMetrics(started_at=time.perf_counter())
        self._open_stages = {}
        self._sampler = ResourceSampler(self.sample_interval, self.logger)
        self._sampler.start()
        self.logger.debug("Performance monitor started")

    def stop_monitoring(self) -> ProcessingResult:
        """Stop sampling and summarize the job."""
        if not self.is_monitoring:
            self.logger.warning("Monitor was never started; returning an empty result")
            return ProcessingResult()

        self.metrics.finished_at = time.perf_counter()
        sampler, self._sampler = self._sampler, None
        sampler.halt()

        summary = self._summarize(sampler)
        result = ProcessingResult(
            records_processed=self.metrics.rows_total,
            records_successful=self.metrics.rows_ok,
            records_failed=self.metrics.rows_failed,
            processing_time_seconds=self.metrics.elapsed,
            performance_metrics=summary,
        )
        self.logger.info(
            f"Job finished: {self.metrics.rows_total} rows in {self.metrics.elapsed:.2f}s "
            f"({summary['records_per_second']:.1f} rows/s, "
            f"peak {summary['resource_usage']['peak_memory_mb']:.1f} MB)"
        )
        return result

    def record_metric(self, metric_name: str, value: Any) -> None:
        with self._lock:
            self.metrics.custom[metric_name] = value

    def record_records(self, successful: int, failed: int = 0) -> None:
        """Add rows moved by the job."""
        with self._lock:
            self.metrics.rows_ok += successful
            self.metrics.rows_failed += failed

    def start_stage(self, stage_name: str) -> None:
        with self._lock:
            self._open_stages[stage_name] = time.perf_counter()

    def end_stage(self, stage_name: str) -> float:
        """Close a stage; returns its duration, or 0.0 when it was never opened."""
        with self._lock:
            opened = self._open_stages.pop(stage_name, None)
            if opened is None:
                return 0.0
            duration = time.perf_counter() - opened
            stages = self.metrics.stage_seconds
            stages[stage_name] = stages.get(stage_name, 0.0) + duration
        return duration

    def _summarize(self, sampler: ResourceSampler) -> Dict[str, Any]:
        metrics = self.metrics
        elapsed = metrics.elapsed
        memory, cpu = list(sampler.memory_mb), list(sampler.cpu_percent)
        return {
            'total_processing_time_seconds': elapsed,
            'records_per_second': metrics.rows_total / elapsed if elapsed > 0 else 0.0,
            'success_rate_percent': metrics.rows_ok / metrics.rows_total * 100 if metrics.rows_total else 0.0,
            'stage_timings': {f"{name}_seconds": seconds for name, seconds in metrics.stage_seconds.items()},
            'resource_usage': {
                'peak_memory_mb': max(memory, default=0.0),
                'avg_cpu_percent': sum(cpu) / len(cpu) if cpu else 0.0,
                'memory_samples_count': len(memory),
                'cpu_samples_count': len(cpu),
            },
            'custom_metrics': dict(metrics.custom),
        }
