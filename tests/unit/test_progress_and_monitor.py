"""
Tests for the progress counter and the psutil backed performance monitor.
"""

import logging
import threading
import time
import unittest

import pytest

from dbxml_converter.monitoring.performance_monitor import PerformanceMonitor
from dbxml_converter.monitoring.progress import ProgressCounter


class TestProgressCounter(unittest.TestCase):

    def test_advance_accumulates(self):
        counter = ProgressCounter("export", total=10, log_interval=0)

        self.assertEqual(counter.advance(3), 3)
        self.assertEqual(counter.advance(), 4)
        self.assertEqual(counter.processed, 4)
        self.assertAlmostEqual(counter.fraction, 0.4)

    def test_progress_never_moves_backwards(self):
        counter = ProgressCounter(total=10)
        with self.assertRaises(ValueError):
            counter.advance(-1)

    def test_fraction_without_total(self):
        counter = ProgressCounter(total=0, log_interval=0)
        self.assertEqual(counter.fraction, 0.0)
        counter.advance(5)
        self.assertEqual(counter.fraction, 1.0)

    def test_reset(self):
        counter = ProgressCounter(total=5, log_interval=0)
        counter.advance(5)

        counter.reset(20)

        self.assertEqual(counter.processed, 0)
        self.assertEqual(counter.total, 20)

    def test_concurrent_advances_are_not_lost(self):
        counter = ProgressCounter(total=8000, log_interval=0)

        def work():
            for _ in range(1000):
                counter.advance()

        threads = [threading.Thread(target=work) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(counter.processed, 8000)
        self.assertEqual(counter.snapshot()['processed'], 8000)

    def test_logs_once_per_interval(self):
        counter = ProgressCounter("import", total=100, log_interval=10)

        with self.assertLogs('dbxml_converter.monitoring.progress', level=logging.INFO) as captured:
            counter.advance(5)
            counter.advance(25)
            counter.advance(4)

        # 30 crosses the 10/20/30 marks in one step, 34 crosses nothing new
        self.assertEqual(len(captured.records), 1)
        self.assertIn("import: 30/100", captured.output[0])


@pytest.fixture
def monitor():
    monitor = PerformanceMonitor(sample_interval=0.01)
    yield monitor
    if monitor.is_monitoring:
        monitor.stop_monitoring()


def test_stage_timings_accumulate(monitor):
    monitor.start_monitoring()
    monitor.start_stage('pages')
    time.sleep(0.01)
    first = monitor.end_stage('pages')
    monitor.start_stage('pages')
    second = monitor.end_stage('pages')

    result = monitor.stop_monitoring()

    timings = result.performance_metrics['stage_timings']
    assert timings['pages_seconds'] == pytest.approx(first + second)
    assert first > 0


def test_ending_unknown_stage_returns_zero(monitor):
    assert monitor.end_stage('never_started') == 0.0


def test_records_and_custom_metrics(monitor):
    monitor.start_monitoring()
    monitor.record_records(8, failed=2)
    monitor.record_metric('pages', 3)
    time.sleep(0.05)

    result = monitor.stop_monitoring()

    assert result.records_processed == 10
    assert result.records_successful == 8
    assert result.records_failed == 2
    assert result.performance_metrics['success_rate_percent'] == pytest.approx(80.0)
    assert result.performance_metrics['custom_metrics'] == {'pages': 3}
    assert result.performance_metrics['resource_usage']['memory_samples_count'] >= 1
    assert result.performance_metrics['resource_usage']['peak_memory_mb'] > 0


def test_stop_without_start_returns_empty_result(monitor):
    result = monitor.stop_monitoring()
    assert result.records_processed == 0
    assert not monitor.is_monitoring
