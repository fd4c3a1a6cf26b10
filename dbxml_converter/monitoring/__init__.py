"""
Monitoring module for conversion jobs.

This module provides progress counting and performance metrics collection
for export, import and inference jobs.
"""

from .performance_monitor import PerformanceMonitor, PerformanceMetrics
from .progress import ProgressCounter

__all__ = [
    'PerformanceMonitor',
    'PerformanceMetrics',
    'ProgressCounter'
]
