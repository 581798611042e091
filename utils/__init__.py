"""Utilities for the voting engine."""

from .utils import (
    setup_logging,
    save_results,
    PerformanceMonitor,
    PerformanceMetrics,
    format_duration,
    get_system_info,
    timed
)

__all__ = [
    'setup_logging',
    'save_results',
    'PerformanceMonitor',
    'PerformanceMetrics',
    'format_duration',
    'get_system_info',
    'timed'
]
