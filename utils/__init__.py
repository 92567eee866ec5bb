"""Utilities for the nullifier ledger."""

from .utils import (
    setup_logging,
    save_results,
    generate_secure_random,
    now_ms,
    PerformanceMonitor,
    create_performance_report,
    get_system_info
)

__all__ = [
    'setup_logging',
    'save_results',
    'generate_secure_random',
    'now_ms',
    'PerformanceMonitor',
    'create_performance_report',
    'get_system_info'
]
