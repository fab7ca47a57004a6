"""
Runtime monitoring modules
"""

from .system import MonitoringSystem, PerformanceMetric, SystemMetrics

__all__ = [
    "MonitoringSystem",
    "PerformanceMetric",
    "SystemMetrics",
]
