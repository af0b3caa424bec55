"""
Prometheus metrics for the SmartDesk API
"""

from .prometheus_metrics import PrometheusMetricsCollector

__all__ = ["PrometheusMetricsCollector"]
