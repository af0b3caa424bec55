"""
Prometheus metrics for the SmartDesk API.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram


class PrometheusMetricsCollector:
    """Request, order and sync metrics exposed on ``/metrics``."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.http_requests = Counter(
            'smartdesk_http_requests_total',
            'HTTP requests served',
            ['method', 'route', 'status'],
            registry=self.registry
        )
        self.http_latency = Histogram(
            'smartdesk_http_request_latency_seconds',
            'HTTP request latency',
            ['method', 'route'],
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=self.registry
        )
        self.orders = Counter(
            'smartdesk_orders_total',
            'Order actions by resulting status',
            ['action', 'status'],
            registry=self.registry
        )
        self.syncs = Counter(
            'smartdesk_broker_syncs_total',
            'Broker synchronisations',
            ['kind', 'outcome'],
            registry=self.registry
        )

    def record_request(self, method: str, route: str, status: int, duration_seconds: float):
        self.http_requests.labels(method=method, route=route, status=str(status)).inc()
        self.http_latency.labels(method=method, route=route).observe(duration_seconds)

    def record_order(self, action: str, status: str):
        self.orders.labels(action=action, status=status).inc()

    def record_sync(self, kind: str, outcome: str):
        self.syncs.labels(kind=kind, outcome=outcome).inc()
