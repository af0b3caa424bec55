import time
from typing import Optional
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.logging import get_api_logger_safe
from core.logging.correlation import CorrelationIdManager
from core.monitoring.prometheus_metrics import PrometheusMetricsCollector

logger = get_api_logger_safe("api.requests")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Attach a request_id and correlation_id to every HTTP request.

    - Sets request.state.request_id
    - Reuses an inbound X-Correlation-ID or creates one
    - Adds X-Request-ID and X-Correlation-ID headers to the response
    - Records request count and latency by route template
    """

    def __init__(self, app: ASGIApp, metrics: Optional[PrometheusMetricsCollector] = None) -> None:
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid4())
        request.state.request_id = request_id

        CorrelationIdManager.clear_correlation()
        inbound = request.headers.get("X-Correlation-ID")
        corr_id = CorrelationIdManager.set_correlation_id(inbound) if inbound \
            else CorrelationIdManager.ensure_correlation_id()
        CorrelationIdManager.set_correlation_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        route = request.scope.get("route")
        template = getattr(route, "path", None) or "unmatched"
        if self.metrics is not None:
            self.metrics.record_request(request.method, template, response.status_code, elapsed)
        logger.info("Request completed",
                    method=request.method,
                    route=template,
                    status_code=response.status_code,
                    duration_ms=round(elapsed * 1000, 2))

        response.headers["X-Request-ID"] = request_id
        if corr_id:
            response.headers["X-Correlation-ID"] = corr_id
        return response
