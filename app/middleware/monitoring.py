"""Monitoring and observability middleware"""
import time
import uuid
from typing import Callable
from fastapi import Request, Response
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from app.utils.logger import logger


# ===== Prometheus Metrics =====

# Request metrics
http_requests_total = Counter(
    "rewear_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "rewear_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"]
)

# Error metrics
http_errors_total = Counter(
    "rewear_http_errors_total",
    "Total HTTP errors",
    ["method", "endpoint", "status"]
)

# Token lifecycle metrics
token_events_total = Counter(
    "rewear_token_events_total",
    "Refresh token lifecycle events",
    ["event"]  # issued, refreshed, rotated, revoked, revoked_all
)

authentication_failures_total = Counter(
    "rewear_auth_failures_total",
    "Total authentication failures",
    ["kind"]  # malformed, signature_invalid, expired, not_found, revoked, ...
)


class MonitoringMiddleware(BaseHTTPMiddleware):
    """Middleware for monitoring and metrics collection"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and collect metrics"""
        start_time = time.time()

        method = request.method
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        # Add request ID for tracing
        request_id = request.headers.get("x-request-id") or f"req_{uuid.uuid4().hex[:16]}"
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time
            http_errors_total.labels(method=method, endpoint=endpoint, status=500).inc()

            logger.error(
                f"Request failed: {method} {endpoint}",
                extra={
                    "request_id": request_id,
                    "method": method,
                    "endpoint": endpoint,
                    "duration": duration,
                    "error": str(e)
                },
                exc_info=True
            )
            raise

        status = response.status_code
        duration = time.time() - start_time
        http_requests_total.labels(method=method, endpoint=endpoint, status=status).inc()
        http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration)

        # Log slow requests
        if duration > 1.0:
            logger.warning(
                f"Slow request detected: {method} {endpoint}",
                extra={"request_id": request_id, "duration": duration, "status": status}
            )

        if status >= 400:
            http_errors_total.labels(method=method, endpoint=endpoint, status=status).inc()

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response


def record_token_event(event: str):
    """Record a refresh token lifecycle event"""
    token_events_total.labels(event=event).inc()


def record_auth_failure(kind: str):
    """Record authentication failure by kind"""
    authentication_failures_total.labels(kind=kind).inc()
