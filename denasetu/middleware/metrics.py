"""
Prometheus metrics middleware and domain counters
"""
import time
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import structlog

logger = structlog.get_logger(__name__)

http_requests_total = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

# Payment metrics
gateway_orders_total = Counter(
    'gateway_orders_total',
    'Payment gateway order creation attempts',
    ['status']
)

payments_confirmed_total = Counter(
    'payments_confirmed_total',
    'Confirmed payments recorded',
    ['source', 'relation']
)

# Donation lifecycle metrics
donation_transitions_total = Counter(
    'donation_transitions_total',
    'Donation status transitions',
    ['from_status', 'to_status', 'outcome']
)

# Realtime feed metrics
feed_reconnects_total = Counter(
    'feed_reconnects_total',
    'Realtime feed resubscriptions after a dropped subscription',
    ['relation']
)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to collect Prometheus metrics for HTTP requests"""

    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()

        response = await call_next(request)

        # Route template is only known after routing
        endpoint = request.url.path
        route = request.scope.get('route')
        if route is not None and hasattr(route, 'path'):
            endpoint = route.path

        duration = time.time() - start_time
        status = str(response.status_code)
        method = request.method

        http_requests_total.labels(
            method=method,
            endpoint=endpoint,
            status=status
        ).inc()

        http_request_duration_seconds.labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

        return response


async def metrics_endpoint(request: Request):
    """Endpoint to expose Prometheus metrics"""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )
