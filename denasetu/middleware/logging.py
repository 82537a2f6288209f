"""
Request logging middleware.

Binds a request id and the OpenTelemetry trace id into structlog's context
variables, so every log line written while serving the request carries them.
"""
import time
import uuid

from fastapi import Request
from opentelemetry import trace
import structlog

logger = structlog.get_logger(__name__)


def current_trace_id() -> str:
    context = trace.get_current_span().get_span_context()
    if context.is_valid:
        return format(context.trace_id, '032x')
    return ""


async def logging_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        trace_id=current_trace_id(),
        method=request.method,
        path=request.url.path,
    )
    started = time.perf_counter()
    logger.debug("Request started", client_ip=request.client.host if request.client else "")

    try:
        response = await call_next(request)
    except Exception:
        logger.exception("Request failed", latency_ms=round((time.perf_counter() - started) * 1000, 1))
        raise

    response.headers["X-Request-ID"] = request_id
    log = logger.warning if response.status_code >= 500 else logger.info
    log("Request completed",
        status_code=response.status_code,
        latency_ms=round((time.perf_counter() - started) * 1000, 1))
    return response
