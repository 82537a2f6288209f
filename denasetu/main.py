from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import asyncio
import structlog
import time
import uvicorn

from denasetu.core.config import get_settings
from denasetu.database.database import init_db, close_db
from denasetu.api.orders import router as orders_router
from denasetu.api.payments import router as payments_router
from denasetu.api.donations import router as donations_router
from denasetu.api.campaigns import router as campaigns_router
from denasetu.api.sessions import router as sessions_router
from denasetu.api.activity import router as activity_router
from denasetu.events.kafka import kafka_relay, kafka_source
from denasetu.services.payment_gateway import gateway_circuit_breaker
from denasetu.services.session import session_manager
from denasetu.store.changes import change_bus
from denasetu.middleware.tracing import init_tracing
from denasetu.middleware.metrics import MetricsMiddleware, metrics_endpoint
from denasetu.middleware.logging import logging_middleware

# Setup structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)
settings = get_settings()

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Donation payment and status lifecycle API",
    version="1.0.0",
    debug=settings.debug
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize tracing (must be done before startup events)
init_tracing(app)

# Add metrics middleware
app.add_middleware(MetricsMiddleware)

# Background tasks started at startup
background_tasks = []


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Logging middleware with trace correlation"""
    return await logging_middleware(request, call_next)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(
        "Unhandled exception",
        error=str(exc),
        method=request.method,
        url=str(request.url)
    )

    return JSONResponse(
        status_code=500,
        content={
            "message": "Internal server error",
            "detail": "An unexpected error occurred"
        }
    )


@app.on_event("startup")
async def startup_event():
    """Initialize application on startup"""
    logger.info("Starting DenaSetu service", service_name=settings.service_name, instance_id=settings.instance_id)

    try:
        init_db()
        logger.info("Database initialized")
    except Exception as e:
        logger.error("Failed to initialize application", error=str(e))
        raise

    try:
        session_manager.init_redis()
    except ConnectionError as e:
        # Session endpoints answer 500 until Redis is reachable
        logger.warning("Session store unavailable at startup", error=str(e))

    if settings.kafka_enabled:
        try:
            await kafka_relay.start()
            await kafka_source.start()
            background_tasks.append(asyncio.create_task(kafka_relay.forward_events()))
            background_tasks.append(asyncio.create_task(kafka_source.consume_events()))
            logger.info("Kafka change relay initialized", topic=settings.kafka_topic_store_changes)
        except Exception as e:
            # Live feeds still work within this instance
            logger.warning("Kafka change relay unavailable", error=str(e))

    logger.info("Application startup completed successfully")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on application shutdown"""
    logger.info("Shutting down DenaSetu service")

    try:
        # Ends every live feed
        change_bus.drop_all()

        for task in background_tasks:
            task.cancel()
        background_tasks.clear()

        if settings.kafka_enabled:
            await kafka_relay.stop()
            await kafka_source.stop()
            logger.info("Kafka change relay stopped")

        session_manager.close()

        close_db()
        logger.info("Database connections closed")

        logger.info("Application shutdown completed successfully")
    except Exception as e:
        logger.error("Error during application shutdown", error=str(e))


# Health check endpoints
@app.get("/health")
async def health_check():
    """Basic health check"""
    return {
        "status": "healthy",
        "service": settings.service_name,
        "timestamp": time.time()
    }


@app.get("/metrics")
async def metrics(request: Request):
    """Prometheus metrics endpoint"""
    return await metrics_endpoint(request)


@app.get("/health/ready")
async def readiness_check():
    """Readiness check with database connectivity"""
    try:
        from denasetu.database.database import engine
        from sqlalchemy import text

        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        return {
            "status": "ready",
            "service": settings.service_name,
            "database": "connected",
            "payment_gateway": gateway_circuit_breaker.get_state(),
            "timestamp": time.time()
        }
    except Exception as e:
        logger.error("Readiness check failed", error=str(e))
        return JSONResponse(
            status_code=503,
            content={
                "status": "not ready",
                "service": settings.service_name,
                "database": "disconnected",
                "error": str(e),
                "timestamp": time.time()
            }
        )


# Include routers
app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(donations_router)
app.include_router(campaigns_router)
app.include_router(sessions_router)
app.include_router(activity_router)


if __name__ == "__main__":
    uvicorn.run(
        "denasetu.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="info" if not settings.debug else "debug"
    )
