"""
FraudShield — Main Application Entry Point
Rule-Based Transaction Risk Scoring
"""

import time
import uuid
import logging
from contextlib import asynccontextmanager

from aiokafka.errors import KafkaConnectionError
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from prometheus_client import make_asgi_app

from fraudshield.api.routes import transactions, alerts, rules, health
from fraudshield.config import settings
from fraudshield.services.db import init_db
from fraudshield.services.errors import FraudShieldException, exception_to_response
from fraudshield.services.kafka_producer import KafkaProducer
from fraudshield.services.observability import (
    setup_logging,
    metrics_middleware,
    set_request_id,
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
setup_logging()
logger = logging.getLogger("fraudshield")


# ---------------------------------------------------------------------------
# Lifespan (startup / shutdown)
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and connect the decision-stream producer; tear down on shutdown."""
    logger.info("FraudShield — initialising …")

    # 1. Create all DB tables (idempotent)
    await init_db()

    # 2. Kafka decision stream (optional)
    app.state.kafka_producer = None
    if settings.KAFKA_ENABLED:
        producer = KafkaProducer()
        try:
            await producer.start()
            logger.info("Kafka producer connected.")
        except KafkaConnectionError as exc:
            logger.error("Kafka unavailable, decisions will not be streamed: %s", exc)
        app.state.kafka_producer = producer
    else:
        logger.info("Kafka disabled — decision stream off.")

    yield  # ← application runs here

    # --- shutdown ---
    if app.state.kafka_producer is not None:
        await app.state.kafka_producer.stop()
    logger.info("FraudShield — shut down complete.")


# ---------------------------------------------------------------------------
# FastAPI instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Rule-based transaction risk scoring. Velocity, amount, failure, "
        "geolocation, device and time-of-day rules aggregate into a 0-100 "
        "score and an allow / challenge / review / block decision."
    ),
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production() else None,
    redoc_url="/redoc" if not settings.is_production() else None,
    openapi_url="/openapi.json" if not settings.is_production() else None,
)

# ---------------------------------------------------------------------------
# Middleware Stack (order matters: last added runs first)
# ---------------------------------------------------------------------------

# 1. GZIP compression
app.add_middleware(GZipMiddleware, minimum_size=1000)

# 2. CORS
if settings.CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        allow_credentials=True,
    )

# 3. Trusted hosts
if settings.ALLOWED_HOSTS != ["*"]:
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.ALLOWED_HOSTS,
    )


@app.middleware("http")
async def metrics_collection_middleware(request: Request, call_next) -> Response:
    """Record metrics for requests."""
    if settings.METRICS_ENABLED:
        return await metrics_middleware(request, call_next)
    return await call_next(request)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next) -> Response:
    """Attach a unique request-id and measure latency."""
    request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
    set_request_id(request_id)
    request.state.request_id = request_id
    start_time = time.perf_counter()

    response: Response = await call_next(request)

    elapsed_ms = (time.perf_counter() - start_time) * 1_000
    response.headers["X-Request-Id"] = request_id
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"

    logger.info(
        "HTTP request completed",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(elapsed_ms, 2),
        },
    )
    return response


# ---------------------------------------------------------------------------
# Exception Handlers
# ---------------------------------------------------------------------------
@app.exception_handler(FraudShieldException)
async def fraudshield_exception_handler(request: Request, exc: FraudShieldException):
    """Domain failures surface to the caller as a generic server_error."""
    resp, _ = exception_to_response(exc, request_id=getattr(request.state, "request_id", None))
    return resp


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    resp, _ = exception_to_response(exc, request_id=getattr(request.state, "request_id", None))
    return resp


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    resp, _ = exception_to_response(exc, request_id=getattr(request.state, "request_id", None))
    return resp


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(health.router, prefix="/api/v1/health", tags=["Health"])
app.include_router(transactions.router, prefix="/api/v1/transactions", tags=["Transactions"])
app.include_router(alerts.router, prefix="/api/v1/alerts", tags=["Alerts"])
app.include_router(rules.router, prefix="/api/v1/rules", tags=["Rules"])


# ---------------------------------------------------------------------------
# Prometheus Metrics Endpoint
# ---------------------------------------------------------------------------
if settings.METRICS_ENABLED:
    app.mount("/metrics", make_asgi_app())


# ---------------------------------------------------------------------------
# Root endpoint
# ---------------------------------------------------------------------------
@app.get("/", tags=["Info"])
async def root():
    """API root."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.APP_ENV,
        "docs": "/docs" if not settings.is_production() else None,
    }
