"""
FraudShield — Observability Layer

Provides:
- Structured JSON logging
- Prometheus metrics
- Request correlation IDs
"""

import logging
import time
from typing import Optional, Dict, Any
from contextvars import ContextVar

from prometheus_client import Counter, Histogram
from pythonjsonlogger import jsonlogger
from fastapi import Request, Response

from fraudshield.config import settings

# ===========================================================================
# Context Variables (for log correlation)
# ===========================================================================
REQUEST_ID_CTX: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
SUBJECT_USER_CTX: ContextVar[Optional[str]] = ContextVar("subject_user_id", default=None)


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return REQUEST_ID_CTX.get()


def set_request_id(request_id: str) -> None:
    """Set the request ID in context."""
    REQUEST_ID_CTX.set(request_id)


def get_subject_user_id() -> Optional[str]:
    """User whose transaction is being evaluated (not the API caller)."""
    return SUBJECT_USER_CTX.get()


def set_subject_user_id(user_id: str) -> None:
    SUBJECT_USER_CTX.set(user_id)


# ===========================================================================
# Structured Logging
# ===========================================================================
class StructuredLogFormatter(jsonlogger.JsonFormatter):
    """Custom JSON log formatter with additional context fields."""

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        """Add context variables to log record."""
        super().add_fields(log_record, record, message_dict)

        request_id = get_request_id()
        subject_user_id = get_subject_user_id()

        if request_id:
            log_record["request_id"] = request_id
        if subject_user_id:
            log_record["subject_user_id"] = subject_user_id

        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["env"] = settings.APP_ENV
        log_record["service"] = settings.APP_NAME
        log_record["version"] = settings.APP_VERSION


def setup_logging() -> None:
    """Configure JSON (or plain text) logging for the application."""
    if not settings.STRUCTURED_LOGGING_ENABLED:
        return

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.LOG_LEVEL)

    # Remove default handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    if settings.LOG_FORMAT == "json":
        console_handler.setFormatter(StructuredLogFormatter())
    else:
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s — %(message)s")
        )
    root_logger.addHandler(console_handler)

    # Set all loggers to the same level
    for logger_name in [
        "fraudshield",
        "fastapi",
        "uvicorn",
    ]:
        logging.getLogger(logger_name).setLevel(settings.LOG_LEVEL)

    # INFO on sqlalchemy.engine echoes every statement
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)


# ===========================================================================
# Prometheus Metrics
# ===========================================================================
class Metrics:
    """Application metrics collector."""

    # Request metrics
    http_requests_total = Counter(
        "fraudshield_http_requests_total",
        "Total HTTP requests",
        ["method", "endpoint", "status"],
    )

    http_request_duration_seconds = Histogram(
        "fraudshield_http_request_duration_seconds",
        "HTTP request duration in seconds",
        ["method", "endpoint"],
        buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
    )

    # Evaluation metrics
    evaluations_total = Counter(
        "fraudshield_evaluations_total",
        "Transactions evaluated, by decision",
        ["action"],  # allow, challenge, review, block
    )

    evaluation_duration_seconds = Histogram(
        "fraudshield_evaluation_duration_seconds",
        "End-to-end evaluation time",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0),
    )

    composite_scores = Histogram(
        "fraudshield_composite_scores",
        "Distribution of composite risk scores",
        buckets=(0, 10, 25, 40, 50, 60, 75, 90, 100),
    )

    risk_factors_total = Counter(
        "fraudshield_risk_factors_total",
        "Risk factors emitted",
        ["rule_type", "severity"],
    )

    # Degradation metrics
    rules_skipped_total = Counter(
        "fraudshield_rules_skipped_total",
        "Active rules skipped because their condition is malformed",
        ["rule_type"],
    )

    rule_store_failures_total = Counter(
        "fraudshield_rule_store_failures_total",
        "Evaluations where active rules could not be loaded",
        ["policy"],
    )

    signal_failures_total = Counter(
        "fraudshield_signal_failures_total",
        "Evaluator lookups that failed",
        ["rule_type", "policy"],
    )

    persistence_failures_total = Counter(
        "fraudshield_persistence_failures_total",
        "Audit-trail writes that failed after a decision",
        ["operation"],  # velocity, payment_intent, alert
    )

    alerts_recorded_total = Counter(
        "fraudshield_alerts_recorded_total",
        "Fraud alerts persisted",
        ["severity", "type"],
    )

    # Kafka metrics
    kafka_messages_sent_total = Counter(
        "fraudshield_kafka_messages_sent_total",
        "Total Kafka messages sent",
        ["topic"],
    )

    kafka_messages_errors_total = Counter(
        "fraudshield_kafka_messages_errors_total",
        "Kafka message send errors",
        ["topic"],
    )


# ===========================================================================
# Middleware for automatic metric collection
# ===========================================================================
async def metrics_middleware(request: Request, call_next) -> Response:
    """Record HTTP request metrics."""
    start_time = time.perf_counter()
    path = request.url.path.split("?")[0]  # Remove query string
    method = request.method
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
    finally:
        duration = time.perf_counter() - start_time

        Metrics.http_requests_total.labels(
            method=method,
            endpoint=path,
            status=status_code,
        ).inc()

        Metrics.http_request_duration_seconds.labels(
            method=method,
            endpoint=path,
        ).observe(duration)

    return response


# ===========================================================================
# Logging utilities
# ===========================================================================
def log_evaluation(
    payment_intent_id: Optional[str],
    action: str,
    composite_score: int,
    factor_count: int,
    duration_ms: float,
) -> None:
    """Log a completed evaluation and record its metrics."""
    logger = logging.getLogger("fraudshield.scoring")
    logger.info(
        "Transaction evaluated",
        extra={
            "payment_intent_id": payment_intent_id,
            "action": action,
            "composite_score": composite_score,
            "risk_factor_count": factor_count,
            "duration_ms": duration_ms,
        },
    )

    Metrics.evaluations_total.labels(action=action).inc()
    Metrics.composite_scores.observe(composite_score)
    Metrics.evaluation_duration_seconds.observe(duration_ms / 1000)


def log_alert_recorded(
    alert_id: str,
    payment_intent_id: Optional[str],
    severity: str,
    alert_type: str,
) -> None:
    """Log an alert write."""
    logger = logging.getLogger("fraudshield.alerts")
    logger.warning(
        "Alert recorded",
        extra={
            "alert_id": alert_id,
            "payment_intent_id": payment_intent_id,
            "severity": severity,
            "alert_type": alert_type,
        },
    )

    Metrics.alerts_recorded_total.labels(
        severity=severity,
        type=alert_type,
    ).inc()
