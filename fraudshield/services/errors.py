"""
FraudShield — Error Handling & Exception Classes

Centralised exception handling with proper HTTP status codes and
safe error messages (avoids information leakage).  Callers only ever see a
generic category; the detail stays in the server log under the request id.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger("fraudshield.errors")


# ===========================================================================
# Failure policies  (one per collaborator call, chosen explicitly in config)
# ===========================================================================
class FailurePolicy(str, Enum):
    RAISE = "raise"               # surface a server_error to the caller
    FAIL_OPEN = "fail_open"       # treat the signal as absent
    FAIL_CLOSED = "fail_closed"   # treat the signal as matched / block


# ===========================================================================
# Custom Exceptions (domain-specific)
# ===========================================================================
class FraudShieldException(Exception):
    """Base exception for all FraudShield errors."""
    pass


class RuleConfigurationError(FraudShieldException):
    """A stored rule has a condition that does not fit its rule type."""

    def __init__(self, rule_id: str, message: str):
        super().__init__(f"rule {rule_id}: {message}")
        self.rule_id = rule_id


class RuleStoreError(FraudShieldException):
    """Active rules could not be loaded."""
    pass


class SignalUnavailableError(FraudShieldException):
    """A history / velocity / geo lookup failed during evaluation."""
    pass


class PersistenceError(FraudShieldException):
    """Writing the decision audit trail failed."""
    pass


class KafkaError(FraudShieldException):
    """Kafka communication errors."""
    pass


# ===========================================================================
# HTTP Error Response Factory
# ===========================================================================
class ErrorResponse:
    """Standardised error response format."""

    def __init__(
        self,
        error_code: str,
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ):
        self.error_code = error_code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.request_id = request_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "request_id": self.request_id,
            },
            **({'details': self.details} if self.details else {}),
        }


# ===========================================================================
# Exception to HTTP Response Mapping
# ===========================================================================
def exception_to_response(
    exc: Exception,
    request_id: Optional[str] = None,
) -> tuple[JSONResponse, str]:
    """
    Convert an exception to an HTTP response.

    Parameters
    ----------
    exc : Exception
        The exception to handle
    request_id : str
        Request ID for tracking

    Returns
    -------
    response : JSONResponse
    log_level : str
        Logging level (error, warning, info)
    """

    # Request validation errors
    if isinstance(exc, RequestValidationError):
        error_resp = ErrorResponse(
            error_code="validation_error",
            message="Input validation failed",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"errors": [
                {"loc": list(err.get("loc", ())), "msg": err.get("msg")}
                for err in exc.errors()
            ]},
            request_id=request_id,
        )
        return JSONResponse(
            status_code=error_resp.status_code,
            content=error_resp.to_dict(),
        ), "warning"

    # Rule store down: the engine refuses to score without rules
    if isinstance(exc, RuleStoreError):
        logger.error("RuleStoreError [request_id=%s]: %s", request_id, exc)
        log_level = "error"
    # Kafka errors (non-critical, degraded service)
    elif isinstance(exc, KafkaError):
        logger.warning("KafkaError [request_id=%s]: %s", request_id, exc)
        log_level = "warning"
    elif isinstance(exc, FraudShieldException):
        logger.error("%s [request_id=%s]: %s", type(exc).__name__, request_id, exc)
        log_level = "error"
    else:
        # Generic error (never expose full traceback to client)
        logger.error("Unhandled exception [request_id=%s]: %s", request_id, exc, exc_info=exc)
        log_level = "error"

    error_resp = ErrorResponse(
        error_code="server_error",
        message="An internal error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        request_id=request_id,
    )
    return JSONResponse(
        status_code=error_resp.status_code,
        content=error_resp.to_dict(),
    ), log_level
