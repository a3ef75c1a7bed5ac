"""
FraudShield — Pydantic Schemas (Request / Response DTOs)

All schemas include:
- Input validation with constraints
- Type hints and descriptions
- Configuration for ORM serialization
"""

from datetime import datetime
from ipaddress import ip_address
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fraudshield.config import settings
from fraudshield.models.domain import Geolocation, PersistedOutcome, TransactionContext


# ===========================================================================
# Evaluation request / response
# ===========================================================================
class GeolocationIn(BaseModel):
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lon: Optional[float] = Field(default=None, ge=-180, le=180)
    country: Optional[str] = Field(default=None, max_length=64)
    city: Optional[str] = Field(default=None, max_length=128)


class FraudCheckRequest(BaseModel):
    """Inbound payload from the payment gateway."""
    user_id: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="User whose transaction is being evaluated"
    )
    amount: float = Field(
        ...,
        ge=settings.MIN_TRANSACTION_AMOUNT,
        le=settings.MAX_TRANSACTION_AMOUNT,
        description="Transaction amount"
    )
    currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="ISO 4217 currency code"
    )
    ip_address: Optional[str] = Field(
        default=None,
        description="IPv4 or IPv6 address"
    )
    device_fingerprint: Optional[str] = Field(
        default=None,
        max_length=256,
        description="Device fingerprint hash"
    )
    geolocation: Optional[GeolocationIn] = None
    service_request_id: Optional[str] = Field(default=None, max_length=128)
    partner_id: Optional[str] = Field(default=None, max_length=128)
    description: Optional[str] = Field(default=None, max_length=500)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("ip_address")
    @classmethod
    def validate_ip_address(cls, v: Optional[str]) -> Optional[str]:
        """Validate IP address format."""
        if v:
            try:
                ip_address(v)
            except ValueError:
                raise ValueError(f"Invalid IP address: {v}")
        return v

    @field_validator("currency")
    @classmethod
    def currency_upper(cls, v: str) -> str:
        return v.upper()

    def to_context(self) -> TransactionContext:
        request_metadata = dict(self.metadata)
        for key in ("service_request_id", "partner_id", "description"):
            value = getattr(self, key)
            if value is not None:
                request_metadata[key] = value
        return TransactionContext(
            user_id=self.user_id,
            amount=self.amount,
            currency=self.currency,
            ip_address=self.ip_address,
            device_fingerprint=self.device_fingerprint,
            geolocation=Geolocation(**self.geolocation.model_dump()) if self.geolocation else None,
            request_metadata=request_metadata,
        )


class RiskFactorOut(BaseModel):
    rule_name: str
    severity: str
    score: int
    details: str


class FraudCheckResponse(BaseModel):
    """Decision returned to the caller."""
    payment_intent_id: Optional[str]
    fraud_score: int = Field(..., ge=0, le=100)
    fraud_status: str
    action: str
    risk_factors: List[RiskFactorOut]
    allowed: bool

    @classmethod
    def from_outcome(cls, outcome: PersistedOutcome) -> "FraudCheckResponse":
        result = outcome.result
        return cls(
            payment_intent_id=outcome.payment_intent_id,
            fraud_score=result.composite_score,
            fraud_status=result.status.value,
            action=result.action.value,
            risk_factors=[RiskFactorOut(**f.to_record()) for f in result.risk_factors],
            allowed=result.allowed,
        )


# ===========================================================================
# Payment intents
# ===========================================================================
class PaymentIntentResponse(BaseModel):
    id: str
    user_id: str
    amount: float
    currency: str
    fraud_score: int
    fraud_status: str
    action: str
    status: str
    risk_factors: List[Dict[str, Any]] = Field(default_factory=list)
    ip_address: Optional[str] = None
    device_fingerprint: Optional[str] = None
    geolocation: Optional[Dict[str, Any]] = None
    service_request_id: Optional[str] = None
    partner_id: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentIntentListResponse(BaseModel):
    total: int
    page: int
    page_size: int
    items: List[PaymentIntentResponse]


# ===========================================================================
# Fraud Rule  (read-only view)
# ===========================================================================
class FraudRuleResponse(BaseModel):
    id: str
    name: str
    description: Optional[str]
    rule_type: str
    condition: Any
    action: str
    severity: str
    priority: int
    alert_type: Optional[str]
    is_active: bool
    condition_valid: bool = True
    validation_error: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ===========================================================================
# Alert
# ===========================================================================
class FraudAlertResponse(BaseModel):
    id: str
    payment_intent_id: Optional[str]
    user_id: str
    alert_type: str
    severity: str
    rule_triggered: str
    rule_details: Dict[str, Any] = Field(default_factory=dict)
    action_taken: str
    action_reason: Optional[str]
    status: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AlertListResponse(BaseModel):
    total: int
    page: int
    page_size: int
    items: List[FraudAlertResponse]


class PaymentIntentDetail(BaseModel):
    payment_intent: PaymentIntentResponse
    alerts: List[FraudAlertResponse]


# ===========================================================================
# Health
# ===========================================================================
class HealthCheck(BaseModel):
    status: str
    db: str
    kafka: str
    uptime_seconds: float
    version: str
