"""
FraudShield — Domain Types

Immutable value objects passed between the rule evaluators, the score
aggregator and the decision recorder.  Nothing here touches the database.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RuleType(str, Enum):
    VELOCITY = "velocity"
    AMOUNT = "amount"
    FAILURE = "failure"
    GEOLOCATION = "geolocation"
    DEVICE = "device"
    TIME = "time"


class RuleAction(str, Enum):
    ALLOW = "allow"
    CHALLENGE = "challenge"
    REVIEW = "review"
    BLOCK = "block"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FraudStatus(str, Enum):
    CLEAN = "clean"
    REVIEW = "review"
    BLOCKED = "blocked"


class PeriodType(str, Enum):
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


ALERTING_SEVERITIES = frozenset({Severity.HIGH, Severity.CRITICAL})


# ===========================================================================
# Input
# ===========================================================================
class Geolocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: Optional[float] = None
    lon: Optional[float] = None
    country: Optional[str] = None
    city: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None


class TransactionContext(BaseModel):
    """Everything known about one transaction attempt; immutable per evaluation."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    amount: float
    currency: str = "USD"
    ip_address: Optional[str] = None
    device_fingerprint: Optional[str] = None
    geolocation: Optional[Geolocation] = None
    request_metadata: Dict[str, Any] = Field(default_factory=dict)


# ===========================================================================
# Output
# ===========================================================================
class RiskFactor(BaseModel):
    """One rule's positive match, carrying a severity-weighted score."""
    model_config = ConfigDict(frozen=True)

    rule_id: str
    rule_name: str
    rule_type: RuleType
    severity: Severity
    score: int
    details: str
    action: RuleAction
    alert_type: str

    def to_record(self) -> Dict[str, Any]:
        return {
            "rule_name": self.rule_name,
            "severity": self.severity.value,
            "score": self.score,
            "details": self.details,
        }


class EvaluationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    composite_score: int = Field(..., ge=0, le=100)
    status: FraudStatus
    action: RuleAction
    risk_factors: List[RiskFactor] = Field(default_factory=list)

    @property
    def allowed(self) -> bool:
        return self.action is not RuleAction.BLOCK


class VelocityBucket(BaseModel):
    user_id: str
    period_type: PeriodType
    period_start: datetime
    transaction_count: int = 0
    total_amount: float = 0.0
    unique_origins: int = 0


class PersistedOutcome(BaseModel):
    """What the decision recorder managed to write; steps that failed are listed in persistence_errors."""
    result: EvaluationResult
    payment_intent_id: Optional[str] = None
    alerts_recorded: int = 0
    velocity_periods_updated: List[PeriodType] = Field(default_factory=list)
    persistence_errors: List[str] = Field(default_factory=list)
