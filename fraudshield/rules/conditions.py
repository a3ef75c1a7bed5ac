"""
FraudShield — Typed Rule Conditions

Stored rules carry a JSON condition whose shape depends on the rule type.
Each shape is a pydantic model; a stored rule is validated into an
``ActiveRule`` once, when the rule store loads it, so the evaluators only
ever see well-formed, typed parameters.

Expected condition shapes (JSON keys):

    velocity     {"period": "hour", "max_transactions": 5, "max_amount": 10000}
    amount       {"threshold": 5000}
    failure      {"period": "day", "max_failures": 3}
    geolocation  {"max_distance_km": 500, "period_minutes": 60, "lookback_limit": 5}
    device       {"new_device_threshold": 1000}
    time         {"start_hour": 0, "end_hour": 5, "threshold_multiplier": 1.5}
"""

import logging
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from fraudshield.models.domain import PeriodType, RuleAction, RuleType, Severity
from fraudshield.services.errors import RuleConfigurationError

logger = logging.getLogger("fraudshield.rules.conditions")

DEFAULT_ALERT_TYPE = "manual_review"


class _Condition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class VelocityCondition(_Condition):
    period: PeriodType
    max_transactions: Optional[int] = Field(default=None, ge=1)
    max_amount: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def needs_a_limit(self) -> "VelocityCondition":
        if self.max_transactions is None and self.max_amount is None:
            raise ValueError("velocity condition needs max_transactions and/or max_amount")
        return self


class AmountCondition(_Condition):
    threshold: float = Field(..., ge=0)


class FailureCondition(_Condition):
    period: PeriodType
    max_failures: int = Field(..., ge=1)


class GeolocationCondition(_Condition):
    max_distance_km: float = Field(..., gt=0)
    period_minutes: int = Field(..., gt=0)
    lookback_limit: Optional[int] = Field(default=None, ge=1, le=50)


class DeviceCondition(_Condition):
    new_device_threshold: float = Field(..., ge=0)


class TimeCondition(_Condition):
    start_hour: int = Field(..., ge=0, le=23)
    end_hour: int = Field(..., ge=0, le=24)
    threshold_multiplier: float = Field(default=1.0, gt=0)

    @model_validator(mode="after")
    def window_not_empty(self) -> "TimeCondition":
        if self.start_hour == self.end_hour:
            raise ValueError("start_hour and end_hour describe an empty window")
        return self

    def covers(self, hour: int) -> bool:
        """True when *hour* falls in [start_hour, end_hour); wraps past midnight."""
        if self.start_hour < self.end_hour:
            return self.start_hour <= hour < self.end_hour
        return hour >= self.start_hour or hour < self.end_hour


Condition = Union[
    VelocityCondition,
    AmountCondition,
    FailureCondition,
    GeolocationCondition,
    DeviceCondition,
    TimeCondition,
]

CONDITION_MODELS: Dict[RuleType, type] = {
    RuleType.VELOCITY:    VelocityCondition,
    RuleType.AMOUNT:      AmountCondition,
    RuleType.FAILURE:     FailureCondition,
    RuleType.GEOLOCATION: GeolocationCondition,
    RuleType.DEVICE:      DeviceCondition,
    RuleType.TIME:        TimeCondition,
}


class ActiveRule(BaseModel):
    """A validated, evaluable rule."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    rule_type: RuleType
    condition: Condition
    action: RuleAction
    severity: Severity
    priority: int = 100
    alert_type: str = DEFAULT_ALERT_TYPE


def load_rule(rule: Any) -> ActiveRule:
    """
    Validate a stored rule (ORM row or anything with the same attributes).

    Raises RuleConfigurationError when the rule type, action, severity or
    condition does not validate.
    """
    rule_id = str(getattr(rule, "id", "?"))

    try:
        rule_type = RuleType(rule.rule_type)
        action = RuleAction(rule.action)
        severity = Severity(rule.severity)
    except ValueError as exc:
        raise RuleConfigurationError(rule_id, str(exc)) from exc

    raw = rule.condition
    if not isinstance(raw, dict):
        raise RuleConfigurationError(rule_id, f"condition must be an object, got {type(raw).__name__}")

    try:
        condition = CONDITION_MODELS[rule_type].model_validate(raw)
    except ValidationError as exc:
        raise RuleConfigurationError(
            rule_id, f"invalid {rule_type.value} condition: {exc.error_count()} error(s): {exc.errors()[0]['msg']}"
        ) from exc

    # A new device is a reason to ask, not to refuse.
    if rule_type is RuleType.DEVICE and action is RuleAction.BLOCK:
        logger.warning("Device rule '%s' declares action=block — capped to challenge.", rule.name)
        action = RuleAction.CHALLENGE

    return ActiveRule(
        id=rule_id,
        name=rule.name,
        rule_type=rule_type,
        condition=condition,
        action=action,
        severity=severity,
        priority=rule.priority if rule.priority is not None else 100,
        alert_type=rule.alert_type or DEFAULT_ALERT_TYPE,
    )
