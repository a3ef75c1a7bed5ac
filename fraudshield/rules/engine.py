"""
FraudShield — Fraud Rules Engine
Evaluates the active, typed rules against one transaction context.

There is one evaluator per rule type; each receives the immutable context,
the rules of its type (priority order) and the signal sources, and returns
zero or more RiskFactors.  Adding a rule type only requires registering an
evaluator in EVALUATORS and a condition model in rules/conditions.py.
"""

import logging
import math
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from fraudshield.config import settings
from fraudshield.models.domain import (
    PeriodType,
    RiskFactor,
    RuleType,
    Severity,
    TransactionContext,
    VelocityBucket,
)
from fraudshield.rules.conditions import ActiveRule
from fraudshield.services.errors import FailurePolicy, SignalUnavailableError
from fraudshield.services.geo import haversine_km
from fraudshield.services.observability import Metrics
from fraudshield.services.store import TransactionStore
from fraudshield.services.velocity import VelocityTracker, rolling_window_start

logger = logging.getLogger("fraudshield.rules")


SEVERITY_MULTIPLIERS: Dict[Severity, float] = {
    Severity.LOW:      0.5,
    Severity.MEDIUM:   1.0,
    Severity.HIGH:     1.5,
    Severity.CRITICAL: 2.0,
}

# Base score of a factor before the severity multiplier.
BASE_SCORES: Dict[str, float] = {
    "velocity_count":  25,
    "velocity_amount": 30,
    "amount":          20,
    "failure":         35,
    "geolocation":     40,
    "device":          15,
    "time":            10,
}


def severity_score(base: float, severity: Severity) -> int:
    """Scale *base* by the severity multiplier, rounding half up."""
    return int(math.floor(base * SEVERITY_MULTIPLIERS[severity] + 0.5))


def _factor(rule: ActiveRule, score: int, details: str) -> RiskFactor:
    return RiskFactor(
        rule_id=rule.id,
        rule_name=rule.name,
        rule_type=rule.rule_type,
        severity=rule.severity,
        score=score,
        details=details,
        action=rule.action,
        alert_type=rule.alert_type,
    )


# ===========================================================================
# Signal sources
# ===========================================================================
class EvaluationSignals:
    """Read-only collaborators an evaluator may consult."""

    def __init__(
        self,
        velocity: VelocityTracker,
        history: TransactionStore,
        distance_km: Callable[[float, float, float, float], float] = haversine_km,
    ):
        self.velocity = velocity
        self.history = history
        self.distance_km = distance_km


Evaluator = Callable[
    [TransactionContext, List[ActiveRule], EvaluationSignals, datetime],
    Awaitable[List[RiskFactor]],
]


# ===========================================================================
# Evaluators  (one per rule type)
# ===========================================================================
async def evaluate_velocity(
    context: TransactionContext,
    rules: List[ActiveRule],
    signals: EvaluationSignals,
    now: datetime,
) -> List[RiskFactor]:
    factors: List[RiskFactor] = []
    buckets: Dict[PeriodType, Optional[VelocityBucket]] = {}

    for rule in rules:
        cond = rule.condition
        if cond.period not in buckets:
            buckets[cond.period] = await signals.velocity.get(context.user_id, cond.period, now)
        bucket = buckets[cond.period]
        if bucket is None:
            continue

        if cond.max_transactions is not None and bucket.transaction_count >= cond.max_transactions:
            factors.append(_factor(
                rule,
                severity_score(BASE_SCORES["velocity_count"], rule.severity),
                f"{bucket.transaction_count} transactions in {cond.period.value} "
                f"(limit: {cond.max_transactions})",
            ))
        if cond.max_amount is not None and bucket.total_amount >= cond.max_amount:
            factors.append(_factor(
                rule,
                severity_score(BASE_SCORES["velocity_amount"], rule.severity),
                f"{bucket.total_amount:.2f} {context.currency} in {cond.period.value} "
                f"(limit: {cond.max_amount:.2f})",
            ))
    return factors


async def evaluate_amount(
    context: TransactionContext,
    rules: List[ActiveRule],
    signals: EvaluationSignals,
    now: datetime,
) -> List[RiskFactor]:
    return [
        _factor(
            rule,
            severity_score(BASE_SCORES["amount"], rule.severity),
            f"Transaction amount {context.amount:.2f} {context.currency} "
            f"exceeds threshold {rule.condition.threshold:.2f}",
        )
        for rule in rules
        if context.amount >= rule.condition.threshold
    ]


async def evaluate_failure(
    context: TransactionContext,
    rules: List[ActiveRule],
    signals: EvaluationSignals,
    now: datetime,
) -> List[RiskFactor]:
    factors: List[RiskFactor] = []
    for rule in rules:
        cond = rule.condition
        since = rolling_window_start(cond.period, now)
        failures = await signals.history.count_failed_transactions(context.user_id, since)
        if failures >= cond.max_failures:
            factors.append(_factor(
                rule,
                severity_score(BASE_SCORES["failure"], rule.severity),
                f"{failures} failed payments in {cond.period.value} (limit: {cond.max_failures})",
            ))
    return factors


async def evaluate_geolocation(
    context: TransactionContext,
    rules: List[ActiveRule],
    signals: EvaluationSignals,
    now: datetime,
) -> List[RiskFactor]:
    geo = context.geolocation
    if geo is None or not geo.has_coordinates:
        return []

    factors: List[RiskFactor] = []
    for rule in rules:
        cond = rule.condition
        since = now - timedelta(minutes=cond.period_minutes)
        limit = cond.lookback_limit or settings.GEO_LOOKBACK_LIMIT
        points = await signals.history.list_recent_geo_points(context.user_id, since, limit)

        for point in points:
            prev_lat, prev_lon = point.get("lat"), point.get("lon")
            if prev_lat is None or prev_lon is None:
                continue
            distance = signals.distance_km(geo.lat, geo.lon, prev_lat, prev_lon)
            if distance > cond.max_distance_km:
                factors.append(_factor(
                    rule,
                    severity_score(BASE_SCORES["geolocation"], rule.severity),
                    f"Location change of {round(distance)}km within {cond.period_minutes} minutes",
                ))
                break   # one factor per rule
    return factors


async def evaluate_device(
    context: TransactionContext,
    rules: List[ActiveRule],
    signals: EvaluationSignals,
    now: datetime,
) -> List[RiskFactor]:
    if not context.device_fingerprint:
        return []

    candidates = [r for r in rules if context.amount >= r.condition.new_device_threshold]
    if not candidates:
        return []

    known_uses = await signals.history.count_successful_by_device(
        context.user_id, context.device_fingerprint
    )
    if known_uses > 0:
        return []

    return [
        _factor(
            rule,
            severity_score(BASE_SCORES["device"], rule.severity),
            f"Large transaction ({context.amount:.2f} {context.currency}) from new device",
        )
        for rule in candidates
    ]


async def evaluate_time(
    context: TransactionContext,
    rules: List[ActiveRule],
    signals: EvaluationSignals,
    now: datetime,
) -> List[RiskFactor]:
    hour = now.astimezone(timezone.utc).hour
    factors: List[RiskFactor] = []
    for rule in rules:
        cond = rule.condition
        if not cond.covers(hour):
            continue
        # The multiplier scales the factor score itself.
        base = BASE_SCORES["time"] * cond.threshold_multiplier
        factors.append(_factor(
            rule,
            severity_score(base, rule.severity),
            f"Transaction during high-risk hours ({cond.start_hour:02d}:00-{cond.end_hour:02d}:00 UTC)",
        ))
    return factors


EVALUATORS: Dict[RuleType, Evaluator] = {
    RuleType.VELOCITY:    evaluate_velocity,
    RuleType.AMOUNT:      evaluate_amount,
    RuleType.FAILURE:     evaluate_failure,
    RuleType.GEOLOCATION: evaluate_geolocation,
    RuleType.DEVICE:      evaluate_device,
    RuleType.TIME:        evaluate_time,
}

# Base score used when a signal is unavailable and the policy fails closed.
_FAIL_CLOSED_BASE: Dict[RuleType, float] = {
    RuleType.VELOCITY:    BASE_SCORES["velocity_count"],
    RuleType.AMOUNT:      BASE_SCORES["amount"],
    RuleType.FAILURE:     BASE_SCORES["failure"],
    RuleType.GEOLOCATION: BASE_SCORES["geolocation"],
    RuleType.DEVICE:      BASE_SCORES["device"],
    RuleType.TIME:        BASE_SCORES["time"],
}


# ===========================================================================
# Public API
# ===========================================================================
async def evaluate_rules(
    context: TransactionContext,
    rules: List[ActiveRule],
    signals: EvaluationSignals,
    now: datetime,
    signal_policy: Optional[FailurePolicy] = None,
) -> List[RiskFactor]:
    """
    Run every evaluator that has at least one rule of its type.

    A failed lookup inside an evaluator follows *signal_policy*: FAIL_OPEN
    drops that rule type's contribution, FAIL_CLOSED emits a factor for each
    of its rules.  Either way the rest of the evaluation carries on.
    """
    policy = signal_policy or FailurePolicy(settings.SIGNAL_FAILURE_POLICY)

    by_type: Dict[RuleType, List[ActiveRule]] = defaultdict(list)
    for rule in sorted(rules, key=lambda r: r.priority):
        by_type[rule.rule_type].append(rule)

    factors: List[RiskFactor] = []
    for rule_type, typed_rules in by_type.items():
        evaluator = EVALUATORS.get(rule_type)
        if evaluator is None:
            logger.warning("No evaluator for rule type '%s' — %d rule(s) skipped.", rule_type, len(typed_rules))
            continue

        try:
            produced = await evaluator(context, typed_rules, signals, now)
        except SignalUnavailableError as exc:
            Metrics.signal_failures_total.labels(rule_type=rule_type.value, policy=policy.value).inc()
            logger.error(
                "Signal unavailable for %s rules (user=%s, policy=%s): %s",
                rule_type.value, context.user_id, policy.value, exc,
                exc_info=exc,
            )
            produced = _unavailable_factors(typed_rules) if policy is FailurePolicy.FAIL_CLOSED else []

        for factor in produced:
            Metrics.risk_factors_total.labels(rule_type=rule_type.value, severity=factor.severity.value).inc()
            logger.info(
                "Rule '%s' TRIGGERED for user=%s (score=%d, action=%s)",
                factor.rule_name, context.user_id, factor.score, factor.action.value,
            )
        factors.extend(produced)

    return factors


def _unavailable_factors(rules: List[ActiveRule]) -> List[RiskFactor]:
    return [
        _factor(
            rule,
            severity_score(_FAIL_CLOSED_BASE[rule.rule_type], rule.severity),
            f"{rule.rule_type.value} signal unavailable, rule treated as matched",
        )
        for rule in rules
    ]
