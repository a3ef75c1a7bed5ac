"""
FraudShield — Decision Recorder

Writes the outcome of an evaluation:
    1. velocity increments   (hour + day, every attempt counts, even blocked ones)
    2. payment intent row    (blocked → status "failed", otherwise "pending")
    3. one alert per high / critical risk factor

Each write is committed on its own.  A failed write is logged and counted
but never turns into an error for the caller: the decision has already been
made and is returned regardless.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fraudshield.config import settings
from fraudshield.models.domain import (
    ALERTING_SEVERITIES,
    EvaluationResult,
    FraudStatus,
    PeriodType,
    PersistedOutcome,
    TransactionContext,
)
from fraudshield.services.errors import PersistenceError, SignalUnavailableError
from fraudshield.services.observability import Metrics, log_alert_recorded
from fraudshield.services.store import TransactionStore
from fraudshield.services.velocity import VelocityTracker

logger = logging.getLogger("fraudshield.recorder")


class DecisionRecorder:
    def __init__(self, store: TransactionStore, velocity: VelocityTracker):
        self._store = store
        self._velocity = velocity

    async def record(
        self,
        context: TransactionContext,
        result: EvaluationResult,
        now: datetime,
    ) -> PersistedOutcome:
        outcome = PersistedOutcome(result=result)

        # ── 1. Velocity ────────────────────────────────────────────────────
        for period_name in settings.VELOCITY_TRACKED_PERIODS:
            period = PeriodType(period_name)
            try:
                await self._velocity.increment(
                    context.user_id, period, context.amount, origin=context.ip_address, now=now
                )
                outcome.velocity_periods_updated.append(period)
            except (PersistenceError, SignalUnavailableError) as exc:
                self._failed(outcome, "velocity", exc, user_id=context.user_id, period=period.value)

        # ── 2. Payment intent ──────────────────────────────────────────────
        try:
            outcome.payment_intent_id = await self._store.insert_payment_intent(
                _payment_intent_record(context, result)
            )
        except PersistenceError as exc:
            self._failed(outcome, "payment_intent", exc, user_id=context.user_id)

        # ── 3. Alerts (only for HIGH / CRITICAL factors) ───────────────────
        for factor in result.risk_factors:
            if factor.severity not in ALERTING_SEVERITIES:
                continue
            try:
                alert_id = await self._store.insert_alert({
                    "payment_intent_id": outcome.payment_intent_id,
                    "user_id": context.user_id,
                    "alert_type": factor.alert_type,
                    "severity": factor.severity.value,
                    "rule_triggered": factor.rule_name,
                    "rule_details": {"score": factor.score, "details": factor.details},
                    "action_taken": result.action.value,
                    "action_reason": factor.details,
                })
            except PersistenceError as exc:
                self._failed(outcome, "alert", exc, user_id=context.user_id, rule=factor.rule_name)
                continue
            outcome.alerts_recorded += 1
            log_alert_recorded(alert_id, outcome.payment_intent_id, factor.severity.value, factor.alert_type)

        return outcome

    @staticmethod
    def _failed(outcome: PersistedOutcome, operation: str, exc: Exception, **fields: Any) -> None:
        outcome.persistence_errors.append(operation)
        Metrics.persistence_failures_total.labels(operation=operation).inc()
        logger.error(
            "Failed to persist %s after decision %s: %s",
            operation, outcome.result.action.value, exc,
            extra=fields,
        )


def _payment_intent_record(context: TransactionContext, result: EvaluationResult) -> Dict[str, Any]:
    meta = dict(context.request_metadata)
    geo: Optional[Dict[str, Any]] = (
        context.geolocation.model_dump(exclude_none=True) if context.geolocation else None
    )
    return {
        "user_id": context.user_id,
        "amount": context.amount,
        "currency": context.currency,
        "fraud_score": result.composite_score,
        "fraud_status": result.status.value,
        "action": result.action.value,
        "risk_factors": [factor.to_record() for factor in result.risk_factors],
        "ip_address": context.ip_address,
        "device_fingerprint": context.device_fingerprint,
        "geolocation": geo or None,
        "service_request_id": meta.pop("service_request_id", None),
        "partner_id": meta.pop("partner_id", None),
        "description": meta.pop("description", None),
        "status": "failed" if result.status is FraudStatus.BLOCKED else "pending",
        "metadata_": meta,
    }
