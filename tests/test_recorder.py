"""
Decision recorder: what gets written after a decision, and what happens when writes fail.
"""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from fraudshield.models.domain import (
    EvaluationResult,
    FraudStatus,
    Geolocation,
    PeriodType,
    RiskFactor,
    RuleAction,
    RuleType,
    Severity,
    TransactionContext,
)
from fraudshield.models.models import FraudAlert, PaymentIntent
from fraudshield.services.errors import PersistenceError
from fraudshield.services.recorder import DecisionRecorder
from fraudshield.services.store import TransactionStore
from fraudshield.services.velocity import VelocityTracker

NOW = datetime.now(timezone.utc)


def _make_factor(severity="high", action="review", name=None) -> RiskFactor:
    return RiskFactor(
        rule_id=str(uuid.uuid4()),
        rule_name=name or f"{severity} rule",
        rule_type=RuleType.AMOUNT,
        severity=Severity(severity),
        score=30,
        details=f"{severity} details",
        action=RuleAction(action),
        alert_type="amount_anomaly",
    )


def _make_result(factors, action=RuleAction.REVIEW, status=FraudStatus.REVIEW) -> EvaluationResult:
    return EvaluationResult(
        composite_score=min(100, sum(f.score for f in factors)),
        status=status,
        action=action,
        risk_factors=factors,
    )


def _make_context(**kwargs) -> TransactionContext:
    defaults = dict(
        user_id="user_001",
        amount=750.0,
        currency="EUR",
        ip_address="203.0.113.7",
        device_fingerprint="fp-1",
        geolocation=Geolocation(lat=48.8566, lon=2.3522, country="FR"),
        request_metadata={"service_request_id": "sr-1", "partner_id": "p-9", "channel": "web"},
    )
    defaults.update(kwargs)
    return TransactionContext(**defaults)


def _recorder(db_session) -> DecisionRecorder:
    store = TransactionStore(db_session)
    return DecisionRecorder(store, VelocityTracker(store))


@pytest.mark.asyncio
class TestDecisionRecorder:
    async def test_payment_intent_fields(self, db_session):
        outcome = await _recorder(db_session).record(_make_context(), _make_result([]), NOW)

        intent = (await db_session.execute(select(PaymentIntent))).scalar_one()
        assert intent.id == outcome.payment_intent_id
        assert intent.status == "pending"
        assert intent.currency == "EUR"
        assert intent.service_request_id == "sr-1"
        assert intent.partner_id == "p-9"
        assert intent.metadata_ == {"channel": "web"}
        assert intent.geolocation["country"] == "FR"

    async def test_blocked_intent_is_failed(self, db_session):
        result = _make_result([_make_factor(action="block")], RuleAction.BLOCK, FraudStatus.BLOCKED)
        await _recorder(db_session).record(_make_context(), result, NOW)

        intent = (await db_session.execute(select(PaymentIntent))).scalar_one()
        assert intent.status == "failed"
        assert intent.fraud_status == "blocked"

    async def test_velocity_updated_for_hour_and_day(self, db_session):
        outcome = await _recorder(db_session).record(_make_context(), _make_result([]), NOW)

        assert set(outcome.velocity_periods_updated) == {PeriodType.HOUR, PeriodType.DAY}
        bucket = await VelocityTracker(TransactionStore(db_session)).get("user_001", PeriodType.DAY, NOW)
        assert bucket.transaction_count == 1
        assert bucket.unique_origins == 1

    async def test_alerts_only_for_high_and_critical(self, db_session):
        factors = [
            _make_factor("low"),
            _make_factor("medium"),
            _make_factor("high"),
            _make_factor("critical"),
        ]
        outcome = await _recorder(db_session).record(_make_context(), _make_result(factors), NOW)

        alerts = list((await db_session.execute(select(FraudAlert))).scalars())
        assert outcome.alerts_recorded == 2
        assert sorted(a.severity for a in alerts) == ["critical", "high"]
        assert all(a.status == "open" for a in alerts)

    async def test_intent_failure_still_writes_alerts(self, db_session):
        with patch.object(
            TransactionStore, "insert_payment_intent",
            AsyncMock(side_effect=PersistenceError("disk full")),
        ):
            outcome = await _recorder(db_session).record(
                _make_context(), _make_result([_make_factor("critical")]), NOW
            )

        assert outcome.payment_intent_id is None
        assert outcome.persistence_errors == ["payment_intent"]
        alert = (await db_session.execute(select(FraudAlert))).scalar_one()
        assert alert.payment_intent_id is None

    async def test_velocity_failure_does_not_stop_recording(self, db_session):
        with patch.object(
            TransactionStore, "upsert_velocity_increment",
            AsyncMock(side_effect=PersistenceError("deadlock")),
        ):
            outcome = await _recorder(db_session).record(_make_context(), _make_result([]), NOW)

        assert outcome.persistence_errors == ["velocity", "velocity"]
        assert outcome.velocity_periods_updated == []
        assert outcome.payment_intent_id is not None

    async def test_alert_failure_is_counted(self, db_session):
        with patch.object(
            TransactionStore, "insert_alert",
            AsyncMock(side_effect=PersistenceError("constraint")),
        ):
            outcome = await _recorder(db_session).record(
                _make_context(), _make_result([_make_factor("high")]), NOW
            )

        assert outcome.alerts_recorded == 0
        assert outcome.persistence_errors == ["alert"]
