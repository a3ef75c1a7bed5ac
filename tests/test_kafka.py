"""
Decision stream publishing (the broker is always mocked).
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from fraudshield.config import settings
from fraudshield.models.domain import (
    EvaluationResult,
    FraudStatus,
    PersistedOutcome,
    RuleAction,
    TransactionContext,
)
from fraudshield.services.errors import KafkaError
from fraudshield.services.kafka_producer import decision_event, publish_decision


def _make_outcome(intent_id="pi-1") -> PersistedOutcome:
    return PersistedOutcome(
        result=EvaluationResult(
            composite_score=40,
            status=FraudStatus.CLEAN,
            action=RuleAction.CHALLENGE,
            risk_factors=[],
        ),
        payment_intent_id=intent_id,
    )


def _make_producer(send=None):
    producer = MagicMock()
    producer.is_running = True
    producer.send = send or AsyncMock()
    return producer


CONTEXT = TransactionContext(user_id="user_001", amount=99.0)


class TestDecisionEvent:
    def test_shape(self):
        event = decision_event(CONTEXT, _make_outcome())
        assert event["payment_intent_id"] == "pi-1"
        assert event["action"] == "challenge"
        assert event["fraud_status"] == "clean"
        assert event["fraud_score"] == 40
        assert event["risk_factors"] == []


@pytest.mark.asyncio
class TestPublishDecision:
    async def test_sends_to_decision_topic(self):
        producer = _make_producer()
        assert await publish_decision(producer, CONTEXT, _make_outcome()) is True
        producer.send.assert_awaited_once()
        kwargs = producer.send.await_args.kwargs
        assert kwargs["topic"] == settings.KAFKA_DECISION_TOPIC
        assert kwargs["key"] == "pi-1"

    async def test_keys_by_user_without_intent(self):
        producer = _make_producer()
        await publish_decision(producer, CONTEXT, _make_outcome(intent_id=None))
        assert producer.send.await_args.kwargs["key"] == "user_001"

    async def test_no_producer_is_a_noop(self):
        assert await publish_decision(None, CONTEXT, _make_outcome()) is False

    async def test_broker_error_is_not_raised(self):
        producer = _make_producer(send=AsyncMock(side_effect=KafkaError("broker down")))
        assert await publish_decision(producer, CONTEXT, _make_outcome()) is False
