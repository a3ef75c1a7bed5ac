"""
FraudShield — Kafka Decision Producer

Publishes every evaluation decision to the decision topic so downstream
consumers (case management, analytics) can follow along.  Publishing is
best-effort: the caller already has its decision.
"""

import json
import logging
from typing import Any, Dict

from aiokafka import AIOKafkaProducer

from fraudshield.config import settings
from fraudshield.models.domain import PersistedOutcome, TransactionContext
from fraudshield.services.errors import KafkaError
from fraudshield.services.observability import Metrics

logger = logging.getLogger("fraudshield.kafka")


# ===========================================================================
# Producer (singleton, lifecycle managed by FastAPI app.state)
# ===========================================================================
class KafkaProducer:
    def __init__(self):
        self._producer: AIOKafkaProducer | None = None

    @property
    def is_running(self) -> bool:
        return self._producer is not None

    async def start(self):
        producer = AIOKafkaProducer(
            bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
            value_serializer=lambda v: json.dumps(v).encode("utf-8"),
            key_serializer=lambda k: k.encode("utf-8") if k else None,
            acks="all",              # strongest durability guarantee
            compression_type="gzip",
            request_timeout_ms=settings.KAFKA_TIMEOUT_MS,
        )
        await producer.start()
        self._producer = producer
        logger.info("Kafka producer started — brokers=%s", settings.KAFKA_BOOTSTRAP_SERVERS)

    async def stop(self):
        if self._producer:
            await self._producer.stop()
            self._producer = None
            logger.info("Kafka producer stopped.")

    async def send(self, topic: str, value: Dict[str, Any], key: str | None = None):
        if self._producer is None:
            raise KafkaError("KafkaProducer has not been started.")
        try:
            await self._producer.send(topic=topic, value=value, key=key)
        except Exception as exc:
            raise KafkaError(f"send to {topic} failed: {exc}") from exc
        logger.debug("Kafka send → topic=%s key=%s", topic, key)


# ===========================================================================
# Decision events
# ===========================================================================
def decision_event(context: TransactionContext, outcome: PersistedOutcome) -> Dict[str, Any]:
    result = outcome.result
    return {
        "payment_intent_id": outcome.payment_intent_id,
        "user_id": context.user_id,
        "amount": context.amount,
        "currency": context.currency,
        "fraud_score": result.composite_score,
        "fraud_status": result.status.value,
        "action": result.action.value,
        "risk_factors": [factor.to_record() for factor in result.risk_factors],
    }


async def publish_decision(
    producer: KafkaProducer | None,
    context: TransactionContext,
    outcome: PersistedOutcome,
) -> bool:
    """Publish the decision; returns False (and logs) instead of raising."""
    if producer is None or not producer.is_running:
        return False

    topic = settings.KAFKA_DECISION_TOPIC
    try:
        await producer.send(
            topic=topic,
            value=decision_event(context, outcome),
            key=outcome.payment_intent_id or context.user_id,
        )
    except KafkaError as exc:
        logger.warning("Decision publish failed for user=%s: %s", context.user_id, exc)
        Metrics.kafka_messages_errors_total.labels(topic=topic).inc()
        return False

    Metrics.kafka_messages_sent_total.labels(topic=topic).inc()
    return True
