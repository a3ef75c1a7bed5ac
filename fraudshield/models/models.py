"""
FraudShield — ORM Models (PostgreSQL in production, SQLite in tests)
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON, Column, String, Float, Integer, Boolean, DateTime, Text, ForeignKey,
    Index, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from fraudshield.services.db import Base


def _utcnow():
    return datetime.now(timezone.utc)


def _uuid4():
    return str(uuid.uuid4())


# JSONB on PostgreSQL, plain JSON elsewhere; Python None is stored as SQL NULL.
JSONDocument = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


# ---------------------------------------------------------------------------
# FraudRule  (authored by the rule-management tooling, read-only here)
# ---------------------------------------------------------------------------
class FraudRule(Base):
    __tablename__ = "fraud_rules"
    __table_args__ = (
        Index("ix_fraud_rules_active_priority", "is_active", "priority"),
    )

    id: str = Column(String(36), primary_key=True, default=_uuid4)
    name: str = Column(String(128), nullable=False)
    description: str = Column(Text, nullable=True)
    rule_type: str = Column(String(32), nullable=False)                     # velocity | amount | failure | geolocation | device | time
    condition: dict = Column(JSONDocument, nullable=False)                  # typed per rule_type, see rules/conditions.py
    action: str = Column(String(16), nullable=False, default="review")      # allow | challenge | review | block
    severity: str = Column(String(16), nullable=False, default="medium")    # low | medium | high | critical
    priority: int = Column(Integer, nullable=False, default=100)            # ascending evaluation order
    alert_type: str = Column(String(64), nullable=True)                     # velocity_limit | geolocation_anomaly | …
    is_active: bool = Column(Boolean, default=True)
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)
    updated_at: datetime = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


# ---------------------------------------------------------------------------
# PaymentIntent  (one row per evaluated transaction attempt)
# ---------------------------------------------------------------------------
class PaymentIntent(Base):
    __tablename__ = "payment_intents"
    __table_args__ = (
        Index("ix_payment_intents_user_created", "user_id", "created_at"),
        Index("ix_payment_intents_user_status", "user_id", "status"),
        Index("ix_payment_intents_user_device", "user_id", "device_fingerprint"),
    )

    id: str = Column(String(36), primary_key=True, default=_uuid4)
    user_id: str = Column(String(128), nullable=False)
    amount: float = Column(Float, nullable=False)
    currency: str = Column(String(3), default="USD")
    fraud_score: int = Column(Integer, nullable=False, default=0)           # 0 – 100
    fraud_status: str = Column(String(16), nullable=False, default="clean") # clean | review | blocked
    action: str = Column(String(16), nullable=False, default="allow")       # allow | challenge | review | block
    risk_factors: list = Column(JSONDocument, default=list)
    ip_address: str = Column(String(45), nullable=True)
    device_fingerprint: str = Column(String(256), nullable=True)
    geolocation: dict = Column(JSONDocument, nullable=True)                 # {"lat": …, "lon": …, "country": …, "city": …}
    service_request_id: str = Column(String(128), nullable=True)
    partner_id: str = Column(String(128), nullable=True)
    description: str = Column(Text, nullable=True)
    status: str = Column(String(32), default="pending")                     # pending | failed | succeeded | cancelled
    metadata_: dict = Column("metadata", JSONDocument, default=dict)
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)
    updated_at: datetime = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    alerts = relationship("FraudAlert", back_populates="payment_intent", lazy="selectin")


# ---------------------------------------------------------------------------
# PaymentVelocity  (running counters, one row per user / period bucket)
# ---------------------------------------------------------------------------
class PaymentVelocity(Base):
    __tablename__ = "payment_velocity"
    __table_args__ = (
        UniqueConstraint("user_id", "period_type", "period_start", name="uq_payment_velocity_bucket"),
    )

    id: str = Column(String(36), primary_key=True, default=_uuid4)
    user_id: str = Column(String(128), nullable=False)
    period_type: str = Column(String(8), nullable=False)                    # hour | day
    period_start: datetime = Column(DateTime(timezone=True), nullable=False)
    transaction_count: int = Column(Integer, nullable=False, default=0)
    total_amount: float = Column(Float, nullable=False, default=0.0)
    unique_origins: int = Column(Integer, nullable=False, default=0)
    updated_at: datetime = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


# ---------------------------------------------------------------------------
# FraudAlert
# ---------------------------------------------------------------------------
class FraudAlert(Base):
    __tablename__ = "fraud_alerts"
    __table_args__ = (
        Index("ix_fraud_alerts_severity_created", "severity", "created_at"),
        Index("ix_fraud_alerts_user", "user_id"),
    )

    id: str = Column(String(36), primary_key=True, default=_uuid4)
    # Nullable: an alert is still written when the payment intent insert failed.
    payment_intent_id: str = Column(String(36), ForeignKey("payment_intents.id", ondelete="CASCADE"), nullable=True)
    user_id: str = Column(String(128), nullable=False)
    alert_type: str = Column(String(64), nullable=False)
    severity: str = Column(String(16), nullable=False)                      # high | critical
    rule_triggered: str = Column(String(128), nullable=False)
    rule_details: dict = Column(JSONDocument, default=dict)
    action_taken: str = Column(String(16), nullable=False)
    action_reason: str = Column(Text, nullable=True)
    status: str = Column(String(32), default="open")                       # open | acknowledged | resolved
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)

    payment_intent = relationship("PaymentIntent", back_populates="alerts")
