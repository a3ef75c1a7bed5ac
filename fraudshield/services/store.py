"""
FraudShield — Storage Boundary

RuleStore         → validated, active rules ordered by priority
TransactionStore  → velocity counters, transaction history, decision writes

Every database error is translated into a domain exception so that the
engine can apply the failure policy configured for that collaborator:

    reads of rules            → RuleStoreError
    reads of history / geo    → SignalUnavailableError
    writes of the audit trail → PersistenceError
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fraudshield.models.domain import PeriodType, VelocityBucket
from fraudshield.models.models import FraudAlert, FraudRule, PaymentIntent, PaymentVelocity
from fraudshield.rules.conditions import ActiveRule, load_rule
from fraudshield.services.errors import (
    PersistenceError,
    RuleConfigurationError,
    RuleStoreError,
    SignalUnavailableError,
)
from fraudshield.services.observability import Metrics

logger = logging.getLogger("fraudshield.store")

_UPSERT_BUILDERS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


# ===========================================================================
# Rules
# ===========================================================================
class RuleStore:
    def __init__(self, db: AsyncSession):
        self._db = db

    async def list_active_rules(self) -> List[ActiveRule]:
        """Active rules ordered by priority ascending; malformed rules are skipped."""
        stmt = (
            select(FraudRule)
            .where(FraudRule.is_active.is_(True))
            .order_by(FraudRule.priority.asc(), FraudRule.name.asc())
        )
        try:
            result = await self._db.execute(stmt)
            rows = list(result.scalars())
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise RuleStoreError(f"failed to load active rules: {exc}") from exc

        rules: List[ActiveRule] = []
        for row in rows:
            try:
                rules.append(load_rule(row))
            except RuleConfigurationError as exc:
                logger.warning("Malformed rule '%s' skipped: %s", row.name, exc)
                Metrics.rules_skipped_total.labels(rule_type=str(row.rule_type)).inc()
        return rules


# ===========================================================================
# Transactions & velocity
# ===========================================================================
class TransactionStore:
    def __init__(self, db: AsyncSession):
        self._db = db

    # ------------------------------------------------------------------
    # Velocity counters
    # ------------------------------------------------------------------
    async def get_velocity_bucket(
        self,
        user_id: str,
        period_type: PeriodType,
        period_start: datetime,
    ) -> Optional[VelocityBucket]:
        stmt = select(PaymentVelocity).where(
            PaymentVelocity.user_id == user_id,
            PaymentVelocity.period_type == period_type.value,
            PaymentVelocity.period_start == period_start,
        )
        row = await self._read(stmt, "get_velocity_bucket", scalar=True)
        if row is None:
            return None
        return VelocityBucket(
            user_id=row.user_id,
            period_type=PeriodType(row.period_type),
            period_start=row.period_start,
            transaction_count=row.transaction_count,
            total_amount=row.total_amount,
            unique_origins=row.unique_origins,
        )

    async def upsert_velocity_increment(
        self,
        user_id: str,
        period_type: PeriodType,
        period_start: datetime,
        amount: float,
        is_new_origin: bool,
    ) -> None:
        """
        Increment-or-create the bucket in one statement and commit it.

        INSERT … ON CONFLICT DO UPDATE keeps concurrent evaluations for the
        same user from losing increments.
        """
        origin_increment = 1 if is_new_origin else 0
        try:
            build_insert = _UPSERT_BUILDERS[self._db.get_bind().dialect.name]
        except KeyError as exc:
            raise PersistenceError(f"no atomic upsert for dialect {exc}") from exc

        table = PaymentVelocity.__table__
        stmt = build_insert(table).values(
            user_id=user_id,
            period_type=period_type.value,
            period_start=period_start,
            transaction_count=1,
            total_amount=amount,
            unique_origins=origin_increment,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "period_type", "period_start"],
            set_={
                "transaction_count": table.c.transaction_count + 1,
                "total_amount": table.c.total_amount + stmt.excluded.total_amount,
                "unique_origins": table.c.unique_origins + stmt.excluded.unique_origins,
                "updated_at": datetime.now(timezone.utc),
            },
        )
        await self._write(stmt, "upsert_velocity_increment")

    # ------------------------------------------------------------------
    # History scans
    # ------------------------------------------------------------------
    async def history_totals(self, user_id: str, since: datetime) -> Tuple[int, float, int]:
        """(count, total amount, distinct origins) of attempts since *since*."""
        stmt = select(
            func.count(PaymentIntent.id).label("txn_count"),
            func.coalesce(func.sum(PaymentIntent.amount), 0.0).label("txn_sum"),
            func.count(func.distinct(PaymentIntent.ip_address)).label("origins"),
        ).where(
            PaymentIntent.user_id == user_id,
            PaymentIntent.created_at >= since,
        )
        row = await self._read(stmt, "history_totals", one=True)
        return int(row.txn_count), float(row.txn_sum), int(row.origins)

    async def origin_seen(self, user_id: str, origin: str, since: datetime) -> bool:
        stmt = select(func.count(PaymentIntent.id)).where(
            PaymentIntent.user_id == user_id,
            PaymentIntent.ip_address == origin,
            PaymentIntent.created_at >= since,
        )
        return (await self._read(stmt, "origin_seen", scalar=True) or 0) > 0

    async def count_failed_transactions(self, user_id: str, since: datetime) -> int:
        stmt = select(func.count(PaymentIntent.id)).where(
            PaymentIntent.user_id == user_id,
            PaymentIntent.status == "failed",
            PaymentIntent.created_at >= since,
        )
        return await self._read(stmt, "count_failed_transactions", scalar=True) or 0

    async def count_successful_by_device(self, user_id: str, fingerprint: str) -> int:
        stmt = select(func.count(PaymentIntent.id)).where(
            PaymentIntent.user_id == user_id,
            PaymentIntent.device_fingerprint == fingerprint,
            PaymentIntent.status == "succeeded",
        )
        return await self._read(stmt, "count_successful_by_device", scalar=True) or 0

    async def list_recent_geo_points(
        self,
        user_id: str,
        since: datetime,
        limit: int,
    ) -> List[Dict[str, Any]]:
        """Most recent first; only rows that recorded a geolocation."""
        stmt = (
            select(PaymentIntent.geolocation)
            .where(
                and_(
                    PaymentIntent.user_id == user_id,
                    PaymentIntent.created_at >= since,
                    PaymentIntent.geolocation.isnot(None),
                )
            )
            .order_by(PaymentIntent.created_at.desc())
            .limit(limit)
        )
        rows = await self._read(stmt, "list_recent_geo_points")
        return [geo for geo in rows if isinstance(geo, dict)]

    # ------------------------------------------------------------------
    # Decision writes  (each committed on its own)
    # ------------------------------------------------------------------
    async def insert_payment_intent(self, record: Dict[str, Any]) -> str:
        intent_id = str(uuid.uuid4())
        self._db.add(PaymentIntent(id=intent_id, **record))
        await self._commit("insert_payment_intent")
        return intent_id

    async def insert_alert(self, record: Dict[str, Any]) -> str:
        alert_id = str(uuid.uuid4())
        self._db.add(FraudAlert(id=alert_id, **record))
        await self._commit("insert_alert")
        return alert_id

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _read(self, stmt, operation: str, scalar: bool = False, one: bool = False):
        try:
            result = await self._db.execute(stmt)
            if scalar:
                return result.scalar()
            if one:
                return result.one()
            return list(result.scalars())
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise SignalUnavailableError(f"{operation} failed: {exc}") from exc

    async def _write(self, stmt, operation: str) -> None:
        try:
            await self._db.execute(stmt)
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise PersistenceError(f"{operation} failed: {exc}") from exc

    async def _commit(self, operation: str) -> None:
        try:
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise PersistenceError(f"{operation} failed: {exc}") from exc
