"""
FraudShield — Velocity Tracking

Counters
--------
Per-user running counters for fixed ``hour`` and ``day`` buckets, keyed by
the floored bucket start (top of the hour / midnight UTC).  They are read
during evaluation and incremented once per evaluation afterwards, through a
single atomic upsert at the storage boundary.

History lookups
---------------
``week`` and ``month`` are read-only: they are answered by scanning stored
transaction attempts since the floored period start, so no long-lived
counters accumulate.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fraudshield.models.domain import PeriodType, VelocityBucket
from fraudshield.services.store import TransactionStore

logger = logging.getLogger("fraudshield.velocity")

COUNTER_PERIODS = frozenset({PeriodType.HOUR, PeriodType.DAY})

_ROLLING_WINDOWS = {
    PeriodType.HOUR: timedelta(hours=1),
    PeriodType.DAY: timedelta(days=1),
    PeriodType.WEEK: timedelta(days=7),
    PeriodType.MONTH: timedelta(days=30),
}


# ===========================================================================
# Period arithmetic
# ===========================================================================
def floor_period_start(period: PeriodType, now: datetime) -> datetime:
    """Start of the bucket containing *now* (UTC)."""
    now = now.astimezone(timezone.utc)
    if period is PeriodType.HOUR:
        return now.replace(minute=0, second=0, microsecond=0)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period is PeriodType.DAY:
        return midnight
    if period is PeriodType.WEEK:
        return midnight - timedelta(days=midnight.weekday())
    return midnight.replace(day=1)


def rolling_window_start(period: PeriodType, now: datetime) -> datetime:
    """*now* minus the length of *period* (month counts as 30 days)."""
    return now.astimezone(timezone.utc) - _ROLLING_WINDOWS[period]


# ===========================================================================
# Tracker
# ===========================================================================
class VelocityTracker:
    def __init__(self, store: TransactionStore):
        self._store = store

    async def get(
        self,
        user_id: str,
        period_type: PeriodType,
        now: Optional[datetime] = None,
    ) -> Optional[VelocityBucket]:
        """
        Current bucket for *user_id*, or None when nothing was recorded yet.

        Raises SignalUnavailableError when the store cannot be read.
        """
        now = now or datetime.now(timezone.utc)
        period_start = floor_period_start(period_type, now)

        if period_type in COUNTER_PERIODS:
            return await self._store.get_velocity_bucket(user_id, period_type, period_start)

        count, total, origins = await self._store.history_totals(user_id, period_start)
        if count == 0:
            return None
        return VelocityBucket(
            user_id=user_id,
            period_type=period_type,
            period_start=period_start,
            transaction_count=count,
            total_amount=total,
            unique_origins=origins,
        )

    async def increment(
        self,
        user_id: str,
        period_type: PeriodType,
        amount: float,
        origin: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Add one attempt of *amount* to the bucket, creating it on first write.

        Call at most once per evaluation and bucket type.  Raises
        PersistenceError when the upsert fails.

        The new-origin check reads stored attempts before the upsert, so two
        concurrent attempts from the same new origin may both count it.
        unique_origins is approximate; the counters are exact.
        """
        if period_type not in COUNTER_PERIODS:
            raise ValueError(f"'{period_type.value}' is a history lookup, not a counter bucket")

        now = now or datetime.now(timezone.utc)
        period_start = floor_period_start(period_type, now)

        is_new_origin = False
        if origin:
            is_new_origin = not await self._store.origin_seen(user_id, origin, period_start)

        await self._store.upsert_velocity_increment(
            user_id, period_type, period_start, amount, is_new_origin
        )
        logger.debug(
            "Velocity incremented user=%s period=%s start=%s amount=%.2f new_origin=%s",
            user_id, period_type.value, period_start.isoformat(), amount, is_new_origin,
        )
