"""
FraudShield — Seed Data Script
Inserts the default fraud rules defined in fraudshield/rules/default_rules.py
if the fraud_rules table is empty.

Usage (run once after the database is reachable):
    python -m fraudshield.seed
"""

import asyncio
import logging

from sqlalchemy import select, func

from fraudshield.models.models import FraudRule
from fraudshield.rules.default_rules import DEFAULT_RULES
from fraudshield.services.db import AsyncSessionLocal, init_db
from fraudshield.services.observability import setup_logging

logger = logging.getLogger("fraudshield.seed")


async def seed(session_factory=AsyncSessionLocal) -> int:
    """Insert the default rules into an empty table; returns the number inserted."""
    async with session_factory() as db:
        count_result = await db.execute(
            select(func.count()).select_from(FraudRule)
        )
        existing: int = count_result.scalar() or 0

        if existing > 0:
            logger.info("fraud_rules already has %d rows — skipping seed.", existing)
            return 0

        logger.info("Inserting %d default fraud rules …", len(DEFAULT_RULES))
        for rule_data in DEFAULT_RULES:
            db.add(FraudRule(**rule_data))

        await db.commit()
        logger.info("Seed complete — %d rules inserted.", len(DEFAULT_RULES))
        return len(DEFAULT_RULES)


async def main():
    setup_logging()
    await init_db()  # ensure tables exist
    await seed()


if __name__ == "__main__":
    asyncio.run(main())
