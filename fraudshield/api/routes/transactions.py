"""
FraudShield — Transactions API

POST /api/v1/transactions/evaluate     → score one transaction attempt
GET  /api/v1/transactions              → paginated payment intents with filters
GET  /api/v1/transactions/{intent_id}  → single payment intent + its alerts
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from fraudshield.models.models import PaymentIntent
from fraudshield.models.schemas import (
    FraudAlertResponse,
    FraudCheckRequest,
    FraudCheckResponse,
    PaymentIntentDetail,
    PaymentIntentListResponse,
    PaymentIntentResponse,
)
from fraudshield.services.db import get_db
from fraudshield.services.kafka_producer import publish_decision
from fraudshield.services.observability import set_subject_user_id
from fraudshield.services.scorer import FraudEngine

logger = logging.getLogger("fraudshield.api.transactions")
router = APIRouter()


# ===========================================================================
# POST  /api/v1/transactions/evaluate
# ===========================================================================
@router.post(
    "/evaluate",
    response_model=FraudCheckResponse,
    summary="Evaluate a Transaction",
    description=(
        "Runs every active fraud rule against the transaction attempt, "
        "aggregates a 0-100 risk score, decides allow / challenge / review / "
        "block, and records the payment intent, velocity and alerts."
    ),
)
async def evaluate_transaction(
    payload: FraudCheckRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Score a transaction attempt.  Errors surface as a generic server_error."""
    set_subject_user_id(payload.user_id)
    context = payload.to_context()
    logger.info("Fraud check for user %s: %.2f %s", context.user_id, context.amount, context.currency)

    # RuleStoreError propagates to the app-level handler (server_error).
    outcome = await FraudEngine(db).evaluate(context)

    producer = getattr(request.app.state, "kafka_producer", None)
    await publish_decision(producer, context, outcome)

    return FraudCheckResponse.from_outcome(outcome)


# ===========================================================================
# GET  /api/v1/transactions
# ===========================================================================
@router.get(
    "/",
    response_model=PaymentIntentListResponse,
    summary="List Payment Intents",
    description="Paginated list with optional filters.",
)
async def list_payment_intents(
    page: int = 1,
    page_size: int = 25,
    user_id: Optional[str] = None,
    fraud_status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    conditions = []

    if user_id:
        conditions.append(PaymentIntent.user_id == user_id)
    if fraud_status:
        conditions.append(PaymentIntent.fraud_status == fraud_status)

    stmt = select(PaymentIntent)
    if conditions:
        stmt = stmt.where(and_(*conditions))
    stmt = stmt.order_by(PaymentIntent.created_at.desc())

    # Count total
    count_stmt = select(func.count()).select_from(stmt.subquery())
    count_result = await db.execute(count_stmt)
    total: int = count_result.scalar() or 0

    # Apply pagination
    page = max(page, 1)
    page_size = min(max(page_size, 1), 200)
    stmt = stmt.offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(stmt)
    intents = list(result.scalars())

    return PaymentIntentListResponse(
        total=total,
        page=page,
        page_size=page_size,
        items=[PaymentIntentResponse.model_validate(i) for i in intents],
    )


# ===========================================================================
# GET  /api/v1/transactions/{intent_id}
# ===========================================================================
@router.get(
    "/{intent_id}",
    response_model=PaymentIntentDetail,
    summary="Get Payment Intent Details",
    description="Retrieve a payment intent with its fraud alerts.",
)
async def get_payment_intent(
    intent_id: str,
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(PaymentIntent).where(PaymentIntent.id == intent_id))
    intent = result.scalar_one_or_none()

    if not intent:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payment intent not found"
        )

    return PaymentIntentDetail(
        payment_intent=PaymentIntentResponse.model_validate(intent),
        alerts=[FraudAlertResponse.model_validate(a) for a in intent.alerts],
    )
