"""
FraudShield — Alerts API

GET    /api/v1/alerts                 → paginated list with severity / type / status filters
GET    /api/v1/alerts/{alert_id}      → single alert detail

Alerts are written by the decision recorder; delivering them (email, push,
paging) belongs to downstream consumers.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from fraudshield.models.domain import Severity
from fraudshield.models.models import FraudAlert
from fraudshield.models.schemas import AlertListResponse, FraudAlertResponse
from fraudshield.services.db import get_db

logger = logging.getLogger("fraudshield.api.alerts")
router = APIRouter()

VALID_STATUSES = {"open", "acknowledged", "resolved"}
VALID_SEVERITIES = {s.value for s in Severity}


# ===========================================================================
# GET  /api/v1/alerts
# ===========================================================================
@router.get(
    "/",
    response_model=AlertListResponse,
    summary="List Alerts",
    description="Filter by severity, alert type and/or status. Default returns only open alerts.",
)
async def list_alerts(
    page: int = 1,
    page_size: int = 25,
    severity: Optional[str] = None,
    alert_type: Optional[str] = None,
    status_filter: Optional[str] = None,
    user_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    conditions = []

    if severity:
        if severity.lower() not in VALID_SEVERITIES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid severity. Allowed: {sorted(VALID_SEVERITIES)}",
            )
        conditions.append(FraudAlert.severity == severity.lower())

    if alert_type:
        conditions.append(FraudAlert.alert_type == alert_type)

    if user_id:
        conditions.append(FraudAlert.user_id == user_id)

    if status_filter:
        if status_filter.lower() not in VALID_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid status. Allowed: {sorted(VALID_STATUSES)}",
            )
        conditions.append(FraudAlert.status == status_filter.lower())
    else:
        conditions.append(FraudAlert.status == "open")  # default: open only

    where = and_(*conditions)
    count_stmt = select(func.count()).select_from(select(FraudAlert).where(where).subquery())
    total: int = (await db.execute(count_stmt)).scalar() or 0

    page = max(page, 1)
    page_size = min(max(page_size, 1), 200)
    stmt = (
        select(FraudAlert)
        .where(where)
        .order_by(FraudAlert.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(stmt)
    alerts = list(result.scalars())

    return AlertListResponse(
        total=total,
        page=page,
        page_size=page_size,
        items=[FraudAlertResponse.model_validate(a) for a in alerts],
    )


# ===========================================================================
# GET  /api/v1/alerts/{alert_id}
# ===========================================================================
@router.get(
    "/{alert_id}",
    response_model=FraudAlertResponse,
    summary="Get Alert Detail",
    description="Retrieve full details of a specific alert.",
)
async def get_alert(
    alert_id: str,
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(FraudAlert).where(FraudAlert.id == alert_id))
    alert = result.scalar_one_or_none()

    if not alert:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Alert {alert_id} not found",
        )

    return FraudAlertResponse.model_validate(alert)
