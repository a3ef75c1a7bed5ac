"""
FraudShield — Fraud Rules API  (read-only)
GET    /api/v1/rules            → list all rules (with active/inactive filter)
GET    /api/v1/rules/{rule_id}  → single rule

Rules are authored by the rule-management tooling.  This view reports, for
each stored rule, whether its condition validates for its rule type; an
invalid rule is skipped at evaluation time.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fraudshield.models.models import FraudRule
from fraudshield.models.schemas import FraudRuleResponse
from fraudshield.rules.conditions import load_rule
from fraudshield.services.db import get_db
from fraudshield.services.errors import RuleConfigurationError

logger = logging.getLogger("fraudshield.api.rules")
router = APIRouter()


# ===========================================================================
# GET  /api/v1/rules
# ===========================================================================
@router.get(
    "/",
    response_model=list[FraudRuleResponse],
    summary="List All Fraud Rules",
)
async def list_rules(
    active_only: bool = False,
    db: AsyncSession = Depends(get_db),
):
    stmt = select(FraudRule)
    if active_only:
        stmt = stmt.where(FraudRule.is_active.is_(True))
    stmt = stmt.order_by(FraudRule.priority.asc(), FraudRule.name.asc())
    result = await db.execute(stmt)
    return [_to_response(r) for r in result.scalars()]


# ===========================================================================
# GET  /api/v1/rules/{rule_id}
# ===========================================================================
@router.get(
    "/{rule_id}",
    response_model=FraudRuleResponse,
    summary="Get a Fraud Rule",
)
async def get_rule(rule_id: str, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(FraudRule).where(FraudRule.id == rule_id))
    rule = result.scalar_one_or_none()
    if rule is None:
        raise HTTPException(status_code=404, detail=f"Rule {rule_id} not found.")
    return _to_response(rule)


# ===========================================================================
# Helper
# ===========================================================================
def _to_response(rule: FraudRule) -> FraudRuleResponse:
    response = FraudRuleResponse.model_validate(rule)
    try:
        load_rule(rule)
    except RuleConfigurationError as exc:
        response.condition_valid = False
        response.validation_error = str(exc)
    return response
