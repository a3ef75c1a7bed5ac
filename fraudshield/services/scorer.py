"""
FraudShield — Risk Scoring Orchestrator

Pulls together every scoring signal, produces a single composite score and a
decision, then hands the outcome to the decision recorder:

    1. Load active rules                      → RuleStore
    2. Run one evaluator per rule type        → RiskFactors
    3. Aggregate                              → score + action + status
    4. Persist velocity, payment intent, alerts (best-effort)
"""

import logging
import time
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from fraudshield.config import settings
from fraudshield.models.domain import (
    EvaluationResult,
    FraudStatus,
    PersistedOutcome,
    RiskFactor,
    RuleAction,
    TransactionContext,
)
from fraudshield.rules.conditions import ActiveRule
from fraudshield.rules.engine import EvaluationSignals, evaluate_rules
from fraudshield.services.errors import FailurePolicy, RuleStoreError
from fraudshield.services.observability import Metrics, log_evaluation
from fraudshield.services.recorder import DecisionRecorder
from fraudshield.services.store import RuleStore, TransactionStore
from fraudshield.services.velocity import VelocityTracker

logger = logging.getLogger("fraudshield.scorer")


# ===========================================================================
# Aggregation
# ===========================================================================
def aggregate(risk_factors: Iterable[RiskFactor]) -> EvaluationResult:
    """
    Combine risk factors into a bounded score and a decision.

    Precedence, highest first:
        any rule declared block                      → block     / blocked
        any rule declared review, or score ≥ review  → review    / review
        score ≥ challenge, or a rule declared it     → challenge / clean
        otherwise                                    → allow     / clean

    Depends only on the set of factors, never on their order.
    """
    factors: List[RiskFactor] = list(risk_factors)
    raw = sum(f.score for f in factors)
    score = max(0, min(settings.SCORE_MAX, raw))
    declared = {f.action for f in factors}

    if RuleAction.BLOCK in declared:
        action, status = RuleAction.BLOCK, FraudStatus.BLOCKED
    elif RuleAction.REVIEW in declared or score >= settings.SCORE_REVIEW_THRESHOLD:
        action, status = RuleAction.REVIEW, FraudStatus.REVIEW
    elif RuleAction.CHALLENGE in declared or score >= settings.SCORE_CHALLENGE_THRESHOLD:
        action, status = RuleAction.CHALLENGE, FraudStatus.CLEAN
    else:
        action, status = RuleAction.ALLOW, FraudStatus.CLEAN

    return EvaluationResult(
        composite_score=score,
        status=status,
        action=action,
        risk_factors=factors,
    )


def _fail_closed_result() -> EvaluationResult:
    return EvaluationResult(
        composite_score=0,
        status=FraudStatus.BLOCKED,
        action=RuleAction.BLOCK,
        risk_factors=[],
    )


# ===========================================================================
# Core orchestration
# ===========================================================================
class FraudEngine:
    """One evaluation per call; holds no state between calls."""

    def __init__(
        self,
        db: AsyncSession,
        rule_store_policy: Optional[FailurePolicy] = None,
        signal_policy: Optional[FailurePolicy] = None,
    ):
        self._rules = RuleStore(db)
        self._store = TransactionStore(db)
        self._velocity = VelocityTracker(self._store)
        self._signals = EvaluationSignals(velocity=self._velocity, history=self._store)
        self._recorder = DecisionRecorder(self._store, self._velocity)
        self._rule_store_policy = rule_store_policy or FailurePolicy(settings.RULE_STORE_FAILURE_POLICY)
        self._signal_policy = signal_policy or FailurePolicy(settings.SIGNAL_FAILURE_POLICY)

    async def evaluate(
        self,
        context: TransactionContext,
        now: Optional[datetime] = None,
    ) -> PersistedOutcome:
        """
        Score *context* and record the outcome.

        Raises RuleStoreError when rules cannot be loaded and the rule-store
        policy is RAISE; every other collaborator failure degrades instead.
        """
        started = time.perf_counter()
        now = now or datetime.now(timezone.utc)

        rules = await self._load_rules()
        if rules is None:
            result = _fail_closed_result()
        else:
            factors = await evaluate_rules(context, rules, self._signals, now, self._signal_policy)
            result = aggregate(factors)

        outcome = await self._recorder.record(context, result, now)

        duration_ms = (time.perf_counter() - started) * 1_000
        log_evaluation(
            outcome.payment_intent_id,
            result.action.value,
            result.composite_score,
            len(result.risk_factors),
            duration_ms,
        )
        logger.info(
            "Evaluated user=%s amount=%.2f %s score=%d status=%s action=%s",
            context.user_id, context.amount, context.currency,
            result.composite_score, result.status.value, result.action.value,
        )
        return outcome

    async def _load_rules(self) -> Optional[List[ActiveRule]]:
        """Active rules, or None when the store is down and the policy fails closed."""
        try:
            return await self._rules.list_active_rules()
        except RuleStoreError:
            Metrics.rule_store_failures_total.labels(policy=self._rule_store_policy.value).inc()
            if self._rule_store_policy is FailurePolicy.FAIL_CLOSED:
                logger.error("Rule store unavailable, failing closed (transaction blocked).", exc_info=True)
                return None
            raise
