"""
Rule condition parsing and the default rule set.
"""

import uuid
from types import SimpleNamespace

import pytest
from sqlalchemy import select, func

from fraudshield.models.domain import PeriodType, RuleAction, RuleType, Severity
from fraudshield.models.models import FraudRule
from fraudshield.rules.conditions import (
    DEFAULT_ALERT_TYPE,
    TimeCondition,
    VelocityCondition,
    load_rule,
)
from fraudshield.rules.default_rules import DEFAULT_RULES
from fraudshield.seed import seed
from fraudshield.services.errors import RuleConfigurationError


def _make_stored_rule(**kwargs):
    defaults = dict(
        id=str(uuid.uuid4()),
        name="Test Rule",
        rule_type="amount",
        condition={"threshold": 500},
        action="review",
        severity="medium",
        priority=100,
        alert_type=None,
    )
    defaults.update(kwargs)
    return SimpleNamespace(**defaults)


class TestLoadRule:
    def test_valid_amount_rule(self):
        rule = load_rule(_make_stored_rule())
        assert rule.rule_type is RuleType.AMOUNT
        assert rule.condition.threshold == 500
        assert rule.action is RuleAction.REVIEW
        assert rule.severity is Severity.MEDIUM
        assert rule.alert_type == DEFAULT_ALERT_TYPE

    def test_velocity_rule_parses_period(self):
        rule = load_rule(_make_stored_rule(
            rule_type="velocity",
            condition={"period": "day", "max_amount": 2000},
        ))
        assert rule.condition.period is PeriodType.DAY
        assert rule.condition.max_transactions is None

    def test_unknown_rule_type_rejected(self):
        with pytest.raises(RuleConfigurationError):
            load_rule(_make_stored_rule(rule_type="merchant"))

    def test_unknown_action_rejected(self):
        with pytest.raises(RuleConfigurationError):
            load_rule(_make_stored_rule(action="escalate"))

    def test_condition_must_be_an_object(self):
        with pytest.raises(RuleConfigurationError):
            load_rule(_make_stored_rule(condition=[1, 2, 3]))

    def test_missing_condition_key_rejected(self):
        with pytest.raises(RuleConfigurationError) as exc_info:
            load_rule(_make_stored_rule(rule_type="failure", condition={"period": "day"}))
        assert exc_info.value.rule_id

    def test_device_block_capped_to_challenge(self):
        rule = load_rule(_make_stored_rule(
            rule_type="device",
            condition={"new_device_threshold": 1000},
            action="block",
        ))
        assert rule.action is RuleAction.CHALLENGE

    def test_explicit_alert_type_kept(self):
        rule = load_rule(_make_stored_rule(alert_type="amount_anomaly"))
        assert rule.alert_type == "amount_anomaly"


class TestVelocityCondition:
    def test_needs_at_least_one_limit(self):
        with pytest.raises(ValueError):
            VelocityCondition(period="hour")

    def test_unknown_period_rejected(self):
        with pytest.raises(ValueError):
            VelocityCondition(period="year", max_transactions=3)


class TestTimeCondition:
    def test_plain_window(self):
        cond = TimeCondition(start_hour=9, end_hour=17)
        assert cond.covers(9)
        assert cond.covers(16)
        assert not cond.covers(17)
        assert not cond.covers(3)

    def test_window_wraps_past_midnight(self):
        cond = TimeCondition(start_hour=22, end_hour=4)
        assert cond.covers(23)
        assert cond.covers(0)
        assert cond.covers(3)
        assert not cond.covers(4)
        assert not cond.covers(12)

    def test_empty_window_rejected(self):
        with pytest.raises(ValueError):
            TimeCondition(start_hour=5, end_hour=5)


class TestDefaultRules:
    """Every shipped default rule must load cleanly."""

    def test_all_default_rules_are_valid(self):
        for rule_data in DEFAULT_RULES:
            load_rule(_make_stored_rule(**rule_data))

    def test_one_rule_per_type(self):
        assert sorted(r["rule_type"] for r in DEFAULT_RULES) == sorted(t.value for t in RuleType)

    def test_every_default_rule_names_its_alert_type(self):
        assert all(r["alert_type"] for r in DEFAULT_RULES)


@pytest.mark.asyncio
class TestSeed:
    async def test_seed_inserts_once(self, session_factory, db_session):
        assert await seed(session_factory) == len(DEFAULT_RULES)
        assert await seed(session_factory) == 0

        count = (await db_session.execute(select(func.count()).select_from(FraudRule))).scalar()
        assert count == len(DEFAULT_RULES)
