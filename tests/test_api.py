"""
HTTP API, end to end against in-memory SQLite.
"""

import uuid
from unittest.mock import AsyncMock, patch

import pytest

from fraudshield.models.models import FraudRule
from fraudshield.services.errors import RuleStoreError

EVALUATE = "/api/v1/transactions/evaluate"

LONDON = {"lat": 51.5074, "lon": -0.1278, "country": "GB", "city": "London"}
TOKYO = {"lat": 35.6762, "lon": 139.6503, "country": "JP", "city": "Tokyo"}


def _make_rule(**kwargs) -> FraudRule:
    defaults = dict(
        id=str(uuid.uuid4()),
        name="Test Rule",
        rule_type="amount",
        condition={"threshold": 500},
        action="review",
        severity="medium",
        priority=100,
        alert_type="amount_anomaly",
        is_active=True,
    )
    defaults.update(kwargs)
    return FraudRule(**defaults)


async def _seed(db_session, *rules):
    for rule in rules:
        db_session.add(rule)
    await db_session.commit()


# ===========================================================================
# ── Scenarios ───────────────────────────────────────────────────────────────
# ===========================================================================
@pytest.mark.asyncio
class TestEvaluateScenarios:
    async def test_sixth_transaction_in_the_hour_is_blocked(self, client, db_session):
        await _seed(db_session, _make_rule(
            name="Hourly Velocity Limit",
            rule_type="velocity",
            condition={"period": "hour", "max_transactions": 5},
            action="block",
            severity="critical",
            alert_type="velocity_limit",
        ))

        for _ in range(5):
            resp = await client.post(EVALUATE, json={"user_id": "user_vel", "amount": 100.0})
            assert resp.status_code == 200
            assert resp.json()["action"] == "allow"

        resp = await client.post(EVALUATE, json={"user_id": "user_vel", "amount": 100.0})
        body = resp.json()
        assert body["action"] == "block"
        assert body["fraud_status"] == "blocked"
        assert body["allowed"] is False
        assert body["fraud_score"] == 50
        assert [f["rule_name"] for f in body["risk_factors"]] == ["Hourly Velocity Limit"]

        detail = (await client.get(f"/api/v1/transactions/{body['payment_intent_id']}")).json()
        assert detail["payment_intent"]["status"] == "failed"
        assert [a["alert_type"] for a in detail["alerts"]] == ["velocity_limit"]

    async def test_new_device_large_amount_is_challenged(self, client, db_session):
        await _seed(db_session, _make_rule(
            name="New Device",
            rule_type="device",
            condition={"new_device_threshold": 10_000},
            action="challenge",
            severity="medium",
            alert_type="device_mismatch",
        ))

        resp = await client.post(EVALUATE, json={
            "user_id": "user_dev",
            "amount": 50_000.0,
            "device_fingerprint": "fp-never-seen",
        })

        body = resp.json()
        assert body["action"] == "challenge"
        assert body["fraud_status"] == "clean"
        assert body["allowed"] is True
        assert body["fraud_score"] == 15

    async def test_impossible_travel_adds_one_geo_factor(self, client, db_session):
        await _seed(db_session, _make_rule(
            name="Impossible Travel",
            rule_type="geolocation",
            condition={"max_distance_km": 500, "period_minutes": 60},
            action="review",
            severity="high",
            alert_type="geolocation_anomaly",
        ))

        for _ in range(2):
            resp = await client.post(EVALUATE, json={"user_id": "user_geo", "amount": 20.0, "geolocation": LONDON})
            assert resp.json()["risk_factors"] == []

        resp = await client.post(EVALUATE, json={"user_id": "user_geo", "amount": 20.0, "geolocation": TOKYO})

        body = resp.json()
        geo_factors = [f for f in body["risk_factors"] if f["rule_name"] == "Impossible Travel"]
        assert len(geo_factors) == 1
        assert "km within 60 minutes" in geo_factors[0]["details"]
        assert body["action"] == "review"

        alerts = (await client.get("/api/v1/alerts/", params={"alert_type": "geolocation_anomaly"})).json()
        assert alerts["total"] == 1
        assert alerts["items"][0]["severity"] == "high"

    async def test_all_rules_inactive_allows(self, client, db_session):
        await _seed(
            db_session,
            _make_rule(is_active=False, action="block", condition={"threshold": 1}),
            _make_rule(is_active=False, rule_type="time", condition={"start_hour": 0, "end_hour": 24}),
        )

        resp = await client.post(EVALUATE, json={"user_id": "user_quiet", "amount": 9_999.0})

        body = resp.json()
        assert body["action"] == "allow"
        assert body["fraud_score"] == 0
        assert body["risk_factors"] == []

    async def test_failed_attempts_trigger_failure_rule(self, client, db_session):
        await _seed(
            db_session,
            _make_rule(name="Blocker", condition={"threshold": 1000}, action="block"),
            _make_rule(
                name="Repeated Failures",
                rule_type="failure",
                condition={"period": "day", "max_failures": 2},
                action="review",
                severity="high",
            ),
        )

        for _ in range(2):
            resp = await client.post(EVALUATE, json={"user_id": "user_fail", "amount": 2000.0})
            assert resp.json()["action"] == "block"

        body = (await client.post(EVALUATE, json={"user_id": "user_fail", "amount": 10.0})).json()
        assert [f["rule_name"] for f in body["risk_factors"]] == ["Repeated Failures"]
        assert body["action"] == "review"


# ===========================================================================
# ── Errors ──────────────────────────────────────────────────────────────────
# ===========================================================================
@pytest.mark.asyncio
class TestEvaluateErrors:
    async def test_invalid_payload_is_validation_error(self, client):
        resp = await client.post(EVALUATE, json={"user_id": "user_001", "amount": -5})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    async def test_invalid_ip_rejected(self, client):
        resp = await client.post(EVALUATE, json={"user_id": "user_001", "amount": 5, "ip_address": "999.1.1.1"})
        assert resp.status_code == 422

    async def test_rule_store_down_is_server_error(self, client):
        with patch(
            "fraudshield.services.scorer.RuleStore.list_active_rules",
            AsyncMock(side_effect=RuleStoreError("connection refused")),
        ):
            resp = await client.post(EVALUATE, json={"user_id": "user_001", "amount": 5})

        assert resp.status_code == 500
        error = resp.json()["error"]
        assert error["code"] == "server_error"
        assert "connection refused" not in error["message"]
        assert error["request_id"] == resp.headers["X-Request-Id"]


# ===========================================================================
# ── Read endpoints ──────────────────────────────────────────────────────────
# ===========================================================================
@pytest.mark.asyncio
class TestTransactionsAPI:
    async def test_list_and_filter(self, client, db_session):
        await _seed(db_session, _make_rule(condition={"threshold": 1000}, action="block"))
        await client.post(EVALUATE, json={"user_id": "user_a", "amount": 10.0, "currency": "zar"})
        await client.post(EVALUATE, json={"user_id": "user_b", "amount": 5000.0})

        body = (await client.get("/api/v1/transactions/")).json()
        assert body["total"] == 2

        body = (await client.get("/api/v1/transactions/", params={"fraud_status": "blocked"})).json()
        assert [i["user_id"] for i in body["items"]] == ["user_b"]

        body = (await client.get("/api/v1/transactions/", params={"user_id": "user_a"})).json()
        assert body["items"][0]["currency"] == "ZAR"

    async def test_get_nonexistent_transaction(self, client):
        resp = await client.get("/api/v1/transactions/nonexistent-id")
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestRulesAPI:
    async def test_list_reports_condition_validity(self, client, db_session):
        await _seed(
            db_session,
            _make_rule(name="A valid", priority=1),
            _make_rule(name="B broken", priority=2, rule_type="velocity", condition={"period": "hour"}),
            _make_rule(name="C inactive", priority=3, is_active=False),
        )

        rules = (await client.get("/api/v1/rules/")).json()
        assert [r["name"] for r in rules] == ["A valid", "B broken", "C inactive"]
        assert rules[0]["condition_valid"] is True
        assert rules[1]["condition_valid"] is False
        assert rules[1]["validation_error"]

        active = (await client.get("/api/v1/rules/", params={"active_only": True})).json()
        assert len(active) == 2

    async def test_get_rule(self, client, db_session):
        rule = _make_rule()
        await _seed(db_session, rule)

        resp = await client.get(f"/api/v1/rules/{rule.id}")
        assert resp.status_code == 200
        assert resp.json()["condition"] == {"threshold": 500}

        assert (await client.get("/api/v1/rules/missing")).status_code == 404


@pytest.mark.asyncio
class TestAlertsAPI:
    async def test_list_alerts_empty(self, client):
        resp = await client.get("/api/v1/alerts/")
        assert resp.status_code == 200
        assert resp.json()["total"] == 0

    async def test_invalid_severity_filter(self, client):
        resp = await client.get("/api/v1/alerts/", params={"severity": "apocalyptic"})
        assert resp.status_code == 400

    async def test_get_alert(self, client, db_session):
        await _seed(db_session, _make_rule(severity="critical"))
        await client.post(EVALUATE, json={"user_id": "user_alert", "amount": 600.0})

        listed = (await client.get("/api/v1/alerts/", params={"severity": "critical"})).json()
        alert_id = listed["items"][0]["id"]

        alert = (await client.get(f"/api/v1/alerts/{alert_id}")).json()
        assert alert["user_id"] == "user_alert"
        assert alert["rule_triggered"] == "Test Rule"
        assert alert["status"] == "open"

    async def test_get_nonexistent_alert(self, client):
        assert (await client.get("/api/v1/alerts/fake-id")).status_code == 404


@pytest.mark.asyncio
class TestHealthAPI:
    async def test_health_returns_200(self, client):
        resp = await client.get("/api/v1/health/")
        assert resp.status_code == 200
        body = resp.json()
        assert body["db"] == "healthy"
        assert body["kafka"] == "not_configured"
        assert "version" in body
        assert "uptime_seconds" in body

    async def test_request_id_is_echoed(self, client):
        resp = await client.get("/api/v1/health/", headers={"X-Request-Id": "req-123"})
        assert resp.headers["X-Request-Id"] == "req-123"

    async def test_metrics_endpoint(self, client):
        resp = await client.get("/metrics/")
        assert resp.status_code == 200
        assert "fraudshield_evaluations_total" in resp.text
