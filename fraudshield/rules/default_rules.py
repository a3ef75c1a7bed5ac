"""
FraudShield — Default Fraud Rules (seed data)
These are inserted at first-run if the fraud_rules table is empty.
One rule of each type; amounts are in the transaction currency.
"""

# Each dict maps directly onto FraudRule columns.
# 'condition' is validated per rule_type by rules/conditions.py

DEFAULT_RULES = [
    # ---------------------------------------------------------------
    # 1. Burst of payments within the hour
    # ---------------------------------------------------------------
    {
        "name": "Hourly Velocity Limit",
        "description": "More than 5 payments, or 10 000 in total, within the current hour.",
        "rule_type": "velocity",
        "condition": {"period": "hour", "max_transactions": 5, "max_amount": 10_000},
        "action": "block",
        "severity": "critical",
        "priority": 10,
        "alert_type": "velocity_limit",
    },
    # ---------------------------------------------------------------
    # 2. Large single payment
    # ---------------------------------------------------------------
    {
        "name": "Large Transaction",
        "description": "Single payment at or above 5 000.",
        "rule_type": "amount",
        "condition": {"threshold": 5_000},
        "action": "review",
        "severity": "medium",
        "priority": 20,
        "alert_type": "amount_anomaly",
    },
    # ---------------------------------------------------------------
    # 3. Repeated failed payments
    # ---------------------------------------------------------------
    {
        "name": "Repeated Failures",
        "description": "Three or more failed payments in the last 24 hours.",
        "rule_type": "failure",
        "condition": {"period": "day", "max_failures": 3},
        "action": "review",
        "severity": "high",
        "priority": 30,
        "alert_type": "multiple_failures",
    },
    # ---------------------------------------------------------------
    # 4. Impossible travel
    # ---------------------------------------------------------------
    {
        "name": "Impossible Travel",
        "description": "Payment more than 500 km away from one made in the last hour.",
        "rule_type": "geolocation",
        "condition": {"max_distance_km": 500, "period_minutes": 60},
        "action": "review",
        "severity": "high",
        "priority": 40,
        "alert_type": "geolocation_anomaly",
    },
    # ---------------------------------------------------------------
    # 5. Unrecognised device on a sizeable payment
    # ---------------------------------------------------------------
    {
        "name": "New Device",
        "description": "Payment of 1 000 or more from a device with no successful payment history.",
        "rule_type": "device",
        "condition": {"new_device_threshold": 1_000},
        "action": "challenge",
        "severity": "medium",
        "priority": 50,
        "alert_type": "device_mismatch",
    },
    # ---------------------------------------------------------------
    # 6. Night-time activity (UTC)
    # ---------------------------------------------------------------
    {
        "name": "Night-Time Activity",
        "description": "Payment between 00:00 and 05:00 UTC.",
        "rule_type": "time",
        "condition": {"start_hour": 0, "end_hour": 5, "threshold_multiplier": 1.5},
        "action": "challenge",
        "severity": "low",
        "priority": 60,
        "alert_type": "time_anomaly",
    },
]
