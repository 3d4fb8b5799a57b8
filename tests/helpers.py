"""Shared constants and builders for webhook guard tests."""

from typing import Any

FIXED_NOW = 1_700_000_000  # 2023-11-14 22:13:20 UTC
TEST_ENVIRONMENT = "test"
TABLE_PREFIX = "test-guard"

STRIPE_SECRET = "whsec_test_secret123"
GITHUB_SECRET = "gh_webhook_secret_456"
SHOPIFY_SECRET = "shpss_webhook_secret_789"

ALERT_TOPIC_ARN = "arn:aws:sns:eu-west-1:123456789012:reconciliation-alerts"


def stripe_event(
    event_id: str,
    event_type: str,
    obj: dict[str, Any],
    created: int = FIXED_NOW - 3600,
) -> dict[str, Any]:
    """Build a Stripe event envelope."""
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": created,
        "data": {"object": obj},
    }


def payment_intent(
    payment_intent_id: str = "pi_test_123",
    amount: int = 112500,
    status: str = "succeeded",
) -> dict[str, Any]:
    return {
        "id": payment_intent_id,
        "object": "payment_intent",
        "amount": amount,
        "currency": "eur",
        "status": status,
        "customer": "cus_test_abc",
        "created": FIXED_NOW - 7200,
    }


def charge(
    charge_id: str = "ch_test_123",
    payment_intent_id: str = "pi_test_123",
    amount: int = 112500,
) -> dict[str, Any]:
    return {
        "id": charge_id,
        "object": "charge",
        "amount": amount,
        "currency": "eur",
        "payment_intent": payment_intent_id,
        "created": FIXED_NOW - 7000,
    }
