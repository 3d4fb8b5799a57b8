"""Pytest configuration and fixtures for webhook guard tests.

This module provides reusable fixtures for testing:
- DynamoDB, SSM, SNS and CloudWatch mocking with moto
- Signed webhook payloads for each provider
- Wired gateway and sweep components on a fixed clock
"""

import json
import os
from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import MagicMock

import boto3
import pytest
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-guard")
os.environ.setdefault("ENVIRONMENT", "test")

if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from webhook_guard.config import GuardConfig  # noqa: E402
from webhook_guard.dependencies import reset_services  # noqa: E402
from webhook_guard.services.alerting import AlertPublisher  # noqa: E402
from webhook_guard.services.authorization import AuthorizationGateway  # noqa: E402
from webhook_guard.services.dedup import DeduplicationStore  # noqa: E402
from webhook_guard.services.dynamodb import DynamoDBService  # noqa: E402
from webhook_guard.services.ledger import LocalLedger  # noqa: E402
from webhook_guard.services.secrets import WebhookSecretProvider  # noqa: E402
from webhook_guard.services.ssm_service import SSMService  # noqa: E402
from webhook_guard.services.stripe_service import EventPage, StripeService  # noqa: E402
from webhook_guard.services.sweep_state import SweepStateStore  # noqa: E402

from helpers import (  # noqa: E402
    ALERT_TOPIC_ARN,
    FIXED_NOW,
    GITHUB_SECRET,
    SHOPIFY_SECRET,
    STRIPE_SECRET,
    TABLE_PREFIX,
    TEST_ENVIRONMENT,
    payment_intent,
    stripe_event,
)

# === Service Cache ===


@pytest.fixture(autouse=True)
def reset_cached_services() -> Generator[None, None, None]:
    """Clear lru_cache service factories before and after each test.

    Ensures services are built inside the active mock_aws context rather
    than reused from a previous test.
    """
    reset_services()
    yield
    reset_services()


# === AWS Fixtures ===


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS Credentials for moto."""
    if not os.environ.get("AWS_PROFILE"):
        os.environ["AWS_ACCESS_KEY_ID"] = "testing"
        os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
        os.environ["AWS_SECURITY_TOKEN"] = "testing"
        os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"


@pytest.fixture
def aws(aws_credentials: None) -> Generator[None, None, None]:
    """Run the test inside a moto mock_aws context."""
    with mock_aws():
        yield


def _simple_table(name: str, key: str) -> dict[str, Any]:
    return {
        "TableName": f"{TABLE_PREFIX}-{name}",
        "KeySchema": [{"AttributeName": key, "KeyType": "HASH"}],
        "AttributeDefinitions": [{"AttributeName": key, "AttributeType": "S"}],
        "BillingMode": "PAY_PER_REQUEST",
    }


def _table_with_index(name: str, key: str, index_key: str) -> dict[str, Any]:
    return {
        "TableName": f"{TABLE_PREFIX}-{name}",
        "KeySchema": [{"AttributeName": key, "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": key, "AttributeType": "S"},
            {"AttributeName": index_key, "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [
            {
                "IndexName": f"{index_key}-index",
                "KeySchema": [{"AttributeName": index_key, "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
        "BillingMode": "PAY_PER_REQUEST",
    }


@pytest.fixture
def create_tables(aws: None) -> None:
    """Create all required DynamoDB tables for testing."""
    client = boto3.client("dynamodb", region_name="eu-west-1")
    tables = [
        _simple_table("processed-webhooks", "event_id"),
        _table_with_index("transactions", "transaction_id", "payment_intent_id"),
        _table_with_index("user-profiles", "user_id", "stripe_account_id"),
        _simple_table("reconciliation-findings", "finding_id"),
        _simple_table("reconciliation-corrections", "correction_id"),
        _simple_table("reconciliation-jobs", "job_id"),
    ]
    for table in tables:
        client.create_table(**table)


@pytest.fixture
def db(create_tables: None) -> DynamoDBService:
    """DynamoDB service bound to the mocked tables."""
    return DynamoDBService(TEST_ENVIRONMENT)


@pytest.fixture
def table(create_tables: None) -> Callable[[str], Any]:
    """Access a mocked table by its unprefixed name."""
    resource = boto3.resource("dynamodb", region_name="eu-west-1")
    return lambda name: resource.Table(f"{TABLE_PREFIX}-{name}")


@pytest.fixture
def ssm_secrets(aws: None) -> SSMService:
    """Store webhook secrets and the Stripe API key in mocked SSM."""
    client = boto3.client("ssm", region_name="eu-west-1")
    parameters = {
        f"/webhooks/{TEST_ENVIRONMENT}/webhooks/stripe/secret": STRIPE_SECRET,
        f"/webhooks/{TEST_ENVIRONMENT}/webhooks/github/secret": GITHUB_SECRET,
        f"/webhooks/{TEST_ENVIRONMENT}/webhooks/shopify/secret": SHOPIFY_SECRET,
        f"/webhooks/{TEST_ENVIRONMENT}/stripe/secret_key": "sk_test_abc123",
    }
    for name, value in parameters.items():
        client.put_parameter(Name=name, Value=value, Type="SecureString")
    return SSMService(client)


# === Component Fixtures ===


@pytest.fixture
def clock() -> Callable[[], float]:
    """Fixed clock at FIXED_NOW."""
    return lambda: float(FIXED_NOW)


@pytest.fixture
def config() -> GuardConfig:
    """Default configuration for the test environment."""
    return GuardConfig(environment=TEST_ENVIRONMENT)


@pytest.fixture
def dedup_store(db: DynamoDBService, clock: Callable[[], float]) -> DeduplicationStore:
    return DeduplicationStore(db, ttl_seconds=30 * 24 * 60 * 60, clock=clock)


@pytest.fixture
def gateway(
    ssm_secrets: SSMService,
    dedup_store: DeduplicationStore,
    config: GuardConfig,
    clock: Callable[[], float],
) -> AuthorizationGateway:
    """Gateway wired to mocked SSM and DynamoDB on the fixed clock."""
    return AuthorizationGateway(
        secrets=WebhookSecretProvider(ssm_secrets, config),
        dedup=dedup_store,
        config=config,
        clock=clock,
    )


@pytest.fixture
def ledger(db: DynamoDBService) -> LocalLedger:
    return LocalLedger(db)


@pytest.fixture
def sweep_state(db: DynamoDBService) -> SweepStateStore:
    return SweepStateStore(db)


@pytest.fixture
def upstream() -> MagicMock:
    """Stripe service double returning a single empty page by default."""
    mock = MagicMock(spec=StripeService)
    mock.list_events.return_value = EventPage(events=[], has_more=False)
    mock.retrieve_payment_intent.return_value = None
    return mock


@pytest.fixture
def sns_client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def alerts(sns_client: MagicMock) -> AlertPublisher:
    return AlertPublisher(ALERT_TOPIC_ARN, TEST_ENVIRONMENT, client=sns_client)


# === Sample Data Fixtures ===


@pytest.fixture
def stripe_payload() -> bytes:
    """Raw Stripe event body as it arrives on the wire."""
    event = stripe_event("evt_test_123", "payment_intent.succeeded", payment_intent())
    return json.dumps(event).encode("utf-8")
