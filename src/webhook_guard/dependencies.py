"""Process-wide service construction.

Factory functions cached with @lru_cache so each Lambda container (or API
process) builds its AWS clients once. Lambda handlers and FastAPI routes
both resolve their collaborators here.

Service Dependency Graph:
    GuardConfig
    DynamoDBService
        ├── DeduplicationStore
        ├── LocalLedger
        └── SweepStateStore
    SSMService
        ├── WebhookSecretProvider ── AuthorizationGateway (+ DeduplicationStore)
        └── StripeService ── ReconciliationSweep (+ ledger, dedup, state, alerts, metrics)

Testing:
    Use reset_services() to clear cached instances between tests.
"""

from functools import lru_cache

from .config import GuardConfig
from .services.alerting import AlertPublisher, MetricsPublisher
from .services.authorization import AuthorizationGateway
from .services.dedup import DeduplicationStore
from .services.dynamodb import DynamoDBService
from .services.ledger import LocalLedger
from .services.reconciliation import ReconciliationSweep
from .services.secrets import WebhookSecretProvider
from .services.ssm_service import SSMService
from .services.stripe_service import StripeService
from .services.sweep_state import SweepStateStore


@lru_cache
def get_config() -> GuardConfig:
    """Get cached configuration read from the environment."""
    return GuardConfig.from_env()


@lru_cache
def get_dynamodb_service() -> DynamoDBService:
    return DynamoDBService(get_config().environment)


@lru_cache
def get_ssm_service() -> SSMService:
    # A rotated secret must be visible before a denied delivery is retried
    return SSMService(cache_ttl_seconds=get_config().deny_ttl_seconds)


@lru_cache
def get_dedup_store() -> DeduplicationStore:
    """Get cached DeduplicationStore instance.

    Returns:
        DeduplicationStore with the configured TTL.
    """
    return DeduplicationStore(get_dynamodb_service(), get_config().dedup_ttl_seconds)


@lru_cache
def get_gateway() -> AuthorizationGateway:
    """Get cached AuthorizationGateway instance.

    Returns:
        AuthorizationGateway configured with SSM secrets and the dedup store.
    """
    config = get_config()
    return AuthorizationGateway(
        secrets=WebhookSecretProvider(get_ssm_service(), config),
        dedup=get_dedup_store(),
        config=config,
    )


@lru_cache
def get_sweep() -> ReconciliationSweep:
    """Get cached ReconciliationSweep instance.

    Returns:
        ReconciliationSweep wired to Stripe, DynamoDB, SNS and CloudWatch.
    """
    config = get_config()
    db = get_dynamodb_service()
    return ReconciliationSweep(
        upstream=StripeService(get_ssm_service(), config),
        ledger=LocalLedger(db),
        dedup=get_dedup_store(),
        state=SweepStateStore(db),
        alerts=AlertPublisher(config.alert_topic_arn, config.environment),
        config=config,
        metrics=MetricsPublisher(config.metrics_namespace, config.environment),
    )


def reset_services() -> None:
    """Clear all cached service instances.

    Call this in test fixtures to ensure clean state between tests.

    Example:
        @pytest.fixture(autouse=True)
        def reset_state():
            yield
            reset_services()
    """
    get_config.cache_clear()
    get_dynamodb_service.cache_clear()
    get_ssm_service.cache_clear()
    get_dedup_store.cache_clear()
    get_gateway.cache_clear()
    get_sweep.cache_clear()
