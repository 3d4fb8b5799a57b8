"""Backend services for webhook authorization and reconciliation."""

from .alerting import AlertPublisher, MetricsPublisher
from .authorization import AuthorizationGateway
from .dedup import DeduplicationStore
from .dynamodb import DynamoDBService
from .ledger import LocalLedger
from .reconciliation import ReconciliationSweep
from .secrets import WebhookSecretProvider
from .ssm_service import SSMService, SSMServiceError
from .stripe_service import EventPage, StripeService, StripeServiceError
from .sweep_state import SweepStateStore

__all__ = [
    "AlertPublisher",
    "AuthorizationGateway",
    "DeduplicationStore",
    "DynamoDBService",
    "EventPage",
    "LocalLedger",
    "MetricsPublisher",
    "ReconciliationSweep",
    "SSMService",
    "SSMServiceError",
    "StripeService",
    "StripeServiceError",
    "SweepStateStore",
    "WebhookSecretProvider",
]
