"""Pydantic models for webhook authorization and reconciliation."""

from .enums import (
    CorrectiveAction,
    DiscrepancyKind,
    DuplicateAdvisory,
    PolicyAction,
    ProcessingStatus,
    Severity,
    SweepStatus,
    TransactionStatus,
    WebhookProvider,
)
from .errors import (
    ERROR_MESSAGES,
    ERROR_RECOVERY,
    ConfigurationError,
    DedupStoreUnavailable,
    ErrorCode,
    ReconciliationRunFailure,
    UpstreamApiError,
    WebhookGuardError,
)
from .reconciliation import ReconciliationRecord, SweepReport, SweepState
from .webhook import (
    AuthorizationDecision,
    ProcessedWebhookRecord,
    ResolverContext,
    VerificationResult,
    WebhookRequest,
    format_authorization_token,
    parse_authorization_token,
)

__all__ = [
    # Enums
    "CorrectiveAction",
    "DiscrepancyKind",
    "DuplicateAdvisory",
    "PolicyAction",
    "ProcessingStatus",
    "Severity",
    "SweepStatus",
    "TransactionStatus",
    "WebhookProvider",
    # Errors
    "ERROR_MESSAGES",
    "ERROR_RECOVERY",
    "ConfigurationError",
    "DedupStoreUnavailable",
    "ErrorCode",
    "ReconciliationRunFailure",
    "UpstreamApiError",
    "WebhookGuardError",
    # Reconciliation
    "ReconciliationRecord",
    "SweepReport",
    "SweepState",
    # Webhook
    "AuthorizationDecision",
    "ProcessedWebhookRecord",
    "ResolverContext",
    "VerificationResult",
    "WebhookRequest",
    "format_authorization_token",
    "parse_authorization_token",
]
