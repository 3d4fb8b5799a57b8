"""Enumeration types for webhook guard data models."""

from enum import Enum


class WebhookProvider(str, Enum):
    """Webhook sender identified from the signature header."""

    STRIPE = "stripe"
    GITHUB = "github"
    SHOPIFY = "shopify"
    UNKNOWN = "unknown"

    @classmethod
    def from_label(cls, label: str | None) -> "WebhookProvider":
        """Parse a provider label case-insensitively ("Stripe", "github", ...).

        Args:
            label: Provider name as sent by a caller

        Returns:
            Matching provider, UNKNOWN for anything unrecognised.
        """
        if not label:
            return cls.UNKNOWN
        try:
            return cls(label.strip().lower())
        except ValueError:
            return cls.UNKNOWN


class DuplicateAdvisory(str, Enum):
    """Dedup ledger answer surfaced to the caller of the gateway."""

    NEW = "false"
    DUPLICATE = "true"
    UNKNOWN = "unknown"  # Ledger unavailable or no event id to check


class ProcessingStatus(str, Enum):
    """Lifecycle of an authorized event in the dedup ledger."""

    AUTHORIZED = "authorized"  # Passed the gateway; no handler has claimed it
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class DiscrepancyKind(str, Enum):
    """Kind of drift found by the reconciliation sweep."""

    MISSING_LOCALLY = "missing_locally"
    MISSING_UPSTREAM = "missing_upstream"
    STATUS_DIVERGENCE = "status_divergence"
    AMOUNT_DIVERGENCE = "amount_divergence"
    UNPROCESSED_EVENT = "unprocessed_event"  # Event never reached the gateway
    FAILED_EVENT = "failed_event"  # Downstream handler reported failure
    STUCK_EVENT = "stuck_event"  # Downstream handler never finished


class Severity(str, Enum):
    """Finding severity, ordered LOW < MEDIUM < HIGH < CRITICAL."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class CorrectiveAction(str, Enum):
    """What the sweep did about a finding."""

    CORRECTED = "corrected"  # Idempotent local write applied
    ALERTED = "alerted"  # Escalated to operators
    RECORDED = "recorded"  # Logged in the findings table only


class PolicyAction(str, Enum):
    """Configured response to a discrepancy kind."""

    CORRECT = "correct"
    ALERT = "alert"


class TransactionStatus(str, Enum):
    """Status of a local payment transaction."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"
    DISPUTED = "disputed"


class SweepStatus(str, Enum):
    """Lifecycle of a reconciliation job's current window."""

    IN_PROGRESS = "in_progress"
    FAILED = "failed"
    COMPLETED = "completed"
