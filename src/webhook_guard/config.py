"""Runtime configuration read from Lambda environment variables.

Secrets are not part of this object; they are fetched from SSM Parameter
Store by the secret provider at first use.
"""

import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field

from .models.enums import DiscrepancyKind, PolicyAction, Severity

# Kinds the sweep can never write toward, whatever the configuration says
ALERT_ONLY_KINDS = frozenset(
    {
        DiscrepancyKind.AMOUNT_DIVERGENCE,
        DiscrepancyKind.MISSING_UPSTREAM,
        DiscrepancyKind.UNPROCESSED_EVENT,
        DiscrepancyKind.FAILED_EVENT,
        DiscrepancyKind.STUCK_EVENT,
    }
)

DEFAULT_POLICY: dict[DiscrepancyKind, PolicyAction] = {
    DiscrepancyKind.MISSING_LOCALLY: PolicyAction.ALERT,
    DiscrepancyKind.MISSING_UPSTREAM: PolicyAction.ALERT,
    DiscrepancyKind.STATUS_DIVERGENCE: PolicyAction.CORRECT,
    DiscrepancyKind.AMOUNT_DIVERGENCE: PolicyAction.ALERT,
    DiscrepancyKind.UNPROCESSED_EVENT: PolicyAction.ALERT,
    DiscrepancyKind.FAILED_EVENT: PolicyAction.ALERT,
    DiscrepancyKind.STUCK_EVENT: PolicyAction.ALERT,
}


def parse_policy(raw: str | None) -> dict[DiscrepancyKind, PolicyAction]:
    """Parse ``kind=action`` overrides on top of the default policy.

    Example: ``missing_locally=correct,status_divergence=alert``.
    Alert-only kinds cannot be set to ``correct``.

    Args:
        raw: Comma-separated overrides, or None

    Returns:
        Complete policy mapping

    Raises:
        ValueError: If a kind or action is not recognised, or an alert-only
            kind is set to ``correct``.
    """
    policy = dict(DEFAULT_POLICY)
    if not raw:
        return policy

    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        kind_label, _, action_label = entry.partition("=")
        kind = DiscrepancyKind(kind_label.strip())
        action = PolicyAction(action_label.strip())
        if kind in ALERT_ONLY_KINDS and action is PolicyAction.CORRECT:
            raise ValueError(f"{kind.value} can only be alerted, not corrected")
        policy[kind] = action

    return policy


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


class GuardConfig(BaseModel):
    """Settings shared by the authorizer, the sweep and the HTTP ingress."""

    model_config = ConfigDict(frozen=True)

    environment: str = "dev"
    secret_namespace: str = "webhooks"

    # Authorization gateway
    stripe_timestamp_tolerance: int = Field(default=300, ge=0)
    allow_ttl_seconds: int = Field(default=300, ge=0)
    deny_ttl_seconds: int = Field(default=60, ge=0)
    dedup_ttl_days: int = Field(default=30, ge=1)
    trust_declared_provider: bool = False

    # Reconciliation sweep
    reconciliation_job_id: str = "stripe-reconciliation"
    reconciliation_window_hours: int = Field(default=24, ge=1)
    reconciliation_page_size: int = Field(default=100, ge=1, le=100)
    reconciliation_lock_seconds: int = Field(default=900, ge=60)
    processing_stuck_seconds: int = Field(default=300, ge=1)
    alert_severity: Severity = Severity.HIGH
    policy: dict[DiscrepancyKind, PolicyAction] = Field(
        default_factory=lambda: dict(DEFAULT_POLICY)
    )
    alert_topic_arn: str | None = None
    metrics_namespace: str = "WebhookGuard/Reconciliation"

    @property
    def dedup_ttl_seconds(self) -> int:
        return self.dedup_ttl_days * 24 * 60 * 60

    def secret_parameter(self, provider: str) -> str:
        """SSM path of the webhook signing secret for a provider."""
        return f"/{self.secret_namespace}/{self.environment}/webhooks/{provider}/secret"

    @property
    def stripe_api_key_parameter(self) -> str:
        return f"/{self.secret_namespace}/{self.environment}/stripe/secret_key"

    def policy_for(self, kind: DiscrepancyKind) -> PolicyAction:
        return self.policy.get(kind, PolicyAction.ALERT)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "GuardConfig":
        """Build configuration from environment variables.

        Args:
            environ: Mapping to read instead of os.environ (for tests)

        Returns:
            GuardConfig with defaults for unset variables.
        """
        env = os.environ if environ is None else environ

        def _int(name: str, default: int) -> int:
            value = env.get(name)
            return int(value) if value else default

        return cls(
            environment=env.get("ENVIRONMENT") or "dev",
            secret_namespace=env.get("SECRET_NAMESPACE") or "webhooks",
            stripe_timestamp_tolerance=_int("STRIPE_TIMESTAMP_TOLERANCE", 300),
            allow_ttl_seconds=_int("AUTH_ALLOW_TTL_SECONDS", 300),
            deny_ttl_seconds=_int("AUTH_DENY_TTL_SECONDS", 60),
            dedup_ttl_days=_int("WEBHOOK_DEDUP_TTL_DAYS", 30),
            trust_declared_provider=_flag(env.get("WEBHOOK_TRUST_DECLARED_PROVIDER")),
            reconciliation_job_id=env.get("RECONCILIATION_JOB_ID") or "stripe-reconciliation",
            reconciliation_window_hours=_int("RECONCILIATION_WINDOW_HOURS", 24),
            reconciliation_page_size=_int("RECONCILIATION_PAGE_SIZE", 100),
            reconciliation_lock_seconds=_int("RECONCILIATION_LOCK_SECONDS", 900),
            processing_stuck_seconds=_int("RECONCILIATION_STUCK_SECONDS", 300),
            alert_severity=Severity(env.get("RECONCILIATION_ALERT_SEVERITY") or "HIGH"),
            policy=parse_policy(env.get("RECONCILIATION_POLICY")),
            alert_topic_arn=env.get("ALERT_TOPIC_ARN") or None,
            metrics_namespace=env.get("METRICS_NAMESPACE") or "WebhookGuard/Reconciliation",
        )
