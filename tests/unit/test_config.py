"""Unit tests for environment-driven configuration."""

import pytest

from webhook_guard.config import ALERT_ONLY_KINDS, DEFAULT_POLICY, GuardConfig, parse_policy
from webhook_guard.models.enums import DiscrepancyKind, PolicyAction, Severity


class TestParsePolicy:
    """Test kind=action policy overrides."""

    def test_empty_returns_defaults(self):
        assert parse_policy(None) == DEFAULT_POLICY
        assert parse_policy("") == DEFAULT_POLICY

    def test_defaults_never_correct_alert_only_kinds(self):
        for kind in ALERT_ONLY_KINDS:
            assert DEFAULT_POLICY[kind] is PolicyAction.ALERT

    def test_overrides_are_applied(self):
        policy = parse_policy("missing_locally=correct, status_divergence=alert")

        assert policy[DiscrepancyKind.MISSING_LOCALLY] is PolicyAction.CORRECT
        assert policy[DiscrepancyKind.STATUS_DIVERGENCE] is PolicyAction.ALERT

    @pytest.mark.parametrize("kind", sorted(k.value for k in ALERT_ONLY_KINDS))
    def test_alert_only_kinds_cannot_be_corrected(self, kind):
        """A correct override for an alert-only kind is a configuration error."""
        with pytest.raises(ValueError, match="only be alerted"):
            parse_policy(f"missing_locally=correct,{kind}=correct")

    def test_alert_only_kinds_accept_alert(self):
        policy = parse_policy("amount_divergence=alert,failed_event=alert")

        assert policy[DiscrepancyKind.AMOUNT_DIVERGENCE] is PolicyAction.ALERT
        assert policy[DiscrepancyKind.FAILED_EVENT] is PolicyAction.ALERT

    def test_blank_entries_are_ignored(self):
        assert parse_policy(",,") == DEFAULT_POLICY

    @pytest.mark.parametrize("raw", ["unknown_kind=alert", "missing_locally=ignore"])
    def test_unrecognised_values_raise(self, raw):
        with pytest.raises(ValueError):
            parse_policy(raw)


class TestGuardConfig:
    """Test defaults and environment parsing."""

    def test_defaults(self):
        config = GuardConfig()

        assert config.environment == "dev"
        assert config.stripe_timestamp_tolerance == 300
        assert config.allow_ttl_seconds == 300
        assert config.deny_ttl_seconds == 60
        assert config.dedup_ttl_seconds == 30 * 24 * 60 * 60
        assert config.trust_declared_provider is False
        assert config.reconciliation_window_hours == 24
        assert config.processing_stuck_seconds == 300
        assert config.alert_severity is Severity.HIGH
        assert config.alert_topic_arn is None

    def test_parameter_paths(self):
        config = GuardConfig(environment="prod")

        assert config.secret_parameter("stripe") == "/webhooks/prod/webhooks/stripe/secret"
        assert config.stripe_api_key_parameter == "/webhooks/prod/stripe/secret_key"

    def test_from_env(self):
        config = GuardConfig.from_env(
            {
                "ENVIRONMENT": "staging",
                "AUTH_ALLOW_TTL_SECONDS": "120",
                "AUTH_DENY_TTL_SECONDS": "10",
                "WEBHOOK_TRUST_DECLARED_PROVIDER": "true",
                "RECONCILIATION_ALERT_SEVERITY": "CRITICAL",
                "RECONCILIATION_POLICY": "missing_locally=correct",
                "RECONCILIATION_STUCK_SECONDS": "600",
                "ALERT_TOPIC_ARN": "arn:aws:sns:eu-west-1:123456789012:alerts",
            }
        )

        assert config.environment == "staging"
        assert config.allow_ttl_seconds == 120
        assert config.deny_ttl_seconds == 10
        assert config.trust_declared_provider is True
        assert config.alert_severity is Severity.CRITICAL
        assert config.policy_for(DiscrepancyKind.MISSING_LOCALLY) is PolicyAction.CORRECT
        assert config.processing_stuck_seconds == 600
        assert config.alert_topic_arn == "arn:aws:sns:eu-west-1:123456789012:alerts"

    def test_from_env_empty_values_use_defaults(self):
        config = GuardConfig.from_env({"ENVIRONMENT": "", "AUTH_ALLOW_TTL_SECONDS": "", "ALERT_TOPIC_ARN": ""})

        assert config.environment == "dev"
        assert config.allow_ttl_seconds == 300
        assert config.alert_topic_arn is None

    @pytest.mark.parametrize("value", ["0", "false", "no", "", "maybe"])
    def test_trust_flag_false_values(self, value):
        config = GuardConfig.from_env({"WEBHOOK_TRUST_DECLARED_PROVIDER": value})

        assert config.trust_declared_provider is False

    def test_page_size_is_capped(self):
        with pytest.raises(ValueError):
            GuardConfig(reconciliation_page_size=500)

    def test_from_env_rejects_correcting_alert_only_kind(self):
        with pytest.raises(ValueError):
            GuardConfig.from_env({"RECONCILIATION_POLICY": "amount_divergence=correct"})
