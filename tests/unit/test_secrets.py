"""Unit tests for SSM-backed webhook secret lookup."""

from unittest.mock import MagicMock

import boto3
import pytest
from botocore.exceptions import ClientError

from webhook_guard.config import GuardConfig
from webhook_guard.dependencies import get_ssm_service
from webhook_guard.models.enums import WebhookProvider
from webhook_guard.services.secrets import WebhookSecretProvider
from webhook_guard.services.ssm_service import SSMService, SSMServiceError

from helpers import GITHUB_SECRET, STRIPE_SECRET


def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, "GetParameter")


class TestSSMService:
    """Test parameter retrieval and caching."""

    def test_get_parameter_decrypts(self, ssm_secrets):
        value = ssm_secrets.get_parameter("/webhooks/test/webhooks/stripe/secret")

        assert value == STRIPE_SECRET

    def test_get_parameter_is_cached(self):
        client = MagicMock()
        client.get_parameter.return_value = {"Parameter": {"Value": "cached"}}
        ssm = SSMService(client)

        ssm.get_parameter("/a")
        ssm.get_parameter("/a")

        client.get_parameter.assert_called_once_with(Name="/a", WithDecryption=True)

    def test_bypass_and_clear_cache(self):
        client = MagicMock()
        client.get_parameter.return_value = {"Parameter": {"Value": "v"}}
        ssm = SSMService(client)

        ssm.get_parameter("/a")
        ssm.get_parameter("/a", use_cache=False)
        ssm.clear_cache()
        ssm.get_parameter("/a")

        assert client.get_parameter.call_count == 3

    def test_cache_entry_expires(self):
        """A cached value is refetched once it is older than the TTL."""
        now = [100.0]
        client = MagicMock()
        client.get_parameter.side_effect = [
            {"Parameter": {"Value": "old"}},
            {"Parameter": {"Value": "rotated"}},
        ]
        ssm = SSMService(client, cache_ttl_seconds=60, clock=lambda: now[0])

        assert ssm.get_parameter("/a") == "old"

        now[0] = 159.0
        assert ssm.get_parameter("/a") == "old"

        now[0] = 160.0
        assert ssm.get_parameter("/a") == "rotated"
        assert client.get_parameter.call_count == 2

    def test_rotated_parameter_is_picked_up(self, aws):
        """An overwritten SecureString becomes visible after the TTL."""
        now = [0.0]
        client = boto3.client("ssm", region_name="eu-west-1")
        client.put_parameter(Name="/rotating", Value="first", Type="SecureString")
        ssm = SSMService(client, cache_ttl_seconds=60, clock=lambda: now[0])

        assert ssm.get_parameter("/rotating") == "first"
        client.put_parameter(Name="/rotating", Value="second", Type="SecureString", Overwrite=True)
        assert ssm.get_parameter("/rotating") == "first"

        now[0] = 61.0
        assert ssm.get_parameter("/rotating") == "second"

    def test_deleted_parameter_is_dropped_from_cache(self):
        now = [0.0]
        client = MagicMock()
        client.get_parameter.side_effect = [
            {"Parameter": {"Value": "v"}},
            _client_error("ParameterNotFound"),
        ]
        ssm = SSMService(client, cache_ttl_seconds=10, clock=lambda: now[0])
        ssm.get_parameter("/a")

        now[0] = 11.0
        with pytest.raises(SSMServiceError):
            ssm.get_parameter("/a")

        assert "/a" not in ssm._cache

    def test_default_service_expires_with_deny_ttl(self, aws, monkeypatch):
        """The shared service refreshes secrets as often as denials are cached."""
        monkeypatch.setenv("AUTH_DENY_TTL_SECONDS", "45")

        assert get_ssm_service()._cache_ttl_seconds == 45

    def test_not_found(self, ssm_secrets):
        with pytest.raises(SSMServiceError) as exc_info:
            ssm_secrets.get_parameter("/webhooks/test/missing")

        assert exc_info.value.not_found is True

    def test_access_denied(self):
        client = MagicMock()
        client.get_parameter.side_effect = _client_error("AccessDeniedException")

        with pytest.raises(SSMServiceError) as exc_info:
            SSMService(client).get_parameter("/a")

        assert exc_info.value.not_found is False
        assert "Access denied" in str(exc_info.value)


class TestWebhookSecretProvider:
    """Test per-provider secret resolution."""

    def test_known_providers(self, ssm_secrets, config):
        secrets = WebhookSecretProvider(ssm_secrets, config)

        assert secrets.get_secret(WebhookProvider.STRIPE) == STRIPE_SECRET
        assert secrets.get_secret(WebhookProvider.GITHUB) == GITHUB_SECRET

    def test_unknown_provider_has_no_secret(self):
        ssm = MagicMock(spec=SSMService)
        secrets = WebhookSecretProvider(ssm, GuardConfig())

        assert secrets.get_secret(WebhookProvider.UNKNOWN) is None
        ssm.get_parameter.assert_not_called()

    def test_missing_parameter_returns_none(self, ssm_secrets):
        secrets = WebhookSecretProvider(ssm_secrets, GuardConfig(environment="prod"))

        assert secrets.get_secret(WebhookProvider.STRIPE) is None

    def test_read_error_returns_none_and_logs(self, caplog):
        ssm = MagicMock(spec=SSMService)
        ssm.get_parameter.side_effect = SSMServiceError("Access denied")
        secrets = WebhookSecretProvider(ssm, GuardConfig())

        assert secrets.get_secret(WebhookProvider.SHOPIFY) is None
        assert "Could not read shopify webhook secret" in caplog.text

    def test_empty_value_returns_none(self):
        ssm = MagicMock(spec=SSMService)
        ssm.get_parameter.return_value = ""

        assert WebhookSecretProvider(ssm, GuardConfig()).get_secret(WebhookProvider.GITHUB) is None

    def test_parameter_path(self):
        ssm = MagicMock(spec=SSMService)
        ssm.get_parameter.return_value = "s"

        WebhookSecretProvider(ssm, GuardConfig(environment="prod")).get_secret(WebhookProvider.STRIPE)

        ssm.get_parameter.assert_called_once_with("/webhooks/prod/webhooks/stripe/secret")
