"""Webhook signing secrets per provider, backed by SSM Parameter Store."""

import logging

from ..config import GuardConfig
from ..models.enums import WebhookProvider
from .ssm_service import SSMService, SSMServiceError

logger = logging.getLogger(__name__)


class WebhookSecretProvider:
    """Looks up the shared signing secret for a detected provider.

    A missing parameter is reported as None so the gateway can treat it as a
    configuration error. Values are cached by the underlying SSMService.
    """

    def __init__(self, ssm: SSMService, config: GuardConfig) -> None:
        self._ssm = ssm
        self._config = config

    def get_secret(self, provider: WebhookProvider) -> str | None:
        """Return the provider's webhook secret, or None if it is not configured.

        Args:
            provider: Detected webhook provider

        Returns:
            Secret string, or None when absent, empty or unreadable.
        """
        if provider is WebhookProvider.UNKNOWN:
            return None

        name = self._config.secret_parameter(provider.value)
        try:
            value = self._ssm.get_parameter(name)
        except SSMServiceError as e:
            if not e.not_found:
                logger.error("Could not read %s webhook secret: %s", provider.value, e)
            return None

        return value or None
