"""Authorization gateway for inbound webhooks.

Each request passes through a fixed sequence of checks:

    start -> detect -> verify -> dedup-check -> allow
      |        |         |
      +--------+---------+--> deny

Deny reasons are coarse: callers learn nothing about which
check failed beyond a missing parameter. Deduplication is advisory only:
a duplicate is logged and flagged in the resolver context, never denied.
"""

import time
from collections.abc import Callable
from typing import Any

from ..config import GuardConfig
from ..models.enums import DuplicateAdvisory, WebhookProvider
from ..models.errors import (
    ERROR_MESSAGES,
    ConfigurationError,
    DedupStoreUnavailable,
    ErrorCode,
)
from ..models.webhook import (
    AuthorizationDecision,
    ResolverContext,
    VerificationResult,
    WebhookRequest,
)
from ..utils.logging import get_logger, log_authorization_decision, set_correlation_id
from ..verification import SignatureVerifier, build_verifiers, detect_provider
from .dedup import DeduplicationStore
from .secrets import WebhookSecretProvider

logger = get_logger(__name__)


class AuthorizationGateway:
    """Allow/deny decision for a single inbound webhook.

    Stateless apart from the shared dedup store, so any number of instances
    may serve requests concurrently.
    """

    def __init__(
        self,
        secrets: WebhookSecretProvider,
        dedup: DeduplicationStore,
        config: GuardConfig,
        clock: Callable[[], float] = time.time,
        verifiers: dict[WebhookProvider, SignatureVerifier] | None = None,
    ) -> None:
        self._secrets = secrets
        self._dedup = dedup
        self._config = config
        self._clock = clock
        self._verifiers = verifiers or build_verifiers(
            config.stripe_timestamp_tolerance, clock
        )

    def authorize(self, request: WebhookRequest) -> AuthorizationDecision:
        """Decide whether a webhook request may proceed.

        Never raises: unexpected failures become an "Authorization failed"
        denial.

        Args:
            request: Inbound webhook request

        Returns:
            AuthorizationDecision with the allow or deny TTL.
        """
        correlation_id = set_correlation_id(request.request_id)
        try:
            return self._authorize(request, correlation_id)
        except Exception:
            logger.exception("Unexpected error during webhook authorization")
            return self._deny(ErrorCode.AUTHORIZATION_FAILED)

    def handle_event(self, event: dict[str, Any]) -> dict[str, Any]:
        """Authorize a raw AppSync authorizer event.

        Args:
            event: Lambda authorizer event

        Returns:
            AppSync authorizer result dict.
        """
        try:
            request = WebhookRequest.from_authorizer_event(event)
        except Exception:
            logger.exception("Could not parse authorizer event")
            return self._deny(ErrorCode.AUTHORIZATION_FAILED).to_appsync_result()

        return self.authorize(request).to_appsync_result()

    def _authorize(
        self, request: WebhookRequest, correlation_id: str
    ) -> AuthorizationDecision:
        if not request.payload or not request.signature_header:
            return self._deny(ErrorCode.MALFORMED_REQUEST)

        provider = self._resolve_provider(request)
        if provider is WebhookProvider.UNKNOWN:
            return self._deny(ErrorCode.UNKNOWN_PROVIDER)

        secret = self._secrets.get_secret(provider)
        if not secret:
            error = ConfigurationError(provider.value)
            logger.error(
                "Webhook secret missing for detected provider %s (%s)",
                provider.value,
                error.code.value,
            )
            return self._deny(ErrorCode.CONFIGURATION_ERROR, provider=provider.value)

        result = self._verifiers[provider].verify(
            request.payload, request.signature_header, secret
        )
        if not result.is_valid:
            return self._deny(ErrorCode.INVALID_SIGNATURE, provider=provider.value)

        duplicate = self._check_duplicate(provider, result)

        context = ResolverContext(
            provider=provider,
            event_id=result.event_id,
            event_type=result.event_type,
            validated_at=int(self._clock() * 1000),
            correlation_id=correlation_id,
            duplicate=duplicate,
        )
        log_authorization_decision(
            logger,
            True,
            provider=provider.value,
            event_id=result.event_id,
            event_type=result.event_type,
            duplicate=duplicate.value,
            operation=request.operation_name,
        )
        return AuthorizationDecision.allow(context, self._config.allow_ttl_seconds)

    def _resolve_provider(self, request: WebhookRequest) -> WebhookProvider:
        detected = detect_provider(request.signature_header)
        declared = request.declared_provider
        if declared is None or declared is detected:
            return detected

        if self._config.trust_declared_provider:
            logger.info(
                "Using declared provider %s over detected %s",
                declared.value,
                detected.value,
            )
            return declared

        logger.warning(
            "Declared provider %s disagrees with detected %s; using detected",
            declared.value,
            detected.value,
        )
        return detected

    def _check_duplicate(
        self, provider: WebhookProvider, result: VerificationResult
    ) -> DuplicateAdvisory:
        """Consult the dedup ledger; store failures never block authorization."""
        if not result.event_id:
            return DuplicateAdvisory.UNKNOWN

        try:
            already_processed = self._dedup.is_processed(result.event_id)
        except DedupStoreUnavailable as e:
            logger.warning("Dedup check failed for %s: %s", result.event_id, e.details)
            advisory = DuplicateAdvisory.UNKNOWN
        else:
            advisory = (
                DuplicateAdvisory.DUPLICATE if already_processed else DuplicateAdvisory.NEW
            )

        if advisory is DuplicateAdvisory.DUPLICATE:
            logger.info("Duplicate %s webhook event %s", provider.value, result.event_id)
            return advisory

        try:
            self._dedup.mark_processed(result.event_id, provider, result.event_type)
        except DedupStoreUnavailable as e:
            logger.warning("Could not mark %s as processed: %s", result.event_id, e.details)

        return advisory

    def _deny(self, code: ErrorCode, provider: str | None = None) -> AuthorizationDecision:
        reason = ERROR_MESSAGES[code]
        log_authorization_decision(
            logger, False, provider=provider, reason=reason, error_code=code.value
        )
        return AuthorizationDecision.deny(
            reason,
            denied_at=int(self._clock() * 1000),
            ttl_seconds=self._config.deny_ttl_seconds,
        )
