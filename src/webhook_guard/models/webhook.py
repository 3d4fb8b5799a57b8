"""Webhook authorization models.

Covers the transient objects of one authorization pass (request,
verification result, decision) and the persisted dedup ledger record.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import DuplicateAdvisory, ProcessingStatus, WebhookProvider


class WebhookRequest(BaseModel):
    """One inbound webhook authorization call.

    The payload is kept as the exact bytes received; signatures are
    recomputed over it verbatim.
    """

    model_config = ConfigDict(strict=True, frozen=True)

    payload: bytes = Field(default=b"", description="Raw webhook body, never mutated")
    signature_header: str = Field(default="", description="Provider signature header value")
    declared_provider: WebhookProvider | None = Field(
        default=None,
        description="Provider named by the transport (token prefix or HTTP header)",
    )
    operation_name: str | None = Field(default=None, description="GraphQL operation or route")
    request_id: str | None = Field(default=None, description="Upstream request ID for correlation")

    @classmethod
    def from_authorizer_event(cls, event: dict[str, Any]) -> "WebhookRequest":
        """Build a request from an AppSync Lambda authorizer event.

        Expected shape::

            {
                "authorizationToken": "Stripe:t=...,v1=..." | "t=...,v1=...",
                "requestContext": {
                    "operationName": "processStripeWebhook",
                    "requestId": "...",
                    "variables": {"body": "...", "signature": "..."},
                },
            }

        The signature variable wins over the token; the token is parsed as
        ``Provider:signature`` when its prefix names a known provider.

        Args:
            event: Raw authorizer event

        Returns:
            WebhookRequest with empty payload/signature for missing fields.
        """
        request_context = event.get("requestContext")
        if not isinstance(request_context, dict):
            request_context = {}
        variables = request_context.get("variables")
        if not isinstance(variables, dict):
            variables = {}

        body = variables.get("body")
        if isinstance(body, str):
            payload = body.encode("utf-8")
        elif isinstance(body, bytes):
            payload = body
        else:
            payload = b""

        declared_provider, token_signature = parse_authorization_token(
            event.get("authorizationToken")
        )

        signature = variables.get("signature")
        if not isinstance(signature, str) or not signature:
            signature = token_signature

        operation_name = request_context.get("operationName")
        request_id = request_context.get("requestId")

        return cls(
            payload=payload,
            signature_header=signature,
            declared_provider=declared_provider,
            operation_name=operation_name if isinstance(operation_name, str) else None,
            request_id=request_id if isinstance(request_id, str) else None,
        )


def parse_authorization_token(token: Any) -> tuple[WebhookProvider | None, str]:
    """Split an authorization token of the form ``Provider:signature``.

    Signatures may themselves contain colons, so only the first one is a
    separator, and only when the prefix is a known provider label.

    Args:
        token: authorizationToken value from the event

    Returns:
        Tuple of (declared provider or None, signature string)
    """
    if not isinstance(token, str) or not token:
        return None, ""

    prefix, sep, rest = token.partition(":")
    if sep:
        provider = WebhookProvider.from_label(prefix)
        if provider is not WebhookProvider.UNKNOWN:
            return provider, rest

    return None, token


def format_authorization_token(provider: WebhookProvider, signature: str) -> str:
    """Build a ``Provider:signature`` authorization token."""
    return f"{provider.value.capitalize()}:{signature}"


class VerificationResult(BaseModel):
    """Outcome of checking one signature.

    event_id/event_type are only set for a valid signature over a payload
    that parsed as an event envelope.
    """

    model_config = ConfigDict(strict=True, frozen=True)

    is_valid: bool
    event_id: str | None = None
    event_type: str | None = None

    @classmethod
    def invalid(cls) -> "VerificationResult":
        return cls(is_valid=False)


class ProcessedWebhookRecord(BaseModel):
    """Dedup ledger entry for an already-authorized event.

    Stored in the processed-webhooks table keyed by event_id; expires_at is
    the DynamoDB TTL attribute. The gateway writes the entry as AUTHORIZED;
    downstream mutation handlers move it through PROCESSING to COMPLETED or
    FAILED.
    """

    model_config = ConfigDict(strict=True)

    event_id: str = Field(..., description="Provider event ID (evt_xxx)")
    provider: WebhookProvider = Field(..., description="Provider that sent the event")
    event_type: str | None = Field(default=None, description="Provider event type")
    processed_at: datetime = Field(..., description="First successful authorization (UTC)")
    expires_at: int = Field(..., description="Unix epoch seconds for DynamoDB TTL")
    correlation_id: str | None = Field(default=None, description="Authorizing request correlation ID")
    status: ProcessingStatus = ProcessingStatus.AUTHORIZED
    retry_count: int = Field(default=0, description="Failed processing attempts")
    processing_started_at: int | None = Field(default=None, description="Epoch seconds of the current claim")
    completed_at: int | None = Field(default=None, description="Epoch seconds of the last completion or failure")
    last_error: str | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


class ResolverContext(BaseModel):
    """Context attached to an allow decision and forwarded to resolvers."""

    model_config = ConfigDict(strict=True, frozen=True)

    provider: WebhookProvider
    event_id: str | None = None
    event_type: str | None = None
    validated_at: int = Field(..., description="Epoch milliseconds of validation")
    correlation_id: str
    duplicate: DuplicateAdvisory = DuplicateAdvisory.UNKNOWN

    def to_strings(self) -> dict[str, str]:
        """Flatten to string values, as AppSync requires for resolverContext."""
        context = {
            "provider": self.provider.value,
            "validatedAt": str(self.validated_at),
            "correlationId": self.correlation_id,
            "duplicate": self.duplicate.value,
        }
        if self.event_id:
            context["eventId"] = self.event_id
        if self.event_type:
            context["eventType"] = self.event_type
        return context


class AuthorizationDecision(BaseModel):
    """Allow/deny verdict rendered by the authorization gateway."""

    model_config = ConfigDict(strict=True, frozen=True)

    is_authorized: bool
    resolver_context: ResolverContext | None = None
    denial_reason: str | None = None
    denied_at: int | None = Field(default=None, description="Epoch milliseconds of denial")
    cache_ttl_seconds: int = Field(..., ge=0)

    @classmethod
    def allow(cls, context: ResolverContext, ttl_seconds: int) -> "AuthorizationDecision":
        return cls(is_authorized=True, resolver_context=context, cache_ttl_seconds=ttl_seconds)

    @classmethod
    def deny(cls, reason: str, denied_at: int, ttl_seconds: int) -> "AuthorizationDecision":
        return cls(
            is_authorized=False,
            denial_reason=reason,
            denied_at=denied_at,
            cache_ttl_seconds=ttl_seconds,
        )

    def to_response(self) -> dict[str, Any]:
        """Serialise as ``{isAuthorized, resolverContext | denialReason, cacheTtlSeconds}``."""
        response: dict[str, Any] = {
            "isAuthorized": self.is_authorized,
            "cacheTtlSeconds": self.cache_ttl_seconds,
        }
        if self.is_authorized and self.resolver_context is not None:
            response["resolverContext"] = self.resolver_context.to_strings()
        else:
            response["denialReason"] = self.denial_reason
        return response

    def to_appsync_result(self) -> dict[str, Any]:
        """Serialise as an AppSync Lambda authorizer result."""
        if self.is_authorized and self.resolver_context is not None:
            resolver_context = self.resolver_context.to_strings()
        else:
            resolver_context = {
                "deniedReason": self.denial_reason or "",
                "timestamp": str(self.denied_at or 0),
            }
        return {
            "isAuthorized": self.is_authorized,
            "resolverContext": resolver_context,
            "deniedFields": [],
            "ttlOverride": self.cache_ttl_seconds,
        }
