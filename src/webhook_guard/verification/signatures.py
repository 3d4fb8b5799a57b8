"""Constant-time HMAC webhook signature verification for each provider.

Security contract:
- Every digest comparison uses hmac.compare_digest() over bytes
- Missing secret -> invalid result, never an exception (fail-closed)
- Any internal error -> invalid result plus a logged diagnostic
- Stripe timestamp tolerance: 300s (5 min) in both directions to limit replay

Verifiers are pure over (payload, header, secret, clock); they hold no
secrets and perform no I/O.
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from collections.abc import Callable
from typing import Protocol

from ..models.enums import WebhookProvider
from ..models.webhook import VerificationResult
from .detector import HASH_PREFIX, parse_signature_pairs

logger = logging.getLogger(__name__)

STRIPE_TIMESTAMP_TOLERANCE = 300


class SignatureVerifier(Protocol):
    """Capability implemented by every provider verifier."""

    provider: WebhookProvider

    def verify(
        self, payload: bytes, signature_header: str, secret: str | None
    ) -> VerificationResult: ...


def _hmac_sha256(secret: str, message: bytes) -> bytes:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()


def _digests_match(expected: str, provided: str) -> bool:
    # Encoding first keeps compare_digest from rejecting non-ASCII input
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


class _BaseVerifier:
    """Shared guard rails: secret presence and exception containment."""

    provider: WebhookProvider = WebhookProvider.UNKNOWN

    def verify(
        self, payload: bytes, signature_header: str, secret: str | None
    ) -> VerificationResult:
        """Verify a signature header against a raw payload.

        Args:
            payload: Raw request body bytes
            signature_header: Provider signature header value
            secret: Shared webhook secret for the provider

        Returns:
            VerificationResult; invalid for missing secret, missing header or
            any error during verification.
        """
        if not secret:
            logger.warning("No %s webhook secret configured, rejecting", self.provider.value)
            return VerificationResult.invalid()
        if not signature_header:
            return VerificationResult.invalid()

        try:
            return self._verify(payload, signature_header, secret)
        except Exception:
            logger.exception("Error verifying %s webhook signature", self.provider.value)
            return VerificationResult.invalid()

    def _verify(
        self, payload: bytes, signature_header: str, secret: str
    ) -> VerificationResult:
        raise NotImplementedError


class StripeSignatureVerifier(_BaseVerifier):
    """Stripe v1 scheme.

    Header: ``t=<timestamp>,v1=<hex>[,v1=<hex>...][,v0=<deprecated>]``.
    Several v1 values appear while a secret is being rolled; any match is
    accepted.
    """

    provider = WebhookProvider.STRIPE

    def __init__(
        self,
        tolerance: int = STRIPE_TIMESTAMP_TOLERANCE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.tolerance = tolerance
        self._clock = clock

    def _verify(
        self, payload: bytes, signature_header: str, secret: str
    ) -> VerificationResult:
        timestamp_str: str | None = None
        v1_signatures: list[str] = []
        for key, value in parse_signature_pairs(signature_header):
            if key == "t":
                timestamp_str = value
            elif key == "v1" and value:
                v1_signatures.append(value)

        if not timestamp_str or not v1_signatures:
            return VerificationResult.invalid()

        if not (timestamp_str.isascii() and timestamp_str.isdigit()):
            return VerificationResult.invalid()
        timestamp = int(timestamp_str)

        skew = abs(self._clock() - timestamp)
        if skew > self.tolerance:
            logger.warning(
                "Stripe webhook timestamp outside tolerance: skew=%.0fs tolerance=%ds",
                skew,
                self.tolerance,
            )
            return VerificationResult.invalid()

        # Stripe signs the header value as sent
        signed_payload = timestamp_str.encode("ascii") + b"." + payload
        expected = _hmac_sha256(secret, signed_payload).hex()

        if not any(_digests_match(expected, sig) for sig in v1_signatures):
            return VerificationResult.invalid()

        event_id, event_type = _parse_event_envelope(payload)
        return VerificationResult(is_valid=True, event_id=event_id, event_type=event_type)


class GitHubSignatureVerifier(_BaseVerifier):
    """GitHub ``X-Hub-Signature-256: sha256=<hex>`` scheme (no timestamp)."""

    provider = WebhookProvider.GITHUB

    def _verify(
        self, payload: bytes, signature_header: str, secret: str
    ) -> VerificationResult:
        if not signature_header.startswith(HASH_PREFIX):
            return VerificationResult.invalid()

        provided = signature_header[len(HASH_PREFIX):].lower()
        expected = _hmac_sha256(secret, payload).hex()

        return VerificationResult(is_valid=_digests_match(expected, provided))


class ShopifySignatureVerifier(_BaseVerifier):
    """Shopify ``X-Shopify-Hmac-Sha256`` scheme: base64 HMAC of the raw body.

    An optional ``sha256=`` prefix is tolerated.
    """

    provider = WebhookProvider.SHOPIFY

    def _verify(
        self, payload: bytes, signature_header: str, secret: str
    ) -> VerificationResult:
        provided = signature_header
        if provided.startswith(HASH_PREFIX):
            provided = provided[len(HASH_PREFIX):]

        expected = base64.b64encode(_hmac_sha256(secret, payload)).decode("ascii")

        return VerificationResult(is_valid=_digests_match(expected, provided.strip()))


def _parse_event_envelope(payload: bytes) -> tuple[str | None, str | None]:
    """Extract ``id`` and ``type`` from a JSON event envelope.

    Signature validity does not depend on this; an unparsable payload just
    yields empty fields.
    """
    try:
        envelope = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None, None

    if not isinstance(envelope, dict):
        return None, None

    event_id = envelope.get("id")
    event_type = envelope.get("type")
    return (
        event_id if isinstance(event_id, str) and event_id else None,
        event_type if isinstance(event_type, str) and event_type else None,
    )


def build_verifiers(
    stripe_tolerance: int = STRIPE_TIMESTAMP_TOLERANCE,
    clock: Callable[[], float] = time.time,
) -> dict[WebhookProvider, SignatureVerifier]:
    """Provider -> verifier mapping for every known provider.

    Args:
        stripe_tolerance: Replay window for Stripe timestamps, in seconds
        clock: Time source returning epoch seconds

    Returns:
        Mapping without an entry for UNKNOWN.
    """
    return {
        WebhookProvider.STRIPE: StripeSignatureVerifier(stripe_tolerance, clock),
        WebhookProvider.GITHUB: GitHubSignatureVerifier(),
        WebhookProvider.SHOPIFY: ShopifySignatureVerifier(),
    }


# Signing helpers for tests and scripts/sign_webhook.py


def sign_stripe_payload(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header for a payload."""
    ts = int(time.time()) if timestamp is None else timestamp
    digest = _hmac_sha256(secret, f"{ts}.".encode("utf-8") + payload).hex()
    return f"t={ts},v1={digest}"


def sign_github_payload(payload: bytes, secret: str) -> str:
    """Build an X-Hub-Signature-256 header for a payload."""
    return HASH_PREFIX + _hmac_sha256(secret, payload).hex()


def sign_shopify_payload(payload: bytes, secret: str, prefixed: bool = True) -> str:
    """Build a Shopify HMAC header, optionally with the ``sha256=`` prefix."""
    digest = base64.b64encode(_hmac_sha256(secret, payload)).decode("ascii")
    return HASH_PREFIX + digest if prefixed else digest
