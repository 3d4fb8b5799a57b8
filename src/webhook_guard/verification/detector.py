"""Provider detection from the shape of a signature header.

The webhook transport does not reliably carry provider identity, so the
provider is inferred from structural markers. Rules are checked in order:

1. ``t=...`` and ``v1=...`` pairs          -> stripe
2. ``sha256=`` + 64 hex characters        -> github
3. ``sha256=`` + base64 of a 32-byte HMAC -> shopify
4. anything else                          -> unknown

Rules 2 and 3 share a prefix and are told apart only by the digest
encoding. Misclassification is possible for crafted headers; callers that
can name the provider out-of-band should pass it as a declared provider.
"""

import re

from ..models.enums import WebhookProvider

HASH_PREFIX = "sha256="

_HEX_DIGEST = re.compile(r"[0-9a-fA-F]{64}")
# 32-byte digest -> 43 base64 characters + one "=" pad
_BASE64_DIGEST = re.compile(r"[A-Za-z0-9+/]{43}=")


def parse_signature_pairs(signature_header: str) -> list[tuple[str, str]]:
    """Split a ``k1=v1,k2=v2`` header into pairs, keeping repeated keys.

    Args:
        signature_header: Raw header value

    Returns:
        List of (key, value) tuples in header order; items without "=" are dropped.
    """
    pairs = []
    for item in signature_header.split(","):
        key, sep, value = item.strip().partition("=")
        if sep:
            pairs.append((key.strip(), value.strip()))
    return pairs


def detect_provider(signature_header: str | None) -> WebhookProvider:
    """Classify a signature header.

    Args:
        signature_header: Raw signature header value

    Returns:
        Detected provider, UNKNOWN when no rule matches.
    """
    if not signature_header:
        return WebhookProvider.UNKNOWN

    keys = {key for key, _ in parse_signature_pairs(signature_header)}
    if "t" in keys and "v1" in keys:
        return WebhookProvider.STRIPE

    if signature_header.startswith(HASH_PREFIX):
        digest = signature_header[len(HASH_PREFIX):]
        if _HEX_DIGEST.fullmatch(digest):
            return WebhookProvider.GITHUB
        if _BASE64_DIGEST.fullmatch(digest):
            return WebhookProvider.SHOPIFY

    return WebhookProvider.UNKNOWN
