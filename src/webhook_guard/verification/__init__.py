"""Signature verification and provider detection."""

from .detector import detect_provider, parse_signature_pairs
from .signatures import (
    STRIPE_TIMESTAMP_TOLERANCE,
    GitHubSignatureVerifier,
    ShopifySignatureVerifier,
    SignatureVerifier,
    StripeSignatureVerifier,
    build_verifiers,
    sign_github_payload,
    sign_shopify_payload,
    sign_stripe_payload,
)

__all__ = [
    "detect_provider",
    "parse_signature_pairs",
    "STRIPE_TIMESTAMP_TOLERANCE",
    "GitHubSignatureVerifier",
    "ShopifySignatureVerifier",
    "SignatureVerifier",
    "StripeSignatureVerifier",
    "build_verifiers",
    "sign_github_payload",
    "sign_shopify_payload",
    "sign_stripe_payload",
]
