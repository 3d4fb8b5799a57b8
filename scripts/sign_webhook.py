#!/usr/bin/env python3
"""Sign a webhook payload for local testing.

Prints the signature header a provider would send for the given payload and
secret, or an AppSync authorization token when --token is set.

Usage:
    python scripts/sign_webhook.py --provider stripe --secret whsec_xxx --payload '{"id": "evt_1"}'
    python scripts/sign_webhook.py --provider github --secret s3cret --file event.json
    python scripts/sign_webhook.py --provider shopify --secret s3cret --file order.json --no-prefix
    python scripts/sign_webhook.py --provider stripe --secret whsec_xxx --file event.json --token
"""

import argparse
import json
import sys
from pathlib import Path

from webhook_guard.models.enums import WebhookProvider
from webhook_guard.models.webhook import format_authorization_token
from webhook_guard.verification import (
    sign_github_payload,
    sign_shopify_payload,
    sign_stripe_payload,
)


def build_header(
    provider: WebhookProvider,
    payload: bytes,
    secret: str,
    timestamp: int | None = None,
    prefixed: bool = True,
) -> str:
    """Signature header value for a provider."""
    if provider is WebhookProvider.STRIPE:
        return sign_stripe_payload(payload, secret, timestamp)
    if provider is WebhookProvider.GITHUB:
        return sign_github_payload(payload, secret)
    return sign_shopify_payload(payload, secret, prefixed=prefixed)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Sign a webhook payload for local testing")
    parser.add_argument(
        "--provider",
        required=True,
        choices=["stripe", "github", "shopify"],
        help="Signature scheme to use",
    )
    parser.add_argument("--secret", required=True, help="Webhook signing secret")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--payload", help="Payload string")
    source.add_argument("--file", type=Path, help="Read payload from a file")
    parser.add_argument("--timestamp", type=int, help="Stripe timestamp (default: now)")
    parser.add_argument(
        "--no-prefix",
        action="store_true",
        help="Omit the sha256= prefix for Shopify",
    )
    parser.add_argument(
        "--token",
        action="store_true",
        help="Print a Provider:signature authorization token instead of a header",
    )
    args = parser.parse_args(argv)

    payload = args.file.read_bytes() if args.file else args.payload.encode("utf-8")

    try:
        json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError):
        print("Warning: payload is not valid JSON; no event id will be extracted", file=sys.stderr)

    provider = WebhookProvider(args.provider)
    header = build_header(
        provider,
        payload,
        args.secret,
        timestamp=args.timestamp,
        prefixed=not args.no_prefix,
    )

    print(format_authorization_token(provider, header) if args.token else header)
    return 0


if __name__ == "__main__":
    sys.exit(main())
