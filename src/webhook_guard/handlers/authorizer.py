"""Webhook Authorizer Lambda - AppSync Lambda authorization handler.

Gates the webhook mutations (processStripeWebhook and friends). The caller
sends the raw body and signature as GraphQL variables, or the signature as
an authorization token of the form ``Provider:signature``.

Result shape:
    {
        "isAuthorized": bool,
        "resolverContext": {...},   # provider, eventId, eventType, validatedAt,
                                    # correlationId, duplicate | deniedReason, timestamp
        "deniedFields": [],
        "ttlOverride": 300 | 60,
    }

Any failure, including one while building services, is answered with a deny.
"""

import logging
import time
from typing import Any

from ..config import GuardConfig
from ..dependencies import get_gateway
from ..models.errors import ERROR_MESSAGES, ErrorCode
from ..models.webhook import AuthorizationDecision
from ..utils.logging import clear_correlation_id, configure_lambda_logging

configure_lambda_logging()
logger = logging.getLogger(__name__)


def handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """AppSync Lambda authorizer handler.

    Args:
        event: AppSync authorizer event
        context: Lambda context (unused)

    Returns:
        AppSync authorizer result
    """
    request_context = event.get("requestContext") if isinstance(event, dict) else None
    if not isinstance(request_context, dict):
        request_context = {}
    logger.info(
        "Webhook authorizer invoked for %s",
        request_context.get("operationName", "unknown"),
    )

    try:
        gateway = get_gateway()
    except Exception:
        logger.exception("Failed to initialize authorization gateway")
        return AuthorizationDecision.deny(
            ERROR_MESSAGES[ErrorCode.AUTHORIZATION_FAILED],
            denied_at=int(time.time() * 1000),
            ttl_seconds=GuardConfig().deny_ttl_seconds,
        ).to_appsync_result()

    try:
        return gateway.handle_event(event)
    finally:
        clear_correlation_id()
