"""Structured logging utilities with correlation ID support.

Provides:
- Correlation ID context management for request and sweep tracing
- Structured logging formatter for consistent log output
- Helper functions for authorization decisions and reconciliation findings

Usage:
    from webhook_guard.utils.logging import get_logger, set_correlation_id

    # At the top of a Lambda invocation or HTTP request:
    set_correlation_id(event["requestContext"].get("requestId"))

    # In service code:
    logger = get_logger(__name__)
    logger.info("Webhook authorized", extra={"provider": "stripe"})

Signature headers and secrets must never be passed to these helpers.
"""

import logging
import uuid
from contextvars import ContextVar
from typing import Any

# Context variable for correlation ID - thread-safe and async-safe
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def generate_correlation_id() -> str:
    """Generate a new correlation ID.

    Returns:
        UUID-based correlation ID string
    """
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set the correlation ID for the current context.

    Args:
        correlation_id: Optional existing correlation ID. If None, generates new one.

    Returns:
        The correlation ID that was set
    """
    cid = correlation_id or generate_correlation_id()
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str | None:
    """Get the current correlation ID.

    Returns:
        Current correlation ID or None if not set
    """
    return _correlation_id.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID context."""
    _correlation_id.set(None)


class CorrelationIdFilter(logging.Filter):
    """Logging filter that adds correlation_id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "no-correlation-id"
        return True


class StructuredFormatter(logging.Formatter):
    """Formatter that prefixes every line with the correlation ID."""

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = get_correlation_id() or "no-correlation-id"

        base = super().format(record)
        return f"[{record.correlation_id}] {base}"


def get_logger(name: str) -> logging.Logger:
    """Get a logger with correlation ID support.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not any(isinstance(f, CorrelationIdFilter) for f in logger.filters):
        logger.addFilter(CorrelationIdFilter())

    return logger


def configure_lambda_logging(level: int = logging.INFO) -> None:
    """Install the structured formatter on the root logger.

    The Lambda runtime pre-installs a handler on the root logger; this swaps
    its formatter instead of adding a second handler.

    Args:
        level: Root log level
    """
    root = logging.getLogger()
    root.setLevel(level)

    if not root.handlers:
        root.addHandler(logging.StreamHandler())

    for handler in root.handlers:
        handler.setFormatter(StructuredFormatter(LOG_FORMAT))


def log_authorization_decision(
    logger: logging.Logger,
    authorized: bool,
    *,
    provider: str | None = None,
    event_id: str | None = None,
    event_type: str | None = None,
    reason: str | None = None,
    duplicate: str | None = None,
    **extra: Any,
) -> None:
    """Log a gateway decision with structured context.

    Args:
        logger: Logger instance
        authorized: Whether the request was allowed
        provider: Detected provider tag
        event_id: Extracted event ID, if any
        event_type: Extracted event type, if any
        reason: Denial reason for denied requests
        duplicate: Dedup advisory (true, false, unknown)
        **extra: Additional context fields
    """
    context: dict[str, Any] = {"authorized": authorized}

    if provider:
        context["provider"] = provider
    if event_id:
        context["event_id"] = event_id
    if event_type:
        context["event_type"] = event_type
    if reason:
        context["reason"] = reason
    if duplicate:
        context["duplicate"] = duplicate

    context.update(extra)

    outcome = "allow" if authorized else "deny"
    msg_parts = [f"Webhook authorization: {outcome}"]
    for key, value in context.items():
        if key != "authorized":
            msg_parts.append(f"{key}={value}")

    message = " | ".join(msg_parts)

    if authorized:
        logger.info(message, extra=context)
    else:
        logger.warning(message, extra=context)


def log_reconciliation_finding(
    logger: logging.Logger,
    kind: str,
    provider_object_id: str,
    *,
    severity: str,
    action: str,
    event_id: str | None = None,
    detail: str | None = None,
    **extra: Any,
) -> None:
    """Log a reconciliation finding with structured context.

    Args:
        logger: Logger instance
        kind: Discrepancy kind (missing_locally, status_divergence, ...)
        provider_object_id: Upstream object ID (pi_xxx, acct_xxx, ...)
        severity: Finding severity
        action: Action taken (corrected, alerted, recorded)
        event_id: Upstream event ID, if the finding came from an event
        detail: Human-readable description
        **extra: Additional context fields
    """
    context: dict[str, Any] = {
        "kind": kind,
        "provider_object_id": provider_object_id,
        "severity": severity,
        "action": action,
    }

    if event_id:
        context["event_id"] = event_id
    if detail:
        context["detail"] = detail

    context.update(extra)

    msg_parts = [f"Reconciliation finding: {kind} ({provider_object_id})"]
    msg_parts.append(f"severity={severity}")
    msg_parts.append(f"action={action}")
    if detail:
        msg_parts.append(f"detail={detail}")

    message = " | ".join(msg_parts)

    if severity in ("HIGH", "CRITICAL"):
        logger.error(message, extra=context)
    elif severity == "MEDIUM":
        logger.warning(message, extra=context)
    else:
        logger.info(message, extra=context)
