"""Webhook Reconciliation Lambda - scheduled (EventBridge) sweep handler.

Runs once per schedule tick. A failed run re-raises after alerting so the
invocation is recorded as an error; the next tick resumes the window from
its checkpoint.
"""

import json
import logging
from typing import Any

from ..dependencies import get_sweep
from ..utils.logging import clear_correlation_id, configure_lambda_logging, set_correlation_id

configure_lambda_logging()
logger = logging.getLogger(__name__)


def handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Scheduled reconciliation handler.

    Args:
        event: EventBridge scheduled event (or a manual invocation payload)
        context: Lambda context; its request id becomes the run id

    Returns:
        ``{"statusCode": 200, "body": <run summary json>}``

    Raises:
        ReconciliationRunFailure: If the sweep aborts.
    """
    request_id = getattr(context, "aws_request_id", None)
    run_id = set_correlation_id(request_id if isinstance(request_id, str) else None)
    logger.info(
        "Reconciliation triggered by %s (run %s)",
        event.get("source", "manual"),
        run_id,
    )

    try:
        report = get_sweep().run(run_id)
    finally:
        clear_correlation_id()

    return {
        "statusCode": 200,
        "body": json.dumps(report.summary()),
    }
