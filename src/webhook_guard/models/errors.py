"""Standard error codes for the webhook guard.

The gateway never raises these past its boundary: they are converted to a
deny decision whose reason is the code's message. The reconciliation sweep
raises them to its Lambda handler so the scheduler records the failure.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Error taxonomy for authorization and reconciliation."""

    # Authorization error codes (ERR_AUTH_001-ERR_AUTH_006)
    MALFORMED_REQUEST = "ERR_AUTH_001"
    UNKNOWN_PROVIDER = "ERR_AUTH_002"
    INVALID_SIGNATURE = "ERR_AUTH_003"
    CONFIGURATION_ERROR = "ERR_AUTH_004"
    TRANSIENT_STORE_ERROR = "ERR_AUTH_005"
    AUTHORIZATION_FAILED = "ERR_AUTH_006"

    # Reconciliation error codes (ERR_RECON_001-ERR_RECON_003)
    RECONCILIATION_RUN_FAILURE = "ERR_RECON_001"
    SWEEP_ALREADY_RUNNING = "ERR_RECON_002"
    UPSTREAM_API_ERROR = "ERR_RECON_003"


# Denial reasons and operator-facing messages.
# Unknown provider and configuration errors surface as "Invalid signature".
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.MALFORMED_REQUEST: "Missing required parameters",
    ErrorCode.UNKNOWN_PROVIDER: "Invalid signature",
    ErrorCode.INVALID_SIGNATURE: "Invalid signature",
    ErrorCode.CONFIGURATION_ERROR: "Invalid signature",
    ErrorCode.TRANSIENT_STORE_ERROR: "Deduplication store unavailable",
    ErrorCode.AUTHORIZATION_FAILED: "Authorization failed",
    ErrorCode.RECONCILIATION_RUN_FAILURE: "Reconciliation run failed",
    ErrorCode.SWEEP_ALREADY_RUNNING: "Reconciliation already running",
    ErrorCode.UPSTREAM_API_ERROR: "Upstream provider API error",
}

# Recovery hints for operators
ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.MALFORMED_REQUEST: "Provider should redeliver with body and signature",
    ErrorCode.UNKNOWN_PROVIDER: "Check the signature header format sent by the provider",
    ErrorCode.INVALID_SIGNATURE: "Verify the webhook secret and sender clock",
    ErrorCode.CONFIGURATION_ERROR: "Store the provider webhook secret in SSM",
    ErrorCode.TRANSIENT_STORE_ERROR: "Check DynamoDB availability; requests still authorize",
    ErrorCode.AUTHORIZATION_FAILED: "Inspect authorizer logs for the correlation ID",
    ErrorCode.RECONCILIATION_RUN_FAILURE: "Rerun the sweep; it resumes from the last checkpoint",
    ErrorCode.SWEEP_ALREADY_RUNNING: "Wait for the running sweep or its lock lease to expire",
    ErrorCode.UPSTREAM_API_ERROR: "Check Stripe status and API key permissions",
}


class WebhookGuardError(Exception):
    """Base exception carrying an ErrorCode."""

    def __init__(
        self,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
    ):
        self.code = code
        self.message = ERROR_MESSAGES[code]
        self.recovery = ERROR_RECOVERY[code]
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, object]:
        """Serialise for alerts and Lambda responses."""
        return {
            "error_code": self.code.value,
            "message": self.message,
            "recovery": self.recovery,
            "details": self.details,
        }


class ConfigurationError(WebhookGuardError):
    """A secret required for a detected provider is not configured."""

    def __init__(self, provider: str):
        super().__init__(ErrorCode.CONFIGURATION_ERROR, {"provider": provider})
        self.provider = provider


class DedupStoreUnavailable(WebhookGuardError):
    """The deduplication ledger could not be read or written."""

    def __init__(self, reason: str):
        super().__init__(ErrorCode.TRANSIENT_STORE_ERROR, {"reason": reason})


class UpstreamApiError(WebhookGuardError):
    """The upstream provider API call failed."""

    def __init__(self, reason: str, provider_error_code: str | None = None):
        details = {"reason": reason}
        if provider_error_code:
            details["provider_error_code"] = provider_error_code
        super().__init__(ErrorCode.UPSTREAM_API_ERROR, details)
        self.provider_error_code = provider_error_code


class ReconciliationRunFailure(WebhookGuardError):
    """A sweep aborted mid-window; its checkpoint allows resumption."""

    def __init__(
        self,
        run_id: str,
        reason: str,
        cursor: str | None = None,
        cause_code: ErrorCode | None = None,
    ):
        details = {"run_id": run_id, "reason": reason}
        if cursor:
            details["cursor"] = cursor
        if cause_code:
            details["cause_code"] = cause_code.value
        super().__init__(ErrorCode.RECONCILIATION_RUN_FAILURE, details)
        self.run_id = run_id
        self.cursor = cursor
        self.cause_code = cause_code
