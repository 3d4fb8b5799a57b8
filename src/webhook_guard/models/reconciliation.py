"""Reconciliation sweep models: findings, job state and run reports."""

import hashlib
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import CorrectiveAction, DiscrepancyKind, Severity, SweepStatus


class ReconciliationRecord(BaseModel):
    """One discrepancy between the system of record and the provider.

    Appended to the findings table once and never updated; a follow-up
    process resolves it.
    """

    model_config = ConfigDict(frozen=True)

    finding_id: str = Field(..., description="kind#provider_object_id#evidence digest")
    kind: DiscrepancyKind
    severity: Severity
    provider_object_id: str = Field(..., description="Upstream object ID (pi_xxx, acct_xxx)")
    event_id: str | None = Field(default=None, description="Upstream event that surfaced it")
    event_type: str | None = None
    local_record: dict[str, Any] | None = Field(default=None, description="Local row snapshot")
    upstream_record: dict[str, Any] | None = Field(default=None, description="Upstream object snapshot")
    action: CorrectiveAction
    detail: str
    run_id: str
    created_at: datetime

    @staticmethod
    def make_id(kind: DiscrepancyKind, provider_object_id: str, evidence: str) -> str:
        """Stable id for one specific discrepancy.

        A repeat of the same evidence maps to the same id; a different
        divergence on the same object gets a new one.
        """
        digest = hashlib.sha256(evidence.encode("utf-8")).hexdigest()[:16]
        return f"{kind.value}#{provider_object_id}#{digest}"


class SweepState(BaseModel):
    """Persisted state of a reconciliation job (lock lease + checkpoint)."""

    job_id: str
    lock_owner: str | None = None
    lock_expires_at: int | None = None
    status: SweepStatus | None = None
    window_start: int | None = Field(default=None, description="Epoch seconds, inclusive")
    window_end: int | None = Field(default=None, description="Epoch seconds, inclusive")
    cursor: str | None = Field(default=None, description="Last fully processed upstream event ID")
    last_window_end: int | None = Field(default=None, description="End of the last completed window")
    last_error: str | None = None

    @property
    def is_resumable(self) -> bool:
        return (
            self.status in (SweepStatus.IN_PROGRESS, SweepStatus.FAILED)
            and self.window_start is not None
            and self.window_end is not None
        )


class SweepReport(BaseModel):
    """Summary of one sweep invocation."""

    run_id: str
    job_id: str
    skipped: bool = False
    resumed: bool = False
    window_start: int | None = None
    window_end: int | None = None
    pages_fetched: int = 0
    events_checked: int = 0
    local_records_checked: int = 0
    findings: list[ReconciliationRecord] = Field(default_factory=list)
    new_findings: int = 0
    corrections_applied: int = 0
    alerts_sent: int = 0
    duration_ms: int = 0

    def count(self, kind: DiscrepancyKind) -> int:
        return sum(1 for finding in self.findings if finding.kind is kind)

    def summary(self) -> dict[str, Any]:
        """Counters without the finding snapshots, for logs and responses."""
        return {
            "run_id": self.run_id,
            "job_id": self.job_id,
            "skipped": self.skipped,
            "resumed": self.resumed,
            "window_start": self.window_start,
            "window_end": self.window_end,
            "pages_fetched": self.pages_fetched,
            "events_checked": self.events_checked,
            "local_records_checked": self.local_records_checked,
            "findings": {kind.value: self.count(kind) for kind in DiscrepancyKind},
            "new_findings": self.new_findings,
            "corrections_applied": self.corrections_applied,
            "alerts_sent": self.alerts_sent,
            "duration_ms": self.duration_ms,
        }
