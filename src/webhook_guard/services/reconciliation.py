"""Scheduled reconciliation of local payment state against Stripe.

A run takes the job lock, picks a window (resuming an unfinished one from
its cursor), pages through upstream events, then checks local pending
transactions the other way round. Each discrepancy becomes an append-only
finding. Low-risk status transitions may be corrected locally; everything
else is alerted. Corrections are recorded per upstream object so a resumed
window never applies them twice.
"""

import datetime as dt
import time
import uuid
from collections.abc import Callable
from typing import Any

from ..config import ALERT_ONLY_KINDS, GuardConfig
from ..models.enums import (
    CorrectiveAction,
    DiscrepancyKind,
    PolicyAction,
    ProcessingStatus,
    Severity,
    TransactionStatus,
)
from ..models.errors import (
    ErrorCode,
    ReconciliationRunFailure,
    UpstreamApiError,
    WebhookGuardError,
)
from ..models.reconciliation import ReconciliationRecord, SweepReport, SweepState
from ..models.webhook import ProcessedWebhookRecord
from ..utils.logging import get_logger, log_reconciliation_finding
from .alerting import AlertPublisher, MetricsPublisher
from .dedup import MAX_RETRY_ATTEMPTS, DeduplicationStore
from .ledger import LocalLedger
from .stripe_service import EventPage, StripeService, StripeServiceError
from .sweep_state import SweepStateStore

logger = get_logger(__name__)

# Stripe keeps events for 30 days
MAX_LOOKBACK_SECONDS = 30 * 24 * 60 * 60

CRITICAL_EVENT_TYPES = frozenset(
    {
        "payment_intent.succeeded",
        "payment_intent.payment_failed",
        "charge.succeeded",
        "charge.failed",
        "charge.dispute.created",
        "charge.refunded",
        "transfer.created",
        "payout.paid",
        "payout.failed",
    }
)

# Local transaction status implied by a payment-bearing event
EVENT_STATUS: dict[str, TransactionStatus] = {
    "payment_intent.succeeded": TransactionStatus.SUCCEEDED,
    "payment_intent.payment_failed": TransactionStatus.FAILED,
    "charge.succeeded": TransactionStatus.SUCCEEDED,
    "charge.failed": TransactionStatus.FAILED,
    "charge.refunded": TransactionStatus.REFUNDED,
    "charge.dispute.created": TransactionStatus.DISPUTED,
}

PAID_STATUSES = frozenset(
    {TransactionStatus.SUCCEEDED, TransactionStatus.REFUNDED, TransactionStatus.DISPUTED}
)

# A local status in this set is newer than the event's, not divergent
SUPERSEDED_BY: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.SUCCEEDED: frozenset({TransactionStatus.REFUNDED, TransactionStatus.DISPUTED}),
    TransactionStatus.FAILED: frozenset(
        {TransactionStatus.SUCCEEDED, TransactionStatus.REFUNDED, TransactionStatus.DISPUTED}
    ),
    TransactionStatus.REFUNDED: frozenset(),
    TransactionStatus.DISPUTED: frozenset({TransactionStatus.REFUNDED}),
}

# Only these transitions may be written without operator judgement
SAFE_TRANSITIONS = frozenset(
    {
        (TransactionStatus.PENDING, TransactionStatus.SUCCEEDED),
        (TransactionStatus.PENDING, TransactionStatus.FAILED),
        (TransactionStatus.PENDING, TransactionStatus.REFUNDED),
        (TransactionStatus.SUCCEEDED, TransactionStatus.REFUNDED),
    }
)

# Terminal payment intent statuses; anything else is still in flight
PAYMENT_INTENT_STATUS: dict[str, TransactionStatus] = {
    "succeeded": TransactionStatus.SUCCEEDED,
    "canceled": TransactionStatus.FAILED,
}

_SNAPSHOT_FIELDS = (
    "id",
    "object",
    "amount",
    "amount_received",
    "currency",
    "status",
    "payment_intent",
    "customer",
    "created",
    "charges_enabled",
    "payouts_enabled",
)


def _snapshot(obj: dict[str, Any]) -> dict[str, Any]:
    return {key: obj[key] for key in _SNAPSHOT_FIELDS if key in obj}


def _failure_reason(error: Exception) -> tuple[str, ErrorCode | None]:
    if isinstance(error, WebhookGuardError):
        reason = (error.details or {}).get("reason") or error.message
        return reason, error.code
    return str(error), None


def _local_status(transaction: dict[str, Any]) -> TransactionStatus | None:
    try:
        return TransactionStatus(transaction.get("status"))
    except ValueError:
        return None


class ReconciliationSweep:
    """Cross-checks the dedup ledger and local tables against Stripe events.

    One instance may serve many runs; per-run progress lives in the
    SweepStateStore, never in process memory.
    """

    def __init__(
        self,
        upstream: StripeService,
        ledger: LocalLedger,
        dedup: DeduplicationStore,
        state: SweepStateStore,
        alerts: AlertPublisher,
        config: GuardConfig,
        clock: Callable[[], float] = time.time,
        metrics: MetricsPublisher | None = None,
    ) -> None:
        self._upstream = upstream
        self._ledger = ledger
        self._dedup = dedup
        self._state = state
        self._alerts = alerts
        self._config = config
        self._clock = clock
        self._metrics = metrics

    def run(self, run_id: str | None = None) -> SweepReport:
        """Execute one sweep.

        Args:
            run_id: Identifier for this run, also the lock owner (generated if omitted)

        Returns:
            SweepReport; ``skipped`` is set when another run holds the lock.

        Raises:
            ReconciliationRunFailure: If the run aborts. The window and cursor
                stay checkpointed and a failure alert has been published.
        """
        run_id = run_id or str(uuid.uuid4())
        job_id = self._config.reconciliation_job_id
        started = self._clock()
        now = int(started)

        state = self._state.acquire(job_id, run_id, now, self._config.reconciliation_lock_seconds)
        if state is None:
            logger.warning("Reconciliation job %s already running; skipping run %s", job_id, run_id)
            return SweepReport(run_id=run_id, job_id=job_id, skipped=True)

        report = SweepReport(run_id=run_id, job_id=job_id)
        run = _RunContext(run_id=run_id, job_id=job_id, now=now)

        try:
            self._plan_window(state, now, report, run)
            logger.info(
                "Reconciliation window %s..%s (resumed=%s, cursor=%s)",
                report.window_start,
                report.window_end,
                report.resumed,
                run.cursor,
            )

            self._sweep_events(report, run)
            self._sweep_pending_transactions(report, run)
            self._publish_alerts(report, run)

            report.duration_ms = int((self._clock() - started) * 1000)
            if self._metrics is not None:
                self._metrics.publish_report(report)

            if not self._state.complete(job_id, run_id, run.window_end):
                raise WebhookGuardError(ErrorCode.SWEEP_ALREADY_RUNNING, {"run_id": run_id})

        except Exception as e:
            if isinstance(e, ReconciliationRunFailure):
                failure = e
            else:
                reason, cause_code = _failure_reason(e)
                failure = ReconciliationRunFailure(
                    run_id, reason, cursor=run.cursor, cause_code=cause_code
                )
            logger.exception("Reconciliation run %s failed at cursor %s", run_id, run.cursor)
            self._record_failure(job_id, run_id, failure)
            raise failure from e

        finally:
            self._release(job_id, run_id)

        logger.info("Reconciliation run %s completed: %s", run_id, report.summary())
        return report

    # === Window and paging ===

    def _plan_window(
        self, state: SweepState, now: int, report: SweepReport, run: "_RunContext"
    ) -> None:
        if state.is_resumable and state.window_start is not None and state.window_end is not None:
            report.resumed = True
            run.window_start = state.window_start
            run.window_end = state.window_end
            run.cursor = state.cursor
            ok = self._state.resume_window(run.job_id, run.run_id)
        else:
            default_start = now - self._config.reconciliation_window_hours * 3600
            start = state.last_window_end if state.last_window_end is not None else default_start
            run.window_start = max(start, now - MAX_LOOKBACK_SECONDS)
            run.window_end = now
            ok = self._state.begin_window(run.job_id, run.run_id, run.window_start, run.window_end)

        report.window_start = run.window_start
        report.window_end = run.window_end
        if not ok:
            raise WebhookGuardError(ErrorCode.SWEEP_ALREADY_RUNNING, {"run_id": run.run_id})

    def _sweep_events(self, report: SweepReport, run: "_RunContext") -> None:
        while True:
            page = self._list_events(run)
            report.pages_fetched += 1

            for event in page.events:
                self._check_event(event, report, run)

            last_event_id = page.last_event_id
            if last_event_id:
                run.cursor = last_event_id
                if not self._state.checkpoint(run.job_id, run.run_id, last_event_id):
                    raise WebhookGuardError(
                        ErrorCode.SWEEP_ALREADY_RUNNING, {"run_id": run.run_id}
                    )

            if not page.has_more or not page.events:
                return

    def _list_events(self, run: "_RunContext") -> EventPage:
        try:
            return self._upstream.list_events(
                created_gte=run.window_start,
                created_lte=run.window_end,
                starting_after=run.cursor,
                limit=self._config.reconciliation_page_size,
            )
        except StripeServiceError as e:
            raise UpstreamApiError(str(e), e.stripe_error_code) from e

    def _retrieve_payment_intent(self, payment_intent_id: str) -> dict[str, Any] | None:
        try:
            return self._upstream.retrieve_payment_intent(payment_intent_id)
        except StripeServiceError as e:
            raise UpstreamApiError(str(e), e.stripe_error_code) from e

    # === Upstream -> local ===

    def _check_event(self, event: dict[str, Any], report: SweepReport, run: "_RunContext") -> None:
        report.events_checked += 1
        event_id = event.get("id")
        event_type = event.get("type") or ""
        obj = (event.get("data") or {}).get("object") or {}
        if not event_id:
            logger.warning("Skipping upstream event without id (type=%s)", event_type)
            return

        record = self._dedup.get_record(event_id)
        if record is None:
            critical = event_type in CRITICAL_EVENT_TYPES
            self._record(
                report,
                run,
                kind=DiscrepancyKind.UNPROCESSED_EVENT,
                severity=Severity.CRITICAL if critical else Severity.MEDIUM,
                provider_object_id=event_id,
                evidence=event_type,
                event=event,
                upstream_record=_snapshot(obj),
                detail=f"Event {event_type} never reached the webhook authorizer",
            )
        else:
            self._check_processing(record, event, report, run)

        if event_type in EVENT_STATUS:
            self._check_payment_object(event, obj, report, run)
        elif event_type == "account.updated":
            self._check_account(event, obj, report, run)

    def _check_processing(
        self,
        record: ProcessedWebhookRecord,
        event: dict[str, Any],
        report: SweepReport,
        run: "_RunContext",
    ) -> None:
        """Report authorized events whose downstream handling failed or stalled."""
        event_type = event.get("type") or ""
        if record.status is ProcessingStatus.FAILED:
            exhausted = record.retry_count >= MAX_RETRY_ATTEMPTS
            state = "failed permanently" if exhausted else "failed, retry pending"
            self._record(
                report,
                run,
                kind=DiscrepancyKind.FAILED_EVENT,
                severity=Severity.HIGH if exhausted else Severity.MEDIUM,
                provider_object_id=record.event_id,
                evidence=f"attempts={record.retry_count}",
                event=event,
                detail=(
                    f"Event {event_type} {state} after {record.retry_count} attempt(s): "
                    f"{record.last_error or 'no error recorded'}"
                ),
            )
            return

        if record.status is ProcessingStatus.PROCESSING:
            started = record.processing_started_at
            if started is None or run.now - started <= self._config.processing_stuck_seconds:
                return
            self._record(
                report,
                run,
                kind=DiscrepancyKind.STUCK_EVENT,
                severity=Severity.HIGH,
                provider_object_id=record.event_id,
                evidence=f"started={started}",
                event=event,
                detail=(
                    f"Event {event_type} stuck in processing for "
                    f"{(run.now - started) // 60} minutes"
                ),
            )

    def _check_payment_object(
        self,
        event: dict[str, Any],
        obj: dict[str, Any],
        report: SweepReport,
        run: "_RunContext",
    ) -> None:
        event_type = event["type"]
        expected = EVENT_STATUS[event_type]
        if obj.get("object") == "payment_intent":
            payment_intent_id = obj.get("id")
        else:
            payment_intent_id = obj.get("payment_intent")
        if not isinstance(payment_intent_id, str) or not payment_intent_id:
            logger.debug("Event %s carries no payment intent; skipping local checks", event["id"])
            return

        transaction = self._ledger.find_transaction(payment_intent_id)
        if transaction is None:
            if expected in PAID_STATUSES:
                self._handle_missing_locally(event, obj, payment_intent_id, expected, report, run)
            return

        local = _local_status(transaction)
        if local is not expected and (local is None or local not in SUPERSEDED_BY[expected]):
            self._handle_status_divergence(
                transaction, payment_intent_id, local, expected, report, run, event, obj
            )

        # Dispute amounts may be partial; only charges and intents carry the payment amount
        if event_type != "charge.dispute.created" and "amount" in obj:
            local_amount = transaction.get("amount")
            upstream_amount = obj.get("amount")
            if (
                local_amount is not None
                and upstream_amount is not None
                and int(local_amount) != int(upstream_amount)
            ):
                self._record(
                    report,
                    run,
                    kind=DiscrepancyKind.AMOUNT_DIVERGENCE,
                    severity=Severity.CRITICAL,
                    provider_object_id=payment_intent_id,
                    evidence=f"upstream={upstream_amount} local={local_amount}",
                    event=event,
                    local_record=transaction,
                    upstream_record=_snapshot(obj),
                    detail=(
                        f"Amount mismatch: upstream={upstream_amount} local={local_amount}"
                    ),
                )

    def _handle_missing_locally(
        self,
        event: dict[str, Any],
        obj: dict[str, Any],
        payment_intent_id: str,
        expected: TransactionStatus,
        report: SweepReport,
        run: "_RunContext",
    ) -> None:
        corrected = False
        if self._may_correct(DiscrepancyKind.MISSING_LOCALLY):
            if obj.get("object") == "payment_intent":
                payment_intent: dict[str, Any] | None = obj
            else:
                payment_intent = self._retrieve_payment_intent(payment_intent_id)
            if payment_intent is not None:
                corrected = self._apply_once(
                    payment_intent_id,
                    "insert",
                    run,
                    event.get("id"),
                    lambda: self._ledger.create_transaction_from_upstream(
                        payment_intent, expected, event.get("id")
                    ),
                )

        self._record(
            report,
            run,
            kind=DiscrepancyKind.MISSING_LOCALLY,
            severity=Severity.HIGH,
            provider_object_id=payment_intent_id,
            evidence=expected.value,
            event=event,
            upstream_record=_snapshot(obj),
            detail=f"No local transaction for {expected.value} payment {payment_intent_id}",
            corrected=corrected,
        )

    def _handle_status_divergence(
        self,
        transaction: dict[str, Any],
        payment_intent_id: str,
        local: TransactionStatus | None,
        expected: TransactionStatus,
        report: SweepReport,
        run: "_RunContext",
        event: dict[str, Any] | None = None,
        upstream: dict[str, Any] | None = None,
    ) -> None:
        safe = local is not None and (local, expected) in SAFE_TRANSITIONS
        corrected = False
        if safe and local is not None and self._may_correct(DiscrepancyKind.STATUS_DIVERGENCE):
            from_status = local
            corrected = self._apply_once(
                payment_intent_id,
                f"status:{expected.value}",
                run,
                event.get("id") if event else None,
                lambda: self._ledger.apply_transaction_status(
                    transaction["transaction_id"],
                    from_status,
                    expected,
                    event.get("id") if event else None,
                ),
            )

        local_label = local.value if local else transaction.get("status")
        self._record(
            report,
            run,
            kind=DiscrepancyKind.STATUS_DIVERGENCE,
            severity=Severity.MEDIUM if safe else Severity.HIGH,
            provider_object_id=payment_intent_id,
            evidence=f"{local_label}->{expected.value}",
            event=event,
            local_record=transaction,
            upstream_record=_snapshot(upstream) if upstream else None,
            detail=f"Local status {local_label} but upstream implies {expected.value}",
            corrected=corrected,
        )

    def _check_account(
        self,
        event: dict[str, Any],
        account: dict[str, Any],
        report: SweepReport,
        run: "_RunContext",
    ) -> None:
        account_id = account.get("id")
        # Events arrive newest first; older updates for the same account are stale
        if not isinstance(account_id, str) or account_id in run.seen_accounts:
            return
        run.seen_accounts.add(account_id)

        profile = self._ledger.find_profile_by_account(account_id)
        if profile is None:
            self._record(
                report,
                run,
                kind=DiscrepancyKind.MISSING_LOCALLY,
                severity=Severity.MEDIUM,
                provider_object_id=account_id,
                evidence="no_profile",
                event=event,
                upstream_record=_snapshot(account),
                detail=f"No user profile linked to connected account {account_id}",
            )
            return

        mismatched = [
            field
            for field in ("charges_enabled", "payouts_enabled")
            if field in account and bool(profile.get(field)) != bool(account.get(field))
        ]
        if mismatched:
            self._record(
                report,
                run,
                kind=DiscrepancyKind.STATUS_DIVERGENCE,
                severity=Severity.MEDIUM,
                provider_object_id=account_id,
                evidence=",".join(f"{field}={bool(account.get(field))}" for field in mismatched),
                event=event,
                local_record=profile,
                upstream_record=_snapshot(account),
                detail=f"Account capability mismatch: {', '.join(mismatched)}",
            )

    # === Local -> upstream ===

    def _sweep_pending_transactions(self, report: SweepReport, run: "_RunContext") -> None:
        for transaction in self._ledger.list_pending_transactions(
            run.window_start, run.window_end
        ):
            report.local_records_checked += 1
            payment_intent_id = transaction.get("payment_intent_id")
            if not payment_intent_id:
                logger.debug(
                    "Pending transaction %s has no payment intent yet",
                    transaction.get("transaction_id"),
                )
                continue

            payment_intent = self._retrieve_payment_intent(payment_intent_id)
            if payment_intent is None:
                self._record(
                    report,
                    run,
                    kind=DiscrepancyKind.MISSING_UPSTREAM,
                    severity=Severity.HIGH,
                    provider_object_id=payment_intent_id,
                    evidence="not_found",
                    local_record=transaction,
                    detail=f"Payment intent {payment_intent_id} not found upstream",
                )
                continue

            upstream_status = PAYMENT_INTENT_STATUS.get(payment_intent.get("status") or "")
            if upstream_status is not None:
                self._handle_status_divergence(
                    transaction,
                    payment_intent_id,
                    TransactionStatus.PENDING,
                    upstream_status,
                    report,
                    run,
                    upstream=payment_intent,
                )

    # === Findings, corrections, alerts ===

    def _may_correct(self, kind: DiscrepancyKind) -> bool:
        return (
            kind not in ALERT_ONLY_KINDS
            and self._config.policy_for(kind) is PolicyAction.CORRECT
        )

    def _apply_once(
        self,
        provider_object_id: str,
        correction: str,
        run: "_RunContext",
        event_id: str | None,
        write: Callable[[], bool],
    ) -> bool:
        """Apply a conditional local write unless it was already recorded.

        The write itself is conditional: after a crash between write and
        record, the rerun's write is rejected and the finding is alerted.
        """
        if self._ledger.has_correction(provider_object_id, correction):
            logger.info("Correction %s for %s already applied", correction, provider_object_id)
            return True

        if not write():
            logger.warning(
                "Correction %s for %s no longer applies; local row changed",
                correction,
                provider_object_id,
            )
            return False

        self._ledger.record_correction(provider_object_id, correction, run.run_id, event_id)
        run.corrections_applied += 1
        logger.info("Applied correction %s for %s", correction, provider_object_id)
        return True

    def _record(
        self,
        report: SweepReport,
        run: "_RunContext",
        *,
        kind: DiscrepancyKind,
        severity: Severity,
        provider_object_id: str,
        evidence: str,
        detail: str,
        event: dict[str, Any] | None = None,
        local_record: dict[str, Any] | None = None,
        upstream_record: dict[str, Any] | None = None,
        corrected: bool = False,
    ) -> None:
        if corrected:
            action = CorrectiveAction.CORRECTED
        elif severity.rank >= self._config.alert_severity.rank:
            action = CorrectiveAction.ALERTED
        else:
            action = CorrectiveAction.RECORDED

        finding = ReconciliationRecord(
            finding_id=ReconciliationRecord.make_id(kind, provider_object_id, evidence),
            kind=kind,
            severity=severity,
            provider_object_id=provider_object_id,
            event_id=event.get("id") if event else None,
            event_type=event.get("type") if event else None,
            local_record=local_record,
            upstream_record=upstream_record,
            action=action,
            detail=detail,
            run_id=run.run_id,
            created_at=dt.datetime.fromtimestamp(self._clock(), dt.UTC),
        )
        report.findings.append(finding)
        report.corrections_applied = run.corrections_applied

        log_reconciliation_finding(
            logger,
            kind.value,
            provider_object_id,
            severity=severity.value,
            action=action.value,
            event_id=finding.event_id,
            detail=detail,
        )

        if self._ledger.record_finding(finding):
            report.new_findings += 1
            if action is CorrectiveAction.ALERTED:
                run.alertable.append(finding)

    def _publish_alerts(self, report: SweepReport, run: "_RunContext") -> None:
        report.corrections_applied = run.corrections_applied
        if run.alertable and self._alerts.publish_findings(run.run_id, run.alertable):
            report.alerts_sent += 1

    def _record_failure(
        self, job_id: str, run_id: str, failure: ReconciliationRunFailure
    ) -> None:
        try:
            self._state.fail(job_id, run_id, str(failure.details))
        except Exception:
            logger.exception("Could not record failure state for run %s", run_id)
        self._alerts.publish_failure(run_id, failure.to_dict())

    def _release(self, job_id: str, run_id: str) -> None:
        try:
            self._state.release(job_id, run_id)
        except Exception:
            logger.exception("Could not release lock for job %s (run %s)", job_id, run_id)


class _RunContext:
    """Mutable per-run bookkeeping."""

    def __init__(self, run_id: str, job_id: str, now: int) -> None:
        self.run_id = run_id
        self.job_id = job_id
        self.now = now
        self.window_start = 0
        self.window_end = 0
        self.cursor: str | None = None
        self.corrections_applied = 0
        self.seen_accounts: set[str] = set()
        self.alertable: list[ReconciliationRecord] = []
