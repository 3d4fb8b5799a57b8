"""Local system-of-record access for the reconciliation sweep.

Wraps the transactions and user-profiles tables, plus the append-only
findings log and the corrections ledger that keeps corrective writes from
being applied twice.
"""

import datetime as dt
import json
import logging
from typing import Any

from boto3.dynamodb.conditions import Attr

from ..models.enums import TransactionStatus
from ..models.reconciliation import ReconciliationRecord
from .dynamodb import DynamoDBService

logger = logging.getLogger(__name__)


def epoch_to_iso(epoch_seconds: int) -> str:
    """Epoch seconds -> ISO 8601 UTC string, the format of ``created_at`` columns."""
    return dt.datetime.fromtimestamp(epoch_seconds, dt.UTC).isoformat()


class LocalLedger:
    """Reads and idempotent writes against the local tables."""

    TRANSACTIONS_TABLE = "transactions"
    TRANSACTIONS_PI_INDEX = "payment_intent_id-index"
    PROFILES_TABLE = "user-profiles"
    PROFILES_ACCOUNT_INDEX = "stripe_account_id-index"
    FINDINGS_TABLE = "reconciliation-findings"
    CORRECTIONS_TABLE = "reconciliation-corrections"

    def __init__(self, db: DynamoDBService) -> None:
        self._db = db

    # === Transactions ===

    def find_transaction(self, payment_intent_id: str) -> dict[str, Any] | None:
        """Look up the local transaction for a Stripe payment intent.

        Args:
            payment_intent_id: Stripe PaymentIntent ID (pi_xxx)

        Returns:
            Transaction item or None if absent.
        """
        items = self._db.query_by_gsi(
            self.TRANSACTIONS_TABLE,
            self.TRANSACTIONS_PI_INDEX,
            "payment_intent_id",
            payment_intent_id,
        )
        if len(items) > 1:
            logger.warning(
                "%d transactions share payment intent %s; using the first",
                len(items),
                payment_intent_id,
            )
        return items[0] if items else None

    def list_pending_transactions(
        self, window_start: int, window_end: int
    ) -> list[dict[str, Any]]:
        """Pending transactions created inside the window (inclusive bounds).

        Args:
            window_start: Epoch seconds
            window_end: Epoch seconds

        Returns:
            List of transaction items
        """
        condition = Attr("status").eq(TransactionStatus.PENDING.value) & Attr(
            "created_at"
        ).between(epoch_to_iso(window_start), epoch_to_iso(window_end))
        return self._db.scan(self.TRANSACTIONS_TABLE, condition)

    def apply_transaction_status(
        self,
        transaction_id: str,
        from_status: TransactionStatus,
        to_status: TransactionStatus,
        source_event_id: str | None = None,
    ) -> bool:
        """Move a transaction between statuses if it is still in ``from_status``.

        Returns:
            True if applied, False if the row had already moved on.
        """
        now = dt.datetime.now(dt.UTC).isoformat()
        update_expression = "SET #status = :to, updated_at = :now, reconciled_at = :now"
        values: dict[str, Any] = {
            ":from": from_status.value,
            ":to": to_status.value,
            ":now": now,
        }
        if source_event_id:
            update_expression += ", reconciled_event_id = :event"
            values[":event"] = source_event_id

        result = self._db.update_item(
            self.TRANSACTIONS_TABLE,
            {"transaction_id": transaction_id},
            update_expression,
            expression_attribute_values=values,
            expression_attribute_names={"#status": "status"},
            condition_expression="#status = :from",
        )
        return result is not None

    def create_transaction_from_upstream(
        self,
        payment_intent: dict[str, Any],
        status: TransactionStatus,
        source_event_id: str | None = None,
    ) -> bool:
        """Insert a transaction reconstructed from an upstream payment intent.

        The transaction id is the payment intent id, so repeated inserts are
        rejected by the conditional put.

        Returns:
            True if inserted, False if the row already existed.
        """
        payment_intent_id = payment_intent["id"]
        now = dt.datetime.now(dt.UTC).isoformat()
        created = payment_intent.get("created")
        item: dict[str, Any] = {
            "transaction_id": payment_intent_id,
            "payment_intent_id": payment_intent_id,
            "amount": int(payment_intent.get("amount") or 0),
            "currency": payment_intent.get("currency") or "eur",
            "status": status.value,
            "created_at": epoch_to_iso(int(created)) if created else now,
            "updated_at": now,
            "reconciled_at": now,
            "source": "reconciliation",
        }
        customer = payment_intent.get("customer")
        if isinstance(customer, str):
            item["stripe_customer_id"] = customer
        if source_event_id:
            item["reconciled_event_id"] = source_event_id

        return self._db.put_item(
            self.TRANSACTIONS_TABLE,
            item,
            condition_expression="attribute_not_exists(transaction_id)",
        )

    # === User profiles ===

    def find_profile_by_account(self, stripe_account_id: str) -> dict[str, Any] | None:
        """Look up the user profile linked to a Stripe connected account."""
        items = self._db.query_by_gsi(
            self.PROFILES_TABLE,
            self.PROFILES_ACCOUNT_INDEX,
            "stripe_account_id",
            stripe_account_id,
        )
        return items[0] if items else None

    # === Findings and corrections ===

    def record_finding(self, finding: ReconciliationRecord) -> bool:
        """Append a finding to the audit log.

        Returns:
            True if written, False if the same finding was already recorded.
        """
        item: dict[str, Any] = {
            "finding_id": finding.finding_id,
            "kind": finding.kind.value,
            "severity": finding.severity.value,
            "provider_object_id": finding.provider_object_id,
            "action": finding.action.value,
            "detail": finding.detail,
            "run_id": finding.run_id,
            "created_at": finding.created_at.isoformat(),
            "resolved": False,
        }
        if finding.event_id:
            item["event_id"] = finding.event_id
        if finding.event_type:
            item["event_type"] = finding.event_type
        # Snapshots stored as JSON strings; DynamoDB rejects float attributes
        if finding.local_record is not None:
            item["local_record"] = json.dumps(finding.local_record, default=str)
        if finding.upstream_record is not None:
            item["upstream_record"] = json.dumps(finding.upstream_record, default=str)

        return self._db.put_item(
            self.FINDINGS_TABLE,
            item,
            condition_expression="attribute_not_exists(finding_id)",
        )

    @staticmethod
    def correction_id(provider_object_id: str, correction: str) -> str:
        return f"{provider_object_id}#{correction}"

    def has_correction(self, provider_object_id: str, correction: str) -> bool:
        item = self._db.get_item(
            self.CORRECTIONS_TABLE,
            {"correction_id": self.correction_id(provider_object_id, correction)},
            consistent_read=True,
        )
        return item is not None

    def record_correction(
        self,
        provider_object_id: str,
        correction: str,
        run_id: str,
        event_id: str | None = None,
    ) -> bool:
        """Record that a corrective write was applied for an upstream object.

        Returns:
            True if recorded, False if it was already recorded.
        """
        item: dict[str, Any] = {
            "correction_id": self.correction_id(provider_object_id, correction),
            "provider_object_id": provider_object_id,
            "correction": correction,
            "run_id": run_id,
            "applied_at": dt.datetime.now(dt.UTC).isoformat(),
        }
        if event_id:
            item["event_id"] = event_id

        return self._db.put_item(
            self.CORRECTIONS_TABLE,
            item,
            condition_expression="attribute_not_exists(correction_id)",
        )
