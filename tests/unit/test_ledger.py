"""Unit tests for local ledger access used by the reconciliation sweep."""

import datetime as dt
import json

import pytest

from webhook_guard.models.enums import (
    CorrectiveAction,
    DiscrepancyKind,
    Severity,
    TransactionStatus,
)
from webhook_guard.models.reconciliation import ReconciliationRecord
from webhook_guard.services.ledger import epoch_to_iso

from helpers import FIXED_NOW, payment_intent


def _put_transaction(table, transaction_id: str, status: str, created_at: int, **extra) -> None:
    table("transactions").put_item(
        Item={
            "transaction_id": transaction_id,
            "payment_intent_id": extra.pop("payment_intent_id", f"pi_{transaction_id}"),
            "status": status,
            "amount": 112500,
            "created_at": epoch_to_iso(created_at),
            **extra,
        }
    )


FINDING_ID = ReconciliationRecord.make_id(DiscrepancyKind.MISSING_LOCALLY, "pi_1", "succeeded")


def _finding(**overrides) -> ReconciliationRecord:
    values = {
        "finding_id": FINDING_ID,
        "kind": DiscrepancyKind.MISSING_LOCALLY,
        "severity": Severity.HIGH,
        "provider_object_id": "pi_1",
        "event_id": "evt_1",
        "event_type": "payment_intent.succeeded",
        "upstream_record": {"id": "pi_1", "amount": 112500, "fee_rate": 0.029},
        "action": CorrectiveAction.ALERTED,
        "detail": "Payment intent pi_1 has no local transaction",
        "run_id": "run-1",
        "created_at": dt.datetime.fromtimestamp(FIXED_NOW, dt.UTC),
    }
    values.update(overrides)
    return ReconciliationRecord(**values)


def test_epoch_to_iso():
    assert epoch_to_iso(FIXED_NOW) == "2023-11-14T22:13:20+00:00"


# === Transactions ===


class TestTransactions:
    """Test transaction lookups and conditional writes."""

    def test_find_transaction_by_payment_intent(self, ledger, table):
        _put_transaction(table, "txn_1", "succeeded", FIXED_NOW, payment_intent_id="pi_abc")

        assert ledger.find_transaction("pi_abc")["transaction_id"] == "txn_1"
        assert ledger.find_transaction("pi_other") is None

    def test_list_pending_transactions_in_window(self, ledger, table):
        _put_transaction(table, "txn_in", "pending", FIXED_NOW - 100)
        _put_transaction(table, "txn_edge", "pending", FIXED_NOW)
        _put_transaction(table, "txn_old", "pending", FIXED_NOW - 10_000)
        _put_transaction(table, "txn_paid", "succeeded", FIXED_NOW - 100)

        pending = ledger.list_pending_transactions(FIXED_NOW - 1000, FIXED_NOW)

        assert {item["transaction_id"] for item in pending} == {"txn_in", "txn_edge"}

    def test_apply_transaction_status(self, ledger, table):
        _put_transaction(table, "txn_1", "pending", FIXED_NOW)

        applied = ledger.apply_transaction_status(
            "txn_1", TransactionStatus.PENDING, TransactionStatus.SUCCEEDED, "evt_9"
        )

        item = table("transactions").get_item(Key={"transaction_id": "txn_1"})["Item"]
        assert applied is True
        assert item["status"] == "succeeded"
        assert item["reconciled_event_id"] == "evt_9"
        assert "reconciled_at" in item

    def test_apply_transaction_status_when_row_moved(self, ledger, table):
        """A row no longer in from_status is left untouched."""
        _put_transaction(table, "txn_1", "refunded", FIXED_NOW)

        applied = ledger.apply_transaction_status(
            "txn_1", TransactionStatus.PENDING, TransactionStatus.SUCCEEDED
        )

        item = table("transactions").get_item(Key={"transaction_id": "txn_1"})["Item"]
        assert applied is False
        assert item["status"] == "refunded"

    def test_create_transaction_from_upstream(self, ledger, table):
        created = ledger.create_transaction_from_upstream(
            payment_intent("pi_new"), TransactionStatus.SUCCEEDED, "evt_1"
        )

        item = table("transactions").get_item(Key={"transaction_id": "pi_new"})["Item"]
        assert created is True
        assert item["payment_intent_id"] == "pi_new"
        assert item["amount"] == 112500
        assert item["status"] == "succeeded"
        assert item["stripe_customer_id"] == "cus_test_abc"
        assert item["source"] == "reconciliation"
        assert item["created_at"] == epoch_to_iso(FIXED_NOW - 7200)

    def test_create_transaction_is_insert_only(self, ledger):
        ledger.create_transaction_from_upstream(payment_intent("pi_new"), TransactionStatus.SUCCEEDED)

        again = ledger.create_transaction_from_upstream(
            payment_intent("pi_new", amount=1), TransactionStatus.FAILED
        )

        assert again is False
        assert ledger.find_transaction("pi_new")["amount"] == 112500


# === Profiles ===


class TestProfiles:
    def test_find_profile_by_account(self, ledger, table):
        table("user-profiles").put_item(
            Item={"user_id": "user_1", "stripe_account_id": "acct_1", "charges_enabled": True}
        )

        assert ledger.find_profile_by_account("acct_1")["user_id"] == "user_1"
        assert ledger.find_profile_by_account("acct_none") is None


# === Findings and corrections ===


class TestFindingsAndCorrections:
    """Test the append-only findings log and the corrections ledger."""

    def test_record_finding(self, ledger, table):
        assert ledger.record_finding(_finding()) is True

        item = table("reconciliation-findings").get_item(
            Key={"finding_id": FINDING_ID}
        )["Item"]
        assert item["kind"] == "missing_locally"
        assert item["severity"] == "HIGH"
        assert item["action"] == "alerted"
        assert item["resolved"] is False
        assert "local_record" not in item
        assert json.loads(item["upstream_record"])["fee_rate"] == pytest.approx(0.029)

    def test_record_finding_is_append_only(self, ledger, table):
        ledger.record_finding(_finding())

        assert ledger.record_finding(_finding(run_id="run-2")) is False
        item = table("reconciliation-findings").get_item(
            Key={"finding_id": FINDING_ID}
        )["Item"]
        assert item["run_id"] == "run-1"

    def test_correction_ledger(self, ledger):
        assert ledger.has_correction("pi_1", "insert") is False

        assert ledger.record_correction("pi_1", "insert", "run-1", "evt_1") is True
        assert ledger.has_correction("pi_1", "insert") is True
        assert ledger.has_correction("pi_1", "status:refunded") is False

    def test_correction_recorded_once(self, ledger):
        ledger.record_correction("pi_1", "status:succeeded", "run-1")

        assert ledger.record_correction("pi_1", "status:succeeded", "run-2") is False

    def test_correction_id(self, ledger):
        assert ledger.correction_id("pi_1", "insert") == "pi_1#insert"
