"""Run lock and checkpoint for the reconciliation sweep.

One item per job id in the ``reconciliation-jobs`` table holds both the
lock lease and the window/cursor checkpoint. Every write after acquisition
is conditioned on ``lock_owner`` still being this run, so a run whose
lease was taken over cannot overwrite the new owner's progress.
"""

import logging
from typing import Any

from ..models.enums import SweepStatus
from ..models.reconciliation import SweepState
from .dynamodb import DynamoDBService

logger = logging.getLogger(__name__)

# status and cursor are DynamoDB reserved words
_NAMES = {"#status": "status", "#cursor": "cursor"}


def _to_state(item: dict[str, Any]) -> SweepState:
    def _int(name: str) -> int | None:
        value = item.get(name)
        return int(value) if value is not None else None

    status = item.get("status")
    return SweepState(
        job_id=item["job_id"],
        lock_owner=item.get("lock_owner"),
        lock_expires_at=_int("lock_expires_at"),
        status=SweepStatus(status) if status else None,
        window_start=_int("window_start"),
        window_end=_int("window_end"),
        cursor=item.get("cursor"),
        last_window_end=_int("last_window_end"),
        last_error=item.get("last_error"),
    )


class SweepStateStore:
    """Lease-based lock plus resumable checkpoint per reconciliation job."""

    TABLE = "reconciliation-jobs"

    def __init__(self, db: DynamoDBService) -> None:
        self._db = db

    def get(self, job_id: str) -> SweepState | None:
        item = self._db.get_item(self.TABLE, {"job_id": job_id}, consistent_read=True)
        return _to_state(item) if item else None

    def acquire(self, job_id: str, owner: str, now: int, lease_seconds: int) -> SweepState | None:
        """Take the job lock if it is free or its lease has expired.

        Args:
            job_id: Reconciliation job identifier
            owner: Run ID claiming the lock
            now: Current epoch seconds
            lease_seconds: Lease duration

        Returns:
            State after acquisition, or None if another run holds the lock.
        """
        attrs = self._db.update_item(
            self.TABLE,
            {"job_id": job_id},
            "SET lock_owner = :owner, lock_expires_at = :expires",
            expression_attribute_values={
                ":owner": owner,
                ":expires": now + lease_seconds,
                ":now": now,
            },
            condition_expression="attribute_not_exists(lock_owner) OR lock_expires_at < :now",
        )
        if attrs is None:
            logger.info("Reconciliation job %s is locked by another run", job_id)
            return None
        return _to_state(attrs)

    def release(self, job_id: str, owner: str) -> bool:
        """Release the lock if this run still owns it."""
        attrs = self._db.update_item(
            self.TABLE,
            {"job_id": job_id},
            "REMOVE lock_owner, lock_expires_at",
            expression_attribute_values={":owner": owner},
            condition_expression="lock_owner = :owner",
        )
        if attrs is None:
            logger.warning("Lock for job %s was no longer held by run %s", job_id, owner)
            return False
        return True

    def begin_window(self, job_id: str, owner: str, window_start: int, window_end: int) -> bool:
        """Start a fresh window with an empty cursor."""
        return self._fenced_update(
            job_id,
            owner,
            "SET #status = :status, window_start = :start, window_end = :end "
            "REMOVE #cursor, last_error",
            {
                ":status": SweepStatus.IN_PROGRESS.value,
                ":start": window_start,
                ":end": window_end,
            },
        )

    def resume_window(self, job_id: str, owner: str) -> bool:
        """Mark a stored window as in progress again, keeping its cursor."""
        return self._fenced_update(
            job_id,
            owner,
            "SET #status = :status",
            {":status": SweepStatus.IN_PROGRESS.value},
        )

    def checkpoint(self, job_id: str, owner: str, cursor: str) -> bool:
        """Persist the last fully processed upstream event ID."""
        return self._fenced_update(job_id, owner, "SET #cursor = :cursor", {":cursor": cursor})

    def complete(self, job_id: str, owner: str, window_end: int) -> bool:
        """Close the current window; the next run starts where it ended."""
        return self._fenced_update(
            job_id,
            owner,
            "SET #status = :status, last_window_end = :end REMOVE #cursor, last_error",
            {":status": SweepStatus.COMPLETED.value, ":end": window_end},
        )

    def fail(self, job_id: str, owner: str, error: str) -> bool:
        """Mark the window failed, keeping window and cursor for resumption."""
        return self._fenced_update(
            job_id,
            owner,
            "SET #status = :status, last_error = :error",
            {":status": SweepStatus.FAILED.value, ":error": error[:1000]},
        )

    def _fenced_update(
        self,
        job_id: str,
        owner: str,
        update_expression: str,
        values: dict[str, Any],
    ) -> bool:
        names = {
            key: value for key, value in _NAMES.items() if key in update_expression
        }
        attrs = self._db.update_item(
            self.TABLE,
            {"job_id": job_id},
            update_expression,
            expression_attribute_values={**values, ":owner": owner},
            expression_attribute_names=names or None,
            condition_expression="lock_owner = :owner",
        )
        return attrs is not None
