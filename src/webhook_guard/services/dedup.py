"""Deduplication ledger of authorized webhook events.

Records live in the ``processed-webhooks`` table keyed by event_id, with an
``expires_at`` TTL attribute. DynamoDB deletes expired items lazily, so
reads also compare ``expires_at`` against the clock.

The gateway only records that an event was authorized. Downstream mutation
handlers claim the event with ``acquire_processing`` and report the outcome
with ``mark_completed`` or ``mark_failed``; the reconciliation sweep reports
events that failed or never finished.
"""

import datetime as dt
import logging
import time
from collections.abc import Callable
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from ..models.enums import ProcessingStatus, WebhookProvider
from ..models.errors import DedupStoreUnavailable
from ..models.webhook import ProcessedWebhookRecord
from ..utils.logging import get_correlation_id
from .dynamodb import DynamoDBService

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30 * 24 * 60 * 60

# A failed event is not handed out again after this many attempts
MAX_RETRY_ATTEMPTS = 3

# A PROCESSING claim older than this may be taken over by another handler
DEFAULT_LOCK_TIMEOUT_SECONDS = 30

_MAX_ERROR_LENGTH = 1000


def _optional_int(value: Any) -> int | None:
    return int(value) if value is not None else None


class DeduplicationStore:
    """Shared, TTL-bounded record of which event ids were already authorized.

    Marking is a conditional put that only creates missing or expired
    entries, so a redelivered event never resets the processing state of an
    earlier delivery.
    """

    TABLE = "processed-webhooks"

    def __init__(
        self,
        db: DynamoDBService,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db = db
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    def get_record(self, event_id: str) -> ProcessedWebhookRecord | None:
        """Load the live ledger record for an event.

        Args:
            event_id: Provider event ID

        Returns:
            The record, or None if absent or past its expiry.

        Raises:
            DedupStoreUnavailable: If the table cannot be read or the stored
                item is malformed.
        """
        try:
            item = self._db.get_item(self.TABLE, {"event_id": event_id})
        except (ClientError, BotoCoreError) as e:
            raise DedupStoreUnavailable(str(e)) from e

        if item is None:
            return None

        record = self._to_record(event_id, item)
        if record.is_expired(self._clock()):
            return None
        return record

    def is_processed(self, event_id: str) -> bool:
        """Check whether an event id was already authorized and not yet expired.

        Raises:
            DedupStoreUnavailable: If the table cannot be read.
        """
        return self.get_record(event_id) is not None

    def mark_processed(
        self,
        event_id: str,
        provider: WebhookProvider,
        event_type: str | None = None,
    ) -> bool:
        """Record an event id as authorized for the TTL period.

        Args:
            event_id: Provider event ID
            provider: Provider that sent the event
            event_type: Provider event type (optional)

        Returns:
            True if the entry was written, False if a live entry already existed.

        Raises:
            DedupStoreUnavailable: If the write fails.
        """
        now = self._clock()
        item: dict[str, Any] = {
            "event_id": event_id,
            "provider": provider.value,
            "processed_at": dt.datetime.fromtimestamp(now, dt.UTC).isoformat(),
            "expires_at": int(now) + self._ttl_seconds,
            "status": ProcessingStatus.AUTHORIZED.value,
            "retry_count": 0,
        }
        if event_type:
            item["event_type"] = event_type
        correlation_id = get_correlation_id()
        if correlation_id:
            item["correlation_id"] = correlation_id

        try:
            written = self._db.put_item(
                self.TABLE,
                item,
                condition_expression="attribute_not_exists(event_id) OR expires_at <= :now",
                expression_attribute_values={":now": int(now)},
            )
        except (ClientError, BotoCoreError) as e:
            raise DedupStoreUnavailable(str(e)) from e

        if written:
            logger.debug("Marked %s event %s as processed", provider.value, event_id)
        else:
            logger.debug("Event %s already in the dedup ledger", event_id)
        return written

    # === Processing lifecycle ===

    def acquire_processing(
        self, event_id: str, lock_timeout_seconds: int = DEFAULT_LOCK_TIMEOUT_SECONDS
    ) -> bool:
        """Claim an authorized event for a downstream mutation handler.

        The claim succeeds for an event that no handler has picked up, a
        failed event with attempts left, or an event whose previous claim is
        older than ``lock_timeout_seconds``.

        Args:
            event_id: Provider event ID
            lock_timeout_seconds: Age after which a PROCESSING claim is stale

        Returns:
            True if this caller now holds the claim.

        Raises:
            DedupStoreUnavailable: If the update fails.
        """
        now = int(self._clock())
        condition = (
            "expires_at > :now AND ("
            "#status = :authorized OR attribute_not_exists(#status)"
            " OR (#status = :failed AND retry_count < :max_retries)"
            " OR (#status = :processing AND processing_started_at < :stale_before))"
        )
        attributes = self._update(
            event_id,
            "SET #status = :processing, processing_started_at = :now",
            {
                ":now": now,
                ":authorized": ProcessingStatus.AUTHORIZED.value,
                ":failed": ProcessingStatus.FAILED.value,
                ":processing": ProcessingStatus.PROCESSING.value,
                ":max_retries": MAX_RETRY_ATTEMPTS,
                ":stale_before": now - lock_timeout_seconds,
            },
            condition,
        )
        if attributes is None:
            logger.info("Event %s is not available for processing", event_id)
            return False

        logger.debug("Acquired processing claim for event %s", event_id)
        return True

    def mark_completed(self, event_id: str) -> bool:
        """Record that the downstream handler finished an event.

        Returns:
            True if updated, False if the event was not being processed.

        Raises:
            DedupStoreUnavailable: If the update fails.
        """
        attributes = self._update(
            event_id,
            "SET #status = :completed, completed_at = :now REMOVE last_error",
            {
                ":now": int(self._clock()),
                ":completed": ProcessingStatus.COMPLETED.value,
                ":processing": ProcessingStatus.PROCESSING.value,
            },
            "#status = :processing",
        )
        if attributes is None:
            logger.warning("Event %s completed without a processing claim", event_id)
            return False
        return True

    def mark_failed(self, event_id: str, error: str) -> int | None:
        """Record a failed processing attempt.

        Args:
            event_id: Provider event ID
            error: Failure description (truncated)

        Returns:
            The updated attempt count, or None if the event is not in the ledger.

        Raises:
            DedupStoreUnavailable: If the update fails.
        """
        attributes = self._update(
            event_id,
            "SET #status = :failed, completed_at = :now, last_error = :error "
            "ADD retry_count :one",
            {
                ":now": int(self._clock()),
                ":failed": ProcessingStatus.FAILED.value,
                ":error": error[:_MAX_ERROR_LENGTH],
                ":one": 1,
            },
            "attribute_exists(event_id)",
        )
        if attributes is None:
            logger.warning("Cannot mark unknown event %s as failed", event_id)
            return None

        retry_count = int(attributes.get("retry_count", 0))
        logger.warning(
            "Event %s failed processing (attempt %d of %d)",
            event_id,
            retry_count,
            MAX_RETRY_ATTEMPTS,
        )
        return retry_count

    def get_statistics(self) -> dict[str, Any]:
        """Count live ledger entries by processing status.

        Returns:
            Dict with ``total``, one count per status and
            ``average_processing_seconds`` over completed entries.

        Raises:
            DedupStoreUnavailable: If the table cannot be scanned.
        """
        try:
            items = self._db.scan(self.TABLE)
        except (ClientError, BotoCoreError) as e:
            raise DedupStoreUnavailable(str(e)) from e

        now = self._clock()
        stats: dict[str, Any] = {"total": 0, **{status.value: 0 for status in ProcessingStatus}}
        durations: list[int] = []
        for item in items:
            if int(item.get("expires_at", 0)) <= now:
                continue
            status = item.get("status") or ProcessingStatus.AUTHORIZED.value
            if status not in stats:
                logger.warning("Unknown status %r on event %s", status, item.get("event_id"))
                continue
            stats["total"] += 1
            stats[status] += 1
            started = item.get("processing_started_at")
            completed = item.get("completed_at")
            if status != ProcessingStatus.COMPLETED.value:
                continue
            if started is not None and completed is not None:
                durations.append(int(completed) - int(started))

        stats["average_processing_seconds"] = (
            sum(durations) / len(durations) if durations else 0.0
        )
        return stats

    def _update(
        self,
        event_id: str,
        update_expression: str,
        values: dict[str, Any],
        condition: str,
    ) -> dict[str, Any] | None:
        try:
            return self._db.update_item(
                self.TABLE,
                {"event_id": event_id},
                update_expression,
                expression_attribute_values=values,
                expression_attribute_names={"#status": "status"},
                condition_expression=condition,
            )
        except (ClientError, BotoCoreError) as e:
            raise DedupStoreUnavailable(str(e)) from e

    @staticmethod
    def _to_record(event_id: str, item: dict[str, Any]) -> ProcessedWebhookRecord:
        try:
            return ProcessedWebhookRecord(
                event_id=item["event_id"],
                provider=WebhookProvider.from_label(item.get("provider")),
                event_type=item.get("event_type"),
                processed_at=dt.datetime.fromisoformat(item["processed_at"]),
                expires_at=int(item["expires_at"]),
                correlation_id=item.get("correlation_id"),
                status=ProcessingStatus(item.get("status") or ProcessingStatus.AUTHORIZED.value),
                retry_count=int(item.get("retry_count") or 0),
                processing_started_at=_optional_int(item.get("processing_started_at")),
                completed_at=_optional_int(item.get("completed_at")),
                last_error=item.get("last_error"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DedupStoreUnavailable(f"Malformed dedup record for {event_id}: {e!r}") from e
