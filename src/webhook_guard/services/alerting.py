"""Operator alerts (SNS) and run metrics (CloudWatch) for the sweep.

Publishing is best-effort: a failed publish is logged and never masks the
sweep result or the error being reported.
"""

import datetime as dt
import json
import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..models.enums import DiscrepancyKind, Severity
from ..models.reconciliation import ReconciliationRecord, SweepReport

logger = logging.getLogger(__name__)

# SNS subject limit
_MAX_SUBJECT_LENGTH = 100
_MAX_FINDINGS_IN_MESSAGE = 50


class AlertPublisher:
    """Publishes reconciliation alerts to an SNS topic.

    Without a topic ARN, alerts are only logged.
    """

    def __init__(
        self,
        topic_arn: str | None,
        environment: str = "dev",
        client: Any | None = None,
    ) -> None:
        """Initialize alert publisher.

        Args:
            topic_arn: SNS topic for operator alerts (optional)
            environment: Environment name included in alert subjects
            client: Pre-built boto3 SNS client (optional)
        """
        self._topic_arn = topic_arn
        self._environment = environment
        self._client = client if client is not None or not topic_arn else boto3.client("sns")

    def publish_findings(self, run_id: str, findings: list[ReconciliationRecord]) -> bool:
        """Send one alert summarising the given findings.

        Args:
            run_id: Sweep run ID
            findings: Findings to report

        Returns:
            True if an alert was published.
        """
        if not findings:
            return False

        top = max(findings, key=lambda f: f.severity.rank).severity
        subject = f"[{top.value}] Reconciliation: {len(findings)} finding(s) ({self._environment})"
        counts = {
            kind.value: sum(1 for f in findings if f.kind is kind)
            for kind in DiscrepancyKind
            if any(f.kind is kind for f in findings)
        }
        message = {
            "type": "reconciliation_findings",
            "environment": self._environment,
            "run_id": run_id,
            "severity": top.value,
            "counts": counts,
            "findings": [
                {
                    "finding_id": f.finding_id,
                    "kind": f.kind.value,
                    "severity": f.severity.value,
                    "provider_object_id": f.provider_object_id,
                    "event_id": f.event_id,
                    "action": f.action.value,
                    "detail": f.detail,
                }
                for f in findings[:_MAX_FINDINGS_IN_MESSAGE]
            ],
            "truncated": len(findings) > _MAX_FINDINGS_IN_MESSAGE,
        }
        return self._publish(subject, message, top)

    def publish_failure(self, run_id: str, error: dict[str, Any]) -> bool:
        """Send a CRITICAL alert for an aborted sweep.

        Args:
            run_id: Sweep run ID
            error: Serialised error (WebhookGuardError.to_dict())

        Returns:
            True if an alert was published.
        """
        subject = f"[CRITICAL] Reconciliation run failed ({self._environment})"
        message = {
            "type": "reconciliation_failure",
            "environment": self._environment,
            "run_id": run_id,
            "severity": Severity.CRITICAL.value,
            "error": error,
            "timestamp": dt.datetime.now(dt.UTC).isoformat(),
        }
        return self._publish(subject, message, Severity.CRITICAL)

    def _publish(self, subject: str, message: dict[str, Any], severity: Severity) -> bool:
        if not self._topic_arn:
            logger.warning("No alert topic configured; alert not sent: %s", subject)
            return False

        try:
            self._client.publish(
                TopicArn=self._topic_arn,
                Subject=subject[:_MAX_SUBJECT_LENGTH],
                Message=json.dumps(message, default=str),
                MessageAttributes={
                    "severity": {"DataType": "String", "StringValue": severity.value},
                },
            )
        except (ClientError, BotoCoreError):
            logger.exception("Failed to publish alert: %s", subject)
            return False

        logger.info("Alert published: %s", subject)
        return True


class MetricsPublisher:
    """Publishes per-run sweep counters to CloudWatch."""

    def __init__(
        self,
        namespace: str,
        environment: str = "dev",
        client: Any | None = None,
    ) -> None:
        self._namespace = namespace
        self._environment = environment
        self._client = client or boto3.client("cloudwatch")

    def publish_report(self, report: SweepReport) -> None:
        """Send the run's counters as CloudWatch metrics."""
        dimensions = [{"Name": "Environment", "Value": self._environment}]
        metric_data: list[dict[str, Any]] = [
            {"MetricName": "EventsChecked", "Value": report.events_checked, "Unit": "Count"},
            {"MetricName": "PagesFetched", "Value": report.pages_fetched, "Unit": "Count"},
            {"MetricName": "FindingsTotal", "Value": len(report.findings), "Unit": "Count"},
            {"MetricName": "NewFindings", "Value": report.new_findings, "Unit": "Count"},
            {
                "MetricName": "CorrectionsApplied",
                "Value": report.corrections_applied,
                "Unit": "Count",
            },
            {"MetricName": "AlertsSent", "Value": report.alerts_sent, "Unit": "Count"},
            {"MetricName": "DurationMs", "Value": report.duration_ms, "Unit": "Milliseconds"},
        ]
        for kind in DiscrepancyKind:
            metric_data.append(
                {
                    "MetricName": "Findings",
                    "Dimensions": [*dimensions, {"Name": "Kind", "Value": kind.value}],
                    "Value": report.count(kind),
                    "Unit": "Count",
                }
            )
        for datum in metric_data:
            datum.setdefault("Dimensions", dimensions)

        try:
            self._client.put_metric_data(Namespace=self._namespace, MetricData=metric_data)
        except (ClientError, BotoCoreError):
            logger.exception("Failed to publish reconciliation metrics")
