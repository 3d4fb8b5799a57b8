"""Unit tests for correlation ID logging helpers."""

import logging

from webhook_guard.utils.logging import (
    CorrelationIdFilter,
    StructuredFormatter,
    clear_correlation_id,
    get_correlation_id,
    get_logger,
    log_authorization_decision,
    log_reconciliation_finding,
    set_correlation_id,
)


class TestCorrelationId:
    def test_set_and_clear(self):
        assert set_correlation_id("abc") == "abc"
        assert get_correlation_id() == "abc"

        clear_correlation_id()

        assert get_correlation_id() is None

    def test_generated_when_missing(self):
        generated = set_correlation_id()
        try:
            assert len(generated) == 36
        finally:
            clear_correlation_id()

    def test_get_logger_adds_filter_once(self):
        logger = get_logger("webhook_guard.test.filter")
        get_logger("webhook_guard.test.filter")

        assert sum(isinstance(f, CorrelationIdFilter) for f in logger.filters) == 1

    def test_formatter_prefixes_correlation_id(self):
        set_correlation_id("corr-fmt")
        try:
            record = logging.LogRecord("x", logging.INFO, __file__, 1, "hello", None, None)
            line = StructuredFormatter("%(message)s").format(record)
        finally:
            clear_correlation_id()

        assert line == "[corr-fmt] hello"


class TestDecisionLogging:
    def test_allow_logged_at_info(self, caplog):
        caplog.set_level(logging.INFO)
        logger = get_logger("webhook_guard.test.decision")

        log_authorization_decision(
            logger, True, provider="stripe", event_id="evt_1", duplicate="false"
        )

        record = caplog.records[-1]
        assert record.levelno == logging.INFO
        assert "Webhook authorization: allow" in record.getMessage()
        assert "event_id=evt_1" in record.getMessage()
        assert record.provider == "stripe"

    def test_deny_logged_at_warning(self, caplog):
        logger = get_logger("webhook_guard.test.decision")

        log_authorization_decision(logger, False, reason="Invalid signature", error_code="ERR_AUTH_003")

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.error_code == "ERR_AUTH_003"


class TestFindingLogging:
    def test_level_follows_severity(self, caplog):
        caplog.set_level(logging.INFO)
        logger = get_logger("webhook_guard.test.finding")

        for severity in ("LOW", "MEDIUM", "HIGH", "CRITICAL"):
            log_reconciliation_finding(
                logger, "missing_locally", "pi_1", severity=severity, action="alerted"
            )

        levels = [r.levelno for r in caplog.records[-4:]]
        assert levels == [logging.INFO, logging.WARNING, logging.ERROR, logging.ERROR]
