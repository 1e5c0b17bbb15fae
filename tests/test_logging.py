"""Tests for the structured logging system (recon_kernel/logging_config.py)."""

import json
import logging
from datetime import date
from io import StringIO
from uuid import uuid4

import pytest

from recon_kernel.exceptions import ExceedsRemainingBalanceError
from recon_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite's setup."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "recon_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("payment_recorded", extra={"amount": 40000, "status": "partial"})

        record = _parse_log(stream)
        assert record["amount"] == 40000
        assert record["status"] == "partial"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(invoice_id="inv-1", idempotency_key="stripe:pi_1")
        get_logger("test").info("with_context")

        record = _parse_log(stream)
        assert record["invoice_id"] == "inv-1"
        assert record["idempotency_key"] == "stripe:pi_1"

    def test_reconciliation_error_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ExceedsRemainingBalanceError("inv-1", 500, 300)
        except ExceedsRemainingBalanceError:
            get_logger("test").error("rejected", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ExceedsRemainingBalanceError"
        assert record["exc_code"] == "EXCEEDS_REMAINING_BALANCE"
        assert record["exc_amount_remaining"] == 300
        assert "traceback" in record

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare")

        record = _parse_log(stream)
        assert "invoice_id" not in record
        assert "transaction_id" not in record

    def test_uuid_and_date_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("typed", extra={"payment_id": uid, "due": date(2024, 3, 15)})

        record = _parse_log(stream)
        assert record["payment_id"] == str(uid)
        assert record["due"] == "2024-03-15"

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        for i in range(5):
            logger.info("line", extra={"i": i})

        assert [r["i"] for r in _parse_all_logs(stream)] == [0, 1, 2, 3, 4]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_and_get(self):
        LogContext.set(tenant_id="tenant-a")
        assert LogContext.get_all() == {"tenant_id": "tenant-a"}

    def test_clear(self):
        LogContext.set(tenant_id="tenant-a", actor_id="op-7")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous(self):
        LogContext.set(invoice_id="outer")
        with LogContext.bind(invoice_id="inner", transaction_id=uuid4()):
            assert LogContext.get_all()["invoice_id"] == "inner"
        assert LogContext.get_all() == {"invoice_id": "outer"}

    def test_bind_ignores_none_and_unknown(self):
        with LogContext.bind(invoice_id=None, not_a_field="x"):
            assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        reset_logging()
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        configure_logging(handler=handler)
        attached = logging.getLogger("recon_kernel").handlers
        assert sum(h is handler for h in attached) == 1

    def test_does_not_propagate_to_root(self):
        configure_logging()
        assert logging.getLogger("recon_kernel").propagate is False

    def test_get_logger_returns_child(self):
        assert get_logger("services.invoice_ledger").name == "recon_kernel.services.invoice_ledger"
