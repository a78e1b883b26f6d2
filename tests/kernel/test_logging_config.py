"""Tests for the structured logging system (ledger_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from ledger_kernel.exceptions import RefundExceedsPaidError
from ledger_kernel.logging_config import (
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

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "ledger_kernel.test"
        assert "ts" in record

    def test_extra_fields_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        entry_id = uuid4()
        get_logger("test").info("payment_recorded", extra={
            "ledger_entry_id": entry_id,
            "amount": Decimal("60.00"),
            "item_count": 2,
        })

        record = _parse_log(stream)
        assert record["ledger_entry_id"] == str(entry_id)
        assert record["amount"] == "60.00"
        assert record["item_count"] == 2

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="txn_1001", quote_id="q-1", producer="payment_webhook")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "txn_1001"
        assert record["quote_id"] == "q-1"
        assert record["producer"] == "payment_webhook"
        assert "actor_id" not in record

    def test_ledger_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise RefundExceedsPaidError("q-9", Decimal("70.01"), Decimal("70.00"))
        except RefundExceedsPaidError:
            get_logger("test").error("refund_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "RefundExceedsPaidError"
        assert record["exc_code"] == "REFUND_EXCEEDS_PAID"
        assert record["exc_quote_id"] == "q-9"
        assert record["exc_requested"] == "70.01"
        assert "traceback" in record


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_bind_restores_previous_values(self):
        LogContext.set(actor_id="outer")
        with LogContext.bind(actor_id="inner", quote_id="q-2"):
            assert LogContext.get_all() == {"actor_id": "inner", "quote_id": "q-2"}
        assert LogContext.get_all() == {"actor_id": "outer"}

    def test_bind_ignores_none_and_unknown_fields(self):
        with LogContext.bind(actor_id=None, not_a_field="x"):
            assert LogContext.get_all() == {}

    def test_set_ignores_unknown_fields(self):
        LogContext.set(quote_id="q-3", trace_id="t")
        assert LogContext.get_all() == {"quote_id": "q-3"}

    def test_clear(self):
        LogContext.set(correlation_id="c", producer="p")
        LogContext.clear()
        assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_configure_is_idempotent(self):
        first, first_stream = _make_handler()
        second, second_stream = _make_handler()
        configure_logging(handler=first)
        configure_logging(handler=second)

        get_logger("test").info("once")

        assert len(_parse_all_logs(first_stream)) == 1
        assert second_stream.getvalue() == ""

    def test_level_filters_records(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.WARNING, handler=handler)
        logger = get_logger("test")
        logger.info("dropped")
        logger.warning("kept")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["kept"]
