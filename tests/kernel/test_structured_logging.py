"""Tests for the structured logging system (evoucher_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO

import pytest

from evoucher_kernel.domain.vouchers import VoucherStatus
from evoucher_kernel.exceptions import OverpaymentError
from evoucher_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state around each test, then restore the suite config."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


def _parse_log(stream: StringIO) -> dict:
    return _parse_all_logs(stream)[0]


class TestStructuredFormatter:

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "evoucher.test"
        assert "ts" in record

    def test_extra_fields_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "posted",
            extra={"amount": Decimal("1750.00"), "status": VoucherStatus.POSTED},
        )

        record = _parse_log(stream)
        assert record["amount"] == "1750.00"
        assert record["status"] == "posted"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(voucher_number="EVRN20250115-001", actor_name="Ana Reyes")
        get_logger("test").info("with_context")

        record = _parse_log(stream)
        assert record["voucher_number"] == "EVRN20250115-001"
        assert record["actor_name"] == "Ana Reyes"

    def test_exception_attributes_flattened(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise OverpaymentError("b-1", Decimal("700"), Decimal("600"))
        except OverpaymentError:
            get_logger("test").exception("payment_failed")

        record = _parse_log(stream)
        assert record["exc_type"] == "OverpaymentError"
        assert record["exc_code"] == "OVERPAYMENT"
        assert record["exc_billing_id"] == "b-1"
        assert record["exc_amount_due"] == "600"
        assert "traceback" in record


class TestLogContext:

    def test_unknown_field_rejected_by_set(self):
        with pytest.raises(KeyError):
            LogContext.set(not_a_field="x")

    def test_bind_restores_previous_values(self):
        LogContext.set(voucher_id="outer")
        with LogContext.bind(voucher_id="inner", statement_ref="SOA-1"):
            assert LogContext.get_all()["voucher_id"] == "inner"
            assert LogContext.get_all()["statement_ref"] == "SOA-1"
        assert LogContext.get_all() == {"voucher_id": "outer"}

    def test_bind_ignores_none_and_unknown(self):
        with LogContext.bind(voucher_id=None, something_else="x"):
            assert LogContext.get_all() == {}

    def test_clear(self):
        LogContext.set(correlation_id="c-1")
        LogContext.clear()
        assert LogContext.get_all() == {}


class TestConfigureLogging:

    def test_idempotent(self):
        first, first_stream = _make_handler()
        second, second_stream = _make_handler()
        configure_logging(handler=first)
        configure_logging(handler=second)

        get_logger("test").info("once")

        assert len(_parse_all_logs(first_stream)) == 1
        assert second_stream.getvalue() == ""

    def test_level_filters(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.WARNING, handler=handler)
        logger = get_logger("test")
        logger.info("dropped")
        logger.warning("kept")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["kept"]

    def test_does_not_propagate_to_root(self):
        configure_logging(handler=logging.NullHandler())
        assert logging.getLogger("evoucher").propagate is False
