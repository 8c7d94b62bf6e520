"""
Pytest fixtures for the e-voucher test suite.

Provides:
- Structured logging configured at DEBUG, LogContext cleared per test
- ``captured_logs`` to assert on JSON log events
- A deterministic clock and random source
- In-memory stores and the services wired over them
- Actors for each context
- An in-memory SQLite engine for the SQL store tests
"""

import itertools
import json
import logging
import random
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from evoucher_kernel.db.engine import drop_tables, get_session_factory, init_engine_from_url, reset_engine
from evoucher_kernel.domain.clock import DeterministicClock
from evoucher_kernel.domain.vouchers import (
    BillingStatus,
    LineItem,
    LinkedBilling,
    TransactionType,
    Voucher,
    VoucherStatus,
)
from evoucher_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from evoucher_modules.vouchers.config import VoucherConfig
from evoucher_modules.vouchers.models import VoucherForm
from evoucher_services.stores import InMemoryAccountStore, InMemoryVoucherStore

TEST_NOW = datetime(2025, 1, 15, 9, 0, 0, tzinfo=timezone.utc)
TEST_TODAY = TEST_NOW.date()


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture evoucher logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, lifecycle):
            lifecycle.create_draft(form, actor)
            logs = captured_logs()
            assert any(r["message"] == "create_draft_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("evoucher")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Time, randomness, config
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(TEST_NOW)


@pytest.fixture
def rng():
    return random.Random(20250115)


@pytest.fixture
def config():
    return VoucherConfig()


# =============================================================================
# Actors
# =============================================================================


@pytest.fixture
def accounting_actor(config):
    """Holds approve, post, auto_approve and force_delete."""
    return config.actor_for("Ana Reyes", "accounting", user_id="u-accounting")


@pytest.fixture
def operations_actor(config):
    return config.actor_for("Ben Cruz", "operations", user_id="u-operations")


@pytest.fixture
def bd_actor(config):
    return config.actor_for("Carla Lim", "bd", user_id="u-bd")


# =============================================================================
# Stores and services
# =============================================================================


@pytest.fixture
def store():
    return InMemoryVoucherStore()


@pytest.fixture
def account_store():
    return InMemoryAccountStore()


@pytest.fixture
def billing_service(store, clock, config, rng):
    from evoucher_modules.billing.service import BillingService

    return BillingService(store, clock, config, rng)


@pytest.fixture
def lifecycle(store, clock, config, rng, billing_service):
    from evoucher_modules.vouchers.service import VoucherLifecycleService

    return VoucherLifecycleService(store, clock, config, rng, billing=billing_service)


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_voucher():
    """
    Build a ``Voucher`` directly, bypassing the builder.

    Defaults to a posted billing of 1000 with no payment recorded.
    """
    numbers = itertools.count(1)

    def _make(**overrides) -> Voucher:
        amount = Decimal(str(overrides.pop("amount", "1000")))
        fields = dict(
            id=str(uuid4()),
            voucher_number=f"EVRN20250115-{next(numbers):03d}",
            transaction_type=TransactionType.BILLING,
            status=VoucherStatus.POSTED,
            requestor_name="Test Requestor",
            line_items=(LineItem(id=str(uuid4()), particular="Service", amount=amount),),
            total_amount=amount,
            category="Brokerage Income",
            counterparty="Acme Trading",
            billing_status=BillingStatus.UNBILLED,
            request_date=TEST_TODAY,
        )
        fields.update(overrides)
        return Voucher(**fields)

    return _make


@pytest.fixture
def make_linked():
    def _make(billing: Voucher, amount=None) -> LinkedBilling:
        return LinkedBilling(
            billing_voucher_id=billing.id,
            amount=billing.remaining_balance if amount is None else amount,
            reference=billing.voucher_number,
        )

    return _make


@pytest.fixture
def expense_form():
    """A submittable expense form."""

    def _make(**overrides) -> VoucherForm:
        fields = dict(
            transaction_type=TransactionType.EXPENSE,
            purpose="Port charges for BKG-1001",
            category="Brokerage - FCL",
            sub_category="Port Charges",
            counterparty="Manila Port Services",
            project_reference="BKG-1001",
            line_items=(
                {"particular": "THC", "amount": "1500.00"},
                {"particular": "Storage Fee", "amount": "500"},
            ),
            payment_method="Cash",
        )
        fields.update(overrides)
        return VoucherForm(**fields)

    return _make


@pytest.fixture
def billing_form():
    """A submittable billing form."""

    def _make(**overrides) -> VoucherForm:
        fields = dict(
            transaction_type=TransactionType.BILLING,
            purpose="Brokerage for BKG-1001",
            category="Brokerage Income",
            counterparty="Acme Trading",
            project_reference="BKG-1001",
            line_items=({"particular": "Brokerage Fee", "amount": "1000"},),
            credit_terms="Net15",
        )
        fields.update(overrides)
        return VoucherForm(**fields)

    return _make


# =============================================================================
# SQL engine
# =============================================================================


@pytest.fixture
def sqlite_session_factory():
    """In-memory SQLite schema, torn down after the test."""
    from evoucher_modules._orm_registry import create_all_tables

    init_engine_from_url("sqlite:///:memory:")
    create_all_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()


@pytest.fixture
def today():
    return TEST_TODAY

