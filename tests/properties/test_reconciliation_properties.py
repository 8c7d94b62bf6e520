"""
Property-based tests for reconciliation and balance aggregation.

Properties checked over generated inputs:
- A statement's remaining balance is the sum of its members' balances and
  never exceeds its total.
- Only statements strictly above the collectible threshold are returned.
- Linking a statement produces links that sum to its remaining balance.
- Recorded payments never drive a billing's amount due below zero.
- Allocating a received amount conserves it: applied plus unapplied credit.
- The balance sheet discrepancy is exactly assets - (liabilities + equity
  + net income).
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import HealthCheck, assume, given, settings
from hypothesis import strategies as st
from hypothesis.strategies import composite

from evoucher_engines.payments import Billing, allocate_collection, record_payment
from evoucher_engines.statements import (
    COLLECTIBLE_THRESHOLD,
    compute_open_statements,
    fold_statement,
    link_statement_to_collection,
)
from evoucher_kernel.domain.amounts import sum_amounts
from evoucher_kernel.domain.vouchers import (
    BillingStatus,
    LineItem,
    TransactionType,
    Voucher,
    VoucherStatus,
)
from evoucher_kernel.exceptions import OverpaymentError
from evoucher_modules.reporting.models import Account, AccountType
from evoucher_modules.reporting.statements import compute_financial_report

amounts = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("999999.99"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)
balances = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("999999.99"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


@composite
def billed_voucher(draw, refs=("SOA-A", "SOA-B", "SOA-C")):
    total = draw(amounts)
    paid = draw(st.one_of(
        st.none(),
        st.decimals(min_value=Decimal("0"), max_value=total, places=2),
    ))
    return Voucher(
        id=str(uuid4()),
        voucher_number=f"EVRN20250115-{draw(st.integers(0, 999)):03d}",
        transaction_type=TransactionType.BILLING,
        status=VoucherStatus.POSTED,
        requestor_name="Prop Tester",
        line_items=(LineItem(id="li", particular="Fee", amount=total),),
        total_amount=total,
        counterparty="Acme Trading",
        billing_status=BillingStatus.BILLED,
        statement_reference=draw(st.sampled_from(refs)),
        amount_paid=paid,
    )


@composite
def account(draw):
    return Account(
        id=str(uuid4()),
        code=str(draw(st.integers(1000, 9999))),
        name="Generated",
        account_type=draw(st.sampled_from(list(AccountType))),
        balance=draw(balances),
        is_folder=draw(st.booleans()),
    )


class TestStatementProperties:

    @given(st.lists(billed_voucher(), min_size=1, max_size=20))
    @settings(max_examples=150)
    def test_remaining_balance_is_member_sum(self, vouchers):
        for statement in compute_open_statements(vouchers):
            members = [v for v in vouchers if v.statement_reference == statement.ref]
            assert statement.item_count == len(members)
            assert statement.total_amount == sum_amounts(v.total_amount for v in members)
            assert statement.remaining_balance == sum_amounts(v.remaining_balance for v in members)
            assert statement.remaining_balance <= statement.total_amount

    @given(st.lists(billed_voucher(), min_size=1, max_size=20))
    @settings(max_examples=150)
    def test_only_collectible_statements_returned(self, vouchers):
        returned = {s.ref for s in compute_open_statements(vouchers)}
        for ref in {v.statement_reference for v in vouchers}:
            members = [v for v in vouchers if v.statement_reference == ref]
            balance = sum_amounts(v.remaining_balance for v in members)
            assert (ref in returned) == (balance > COLLECTIBLE_THRESHOLD)

    @given(st.lists(billed_voucher(refs=("SOA-X",)), min_size=1, max_size=15))
    @settings(max_examples=150)
    def test_links_sum_to_remaining_balance(self, vouchers):
        statement = fold_statement("SOA-X", vouchers)
        assume(statement.remaining_balance > COLLECTIBLE_THRESHOLD)

        link = link_statement_to_collection(statement)

        assert link.total_amount == statement.remaining_balance
        assert link.line_item.amount == statement.remaining_balance
        assert len(link.linked_billings) == len(vouchers)
        for voucher, linked in zip(vouchers, link.linked_billings):
            assert linked.amount == voucher.remaining_balance


class TestPaymentProperties:

    @given(amounts, st.lists(amounts, min_size=1, max_size=10))
    @settings(max_examples=200)
    def test_amount_due_never_negative(self, total, payments):
        billing = Billing(
            id="b",
            invoice_number=None,
            customer_name="Acme Trading",
            total_amount=total,
            amount_paid=Decimal("0"),
            due_date=date(2025, 2, 1),
            as_of=date(2025, 1, 15),
        )
        applied = Decimal("0")
        for payment in payments:
            try:
                billing = record_payment(billing, payment)
                applied += payment
            except OverpaymentError:
                assert payment > billing.amount_due
            assert billing.amount_due >= 0
        assert billing.amount_paid == applied

    @given(balances, st.lists(amounts, max_size=8))
    @settings(max_examples=200)
    def test_allocation_conserves_received_amount(self, received, totals):
        billings = [
            Billing(
                id=f"b-{i}",
                invoice_number=None,
                customer_name="Acme Trading",
                total_amount=total,
                amount_paid=Decimal("0"),
                due_date=date(2025, 2, 1 + i),
                as_of=date(2025, 1, 15),
            )
            for i, total in enumerate(totals)
        ]

        allocation = allocate_collection(received, billings)

        assert allocation.applied_total + allocation.unapplied_credit == received
        assert allocation.unapplied_credit >= 0
        due = {b.id: b.amount_due for b in billings}
        for linked in allocation.allocations:
            assert Decimal("0") < linked.amount <= due[linked.billing_voucher_id]


class TestBalanceSheetProperties:

    @given(st.lists(account(), max_size=30))
    @settings(max_examples=150)
    def test_discrepancy_is_accounting_identity(self, accounts):
        report = compute_financial_report(accounts)
        leaves = [a for a in accounts if not a.is_folder]

        def total(kind):
            return sum_amounts(a.balance for a in leaves if a.account_type == kind)

        net_income = total(AccountType.INCOME) - total(AccountType.EXPENSE)
        expected = total(AccountType.ASSET) - (
            total(AccountType.LIABILITY) + total(AccountType.EQUITY) + net_income
        )

        sheet = report.balance_sheet
        assert report.income_statement.net_income == net_income
        assert sheet.discrepancy == expected
        assert sheet.is_balanced == (abs(expected) <= Decimal("0.01"))


@pytest.mark.slow
class TestLargeStatements:

    @given(st.lists(billed_voucher(refs=("SOA-BIG",)), min_size=100, max_size=300))
    @settings(
        max_examples=10,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.data_too_large],
    )
    def test_large_statement_folds(self, vouchers):
        statement = fold_statement("SOA-BIG", vouchers)
        assert statement.item_count == len(vouchers)
