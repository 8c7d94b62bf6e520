"""
Tests for the in-memory voucher and account stores.

The store owns ``version``: every write bumps it, and ``update`` with an
``expected_version`` is compare-and-set.
"""

import threading
from decimal import Decimal

import pytest

from evoucher_kernel.domain.vouchers import BillingStatus, TransactionType, VoucherStatus
from evoucher_kernel.exceptions import (
    ConcurrentModificationError,
    DuplicateVoucherNumberError,
    ImmutableFieldError,
    PersistenceError,
    VoucherNotFoundError,
)
from evoucher_modules.reporting.models import Account, AccountType
from evoucher_services.stores import VoucherFilter


class TestCreateAndGet:

    def test_create_assigns_version_one(self, store, make_voucher):
        stored = store.create(make_voucher())
        assert stored.version == 1
        assert store.get(stored.id) == stored

    def test_duplicate_number_is_retryable_error(self, store, make_voucher):
        first = store.create(make_voucher())

        with pytest.raises(DuplicateVoucherNumberError) as exc_info:
            store.create(make_voucher(voucher_number=first.voucher_number))

        assert exc_info.value.voucher_number == first.voucher_number
        assert len(store.list()) == 1

    def test_duplicate_id_rejected(self, store, make_voucher):
        voucher = store.create(make_voucher())
        with pytest.raises(PersistenceError):
            store.create(make_voucher(id=voucher.id))

    def test_missing_id(self, store):
        with pytest.raises(VoucherNotFoundError):
            store.get("missing")


class TestUpdate:

    def test_update_bumps_version(self, store, make_voucher):
        voucher = store.create(make_voucher())

        updated = store.update(voucher.id, {"counterparty": "Globex"}, expected_version=1)

        assert updated.version == 2
        assert store.get(voucher.id).counterparty == "Globex"

    def test_stale_version_writes_nothing(self, store, make_voucher):
        voucher = store.create(make_voucher())
        store.update(voucher.id, {"counterparty": "Globex"}, expected_version=1)

        with pytest.raises(ConcurrentModificationError):
            store.update(voucher.id, {"counterparty": "Initech"}, expected_version=1)

        assert store.get(voucher.id).counterparty == "Globex"

    def test_transaction_type_is_immutable(self, store, make_voucher):
        voucher = store.create(make_voucher())
        with pytest.raises(ImmutableFieldError):
            store.update(voucher.id, {"transaction_type": TransactionType.EXPENSE})

    def test_unchanged_immutable_field_allowed(self, store, make_voucher):
        voucher = store.create(make_voucher())
        store.update(voucher.id, {"transaction_type": TransactionType.BILLING})

    def test_unknown_field_rejected(self, store, make_voucher):
        voucher = store.create(make_voucher())
        with pytest.raises(PersistenceError):
            store.update(voucher.id, {"colour": "blue"})

    def test_renumber_to_taken_number(self, store, make_voucher):
        first = store.create(make_voucher())
        second = store.create(make_voucher())
        with pytest.raises(DuplicateVoucherNumberError):
            store.update(second.id, {"voucher_number": first.voucher_number})

    def test_renumber_frees_old_number(self, store, make_voucher):
        voucher = store.create(make_voucher(voucher_number="EVRN20250115-001"))
        store.update(voucher.id, {"voucher_number": "EVRN20250115-999"})
        store.create(make_voucher(voucher_number="EVRN20250115-001"))


class TestListAndDelete:

    def test_filter_is_conjunctive(self, store, make_voucher):
        billed = store.create(make_voucher(billing_status=BillingStatus.BILLED, statement_reference="SOA-1"))
        store.create(make_voucher(billing_status=BillingStatus.BILLED, statement_reference="SOA-2"))
        store.create(make_voucher(transaction_type=TransactionType.EXPENSE, statement_reference="SOA-1"))

        result = store.list(VoucherFilter(
            transaction_type=TransactionType.BILLING,
            billing_status=BillingStatus.BILLED,
            statement_reference="SOA-1",
        ))

        assert [v.id for v in result] == [billed.id]

    def test_status_and_id_filters(self, store, make_voucher):
        draft = store.create(make_voucher(status=VoucherStatus.DRAFT))
        store.create(make_voucher())

        assert [v.id for v in store.list(VoucherFilter(statuses=(VoucherStatus.DRAFT,)))] == [draft.id]
        assert [v.id for v in store.list(VoucherFilter(ids=(draft.id,)))] == [draft.id]

    def test_delete_frees_number(self, store, make_voucher):
        voucher = store.create(make_voucher())
        store.delete(voucher.id)

        assert store.list() == []
        store.create(make_voucher(voucher_number=voucher.voucher_number))

    def test_delete_missing(self, store):
        with pytest.raises(VoucherNotFoundError):
            store.delete("missing")


class TestAtomic:

    def test_rollback_restores_every_write(self, store, make_voucher):
        existing = store.create(make_voucher())

        with pytest.raises(RuntimeError):
            with store.atomic():
                store.create(make_voucher())
                store.update(existing.id, {"amount_paid": Decimal("1000")})
                raise RuntimeError("boom")

        assert [v.id for v in store.list()] == [existing.id]
        assert store.get(existing.id).amount_paid is None

    def test_commit_keeps_writes(self, store, make_voucher):
        with store.atomic():
            voucher = store.create(make_voucher())
        assert store.get(voucher.id).version == 1

    def test_other_threads_wait_for_block(self, store, make_voucher):
        voucher = store.create(make_voucher())
        entered = threading.Event()
        seen = []

        def reader():
            entered.wait()
            seen.append(store.get(voucher.id).counterparty)

        thread = threading.Thread(target=reader)
        thread.start()
        with store.atomic():
            store.update(voucher.id, {"counterparty": "Half"})
            entered.set()
            store.update(voucher.id, {"counterparty": "Done"})
        thread.join()

        assert seen == ["Done"]


class TestInMemoryAccountStore:

    def test_filters(self, account_store):
        account_store.add(Account("a", "1000", "Cash", AccountType.ASSET, "10"))
        account_store.add(Account("b", "1900", "Assets", AccountType.ASSET, is_folder=True))
        account_store.add(Account("c", "4000", "Fees", AccountType.INCOME, "5"))

        assert {a.id for a in account_store.list(AccountType.ASSET)} == {"a", "b"}
        assert {a.id for a in account_store.list(include_folders=False)} == {"a", "c"}
        assert account_store.get("c").balance == Decimal("5.00")
