"""
Store collaborators (``evoucher_services.stores``).

Responsibility:
    The ``VoucherStore`` and ``AccountStore`` contracts the engine depends
    on, and thread-safe in-memory implementations used by tests, scripts
    and single-process deployments.

Architecture position:
    Services -- imperative shell.  Imports kernel domain types only.

Invariants enforced:
    - Voucher numbers are unique; a collision raises
      ``DuplicateVoucherNumberError`` (retryable) distinct from
      ``VoucherNotFoundError``.
    - Every write bumps ``Voucher.version``.  ``update`` with an
      ``expected_version`` is compare-and-set: a stale version raises
      ``ConcurrentModificationError`` and nothing is written.
    - ``id`` and ``transaction_type`` never change after creation.
    - ``atomic()`` applies every write inside the block or none of them.

Failure modes:
    - VoucherNotFoundError / AccountNotFoundError for unknown ids.
    - PersistenceError for writes the store cannot represent.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, fields, replace
from typing import Any

from evoucher_kernel.domain.vouchers import (
    BillingStatus,
    TransactionType,
    Voucher,
    VoucherStatus,
)
from evoucher_kernel.exceptions import (
    AccountNotFoundError,
    ConcurrentModificationError,
    DuplicateVoucherNumberError,
    ImmutableFieldError,
    PersistenceError,
    VoucherNotFoundError,
)
from evoucher_kernel.logging_config import get_logger
from evoucher_modules.reporting.models import Account, AccountType

logger = get_logger("services.stores")

IMMUTABLE_FIELDS = frozenset({"id", "transaction_type", "version"})

_VOUCHER_FIELDS = frozenset(f.name for f in fields(Voucher))


@dataclass(frozen=True)
class VoucherFilter:
    """Conjunctive filter; ``None`` fields match everything."""

    transaction_type: TransactionType | None = None
    statuses: tuple[VoucherStatus, ...] | None = None
    billing_status: BillingStatus | None = None
    project_reference: str | None = None
    statement_reference: str | None = None
    counterparty: str | None = None
    ids: tuple[str, ...] | None = None

    def matches(self, voucher: Voucher) -> bool:
        if self.transaction_type is not None and voucher.transaction_type != self.transaction_type:
            return False
        if self.statuses is not None and voucher.status not in self.statuses:
            return False
        if self.billing_status is not None and voucher.billing_status != self.billing_status:
            return False
        if self.project_reference is not None and voucher.project_reference != self.project_reference:
            return False
        if (
            self.statement_reference is not None
            and voucher.statement_reference != self.statement_reference
        ):
            return False
        if self.counterparty is not None and voucher.counterparty != self.counterparty:
            return False
        if self.ids is not None and voucher.id not in self.ids:
            return False
        return True


def check_patch(current: Voucher, patch: Mapping[str, Any]) -> None:
    """Reject patches to unknown or immutable fields."""
    for key, value in patch.items():
        if key not in _VOUCHER_FIELDS:
            raise PersistenceError("update", f"unknown voucher field '{key}'")
        if key in IMMUTABLE_FIELDS and value != getattr(current, key):
            raise ImmutableFieldError(current.id, key)


def check_version(current: Voucher, expected_version: int | None) -> None:
    if expected_version is not None and current.version != expected_version:
        raise ConcurrentModificationError(
            "voucher",
            current.id,
            f"expected version {expected_version}, found {current.version}",
        )


class VoucherStore(ABC):
    """Persistence contract for vouchers."""

    @abstractmethod
    def create(self, voucher: Voucher) -> Voucher:
        """Insert a new voucher; returns it with ``version`` 1."""

    @abstractmethod
    def get(self, voucher_id: str) -> Voucher:
        ...

    @abstractmethod
    def list(self, voucher_filter: VoucherFilter | None = None) -> list[Voucher]:
        ...

    @abstractmethod
    def update(
        self,
        voucher_id: str,
        patch: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> Voucher:
        ...

    @abstractmethod
    def delete(self, voucher_id: str) -> None:
        ...

    @abstractmethod
    def atomic(self) -> Any:
        """Context manager: all writes in the block apply, or none do."""


class AccountStore(ABC):
    """Read contract for the external ledger's accounts."""

    @abstractmethod
    def list(
        self,
        account_type: AccountType | None = None,
        include_folders: bool = True,
    ) -> list[Account]:
        ...

    @abstractmethod
    def get(self, account_id: str) -> Account:
        ...


class InMemoryVoucherStore(VoucherStore):
    """
    Thread-safe in-memory voucher store.

    A re-entrant lock serializes every read and write.  ``atomic()`` holds
    the lock for the whole block and restores a snapshot if it raises, so
    other threads never observe a half-applied block.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._vouchers: dict[str, Voucher] = {}
        self._numbers: dict[str, str] = {}

    def create(self, voucher: Voucher) -> Voucher:
        with self._lock:
            if voucher.id in self._vouchers:
                raise PersistenceError("create", f"voucher id {voucher.id} already exists")
            if voucher.voucher_number in self._numbers:
                raise DuplicateVoucherNumberError(voucher.voucher_number)
            stored = replace(voucher, version=1)
            self._vouchers[stored.id] = stored
            self._numbers[stored.voucher_number] = stored.id
        logger.debug(
            "voucher_stored",
            extra={"voucher_id": stored.id, "voucher_number": stored.voucher_number},
        )
        return stored

    def get(self, voucher_id: str) -> Voucher:
        with self._lock:
            try:
                return self._vouchers[voucher_id]
            except KeyError:
                raise VoucherNotFoundError(voucher_id) from None

    def list(self, voucher_filter: VoucherFilter | None = None) -> list[Voucher]:
        with self._lock:
            vouchers = list(self._vouchers.values())
        if voucher_filter is None:
            return vouchers
        return [v for v in vouchers if voucher_filter.matches(v)]

    def update(
        self,
        voucher_id: str,
        patch: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> Voucher:
        with self._lock:
            current = self.get(voucher_id)
            check_version(current, expected_version)
            check_patch(current, patch)

            new_number = patch.get("voucher_number", current.voucher_number)
            if new_number != current.voucher_number and new_number in self._numbers:
                raise DuplicateVoucherNumberError(new_number)

            changes = {k: v for k, v in patch.items() if k != "version"}
            updated = replace(current, **changes, version=current.version + 1)
            self._vouchers[voucher_id] = updated
            if new_number != current.voucher_number:
                del self._numbers[current.voucher_number]
                self._numbers[new_number] = voucher_id
            return updated

    def delete(self, voucher_id: str) -> None:
        with self._lock:
            current = self.get(voucher_id)
            del self._vouchers[voucher_id]
            del self._numbers[current.voucher_number]

    @contextmanager
    def atomic(self) -> Iterator[InMemoryVoucherStore]:
        with self._lock:
            vouchers = dict(self._vouchers)
            numbers = dict(self._numbers)
            try:
                yield self
            except BaseException:
                self._vouchers = vouchers
                self._numbers = numbers
                logger.warning("atomic_block_rolled_back")
                raise


class InMemoryAccountStore(AccountStore):
    """In-memory account projection, seeded by the caller."""

    def __init__(self, accounts: list[Account] | None = None) -> None:
        self._lock = threading.Lock()
        self._accounts: dict[str, Account] = {}
        for account in accounts or ():
            self.add(account)

    def add(self, account: Account) -> Account:
        with self._lock:
            self._accounts[account.id] = account
        return account

    def list(
        self,
        account_type: AccountType | None = None,
        include_folders: bool = True,
    ) -> list[Account]:
        with self._lock:
            accounts = list(self._accounts.values())
        return [
            a for a in accounts
            if (account_type is None or a.account_type == account_type)
            and (include_folders or not a.is_folder)
        ]

    def get(self, account_id: str) -> Account:
        with self._lock:
            try:
                return self._accounts[account_id]
            except KeyError:
                raise AccountNotFoundError(account_id) from None
