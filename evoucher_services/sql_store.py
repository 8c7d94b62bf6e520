"""
SQL-backed stores (``evoucher_services.sql_store``).

Responsibility:
    ``VoucherStore`` and ``AccountStore`` implementations over SQLAlchemy
    sessions, for deployments that keep vouchers in PostgreSQL (or SQLite
    for local tooling and tests).

Architecture position:
    Services -- imperative shell.  Owns session lifecycles; the lifecycle
    and billing services never see a ``Session``.

Invariants enforced:
    - Each call outside ``atomic()`` runs in its own transaction.
    - ``atomic()`` binds one session to the calling thread; every store
      call made by that thread inside the block shares it and commits or
      rolls back together.  Nested ``atomic()`` blocks join the outer one.
    - ``update`` locks the row (``SELECT ... FOR UPDATE``) before the
      version check, so compare-and-set holds across processes.

Failure modes:
    - DuplicateVoucherNumberError when the unique constraint on
      ``voucher_number`` fires.
    - ConcurrentModificationError for a stale ``expected_version``.
    - PersistenceError wrapping any other SQLAlchemy error; the original
      exception is kept as ``cause``.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import replace
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from evoucher_kernel.db.engine import get_session_factory
from evoucher_kernel.domain.vouchers import Voucher
from evoucher_kernel.exceptions import (
    AccountNotFoundError,
    DuplicateVoucherNumberError,
    EVoucherError,
    PersistenceError,
    VoucherNotFoundError,
)
from evoucher_kernel.logging_config import get_logger
from evoucher_modules.reporting.models import Account, AccountType
from evoucher_modules.reporting.orm import AccountModel
from evoucher_modules.vouchers.orm import VoucherModel
from evoucher_services.stores import (
    AccountStore,
    VoucherFilter,
    VoucherStore,
    check_patch,
    check_version,
)

logger = get_logger("services.sql_store")


class _SessionBinding:
    """Per-thread session shared by the calls inside one ``atomic()`` block."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._factory = session_factory
        self._local = threading.local()

    @property
    def current(self) -> Session | None:
        return getattr(self._local, "session", None)

    @contextmanager
    def scope(self, operation: str) -> Iterator[Session]:
        """Join the thread's atomic session, or run a one-call transaction."""
        session = self.current
        if session is not None:
            yield session
            return

        session = self._factory()
        try:
            yield session
            session.commit()
        except EVoucherError:
            session.rollback()
            raise
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error(
                "sql_store_operation_failed",
                extra={"operation": operation, "error": str(exc)},
            )
            raise PersistenceError(operation, str(exc), cause=exc) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def atomic(self) -> Iterator[None]:
        depth = getattr(self._local, "depth", 0)
        if depth:
            self._local.depth = depth + 1
            try:
                yield
            finally:
                self._local.depth = depth
            return

        session = self._factory()
        self._local.session = session
        self._local.depth = 1
        logger.debug("atomic_block_started")
        try:
            yield
            session.commit()
            logger.debug("atomic_block_committed")
        except SQLAlchemyError as exc:
            session.rollback()
            logger.warning("atomic_block_rolled_back", exc_info=True)
            raise PersistenceError("atomic", str(exc), cause=exc) from exc
        except BaseException:
            session.rollback()
            logger.warning("atomic_block_rolled_back")
            raise
        finally:
            session.close()
            self._local.session = None
            self._local.depth = 0


def _apply_filter(stmt, voucher_filter: VoucherFilter | None):
    if voucher_filter is None:
        return stmt
    if voucher_filter.transaction_type is not None:
        stmt = stmt.where(VoucherModel.transaction_type == voucher_filter.transaction_type.value)
    if voucher_filter.statuses is not None:
        stmt = stmt.where(VoucherModel.status.in_([s.value for s in voucher_filter.statuses]))
    if voucher_filter.billing_status is not None:
        stmt = stmt.where(VoucherModel.billing_status == voucher_filter.billing_status.value)
    if voucher_filter.project_reference is not None:
        stmt = stmt.where(VoucherModel.project_reference == voucher_filter.project_reference)
    if voucher_filter.statement_reference is not None:
        stmt = stmt.where(VoucherModel.statement_reference == voucher_filter.statement_reference)
    if voucher_filter.counterparty is not None:
        stmt = stmt.where(VoucherModel.counterparty == voucher_filter.counterparty)
    if voucher_filter.ids is not None:
        stmt = stmt.where(VoucherModel.id.in_(voucher_filter.ids))
    return stmt


class SqlAlchemyVoucherStore(VoucherStore):
    """``VoucherStore`` over a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._sessions = _SessionBinding(session_factory or get_session_factory())

    def _load(self, session: Session, voucher_id: str, lock: bool = False) -> VoucherModel:
        stmt = select(VoucherModel).where(VoucherModel.id == voucher_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise VoucherNotFoundError(voucher_id)
        return model

    def _number_taken(self, session: Session, voucher_number: str) -> bool:
        return session.execute(
            select(VoucherModel.id).where(VoucherModel.voucher_number == voucher_number)
        ).first() is not None

    def create(self, voucher: Voucher) -> Voucher:
        with self._sessions.scope("create") as session:
            if self._number_taken(session, voucher.voucher_number):
                raise DuplicateVoucherNumberError(voucher.voucher_number)
            model = VoucherModel.from_dto(voucher, version=1)
            session.add(model)
            try:
                session.flush()
            except IntegrityError as exc:
                # Lost the race for the number between check and insert.
                raise DuplicateVoucherNumberError(voucher.voucher_number, cause=exc) from exc
            stored = model.to_dto()

        logger.debug(
            "voucher_stored",
            extra={"voucher_id": stored.id, "voucher_number": stored.voucher_number},
        )
        return stored

    def get(self, voucher_id: str) -> Voucher:
        with self._sessions.scope("get") as session:
            return self._load(session, voucher_id).to_dto()

    def list(self, voucher_filter: VoucherFilter | None = None) -> list[Voucher]:
        with self._sessions.scope("list") as session:
            stmt = _apply_filter(select(VoucherModel), voucher_filter)
            stmt = stmt.order_by(VoucherModel.voucher_number)
            return [model.to_dto() for model in session.execute(stmt).scalars()]

    def update(
        self,
        voucher_id: str,
        patch: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> Voucher:
        with self._sessions.scope("update") as session:
            model = self._load(session, voucher_id, lock=True)
            current = model.to_dto()
            check_version(current, expected_version)
            check_patch(current, patch)

            changes = {k: v for k, v in patch.items() if k != "version"}
            new_number = changes.get("voucher_number", current.voucher_number)
            if new_number != current.voucher_number and self._number_taken(session, new_number):
                raise DuplicateVoucherNumberError(new_number)

            updated = replace(current, **changes, version=current.version + 1)
            model.apply_dto(updated, changed=set(changes))
            model.version = updated.version
            try:
                session.flush()
            except IntegrityError as exc:
                raise DuplicateVoucherNumberError(new_number, cause=exc) from exc
            return updated

    def delete(self, voucher_id: str) -> None:
        with self._sessions.scope("delete") as session:
            session.delete(self._load(session, voucher_id, lock=True))
            session.flush()

    @contextmanager
    def atomic(self) -> Iterator[SqlAlchemyVoucherStore]:
        with self._sessions.atomic():
            yield self


class SqlAlchemyAccountStore(AccountStore):
    """Read-only ``AccountStore`` over the ``accounts`` projection table."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._sessions = _SessionBinding(session_factory or get_session_factory())

    def list(
        self,
        account_type: AccountType | None = None,
        include_folders: bool = True,
    ) -> list[Account]:
        with self._sessions.scope("list_accounts") as session:
            stmt = select(AccountModel).order_by(AccountModel.code)
            if account_type is not None:
                stmt = stmt.where(AccountModel.account_type == AccountType(account_type).value)
            if not include_folders:
                stmt = stmt.where(AccountModel.is_folder.is_(False))
            return [model.to_dto() for model in session.execute(stmt).scalars()]

    def get(self, account_id: str) -> Account:
        with self._sessions.scope("get_account") as session:
            model = session.get(AccountModel, account_id)
            if model is None:
                raise AccountNotFoundError(account_id)
            return model.to_dto()
