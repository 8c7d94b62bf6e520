"""
Account ORM Model (``evoucher_modules.reporting.orm``).

Responsibility
--------------
Local projection of the external ledger's accounts, read by the
SQL-backed ``AccountStore``.  The engine never writes balances; whatever
syncs the ledger owns this table.

Architecture position
---------------------
**Modules layer** -- persistence.  MUST NOT be imported by
``evoucher_kernel``.
"""

from decimal import Decimal

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from evoucher_kernel.db.base import TrackedBase
from evoucher_modules.reporting.models import Account, AccountType


class AccountModel(TrackedBase):
    """
    ORM model for ledger accounts.

    Guarantees:
        - code is unique (uq_accounts_code).
        - balance is non-negative; sign follows account_type.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("code", name="uq_accounts_code"),
        Index("idx_accounts_account_type", "account_type"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_type: Mapped[str] = mapped_column(String(20), nullable=False)
    balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    is_folder: Mapped[bool] = mapped_column(Boolean, default=False)
    parent_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def to_dto(self) -> Account:
        """Convert ORM model to frozen dataclass."""
        return Account(
            id=self.id,
            code=self.code,
            name=self.name,
            account_type=AccountType(self.account_type),
            balance=self.balance,
            is_folder=self.is_folder,
            parent_id=self.parent_id,
        )

    @classmethod
    def from_dto(cls, dto: Account) -> "AccountModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            code=dto.code,
            name=dto.name,
            account_type=dto.account_type.value,
            balance=dto.balance,
            is_folder=dto.is_folder,
            parent_id=dto.parent_id,
        )

    def __repr__(self) -> str:
        return f"<AccountModel {self.code}: {self.name} ({self.account_type})>"
