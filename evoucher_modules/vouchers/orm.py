"""
Voucher ORM Models (``evoucher_modules.vouchers.orm``).

Responsibility
--------------
SQLAlchemy persistence models for vouchers.  Maps the frozen ``Voucher``
dataclass to the ``vouchers`` table; line items, linked billings and
history entries are stored in child tables.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``evoucher_kernel.db.base``
and the kernel voucher types.  MUST NOT be imported by ``evoucher_kernel``.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from evoucher_kernel.db.base import Base, TrackedBase
from evoucher_kernel.domain.vouchers import (
    BillingStatus,
    CreditTerms,
    HistoryEntry,
    LineItem,
    LinkedBilling,
    PaymentMethod,
    TransactionSubtype,
    TransactionType,
    Voucher,
    VoucherStatus,
)


def _value(member):
    return member.value if member is not None else None


# ---------------------------------------------------------------------------
# 1. VoucherModel
# ---------------------------------------------------------------------------


class VoucherModel(TrackedBase):
    """
    ORM model for vouchers.

    Guarantees:
        - voucher_number is unique (uq_vouchers_voucher_number).
        - Enum fields are stored as their string values.
        - ``version`` is maintained by the store, never by callers.
    """

    __tablename__ = "vouchers"

    __table_args__ = (
        UniqueConstraint("voucher_number", name="uq_vouchers_voucher_number"),
        Index("idx_vouchers_transaction_type", "transaction_type"),
        Index("idx_vouchers_status", "status"),
        Index("idx_vouchers_statement_reference", "statement_reference"),
        Index("idx_vouchers_project_reference", "project_reference"),
    )

    # Voucher ids are opaque strings, not necessarily UUIDs.
    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    voucher_number: Mapped[str] = mapped_column(String(50), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    requestor_name: Mapped[str] = mapped_column(String(255), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    transaction_subtype: Mapped[str | None] = mapped_column(String(30), nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sub_category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    counterparty: Mapped[str | None] = mapped_column(String(255), nullable=True)
    project_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    source_account_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    purpose: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    credit_terms: Mapped[str | None] = mapped_column(String(10), nullable=True)
    request_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    booking_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    source_module: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_billable: Mapped[bool] = mapped_column(Boolean, default=False)

    billing_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    statement_reference: Mapped[str | None] = mapped_column(String(50), nullable=True)
    amount_paid: Mapped[Decimal | None] = mapped_column(nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    approver_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    posted_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    entered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    line_items: Mapped[list["VoucherLineItemModel"]] = relationship(
        back_populates="voucher",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="VoucherLineItemModel.position",
    )
    linked_billings: Mapped[list["VoucherLinkedBillingModel"]] = relationship(
        back_populates="voucher",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="VoucherLinkedBillingModel.position",
    )
    history: Mapped[list["VoucherHistoryModel"]] = relationship(
        back_populates="voucher",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="VoucherHistoryModel.position",
    )

    def to_dto(self) -> Voucher:
        """Convert ORM model to frozen dataclass."""
        return Voucher(
            id=self.id,
            voucher_number=self.voucher_number,
            transaction_type=TransactionType(self.transaction_type),
            status=VoucherStatus(self.status),
            requestor_name=self.requestor_name,
            line_items=tuple(item.to_dto() for item in self.line_items),
            total_amount=self.total_amount,
            transaction_subtype=(
                TransactionSubtype(self.transaction_subtype) if self.transaction_subtype else None
            ),
            category=self.category,
            sub_category=self.sub_category,
            counterparty=self.counterparty,
            project_reference=self.project_reference,
            source_account_id=self.source_account_id,
            linked_billings=tuple(link.to_dto() for link in self.linked_billings),
            purpose=self.purpose,
            description=self.description,
            currency=self.currency,
            payment_method=PaymentMethod(self.payment_method) if self.payment_method else None,
            credit_terms=CreditTerms(self.credit_terms) if self.credit_terms else None,
            request_date=self.request_date,
            due_date=self.due_date,
            notes=self.notes,
            booking_id=self.booking_id,
            source_module=self.source_module,
            is_billable=self.is_billable,
            billing_status=BillingStatus(self.billing_status) if self.billing_status else None,
            statement_reference=self.statement_reference,
            amount_paid=self.amount_paid,
            invoice_number=self.invoice_number,
            approver_name=self.approver_name,
            approved_at=self.approved_at,
            posted_by_name=self.posted_by_name,
            posted_at=self.posted_at,
            rejection_reason=self.rejection_reason,
            history=tuple(entry.to_dto() for entry in self.history),
            created_at=self.entered_at,
            version=self.version,
        )

    def apply_dto(self, dto: Voucher, changed: set[str] | None = None) -> None:
        """
        Copy dataclass state onto this row.

        Child collections are rebuilt only when named in ``changed`` (all of
        them when ``changed`` is None).
        """
        self.voucher_number = dto.voucher_number
        self.transaction_type = dto.transaction_type.value
        self.status = dto.status.value
        self.requestor_name = dto.requestor_name
        self.total_amount = dto.total_amount
        self.transaction_subtype = _value(dto.transaction_subtype)
        self.category = dto.category
        self.sub_category = dto.sub_category
        self.counterparty = dto.counterparty
        self.project_reference = dto.project_reference
        self.source_account_id = dto.source_account_id
        self.purpose = dto.purpose
        self.description = dto.description
        self.currency = dto.currency
        self.payment_method = _value(dto.payment_method)
        self.credit_terms = _value(dto.credit_terms)
        self.request_date = dto.request_date
        self.due_date = dto.due_date
        self.notes = dto.notes
        self.booking_id = dto.booking_id
        self.source_module = dto.source_module
        self.is_billable = dto.is_billable
        self.billing_status = _value(dto.billing_status)
        self.statement_reference = dto.statement_reference
        self.amount_paid = dto.amount_paid
        self.invoice_number = dto.invoice_number
        self.approver_name = dto.approver_name
        self.approved_at = dto.approved_at
        self.posted_by_name = dto.posted_by_name
        self.posted_at = dto.posted_at
        self.rejection_reason = dto.rejection_reason
        self.entered_at = dto.created_at

        if changed is None or "line_items" in changed:
            self.line_items = [
                VoucherLineItemModel.from_dto(item, position)
                for position, item in enumerate(dto.line_items)
            ]
        if changed is None or "linked_billings" in changed:
            self.linked_billings = [
                VoucherLinkedBillingModel.from_dto(link, position)
                for position, link in enumerate(dto.linked_billings)
            ]
        if changed is None or "history" in changed:
            self.history = [
                VoucherHistoryModel.from_dto(entry, position)
                for position, entry in enumerate(dto.history)
            ]

    @classmethod
    def from_dto(cls, dto: Voucher, version: int = 1) -> "VoucherModel":
        """Create ORM model from frozen dataclass."""
        model = cls(id=dto.id, version=version)
        model.apply_dto(dto)
        return model

    def __repr__(self) -> str:
        return f"<VoucherModel {self.voucher_number}: {self.transaction_type} {self.status}>"


# ---------------------------------------------------------------------------
# 2. Child tables
# ---------------------------------------------------------------------------


class VoucherLineItemModel(Base):
    """One line item row; ``position`` keeps form order."""

    __tablename__ = "voucher_line_items"

    __table_args__ = (
        Index("idx_voucher_line_items_voucher_id", "voucher_id"),
    )

    voucher_id: Mapped[str] = mapped_column(
        ForeignKey("vouchers.id", ondelete="CASCADE"), nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    line_id: Mapped[str] = mapped_column(String(64), nullable=False)
    particular: Mapped[str] = mapped_column(String(255), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    voucher: Mapped["VoucherModel"] = relationship(back_populates="line_items")

    def to_dto(self) -> LineItem:
        return LineItem(
            id=self.line_id,
            particular=self.particular or "",
            description=self.description or "",
            amount=self.amount,
        )

    @classmethod
    def from_dto(cls, dto: LineItem, position: int) -> "VoucherLineItemModel":
        return cls(
            position=position,
            line_id=dto.id,
            particular=dto.particular,
            description=dto.description,
            amount=dto.amount,
        )


class VoucherLinkedBillingModel(Base):
    """A collection's claim against one billing."""

    __tablename__ = "voucher_linked_billings"

    __table_args__ = (
        Index("idx_voucher_linked_billings_voucher_id", "voucher_id"),
        Index("idx_voucher_linked_billings_billing_id", "billing_voucher_id"),
    )

    voucher_id: Mapped[str] = mapped_column(
        ForeignKey("vouchers.id", ondelete="CASCADE"), nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    # Not a foreign key: a billing may be deleted after it was linked.
    billing_voucher_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    voucher: Mapped["VoucherModel"] = relationship(back_populates="linked_billings")

    def to_dto(self) -> LinkedBilling:
        return LinkedBilling(
            billing_voucher_id=self.billing_voucher_id,
            amount=self.amount,
            reference=self.reference,
        )

    @classmethod
    def from_dto(cls, dto: LinkedBilling, position: int) -> "VoucherLinkedBillingModel":
        return cls(
            position=position,
            billing_voucher_id=dto.billing_voucher_id,
            amount=dto.amount,
            reference=dto.reference,
        )


class VoucherHistoryModel(Base):
    """Append-only audit trail row."""

    __tablename__ = "voucher_history"

    __table_args__ = (
        Index("idx_voucher_history_voucher_id", "voucher_id"),
        Index("idx_voucher_history_reference", "reference"),
    )

    voucher_id: Mapped[str] = mapped_column(
        ForeignKey("vouchers.id", ondelete="CASCADE"), nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    actor_name: Mapped[str] = mapped_column(String(255), nullable=False)
    at: Mapped[datetime] = mapped_column(nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    voucher: Mapped["VoucherModel"] = relationship(back_populates="history")

    def to_dto(self) -> HistoryEntry:
        return HistoryEntry(
            status=VoucherStatus(self.status),
            action=self.action,
            actor_name=self.actor_name,
            at=self.at,
            remarks=self.remarks,
            reference=self.reference,
        )

    @classmethod
    def from_dto(cls, dto: HistoryEntry, position: int) -> "VoucherHistoryModel":
        return cls(
            position=position,
            status=dto.status.value,
            action=dto.action,
            actor_name=dto.actor_name,
            at=dto.at,
            remarks=dto.remarks,
            reference=dto.reference,
        )
