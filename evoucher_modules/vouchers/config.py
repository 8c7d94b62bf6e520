"""
Voucher Configuration Schema.

Defines the structure and defaults for voucher numbering, reconciliation
thresholds and the context policy (which transaction type a context
creates by default and which capabilities its actors hold).  Actual
values are loaded from YAML by ``evoucher_config``.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Self

from evoucher_kernel.domain.amounts import AMOUNT_TOLERANCE, DEFAULT_CURRENCY
from evoucher_kernel.domain.identity import Actor, Capability
from evoucher_kernel.domain.vouchers import TransactionType
from evoucher_kernel.logging_config import get_logger

logger = get_logger("modules.vouchers.config")


def _default_context_types() -> dict[str, str]:
    return {
        "bd": TransactionType.BUDGET_REQUEST.value,
        "accounting": TransactionType.EXPENSE.value,
        "operations": TransactionType.EXPENSE.value,
        "collection": TransactionType.COLLECTION.value,
        "billing": TransactionType.BILLING.value,
    }


def _default_context_capabilities() -> dict[str, tuple[str, ...]]:
    return {
        "accounting": (
            Capability.APPROVE.value,
            Capability.POST.value,
            Capability.AUTO_APPROVE.value,
            Capability.FORCE_DELETE.value,
        ),
        "operations": (),
        "bd": (),
        "collection": (),
        "billing": (),
    }


@dataclass
class VoucherConfig:
    """
    Configuration schema for the voucher lifecycle and reconciliation.

    Auto-approval is granted through ``context_capabilities`` (the
    ``auto_approve`` capability), never by comparing context names at the
    call site.
    """

    currency: str = DEFAULT_CURRENCY
    voucher_number_prefix: str = "EVRN"
    statement_prefix: str = "SOA"
    invoice_prefix: str = "INV"

    collectible_threshold: Decimal = Decimal("1")
    amount_tolerance: Decimal = AMOUNT_TOLERANCE
    default_credit_days: int = 30

    # Regenerations allowed after a voucher-number collision.
    number_collision_retries: int = 1
    auto_approve_posts: bool = True

    context_transaction_types: dict[str, str] = field(default_factory=_default_context_types)
    context_capabilities: dict[str, tuple[str, ...]] = field(
        default_factory=_default_context_capabilities,
    )

    def __post_init__(self):
        if len(self.currency) != 3:
            raise ValueError("currency must be a 3-letter ISO 4217 code")
        for name in ("voucher_number_prefix", "statement_prefix", "invoice_prefix"):
            if not getattr(self, name):
                raise ValueError(f"{name} cannot be empty")

        self.collectible_threshold = Decimal(str(self.collectible_threshold))
        self.amount_tolerance = Decimal(str(self.amount_tolerance))
        if self.collectible_threshold < 0:
            raise ValueError("collectible_threshold cannot be negative")
        if self.amount_tolerance < 0:
            raise ValueError("amount_tolerance cannot be negative")
        if self.default_credit_days <= 0:
            raise ValueError("default_credit_days must be positive")
        if self.number_collision_retries < 0:
            raise ValueError("number_collision_retries cannot be negative")

        for context, type_value in self.context_transaction_types.items():
            try:
                TransactionType(type_value)
            except ValueError:
                raise ValueError(
                    f"context '{context}' maps to unknown transaction type '{type_value}'"
                ) from None
        for context, caps in self.context_capabilities.items():
            for cap in caps:
                try:
                    Capability(cap)
                except ValueError:
                    raise ValueError(
                        f"context '{context}' grants unknown capability '{cap}'"
                    ) from None
            self.context_capabilities[context] = tuple(caps)

        logger.debug(
            "voucher_config_initialized",
            extra={
                "currency": self.currency,
                "contexts": sorted(self.context_transaction_types),
                "auto_approve_posts": self.auto_approve_posts,
            },
        )

    def default_transaction_type(self, context: str) -> TransactionType | None:
        """Transaction type a context creates when the form leaves it unset."""
        value = self.context_transaction_types.get(context)
        return TransactionType(value) if value else None

    def capabilities_for(self, context: str) -> frozenset[Capability]:
        return frozenset(Capability(c) for c in self.context_capabilities.get(context, ()))

    def actor_for(
        self,
        display_name: str,
        context: str,
        user_id: str | None = None,
    ) -> Actor:
        """Resolve an actor with the capabilities its context grants."""
        return Actor(
            display_name=display_name,
            context=context,
            user_id=user_id,
            capabilities=self.capabilities_for(context),
        )

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with standard defaults."""
        logger.info("voucher_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from a dictionary (e.g. a parsed YAML section)."""
        data = dict(data)
        if "context_capabilities" in data:
            data["context_capabilities"] = {
                ctx: tuple(caps or ()) for ctx, caps in data["context_capabilities"].items()
            }
        logger.info(
            "voucher_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)
