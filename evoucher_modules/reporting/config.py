"""
Reporting Configuration Schema.

Entity and currency shown on reports, and the tolerance used when
checking the accounting identity.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Self

from evoucher_kernel.domain.amounts import AMOUNT_TOLERANCE, DEFAULT_CURRENCY
from evoucher_kernel.logging_config import get_logger

logger = get_logger("modules.reporting.config")


@dataclass
class ReportingConfig:
    entity_name: str = "Company"
    default_currency: str = DEFAULT_CURRENCY
    balance_tolerance: Decimal = AMOUNT_TOLERANCE

    def __post_init__(self):
        if len(self.default_currency) != 3:
            raise ValueError("default_currency must be a 3-letter ISO 4217 code")
        self.balance_tolerance = Decimal(str(self.balance_tolerance))
        if self.balance_tolerance < 0:
            raise ValueError("balance_tolerance cannot be negative")

    @classmethod
    def with_defaults(cls) -> Self:
        logger.info("reporting_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        logger.info(
            "reporting_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)
