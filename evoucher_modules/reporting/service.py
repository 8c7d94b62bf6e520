"""
Reporting Module Service (``evoucher_modules.reporting.service``).

Responsibility
--------------
Loads accounts from the ``AccountStore`` and delegates to the pure
functions in ``statements.py``.  Read-only: nothing is written.

Failure modes
-------------
* Store failures propagate unchanged (no rollback needed, read-only).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from evoucher_kernel.domain.clock import Clock, SystemClock
from evoucher_kernel.logging_config import get_logger
from evoucher_modules.reporting.config import ReportingConfig
from evoucher_modules.reporting.models import Account, FinancialReport, ReportMetadata
from evoucher_modules.reporting.statements import compute_financial_report

if TYPE_CHECKING:
    from evoucher_services.stores import AccountStore

logger = get_logger("modules.reporting.service")


class ReportingService:
    """
    Financial report generation over the external ledger's accounts.

    Guarantees
    ----------
    * No financial logic lives here; ``statements.py`` does the math.
    * An unbalanced ledger is reported (``discrepancy``) and logged as a
      warning, never raised or corrected.
    """

    def __init__(
        self,
        account_store: AccountStore,
        clock: Clock | None = None,
        config: ReportingConfig | None = None,
    ):
        self._accounts = account_store
        self._clock = clock or SystemClock()
        self._config = config or ReportingConfig.with_defaults()

    def _metadata(self) -> ReportMetadata:
        return ReportMetadata(
            entity_name=self._config.entity_name,
            currency=self._config.default_currency,
            generated_at=self._clock.now().isoformat(),
        )

    def list_accounts(self) -> list[Account]:
        return self._accounts.list(include_folders=False)

    def financial_report(self) -> FinancialReport:
        accounts = self._accounts.list()
        logger.info("financial_report_started", extra={"account_count": len(accounts)})

        report = compute_financial_report(
            accounts,
            metadata=self._metadata(),
            tolerance=self._config.balance_tolerance,
        )

        sheet = report.balance_sheet
        if not sheet.is_balanced:
            logger.warning(
                "financial_report_unbalanced",
                extra={
                    "total_assets": sheet.total_assets,
                    "total_liabilities_and_equity": sheet.total_liabilities_and_equity,
                    "discrepancy": sheet.discrepancy,
                },
            )
        logger.info(
            "financial_report_completed",
            extra={
                "net_income": report.income_statement.net_income,
                "is_balanced": sheet.is_balanced,
            },
        )
        return report
