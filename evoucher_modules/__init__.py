"""
E-Voucher Modules.

Thin orchestration over the kernel and engines.  Each module contains:
- Domain models (the nouns)
- Workflows (state machines)
- Configuration schemas
- ORM persistence models
- A service that drives the store

Modules:
- Vouchers: construction, required-field matrix, approval lifecycle
- Billing: statements, payments, collection reconciliation
- Reporting: income statement and balance sheet from ledger balances
"""
