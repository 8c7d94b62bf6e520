"""
E-Voucher Kernel

Lowest layer of the voucher & statement reconciliation engine:
- Typed exception hierarchy
- Structured JSON logging
- Pure domain value objects (amounts, clock, identity, workflow)
- SQLAlchemy declarative base and session management
"""

__version__ = "0.1.0"
