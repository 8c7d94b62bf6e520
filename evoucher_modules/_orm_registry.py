"""
Module ORM Registry (``evoucher_modules._orm_registry``).

Responsibility
--------------
Ensure every module-level SQLAlchemy ORM model is imported so that
``Base.metadata`` holds its table before tables are created, and provide
``create_all_tables()``, the one entry point scripts and tests use to get
the complete schema.

Architecture position
---------------------
**Modules layer** -- utility.  Imports sibling ``evoucher_modules``
packages and ``evoucher_kernel.db.engine``.  MUST NOT be imported by
``evoucher_kernel``.
"""


def import_all_orm_models() -> None:
    """Import every ``evoucher_modules.*.orm`` module.  Idempotent."""
    # fmt: off
    import evoucher_modules.reporting.orm  # noqa: F401
    import evoucher_modules.vouchers.orm  # noqa: F401
    # fmt: on


def create_all_tables() -> None:
    """Register all ORM models, then create every table.

    Preconditions:
        Engine must be initialized via ``init_engine_from_url()``.
    """
    from evoucher_kernel.db.engine import create_tables

    import_all_orm_models()
    create_tables()
