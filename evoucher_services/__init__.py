"""
evoucher_services -- collaborator implementations.

Responsibility:
    Stores (in-memory and SQLAlchemy) and the user-action boundary.  This
    is the only layer that holds database sessions.

Architecture position:
    Services -- imperative shell.

    Dependency direction:
        evoucher_services/ -> evoucher_modules/ (allowed, ORM and value types)
        evoucher_services/ -> evoucher_kernel/  (allowed)
        evoucher_kernel/   -> evoucher_services/ (FORBIDDEN)
        evoucher_engines/  -> evoucher_services/ (FORBIDDEN)
"""
