"""
evoucher_engines.numbering -- Human-readable reference generation.

Responsibility:
    Format voucher numbers (``EVRN{YYYYMMDD}-{NNN}``), statement references
    (``SOA-{YYYYMMDD}-{NNN}``) and invoice numbers (``INV-{YYYY}-{NNN}``).

Architecture position:
    Engines -- pure, zero I/O.  The date and the random source are passed
    in; nothing here reads the clock.

Invariants enforced:
    - Random suffixes are exactly three digits (000-999).  They are NOT
      collision-free: uniqueness is enforced by the store, and the
      lifecycle service regenerates on a duplicate.
    - Invoice numbers are sequential within a year: the next number is one
      more than the highest existing suffix for that year.
"""

from __future__ import annotations

import random
import re
from datetime import date
from typing import Iterable

VOUCHER_NUMBER_PREFIX = "EVRN"
STATEMENT_PREFIX = "SOA"
INVOICE_PREFIX = "INV"

_SUFFIX_SPACE = 1000


def _random_suffix(rng: random.Random | None) -> str:
    source = rng if rng is not None else random
    return f"{source.randrange(_SUFFIX_SPACE):03d}"


def generate_voucher_number(
    on: date,
    rng: random.Random | None = None,
    prefix: str = VOUCHER_NUMBER_PREFIX,
) -> str:
    """Provisional voucher number, e.g. ``EVRN20250115-042``."""
    return f"{prefix}{on:%Y%m%d}-{_random_suffix(rng)}"


def generate_statement_ref(
    on: date,
    rng: random.Random | None = None,
    prefix: str = STATEMENT_PREFIX,
) -> str:
    """Statement of account reference, e.g. ``SOA-20250115-314``."""
    return f"{prefix}-{on:%Y%m%d}-{_random_suffix(rng)}"


def next_invoice_number(
    year: int,
    existing: Iterable[str | None],
    prefix: str = INVOICE_PREFIX,
) -> str:
    """
    Next sequential invoice number for ``year``.

    Existing numbers from other years, other prefixes or with a malformed
    suffix are ignored.
    """
    pattern = re.compile(rf"^{re.escape(prefix)}-{year}-(\d+)$")
    highest = 0
    for number in existing:
        if not number:
            continue
        match = pattern.match(number)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{prefix}-{year}-{highest + 1:03d}"


def is_voucher_number(value: str, prefix: str = VOUCHER_NUMBER_PREFIX) -> bool:
    return re.fullmatch(rf"{re.escape(prefix)}\d{{8}}-\d{{3}}", value or "") is not None
