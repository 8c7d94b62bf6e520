"""
evoucher_engines.taxonomy -- Category Taxonomy.

Responsibility:
    Fixed two-level table mapping an expense category to grouped
    sub-category labels and their leaf items, plus the disjoint set of
    revenue categories used by billings and collections.

Architecture position:
    Engines -- pure lookup, zero I/O.

Invariants enforced:
    - Expense and revenue category sets are disjoint.
    - ``sub_categories_for`` never raises: an unknown category (or any
      revenue category) yields an empty tuple, which callers must read as
      "sub-category optional", never as a validation failure.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SubCategory:
    """A labelled group of leaf items under an expense category."""

    label: str
    items: tuple[str, ...]


_DESTINATION_LOCAL_CHARGES = SubCategory(
    "Destination Local Charges",
    (
        "THC & Other Local Charges",
        "Detention",
        "Demurrage",
        "Detention/Demurrage",
        "Storage & Deposit",
        "Late Payment Fee",
        "Others",
    ),
)

_TRUCKING_CHARGES = SubCategory(
    "Trucking Charges",
    ("Delivery Fee", "Booking Fee", "Tricod", "CY Fee", "Others"),
)

_PROCESSING_AND_ORDER = ("Processing", "Order of Payment")


EXPENSE_TAXONOMY: dict[str, tuple[SubCategory, ...]] = {
    "Brokerage - FCL": (
        _DESTINATION_LOCAL_CHARGES,
        SubCategory(
            "Port Charges",
            (
                "THC",
                "Arrastre, Wharfage Due & Storage Fee",
                "Storage Fee",
                "Reefer",
                "Physical Examination",
                "Spot-check Examination",
                "O-LO",
                "Others",
            ),
        ),
        _TRUCKING_CHARGES,
    ),
    "Brokerage - LCL/AIR": (
        SubCategory("Warehouse Charges", ("Storage & Other Fees",)),
        SubCategory(
            "Clearance Charges",
            (
                "Assessment",
                "Agents",
                "Liquidation",
                "Audit",
                "District",
                "X-Ray",
                "Wharfinger",
                "CNIU/CAIDTF",
                "BAI",
                "ISPM",
                "BPI",
                "Notary & Photocopies",
                "Employee Particulars",
                "Company Particulars",
                "Brokerage Fee",
                "Others",
            ),
        ),
        SubCategory("Sales Commission", ("Sales Commission",)),
    ),
    "Forwarding": (
        SubCategory("Freight Charges", ("Air Freight", "Ocean Freight")),
        SubCategory("Origin Local Charges", ("EXW", "FCA/FOB", "Others")),
        SubCategory("Freight & Origin Local Charges", ("EXW/FCA/FOB",)),
        _DESTINATION_LOCAL_CHARGES,
        SubCategory(
            "Port Charges",
            (
                "Arrastre & Wharfage Due",
                "Arrastre, Wharfage Due & Storage Fee",
                "Storage Fee",
                "Reefer",
                "Physical Examination",
                "Spot-check Examination",
                "O-LO",
                "Others",
            ),
        ),
        _TRUCKING_CHARGES,
    ),
    "Trucking": (
        SubCategory(
            "Transportation Charges",
            (
                "Gasoline",
                "Toll",
                "Pull-out",
                "Empty Return",
                "Facilitation",
                "Documentation",
                "Penalty",
                "Others",
            ),
        ),
    ),
    "Miscellaneous": tuple(
        SubCategory(f"{agency} Charges", _PROCESSING_AND_ORDER)
        for agency in ("NTC", "FDA", "ATRIG", "SRA", "BOC AMO", "DTI")
    ),
    "Office": (
        SubCategory(
            "Office Expenses",
            (
                "Office Supplies",
                "Utilities",
                "Rent",
                "Telecommunications",
                "Professional Fees",
                "Marketing & Advertising",
                "Travel & Transportation",
                "Representation",
                "Others",
            ),
        ),
    ),
}

EXPENSE_CATEGORIES: tuple[str, ...] = tuple(EXPENSE_TAXONOMY)

REVENUE_CATEGORIES: tuple[str, ...] = (
    "Brokerage Income",
    "Forwarding Income",
    "Trucking Income",
    "Warehousing Income",
    "Documentation Fees",
    "Other Service Income",
)

assert not set(EXPENSE_CATEGORIES) & set(REVENUE_CATEGORIES)


def sub_categories_for(category: str | None) -> tuple[SubCategory, ...]:
    """Grouped sub-categories for an expense category; empty when unknown."""
    if not category:
        return ()
    return EXPENSE_TAXONOMY.get(category, ())


def sub_category_labels(category: str | None) -> tuple[str, ...]:
    """Selectable sub-category values: group labels and their leaf items."""
    labels: list[str] = []
    for group in sub_categories_for(category):
        labels.append(group.label)
        for item in group.items:
            if item not in labels:
                labels.append(item)
    return tuple(labels)


def is_expense_category(category: str | None) -> bool:
    return category in EXPENSE_TAXONOMY


def is_revenue_category(category: str | None) -> bool:
    return category in REVENUE_CATEGORIES


def is_valid_sub_category(category: str | None, sub_category: str | None) -> bool:
    """
    A sub-category is valid when the category has no table (optional),
    when it is empty, or when it names a group label or leaf item.
    """
    if not sub_category:
        return True
    labels = sub_category_labels(category)
    if not labels:
        return True
    return sub_category in labels
