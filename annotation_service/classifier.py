"""Maps free-form field labels onto the canonical FieldType set.

Rules are checked in order. "Due Date" contains "date", so the "due" rule
has to come before the "date" rule; likewise "Subtotal" contains "total".
"""

from __future__ import annotations

import logging

from annotation_service.models import FieldType

logger = logging.getLogger(__name__)

_CANONICAL = {ft.value.lower(): ft for ft in FieldType}

_CONTAINS_RULES: tuple[tuple[tuple[str, ...], FieldType], ...] = (
    (("vendor",), FieldType.VENDOR),
    (("due",), FieldType.DUE_DATE),
    (("date",), FieldType.DATE),
    (("amount", "subtotal"), FieldType.AMOUNT),
    (("tax", "vat"), FieldType.TAX),
    (("total",), FieldType.TOTAL),
    (("currency",), FieldType.CURRENCY),
    (("notes",), FieldType.NOTES),
)


def classify(label: str) -> FieldType | None:
    """Return the FieldType for *label*, or None when it cannot be classified."""
    key = (label or "").strip().lower()
    if not key:
        return None

    exact = _CANONICAL.get(key)
    if exact is not None:
        return exact

    for needles, field_type in _CONTAINS_RULES:
        if any(needle in key for needle in needles):
            return field_type

    logger.debug("Rejected unclassifiable field label %r", label)
    return None
