"""Invoice form projection and checks.

The form mirrors the annotation set: each annotated field fills the matching
form input, money fields are read as numbers, currency defaults to USD.

Checks:
1. missing vendor / date / total
2. total != amount + tax (only when all three are present)
"""

from __future__ import annotations

import logging
import re

from opentelemetry import trace

from annotation_service.models import Annotation, FieldType, FormWarning, InvoiceForm

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("annotation-service")

_FORM_ATTRS = {
    FieldType.VENDOR: "vendor",
    FieldType.DATE: "date",
    FieldType.DUE_DATE: "due_date",
    FieldType.AMOUNT: "amount",
    FieldType.TAX: "tax",
    FieldType.TOTAL: "total",
    FieldType.CURRENCY: "currency",
    FieldType.NOTES: "notes",
}

_TRAILING_DECIMALS = re.compile(r",\d{1,2}$")


def parse_amount(value: str) -> float:
    """Read a cleaned money string ("1,250.00", "1.250,00") as a float; 0.0 if unreadable."""
    s = (value or "").strip()
    if not s:
        return 0.0
    if "," in s and "." in s:
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif _TRAILING_DECIMALS.search(s):
        s = s.replace(",", ".")
    else:
        s = s.replace(",", "")
    try:
        return round(float(s), 2)
    except ValueError:
        logger.debug("Unreadable amount %r", value)
        return 0.0


def build_form(annotations: list[Annotation]) -> InvoiceForm:
    form = InvoiceForm()
    for annotation in annotations:
        if not annotation.value:
            continue
        attr = _FORM_ATTRS[annotation.type]
        if attr in ("amount", "tax", "total"):
            setattr(form, attr, parse_amount(annotation.value))
        else:
            setattr(form, attr, annotation.value)
    return form


def check_form(form: InvoiceForm) -> list[FormWarning]:
    with tracer.start_as_current_span("annotation.check_form"):
        warnings: list[FormWarning] = []

        # ---- Rule 1: missing required fields ----
        missing = []
        if not form.vendor:
            missing.append("vendor")
        if not form.date:
            missing.append("date")
        if form.total == 0.0:
            missing.append("total")
        if missing:
            warnings.append(
                FormWarning(
                    code="MISSING_FIELDS",
                    message=f"Missing required fields: {', '.join(missing)}",
                    details={"fields": missing},
                )
            )

        # ---- Rule 2: amount + tax vs total ----
        if form.amount and form.tax and form.total:
            expected = round(form.amount + form.tax, 2)
            if abs(expected - form.total) > 0.005:
                warnings.append(
                    FormWarning(
                        code="TOTAL_MISMATCH",
                        message=(
                            f"Total mismatch: amount + tax = {expected:.2f} "
                            f"but total is {form.total:.2f}"
                        ),
                        details={
                            "expected": expected,
                            "stated": form.total,
                            "difference": round(form.total - expected, 2),
                        },
                    )
                )

        return warnings
