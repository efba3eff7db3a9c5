import pytest

from annotation_service.invoice_form import build_form, check_form, parse_amount
from annotation_service.models import FieldType, InvoiceForm
from annotation_service.normalizer import pin


def test_parse_amount_formats():
    assert parse_amount("1,250.00") == 1250.0
    assert parse_amount("1.250,00") == 1250.0
    assert parse_amount("12,5") == 12.5
    assert parse_amount("1,250") == 1250.0
    assert parse_amount("") == 0.0
    assert parse_amount("..") == 0.0


def test_build_form_from_annotations():
    annotations = [
        pin(FieldType.VENDOR, 0.1, 0.1, "Acme Inc."),
        pin(FieldType.DUE_DATE, 0.1, 0.2, "2023-11-15"),
        pin(FieldType.AMOUNT, 0.1, 0.3, "$1,250.00"),
        pin(FieldType.TAX, 0.1, 0.4, "187.50"),
        pin(FieldType.TOTAL, 0.1, 0.5, "1,437.50"),
        pin(FieldType.NOTES, 0.1, 0.6, ""),
    ]
    form = build_form(annotations)

    assert form.vendor == "Acme Inc."
    assert form.due_date == "2023-11-15"
    assert form.amount == pytest.approx(1250.0)
    assert form.tax == pytest.approx(187.5)
    assert form.total == pytest.approx(1437.5)
    assert form.currency == "USD"
    assert form.notes == ""
    assert form.status == "pending"


def test_complete_form_has_no_warnings():
    form = InvoiceForm(vendor="Acme", date="2023-10-15", amount=100, tax=10, total=110)
    assert check_form(form) == []


def test_missing_fields_warning():
    warnings = check_form(InvoiceForm())
    assert [w.code for w in warnings] == ["MISSING_FIELDS"]
    assert warnings[0].details["fields"] == ["vendor", "date", "total"]


def test_total_mismatch_warning():
    form = InvoiceForm(vendor="Acme", date="2023-10-15", amount=100, tax=10, total=120)
    warnings = check_form(form)

    assert [w.code for w in warnings] == ["TOTAL_MISMATCH"]
    assert warnings[0].details["difference"] == pytest.approx(10.0)
