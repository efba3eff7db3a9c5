import json

import pytest

from annotation_service.models import FieldType
from annotation_service.response_parser import (
    DEFAULT_BOXES,
    LABELED_TEXT_CONFIDENCE,
    TIERS,
    parse,
    parse_labeled_text_tier,
    parse_loose_tier,
    parse_response,
    to_fraction,
)


def test_json_reply_is_parsed():
    raw = json.dumps(
        {
            "fields": [
                {
                    "type": "amount",
                    "text": "$1,250.00",
                    "boundingBox": {"x": 0.7, "y": 0.4, "width": 0.15, "height": 0.05},
                    "confidence": 0.9,
                }
            ]
        }
    )
    result = parse_response(raw)

    assert result.tier == "json"
    assert len(result.fields) == 1
    field = result.fields[0]
    assert field.type == "amount"
    assert field.text == "$1,250.00"
    assert field.bounding_box.x == pytest.approx(0.7)
    assert field.confidence == pytest.approx(0.9)


def test_json_tier_wins_over_text_tiers():
    calls = []

    def spy(text):
        calls.append(text)
        return parse_loose_tier("Vendor: Someone Else")

    raw = json.dumps(
        {
            "fields": [
                {
                    "type": "notes",
                    "text": "Paid by wire",
                    "boundingBox": {"x": 0.1, "y": 0.8, "width": 0.5, "height": 0.1},
                    "confidence": 0.7,
                }
            ]
        }
    )
    result = parse_response(raw, tiers=(TIERS[0], ("spy", spy)))

    assert calls == []
    assert result.tier == "json"
    assert [f.type for f in result.fields] == ["notes"]


def test_invalid_json_falls_through_to_next_tier():
    calls = []

    def spy(text):
        calls.append(text)
        return None

    parse_response('{"fields": [', tiers=(TIERS[0], ("spy", spy)))
    assert calls == ['{"fields": [']


def test_empty_json_field_list_still_stops_the_chain():
    result = parse_response('{"fields": []}')
    assert result.tier == "json"
    assert result.fields == []
    assert result.nothing_detected


def test_json_non_canonical_types_go_through_classifier():
    raw = {
        "fields": [
            {"type": "Due Date", "text": "2024-01-01", "boundingBox": {"x": 0.1, "y": 0.1, "width": 0.1, "height": 0.1}},
            {"type": "VAT", "text": "10", "boundingBox": {"x": 0.2, "y": 0.2, "width": 0.1, "height": 0.1}},
            {"type": "po number", "text": "PO-1", "boundingBox": {"x": 0.3, "y": 0.3, "width": 0.1, "height": 0.1}},
        ]
    }
    fields = parse(raw)
    assert [f.type for f in fields] == ["dueDate", "tax"]


def test_json_percentages_are_normalized():
    raw = {"fields": [{"type": "vendor", "text": "Acme Inc.", "boundingBox": {"x": 10, "y": 15, "width": 30, "height": 5}}]}
    box = parse(raw)[0].bounding_box
    assert (box.x, box.y, box.width, box.height) == pytest.approx((0.10, 0.15, 0.30, 0.05))


def test_json_field_without_box_uses_default_box():
    fields = parse('{"fields": [{"type": "total", "text": "12.00"}]}')
    assert fields[0].bounding_box == DEFAULT_BOXES[FieldType.TOTAL]


def test_fenced_json_is_accepted():
    raw = 'Here you go:\n```json\n{"fields": [{"type": "currency", "text": "EUR", "boundingBox": {"x": 0.5, "y": 0.5, "width": 0.05, "height": 0.05}}]}\n```'
    result = parse_response(raw)
    assert result.tier == "json"
    assert result.fields[0].text == "EUR"


def test_labeled_text_block():
    raw = (
        "Field Type: Due Date\n"
        "Exact Text Value: 2024-11-02\n"
        "Position: (x: 70.0, y: 15.0, width: 20.0, height: 10.0)"
    )
    result = parse_response(raw)

    assert result.tier == "labeled_text"
    field = result.fields[0]
    assert field.type == "dueDate"
    assert field.text == "2024-11-02"
    box = field.bounding_box
    assert (box.x, box.y, box.width, box.height) == pytest.approx((0.70, 0.15, 0.20, 0.10))
    assert field.confidence == LABELED_TEXT_CONFIDENCE


def test_labeled_text_tolerates_markdown_and_multiline_positions():
    raw = """Here is what I found on the invoice:

1. **Field Type:** Vendor
   **Exact Text Value:** "Acme Inc."
   **Position:**
   - x: 10%
   - y: 15%
   - width: 30%
   - height: 5%

2. **Field Type:** Invoice Number
   **Exact Text Value:** INV-7
   **Position:** (x: 0.1, y: 0.1, width: 0.1, height: 0.1)

3. **Field Type:** Total
   **Exact Text Value:** $1,437.50
   **Position:** (x: 0.75, y: 0.7, width: 0.15, height: 0.05)
"""
    fields = parse_labeled_text_tier(raw)

    assert [f.type for f in fields] == ["vendor", "total"]
    assert fields[0].text == "Acme Inc."
    assert fields[0].bounding_box.width == pytest.approx(0.30)
    assert fields[1].bounding_box.x == pytest.approx(0.75)


def test_labeled_text_block_on_a_single_line():
    raw = "Field Type: Vendor | Exact Text Value: Acme Inc. | Position: (x: 10, y: 15, width: 30, height: 5)"
    result = parse_response(raw)

    assert result.tier == "labeled_text"
    assert len(result.fields) == 1
    field = result.fields[0]
    assert field.type == "vendor"
    assert field.text == "Acme Inc."
    box = field.bounding_box
    assert (box.x, box.y, box.width, box.height) == pytest.approx((0.10, 0.15, 0.30, 0.05))


def test_labeled_text_single_lines_without_separators():
    raw = (
        "Field Type: Vendor, Exact Text Value: Acme Inc., Position: (x: 10, y: 15, width: 30, height: 5)\n"
        "Field Type: Total Exact Text Value: $1,437.50 Position: (x: 75, y: 70, width: 15, height: 5)"
    )
    fields = parse_labeled_text_tier(raw)

    assert [f.type for f in fields] == ["vendor", "total"]
    assert fields[0].text == "Acme Inc."
    assert fields[1].text == "$1,437.50"
    assert fields[1].bounding_box.x == pytest.approx(0.75)


def test_labeled_text_value_after_position():
    raw = (
        "Field Type: Vendor\n"
        "Position: (x: 10, y: 15, width: 30, height: 5)\n"
        "Exact Text Value: Acme Inc.\n"
        "Field Type: Date\n"
        "Position: (x: 70, y: 15, width: 20, height: 5)\n"
        "Exact Text Value: 2023-10-15"
    )
    fields = parse_labeled_text_tier(raw)

    assert [(f.type, f.text) for f in fields] == [("vendor", "Acme Inc."), ("date", "2023-10-15")]
    assert fields[1].bounding_box.x == pytest.approx(0.70)


def test_labeled_text_without_blocks_is_no_match():
    assert parse_labeled_text_tier("Vendor: Acme") is None


def test_loose_fallback_uses_default_boxes():
    raw = "Invoice summary\nVendor: Acme Inc.\nDate: 2023-10-15\nDue Date: 2023-11-15\nSubtotal: $1,250.00\nVAT: 187.50\nTotal: $1,437.50\n"
    result = parse_response(raw)

    assert result.tier == "loose"
    by_type = {f.type: f for f in result.fields}
    assert set(by_type) == {"vendor", "date", "dueDate", "amount", "tax", "total"}
    assert by_type["date"].text == "2023-10-15"
    assert by_type["dueDate"].text == "2023-11-15"
    assert by_type["total"].text == "$1,437.50"
    assert by_type["tax"].bounding_box == DEFAULT_BOXES[FieldType.TAX]


def test_loose_fallback_takes_first_match_per_field():
    fields = parse_loose_tier("Total: 10.00\nTotal: 20.00")
    assert len(fields) == 1
    assert fields[0].text == "10.00"


def test_unparseable_reply_yields_nothing():
    result = parse_response("I could not read this document.")
    assert result.tier is None
    assert result.fields == []
    assert parse(None) == []
    assert parse(b"\xff\xfe") == []


def test_failing_tier_falls_through():
    def broken(text):
        raise RuntimeError("boom")

    def fallback(text):
        return []

    result = parse_response("anything", tiers=(("broken", broken), ("fallback", fallback)))
    assert result.tier == "fallback"


def test_fraction_heuristic():
    assert to_fraction(70.0) == pytest.approx(0.7)
    assert to_fraction(0.7) == pytest.approx(0.7)
    assert to_fraction(1.0) == 1.0
