"""Turns a raw field-detection reply into DetectedField records.

The reply is tried against three tiers, in order, and the first tier that
matches wins:

1. ``json``          — a ``{"fields": [...]}`` object, bare or in a fenced block.
2. ``labeled_text``  — repeated "Field Type / Exact Text Value / Position" blocks.
3. ``loose``         — single ``Label: value`` lines pinned to default boxes.

Each tier is a plain function returning a list of fields or ``None`` for
"no match". Parsing never raises; a reply nothing can make sense of yields an
empty result.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable

from opentelemetry import trace

from annotation_service.classifier import classify
from annotation_service.models import DetectedField, FieldType, NormalizedBox

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("annotation-service")

LABELED_TEXT_CONFIDENCE = 0.5
LOOSE_CONFIDENCE = 0.25

# Where loose-tier fields are pinned. That tier carries no positions at all,
# so these roughly follow a typical single-page invoice layout.
DEFAULT_BOXES: dict[FieldType, NormalizedBox] = {
    FieldType.VENDOR: NormalizedBox(x=0.10, y=0.15, width=0.30, height=0.05),
    FieldType.DATE: NormalizedBox(x=0.70, y=0.15, width=0.20, height=0.05),
    FieldType.DUE_DATE: NormalizedBox(x=0.70, y=0.25, width=0.20, height=0.05),
    FieldType.AMOUNT: NormalizedBox(x=0.75, y=0.60, width=0.15, height=0.05),
    FieldType.TAX: NormalizedBox(x=0.75, y=0.65, width=0.15, height=0.05),
    FieldType.TOTAL: NormalizedBox(x=0.75, y=0.70, width=0.15, height=0.05),
    FieldType.CURRENCY: NormalizedBox(x=0.60, y=0.60, width=0.10, height=0.05),
    FieldType.NOTES: NormalizedBox(x=0.10, y=0.85, width=0.80, height=0.08),
}


@dataclass(frozen=True)
class ParseResult:
    fields: list[DetectedField] = field(default_factory=list)
    tier: str | None = None

    @property
    def nothing_detected(self) -> bool:
        return not self.fields


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _to_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip().rstrip("%").strip())
        except ValueError:
            return None
    return None


def to_fraction(value: float) -> float:
    """Values above 1 are read as percentages, anything else as a fraction.

    Exactly 1.0 is ambiguous (100% of the page vs. 1%); it is kept as a
    fraction.
    """
    return value / 100.0 if value > 1 else value


def _box_from_values(x: float, y: float, width: float, height: float) -> NormalizedBox:
    return NormalizedBox(
        x=to_fraction(x),
        y=to_fraction(y),
        width=to_fraction(width),
        height=to_fraction(height),
    )


def _coerce_text(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    if isinstance(raw, (dict, list)):
        return json.dumps(raw)
    return str(raw)


# ---------------------------------------------------------------------------
# Tier 1: structured JSON
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def _load_fields_payload(text: str) -> list | None:
    candidates = [text.strip()]
    fence = _FENCE_RE.search(text)
    if fence:
        candidates.append(fence.group(1).strip())

    for candidate in candidates:
        try:
            payload = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(payload, dict) and isinstance(payload.get("fields"), list):
            return payload["fields"]
    return None


def _box_from_mapping(raw: Any) -> NormalizedBox | None:
    if not isinstance(raw, dict):
        return None
    values = [
        _to_float(raw.get("x")),
        _to_float(raw.get("y")),
        _to_float(raw.get("width", raw.get("w"))),
        _to_float(raw.get("height", raw.get("h"))),
    ]
    if any(v is None for v in values):
        return None
    return _box_from_values(*values)


def _field_from_json(item: Any) -> DetectedField | None:
    if not isinstance(item, dict):
        logger.debug("Skipping non-object field entry: %r", item)
        return None

    label = str(item.get("type") or "")
    try:
        field_type = FieldType(label)
    except ValueError:
        field_type = classify(label)
    if field_type is None:
        return None

    text = item.get("text", item.get("value"))
    box = _box_from_mapping(item.get("boundingBox", item.get("bounding_box")))
    if box is None:
        logger.debug("Field %s has no usable bounding box, using default", field_type.value)
        box = DEFAULT_BOXES[field_type]

    confidence = _to_float(item.get("confidence"))
    return DetectedField(
        type=field_type.value,
        text="" if text is None else str(text).strip(),
        bounding_box=box,
        confidence=confidence if confidence is not None else 0.0,
    )


def parse_json_tier(text: str) -> list[DetectedField] | None:
    """Structured ``{"fields": [...]}`` reply. A valid payload always matches."""
    items = _load_fields_payload(text)
    if items is None:
        return None

    fields = []
    for item in items:
        detected = _field_from_json(item)
        if detected is not None:
            fields.append(detected)
    return fields


# ---------------------------------------------------------------------------
# Tier 2: labeled text blocks
# ---------------------------------------------------------------------------

_MARKUP_RE = re.compile(r"[*`]+")
_LEADER_RE = re.compile(r"^\s*(?:[-•>#]+\s*|\d+[.)]\s+)?")
_FIELD_TYPE_RE = re.compile(r"^field\s*type\s*[:=]\s*(?P<value>.*)$", re.IGNORECASE)
_TEXT_VALUE_RE = re.compile(r"^(?:exact\s+)?text\s*value\s*[:=]\s*(?P<value>.*)$", re.IGNORECASE)
_POSITION_RE = re.compile(r"^position\b\s*[:=]?\s*(?P<value>.*)$", re.IGNORECASE)
_COORD_RE = re.compile(
    r"\b(?P<key>x|y|width|height|w|h)\s*[:=]\s*(?P<num>-?\d+(?:\.\d+)?)\s*%?",
    re.IGNORECASE,
)
_COORD_KEYS = {"x": "x", "y": "y", "width": "width", "w": "width", "height": "height", "h": "height"}
_SEGMENT_SPLIT_RE = re.compile(
    r"\s*\|\s*|(?<!exact\s)(?=\b(?:field\s*type|(?:exact\s+)?text\s*value|position)\s*[:=])",
    re.IGNORECASE,
)


def _clean_line(line: str) -> str:
    line = _MARKUP_RE.sub("", line)
    return _LEADER_RE.sub("", line).strip()


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1].strip()
    return value


def _read_coords(text: str, coords: dict[str, float]) -> None:
    for match in _COORD_RE.finditer(text):
        key = _COORD_KEYS[match.group("key").lower()]
        coords.setdefault(key, float(match.group("num")))


class _Block:
    def __init__(self, label: str) -> None:
        self.label = label
        self.text = ""
        self.coords: dict[str, float] = {}
        self.in_position = False

    @property
    def complete(self) -> bool:
        return len(self.coords) == 4

    def to_field(self) -> DetectedField | None:
        field_type = classify(self.label)
        if field_type is None:
            return None
        box = _box_from_values(
            self.coords["x"], self.coords["y"], self.coords["width"], self.coords["height"]
        )
        return DetectedField(
            type=field_type.value,
            text=self.text,
            bounding_box=box,
            confidence=LABELED_TEXT_CONFIDENCE,
        )


def _segments(text: str):
    """Cleaned segments; a line may hold several ``Key: value`` parts."""
    for raw_line in text.splitlines():
        for part in _SEGMENT_SPLIT_RE.split(_MARKUP_RE.sub("", raw_line)):
            segment = _clean_line(part).strip(",; ")
            if segment:
                yield segment


def _finish(block: _Block | None, fields: list[DetectedField]) -> None:
    if block is None:
        return
    if not block.complete:
        logger.debug("Dropping incomplete block for label %r", block.label)
        return
    detected = block.to_field()
    if detected is not None:
        fields.append(detected)


def parse_labeled_text_tier(text: str) -> list[DetectedField] | None:
    """``Field Type: …`` / ``Exact Text Value: …`` / ``Position: (…)`` blocks.

    A block runs until the next ``Field Type`` or the end of the reply, so its
    parts may come in any order and share a line.
    """
    fields: list[DetectedField] = []
    block: _Block | None = None

    for segment in _segments(text):
        match = _FIELD_TYPE_RE.match(segment)
        if match:
            _finish(block, fields)
            block = _Block(_strip_quotes(match.group("value")))
            continue
        if block is None:
            continue

        match = _TEXT_VALUE_RE.match(segment)
        if match:
            block.text = _strip_quotes(match.group("value"))
            continue

        match = _POSITION_RE.match(segment)
        if match:
            block.in_position = True
            _read_coords(match.group("value"), block.coords)
        elif block.in_position and not block.complete:
            _read_coords(segment, block.coords)

    _finish(block, fields)
    return fields or None


# ---------------------------------------------------------------------------
# Tier 3: loose "Label: value" lines
# ---------------------------------------------------------------------------

_LOOSE_PATTERNS = tuple(
    re.compile(rf"^(?P<label>{label})[ \t]*:[ \t]*(?P<value>.+)$", re.IGNORECASE | re.MULTILINE)
    for label in (
        r"vendor(?:[ \t]+name)?",
        r"due[ \t]+date",
        r"(?:invoice[ \t]+)?date",
        r"amount|subtotal",
        r"vat|tax",
        r"(?:grand[ \t]+)?total",
        r"currency",
        r"notes",
    )
)


def parse_loose_tier(text: str) -> list[DetectedField] | None:
    """First ``Label: value`` line per field, placed on a default box."""
    cleaned = "\n".join(_clean_line(line) for line in text.splitlines())
    fields: list[DetectedField] = []
    seen: set[FieldType] = set()

    for pattern in _LOOSE_PATTERNS:
        match = pattern.search(cleaned)
        if not match:
            continue
        value = match.group("value").strip()
        field_type = classify(match.group("label"))
        if not value or field_type is None or field_type in seen:
            continue
        seen.add(field_type)
        fields.append(
            DetectedField(
                type=field_type.value,
                text=value,
                bounding_box=DEFAULT_BOXES[field_type],
                confidence=LOOSE_CONFIDENCE,
            )
        )

    return fields or None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

Tier = Callable[[str], list[DetectedField] | None]

TIERS: tuple[tuple[str, Tier], ...] = (
    ("json", parse_json_tier),
    ("labeled_text", parse_labeled_text_tier),
    ("loose", parse_loose_tier),
)


def parse_response(raw: Any, tiers: tuple[tuple[str, Tier], ...] = TIERS) -> ParseResult:
    """Run *raw* through the tier chain and report which tier matched."""
    text = _coerce_text(raw)
    with tracer.start_as_current_span("annotation.parse_response") as span:
        span.set_attribute("response.length", len(text))
        for name, tier in tiers:
            try:
                fields = tier(text)
            except Exception:
                logger.exception("Parser tier %s failed, falling through", name)
                continue
            if fields is not None:
                span.set_attribute("parse.tier", name)
                span.set_attribute("parse.field_count", len(fields))
                logger.info("Parsed %d field(s) via %s tier", len(fields), name)
                return ParseResult(fields=fields, tier=name)

        logger.warning("No fields detected in %d chars of response", len(text))
        return ParseResult()


def parse(raw: Any) -> list[DetectedField]:
    """Detected fields from *raw*; empty when nothing could be parsed."""
    return parse_response(raw).fields
