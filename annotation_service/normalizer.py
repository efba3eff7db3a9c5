"""Detected field normalizer.

Turns parser output into Annotations:
- Bounding boxes clamped to [0..1]
- Center point computed from the box
- Money fields stripped down to digits, commas and periods
- One annotation per field type, highest confidence wins
"""

from __future__ import annotations

import logging
import re
import uuid

from opentelemetry import trace

from annotation_service.classifier import classify
from annotation_service.models import (
    MONEY_FIELDS,
    Annotation,
    DetectedField,
    FieldType,
    NormalizedBox,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("annotation-service")

FIELD_COLORS: dict[FieldType, str] = {
    FieldType.VENDOR: "#10b981",  # green
    FieldType.DATE: "#3b82f6",  # blue
    FieldType.DUE_DATE: "#8b5cf6",  # purple
    FieldType.AMOUNT: "#f59e0b",  # amber
    FieldType.TAX: "#ef4444",  # red
    FieldType.TOTAL: "#ec4899",  # pink
    FieldType.CURRENCY: "#06b6d4",  # cyan
    FieldType.NOTES: "#6b7280",  # gray
}

_NON_MONEY_CHARS = re.compile(r"[^0-9.,]")


def field_color(field_type: FieldType) -> str:
    return FIELD_COLORS[field_type]


def clean_value(field_type: FieldType, text: str) -> str:
    if field_type in MONEY_FIELDS:
        return _NON_MONEY_CHARS.sub("", text)
    return text.strip()


def new_annotation_id(field_type: FieldType) -> str:
    return f"{field_type.value}-{uuid.uuid4().hex}"


def resolve_type(label: str) -> FieldType | None:
    try:
        return FieldType(label)
    except ValueError:
        return classify(label)


def to_annotation(detected: DetectedField, field_type: FieldType) -> Annotation:
    box = detected.bounding_box.clamped()
    x, y = box.center
    return Annotation(
        id=new_annotation_id(field_type),
        x=x,
        y=y,
        type=field_type,
        value=clean_value(field_type, detected.text),
        color=field_color(field_type),
        bounding_box=box,
    )


def normalize(fields: list[DetectedField]) -> list[Annotation]:
    """Map detected fields to annotations, keeping one per field type."""
    with tracer.start_as_current_span("annotation.normalize") as span:
        best: dict[FieldType, DetectedField] = {}
        for detected in fields:
            field_type = resolve_type(detected.type)
            if field_type is None:
                logger.debug("Skipping field with unknown type %r", detected.type)
                continue
            current = best.get(field_type)
            if current is None or detected.confidence > current.confidence:
                best[field_type] = detected
            else:
                logger.debug("Dropping lower-confidence duplicate for %s", field_type.value)

        annotations = [to_annotation(detected, field_type) for field_type, detected in best.items()]
        span.set_attribute("annotation.count", len(annotations))
        return annotations


def pin(field_type: FieldType, x: float, y: float, value: str = "") -> Annotation:
    """Point-only annotation for a manually placed marker."""
    box = NormalizedBox(x=x, y=y).clamped()
    return Annotation(
        id=new_annotation_id(field_type),
        x=box.x,
        y=box.y,
        type=field_type,
        value=clean_value(field_type, value),
        color=field_color(field_type),
        bounding_box=box,
    )
