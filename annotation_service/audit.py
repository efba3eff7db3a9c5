"""Structured audit logging for the annotation service.

Rules:
- Never log document bytes or extracted field values
- Log metadata only
- Structured JSON format
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone


logger = logging.getLogger("annotation.audit")


def _emit(event: str, **kwargs) -> None:
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "annotation-service",
        "event": event,
        **kwargs,
    }
    logger.info(json.dumps(entry, default=str))


def log_detection_requested(request_id: str, document_id: str, trace_id: str, source: str) -> None:
    _emit(
        "detection_requested",
        request_id=request_id,
        document_id=document_id,
        trace_id=trace_id,
        source=source,
    )


def log_detection_completed(
    request_id: str,
    document_id: str,
    trace_id: str,
    tier: str | None,
    annotation_count: int,
    applied: bool,
    duration_ms: float,
) -> None:
    _emit(
        "detection_completed",
        request_id=request_id,
        document_id=document_id,
        trace_id=trace_id,
        tier=tier,
        annotation_count=annotation_count,
        applied=applied,
        duration_ms=round(duration_ms, 2),
    )


def log_detection_failed(request_id: str, document_id: str, trace_id: str, reason: str) -> None:
    _emit(
        "detection_failed",
        request_id=request_id,
        document_id=document_id,
        trace_id=trace_id,
        reason=reason,
    )


def log_annotation_pinned(document_id: str, annotation_id: str, field_type: str) -> None:
    _emit(
        "annotation_pinned",
        document_id=document_id,
        annotation_id=annotation_id,
        field_type=field_type,
    )
