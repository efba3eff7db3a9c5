"""Annotation Service — FastAPI application.

POST   /documents/{id}/detect              — Run field detection on a PDF.
POST   /documents/{id}/responses           — Parse a detection reply supplied by the caller.
GET    /documents/{id}/annotations         — Current annotation set.
POST   /documents/{id}/annotations/pin     — Pin a field where the user clicked.
PATCH  /documents/{id}/annotations/{ann}   — Correct an annotation's value.
DELETE /documents/{id}/annotations         — Reset detections.
PUT    /documents/{id}/viewport            — Renderer reports the current page geometry.
GET    /documents/{id}/overlay             — Pixel overlays for the current viewport.
POST   /documents/{id}/connectors          — Lines from overlays to form inputs.
GET    /documents/{id}/form                — Invoice form built from the annotations.
DELETE /documents/{id}                     — Discard the document.
GET    /health                             — Liveness check.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from opentelemetry.propagate import extract

from annotation_service.audit import (
    log_annotation_pinned,
    log_detection_completed,
    log_detection_failed,
    log_detection_requested,
)
from annotation_service.config import config
from annotation_service.detection_client import DetectionError, detect_fields
from annotation_service.invoice_form import build_form, check_form
from annotation_service.models import (
    Annotation,
    ConnectorLine,
    ConnectorRequest,
    DetectionResponse,
    DetectRequest,
    FormResponse,
    FieldType,
    OverlayBox,
    PdfViewport,
    PinRequest,
    RawResponseRequest,
    ValueUpdate,
)
from annotation_service.normalizer import normalize, pin
from annotation_service.response_parser import parse_response
from annotation_service.store import AnnotationNotFound, DocumentNotFound, DocumentRegistry, DocumentSession
from annotation_service.telemetry import SERVICE_VERSION, get_tracer, init_telemetry, trace_id_hex
from annotation_service.viewport import connector_lines, overlay_boxes, to_normalized

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=getattr(logging, config.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
)
logger = logging.getLogger("annotation_service")

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Invoice Field Annotation Service",
    version=SERVICE_VERSION,
    description="Field detection parsing and page-space annotation geometry",
)
app.state.documents = DocumentRegistry()


@app.on_event("startup")
async def _startup() -> None:
    init_telemetry()
    logger.info(
        "Annotation service started — mock_mode=%s, otel=%s",
        config.mock_mode,
        bool(config.otel_endpoint),
    )


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def _verify_api_key(x_api_key: str = Header(default="")) -> None:
    if config.api_key and x_api_key != config.api_key:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")


def _documents(request: Request) -> DocumentRegistry:
    return request.app.state.documents


def _existing_session(registry: DocumentRegistry, document_id: str) -> DocumentSession:
    try:
        return registry.get(document_id)
    except DocumentNotFound:
        raise HTTPException(status_code=404, detail=f"Unknown document {document_id}") from None


_auth = [Depends(_verify_api_key)]


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


async def _run_detection(
    session: DocumentSession,
    request: Request,
    request_id: str,
    source: str,
    get_reply: Callable[[], Awaitable[str]],
) -> DetectionResponse:
    tracer = get_tracer()
    ctx = extract(carrier=dict(request.headers))

    with tracer.start_as_current_span(
        "annotation.handle_detection",
        context=ctx,
        attributes={"document.id": session.document_id, "detection.source": source},
    ) as span:
        request_id = request_id or str(uuid.uuid4())
        trace_id = trace_id_hex(span)
        span.set_attribute("request.id", request_id)

        log_detection_requested(request_id, session.document_id, trace_id, source)
        ticket = session.begin_detection()
        t0 = time.perf_counter()

        # 1. Get the reply (model call or caller-supplied)
        try:
            raw = await get_reply()
        except DetectionError as exc:
            session.fail_detection(ticket)
            log_detection_failed(request_id, session.document_id, trace_id, str(exc))
            raise HTTPException(status_code=502, detail=str(exc)) from exc

        # 2. Parse and normalize
        result = parse_response(raw)
        annotations = normalize(result.fields)

        # 3. Install, unless a newer request was issued meanwhile
        applied = session.complete_detection(ticket, annotations)

        duration_ms = (time.perf_counter() - t0) * 1000.0
        log_detection_completed(
            request_id=request_id,
            document_id=session.document_id,
            trace_id=trace_id,
            tier=result.tier,
            annotation_count=len(annotations),
            applied=applied,
            duration_ms=duration_ms,
        )
        span.set_attribute("detection.applied", applied)
        span.set_attribute("detection.annotation_count", len(annotations))

        return DetectionResponse(
            document_id=session.document_id,
            request_id=request_id,
            trace_id=trace_id,
            tier=result.tier,
            nothing_detected=result.nothing_detected,
            applied=applied,
            annotations=annotations,
        )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get("/health")
async def health():
    return {"status": "ok", "mock_mode": config.mock_mode}


@app.post("/documents/{document_id}/detect", response_model=DetectionResponse, dependencies=_auth)
async def detect_endpoint(
    document_id: str,
    body: DetectRequest,
    request: Request,
    x_request_id: str = Header(default=""),
    registry: DocumentRegistry = Depends(_documents),
):
    """Run the detection model on a PDF and replace the document's annotations."""
    session = registry.get_or_create(document_id)

    async def _reply() -> str:
        return await detect_fields(pdf_url=body.pdf_url, pdf_base64=body.pdf_base64)

    return await _run_detection(session, request, x_request_id, "model", _reply)


@app.post("/documents/{document_id}/responses", response_model=DetectionResponse, dependencies=_auth)
async def raw_response_endpoint(
    document_id: str,
    body: RawResponseRequest,
    request: Request,
    x_request_id: str = Header(default=""),
    registry: DocumentRegistry = Depends(_documents),
):
    """Parse a detection reply obtained elsewhere."""
    session = registry.get_or_create(document_id)

    async def _reply() -> str:
        return body.raw

    return await _run_detection(session, request, x_request_id, "caller", _reply)


@app.get("/documents/{document_id}/annotations", response_model=list[Annotation], dependencies=_auth)
async def list_annotations(document_id: str, registry: DocumentRegistry = Depends(_documents)):
    return _existing_session(registry, document_id).store.get()


@app.post("/documents/{document_id}/annotations/pin", response_model=Annotation, dependencies=_auth)
async def pin_annotation(
    document_id: str,
    body: PinRequest,
    registry: DocumentRegistry = Depends(_documents),
):
    """Place *field_type* at the clicked point, replacing any earlier one."""
    session = _existing_session(registry, document_id)
    if session.viewport is None:
        raise HTTPException(status_code=409, detail="Page has not been rendered yet")

    x, y = to_normalized(body.client_x, body.client_y, body.container_origin, session.viewport)
    annotation = pin(body.field_type, x, y, body.value)
    session.store.add(annotation)
    log_annotation_pinned(document_id, annotation.id, annotation.type.value)
    return annotation


@app.patch(
    "/documents/{document_id}/annotations/{annotation_id}",
    response_model=Annotation,
    dependencies=_auth,
)
async def update_annotation(
    document_id: str,
    annotation_id: str,
    body: ValueUpdate,
    registry: DocumentRegistry = Depends(_documents),
):
    session = _existing_session(registry, document_id)
    try:
        return session.store.update_value(annotation_id, body.value)
    except AnnotationNotFound:
        raise HTTPException(status_code=404, detail=f"Unknown annotation {annotation_id}") from None


@app.delete("/documents/{document_id}/annotations", status_code=204, dependencies=_auth)
async def clear_annotations(document_id: str, registry: DocumentRegistry = Depends(_documents)):
    _existing_session(registry, document_id).reset()


@app.put("/documents/{document_id}/viewport", response_model=PdfViewport, dependencies=_auth)
async def put_viewport(
    document_id: str,
    body: PdfViewport,
    registry: DocumentRegistry = Depends(_documents),
):
    session = registry.get_or_create(document_id)
    session.set_viewport(body)
    return body


@app.get("/documents/{document_id}/overlay", response_model=list[OverlayBox], dependencies=_auth)
async def get_overlay(document_id: str, registry: DocumentRegistry = Depends(_documents)):
    session = _existing_session(registry, document_id)
    return overlay_boxes(session.store.get(), session.viewport)


@app.post("/documents/{document_id}/connectors", response_model=list[ConnectorLine], dependencies=_auth)
async def get_connectors(
    document_id: str,
    body: ConnectorRequest,
    registry: DocumentRegistry = Depends(_documents),
):
    session = _existing_session(registry, document_id)
    return connector_lines(session.store.get(), body.anchors, session.viewport)


@app.get("/documents/{document_id}/form", response_model=FormResponse, dependencies=_auth)
async def get_form(document_id: str, registry: DocumentRegistry = Depends(_documents)):
    session = _existing_session(registry, document_id)
    annotations = session.store.get()
    form = build_form(annotations)
    return FormResponse(
        document_id=document_id,
        form=form,
        connected=[ft for ft in FieldType if session.store.is_connected(ft)],
        warnings=check_form(form),
    )


@app.delete("/documents/{document_id}", status_code=204, dependencies=_auth)
async def discard_document(document_id: str, registry: DocumentRegistry = Depends(_documents)):
    try:
        registry.discard(document_id)
    except DocumentNotFound:
        raise HTTPException(status_code=404, detail=f"Unknown document {document_id}") from None


# ---------------------------------------------------------------------------
# Error handler
# ---------------------------------------------------------------------------


@app.exception_handler(Exception)
async def _global_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "error": str(exc)},
    )
