"""Field detection client with mock fallback.

Renders the first page of the invoice to PNG and asks an OpenAI-compatible
chat model where each canonical field sits. The reply text is returned as-is;
interpreting it is the response parser's job.

In mock mode (no OPENAI_API_KEY configured), returns a deterministic JSON
reply so the rest of the pipeline can be exercised offline.
"""

from __future__ import annotations

import base64
import binascii
import io
import json
import logging

import httpx
import openai
import pypdfium2 as pdfium
from openai import AsyncOpenAI
from opentelemetry import trace

from annotation_service.config import config

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("annotation-service")

SYSTEM_PROMPT = (
    "You are an invoice analysis assistant. Extract invoice details including "
    "vendor, date, due date, amount, tax, total, currency and any notes."
)

USER_PROMPT = (
    "Analyze this invoice and extract all relevant fields. Provide the field type, "
    "exact text value, and the position of each field as coordinates "
    "(x, y, width, height) as percentage of document dimensions. Reply with a JSON "
    'object of the form {"fields": [{"type": ..., "text": ..., "boundingBox": '
    '{"x": ..., "y": ..., "width": ..., "height": ...}, "confidence": ...}]}.'
)


class DetectionError(Exception):
    """The detection call failed; the message is fit to show to a user."""


# ---------------------------------------------------------------------------
# Deterministic mock reply — positions are percentages, as the prompt asks
# ---------------------------------------------------------------------------

_MOCK_REPLY = {
    "fields": [
        {"type": "vendor", "text": "Acme Inc.", "boundingBox": {"x": 10, "y": 15, "width": 30, "height": 5}, "confidence": 0.95},
        {"type": "date", "text": "2023-10-15", "boundingBox": {"x": 70, "y": 15, "width": 20, "height": 5}, "confidence": 0.93},
        {"type": "dueDate", "text": "2023-11-15", "boundingBox": {"x": 70, "y": 25, "width": 20, "height": 5}, "confidence": 0.92},
        {"type": "amount", "text": "1250.00", "boundingBox": {"x": 75, "y": 60, "width": 15, "height": 5}, "confidence": 0.97},
        {"type": "tax", "text": "187.50", "boundingBox": {"x": 75, "y": 65, "width": 15, "height": 5}, "confidence": 0.96},
        {"type": "total", "text": "1437.50", "boundingBox": {"x": 75, "y": 70, "width": 15, "height": 5}, "confidence": 0.98},
        {"type": "currency", "text": "USD", "boundingBox": {"x": 80, "y": 60, "width": 5, "height": 5}, "confidence": 0.94},
    ]
}


def mock_reply() -> str:
    return json.dumps(_MOCK_REPLY)


# ---------------------------------------------------------------------------
# Document handling
# ---------------------------------------------------------------------------


async def fetch_pdf(pdf_url: str) -> bytes:
    """Download PDF bytes from *pdf_url*."""
    with tracer.start_as_current_span("annotation.fetch_pdf", attributes={"pdf.url": pdf_url}):
        async with httpx.AsyncClient(timeout=60.0) as client:
            resp = await client.get(pdf_url)
            resp.raise_for_status()
            logger.info("Fetched PDF: %d bytes from %s", len(resp.content), pdf_url)
            return resp.content


def render_first_page(pdf_bytes: bytes, scale: float) -> str:
    """Render page one as a base64-encoded PNG."""
    pdf = pdfium.PdfDocument(pdf_bytes)
    try:
        if len(pdf) == 0:
            raise DetectionError("The document has no pages")
        bitmap = pdf[0].render(scale=scale)
        buf = io.BytesIO()
        bitmap.to_pil().save(buf, format="PNG")
        return base64.b64encode(buf.getvalue()).decode("ascii")
    finally:
        pdf.close()


# ---------------------------------------------------------------------------
# Model call
# ---------------------------------------------------------------------------


async def call_detection_model(image_b64: str) -> str:
    """Send one page image to the model and return the reply text."""
    with tracer.start_as_current_span("annotation.call_detection_model") as span:
        span.set_attribute("model.id", config.openai_model)
        client = AsyncOpenAI(
            api_key=config.openai_api_key,
            base_url=config.openai_api_base or None,
            timeout=config.detection_timeout,
        )
        completion = await client.chat.completions.create(
            model=config.openai_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": USER_PROMPT},
                        {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{image_b64}"}},
                    ],
                },
            ],
            temperature=0.2,
            max_tokens=1500,
        )
        content = ""
        if completion.choices:
            content = completion.choices[0].message.content or ""
        span.set_attribute("model.response_length", len(content))
        return content


async def detect_fields(pdf_url: str = "", pdf_base64: str = "") -> str:
    """Run field detection on a document and return the raw reply text.

    Raises DetectionError with a human-readable reason on any failure.
    """
    if not pdf_url and not pdf_base64:
        raise DetectionError("Either pdf_url or pdf_base64 is required for detection")

    if config.mock_mode:
        logger.info("Mock mode: returning deterministic detection reply")
        with tracer.start_as_current_span("annotation.call_detection_model", attributes={"mock": True}):
            return mock_reply()

    try:
        if pdf_base64:
            pdf_bytes = base64.b64decode(pdf_base64, validate=True)
        else:
            pdf_bytes = await fetch_pdf(pdf_url)
        image_b64 = render_first_page(pdf_bytes, config.render_scale)
        content = await call_detection_model(image_b64)
    except binascii.Error as exc:
        raise DetectionError("pdf_base64 is not valid base64") from exc
    except httpx.HTTPStatusError as exc:
        raise DetectionError(f"Fetching the PDF failed with HTTP {exc.response.status_code}") from exc
    except httpx.HTTPError as exc:
        raise DetectionError(f"Could not fetch the PDF: {exc}") from exc
    except pdfium.PdfiumError as exc:
        raise DetectionError(f"Could not render the PDF: {exc}") from exc
    except openai.APIStatusError as exc:
        raise DetectionError(f"Detection service returned HTTP {exc.status_code}") from exc
    except openai.OpenAIError as exc:
        raise DetectionError(f"Detection service unavailable: {exc}") from exc

    if not content.strip():
        raise DetectionError("Detection service returned an empty reply")
    logger.info("Detection service returned %d chars", len(content))
    return content
