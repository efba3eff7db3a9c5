"""Pydantic models for the annotation service — engine and HTTP contract."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class FieldType(str, Enum):
    """The eight canonical invoice fields. Closed set."""

    VENDOR = "vendor"
    DATE = "date"
    DUE_DATE = "dueDate"
    AMOUNT = "amount"
    TAX = "tax"
    TOTAL = "total"
    CURRENCY = "currency"
    NOTES = "notes"


MONEY_FIELDS = frozenset({FieldType.AMOUNT, FieldType.TAX, FieldType.TOTAL})


class NormalizedBox(BaseModel):
    """Box in page fractions [0..1]."""

    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    def clamped(self) -> NormalizedBox:
        """Pull the box inside the page instead of rejecting it."""
        x = max(0.0, min(1.0, self.x))
        y = max(0.0, min(1.0, self.y))
        width = max(0.0, min(1.0 - x, self.width))
        height = max(0.0, min(1.0 - y, self.height))
        return NormalizedBox(x=x, y=y, width=width, height=height)

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2


class DetectedField(BaseModel):
    """One field as reported by the detection service, after parsing."""

    type: str
    text: str = ""
    bounding_box: NormalizedBox = Field(default_factory=NormalizedBox)
    confidence: float = 0.0


class Annotation(BaseModel):
    id: str
    x: float
    y: float
    type: FieldType
    value: str = ""
    color: str
    bounding_box: NormalizedBox = Field(default_factory=NormalizedBox)


class PdfViewport(BaseModel):
    """How the page is currently drawn inside its scroll container.

    Recomputed by the renderer on every render or zoom change and always
    replaced as a whole.
    """

    model_config = ConfigDict(frozen=True)

    original_width: float = Field(gt=0)
    original_height: float = Field(gt=0)
    rendered_width: float = Field(gt=0)
    rendered_height: float = Field(gt=0)
    offset_x: float = 0.0
    offset_y: float = 0.0

    @classmethod
    def for_scale(
        cls,
        original_width: float,
        original_height: float,
        scale: float,
        offset_x: float = 0.0,
        offset_y: float = 0.0,
    ) -> PdfViewport:
        return cls(
            original_width=original_width,
            original_height=original_height,
            rendered_width=original_width * scale,
            rendered_height=original_height * scale,
            offset_x=offset_x,
            offset_y=offset_y,
        )

    @property
    def scale(self) -> float:
        return self.rendered_width / self.original_width


class PixelBox(BaseModel):
    left: float
    top: float
    width: float
    height: float


class PixelPoint(BaseModel):
    x: float
    y: float


class ContainerOrigin(BaseModel):
    """Client-space position of the scroll container's top-left corner."""

    left: float = 0.0
    top: float = 0.0


class OverlayBox(BaseModel):
    annotation_id: str
    type: FieldType
    color: str
    value: str = ""
    box: PixelBox
    marker: PixelPoint


class ConnectorLine(BaseModel):
    annotation_id: str
    color: str
    x1: float
    y1: float
    x2: float
    y2: float


class FormWarning(BaseModel):
    code: str
    message: str
    details: dict = Field(default_factory=dict)


class InvoiceForm(BaseModel):
    vendor: str = ""
    date: str = ""
    due_date: str = ""
    amount: float = 0.0
    tax: float = 0.0
    total: float = 0.0
    currency: str = "USD"
    notes: str = ""
    status: str = "pending"


# ---------------------------------------------------------------------------
# HTTP request / response bodies
# ---------------------------------------------------------------------------


class DetectRequest(BaseModel):
    pdf_url: str = ""
    pdf_base64: str = ""


class RawResponseRequest(BaseModel):
    raw: str


class DetectionResponse(BaseModel):
    document_id: str
    request_id: str
    trace_id: str
    tier: str | None = None
    nothing_detected: bool = False
    applied: bool = True
    annotations: list[Annotation] = Field(default_factory=list)


class PinRequest(BaseModel):
    field_type: FieldType
    client_x: float
    client_y: float
    container_origin: ContainerOrigin = Field(default_factory=ContainerOrigin)
    value: str = ""


class ValueUpdate(BaseModel):
    value: str


class FieldAnchor(BaseModel):
    """Container-relative rectangle of a form input, keyed by field type."""

    type: FieldType
    left: float
    top: float
    width: float = 0.0
    height: float = 0.0


class ConnectorRequest(BaseModel):
    anchors: list[FieldAnchor] = Field(default_factory=list)


class FormResponse(BaseModel):
    document_id: str
    form: InvoiceForm
    connected: list[FieldType] = Field(default_factory=list)
    warnings: list[FormWarning] = Field(default_factory=list)
