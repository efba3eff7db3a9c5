"""Normalized page coordinates <-> on-screen pixels.

Every function here is a pure function of the PdfViewport it is handed.
Nothing is cached; the renderer supplies a fresh viewport after each render
or zoom change.
"""

from __future__ import annotations

from annotation_service.models import (
    Annotation,
    ContainerOrigin,
    ConnectorLine,
    FieldAnchor,
    NormalizedBox,
    OverlayBox,
    PdfViewport,
    PixelBox,
    PixelPoint,
)

DEFAULT_SCALE = 1.2
ZOOM_STEP = 0.2
MIN_SCALE = 0.6
MIN_PIXEL_SIZE = 1.0


def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, value))


def to_pixels(box: NormalizedBox, viewport: PdfViewport) -> PixelBox:
    """Container-relative pixel box; never smaller than 1x1 so it stays clickable."""
    return PixelBox(
        left=box.x * viewport.rendered_width + viewport.offset_x,
        top=box.y * viewport.rendered_height + viewport.offset_y,
        width=max(MIN_PIXEL_SIZE, box.width * viewport.rendered_width),
        height=max(MIN_PIXEL_SIZE, box.height * viewport.rendered_height),
    )


def to_normalized_box(pixels: PixelBox, viewport: PdfViewport) -> NormalizedBox:
    """Inverse of :func:`to_pixels` (no clamping)."""
    return NormalizedBox(
        x=(pixels.left - viewport.offset_x) / viewport.rendered_width,
        y=(pixels.top - viewport.offset_y) / viewport.rendered_height,
        width=pixels.width / viewport.rendered_width,
        height=pixels.height / viewport.rendered_height,
    )


def point_to_pixels(x: float, y: float, viewport: PdfViewport) -> PixelPoint:
    return PixelPoint(
        x=x * viewport.rendered_width + viewport.offset_x,
        y=y * viewport.rendered_height + viewport.offset_y,
    )


def to_normalized(
    client_x: float,
    client_y: float,
    origin: ContainerOrigin,
    viewport: PdfViewport,
) -> tuple[float, float]:
    """Pointer position to page fractions.

    Clicks in the margin around the page are pulled to the nearest edge.
    """
    x = (client_x - origin.left - viewport.offset_x) / viewport.rendered_width
    y = (client_y - origin.top - viewport.offset_y) / viewport.rendered_height
    return _clamp_unit(x), _clamp_unit(y)


def zoom_in(scale: float) -> float:
    return round(scale + ZOOM_STEP, 2)


def zoom_out(scale: float) -> float:
    return round(max(MIN_SCALE, scale - ZOOM_STEP), 2)


def overlay_boxes(
    annotations: list[Annotation], viewport: PdfViewport | None
) -> list[OverlayBox]:
    """Pixel overlays for *annotations*; nothing to draw until a viewport exists."""
    if viewport is None:
        return []
    return [
        OverlayBox(
            annotation_id=annotation.id,
            type=annotation.type,
            color=annotation.color,
            value=annotation.value,
            box=to_pixels(annotation.bounding_box, viewport),
            marker=point_to_pixels(annotation.x, annotation.y, viewport),
        )
        for annotation in annotations
    ]


def connector_lines(
    annotations: list[Annotation],
    anchors: list[FieldAnchor],
    viewport: PdfViewport | None,
) -> list[ConnectorLine]:
    """Lines from each annotation marker to the left-middle of its form field."""
    if viewport is None:
        return []
    by_type = {anchor.type: anchor for anchor in anchors}
    lines = []
    for annotation in annotations:
        anchor = by_type.get(annotation.type)
        if anchor is None:
            continue
        marker = point_to_pixels(annotation.x, annotation.y, viewport)
        lines.append(
            ConnectorLine(
                annotation_id=annotation.id,
                color=annotation.color,
                x1=marker.x,
                y1=marker.y,
                x2=anchor.left,
                y2=anchor.top + anchor.height / 2,
            )
        )
    return lines
