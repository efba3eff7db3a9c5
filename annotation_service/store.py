"""Per-document annotation state.

AnnotationStore keeps at most one annotation per field type. DocumentSession
wraps a store for one document and makes sure only the most recently issued
detection request may replace it, whatever order replies arrive in.
"""

from __future__ import annotations

import logging

from annotation_service.models import Annotation, FieldType, PdfViewport

logger = logging.getLogger(__name__)


class AnnotationNotFound(KeyError):
    pass


class DocumentNotFound(KeyError):
    pass


class AnnotationStore:
    def __init__(self) -> None:
        self._annotations: list[Annotation] = []

    def add(self, annotation: Annotation) -> None:
        """Append *annotation*, replacing any existing one of the same type."""
        self._annotations = [a for a in self._annotations if a.type != annotation.type]
        self._annotations.append(annotation)

    def replace_all(self, annotations: list[Annotation]) -> None:
        types = [a.type for a in annotations]
        if len(types) != len(set(types)):
            raise ValueError("Annotation set holds more than one annotation per field type")
        self._annotations = list(annotations)

    def update_value(self, annotation_id: str, value: str) -> Annotation:
        for index, annotation in enumerate(self._annotations):
            if annotation.id == annotation_id:
                updated = annotation.model_copy(update={"value": value})
                self._annotations[index] = updated
                return updated
        raise AnnotationNotFound(annotation_id)

    def clear(self) -> None:
        self._annotations = []

    def get(self) -> list[Annotation]:
        return list(self._annotations)

    def get_by_type(self, field_type: FieldType) -> Annotation | None:
        for annotation in self._annotations:
            if annotation.type == field_type:
                return annotation
        return None

    def is_connected(self, field_type: FieldType) -> bool:
        return self.get_by_type(field_type) is not None

    def __len__(self) -> int:
        return len(self._annotations)


class DocumentSession:
    """Annotation store plus detection ordering for a single document."""

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        self.store = AnnotationStore()
        self.viewport: PdfViewport | None = None
        self._latest_ticket = 0

    def begin_detection(self) -> int:
        """Issue a ticket; any earlier outstanding ticket becomes stale."""
        self._latest_ticket += 1
        return self._latest_ticket

    def is_current(self, ticket: int) -> bool:
        return ticket == self._latest_ticket

    def complete_detection(self, ticket: int, annotations: list[Annotation]) -> bool:
        """Install *annotations* if *ticket* is still the latest one issued."""
        if not self.is_current(ticket):
            logger.info(
                "Ignoring stale detection result for %s (ticket %d, latest %d)",
                self.document_id,
                ticket,
                self._latest_ticket,
            )
            return False
        self.store.replace_all(annotations)
        return True

    def fail_detection(self, ticket: int) -> None:
        logger.info("Detection %d failed for %s, store unchanged", ticket, self.document_id)

    def reset(self) -> None:
        """Clear the annotations and void any detection still in flight."""
        self._latest_ticket += 1
        self.store.clear()

    def set_viewport(self, viewport: PdfViewport | None) -> None:
        self.viewport = viewport


class DocumentRegistry:
    def __init__(self) -> None:
        self._sessions: dict[str, DocumentSession] = {}

    def get(self, document_id: str) -> DocumentSession:
        try:
            return self._sessions[document_id]
        except KeyError:
            raise DocumentNotFound(document_id) from None

    def get_or_create(self, document_id: str) -> DocumentSession:
        session = self._sessions.get(document_id)
        if session is None:
            session = DocumentSession(document_id)
            self._sessions[document_id] = session
        return session

    def discard(self, document_id: str) -> None:
        if self._sessions.pop(document_id, None) is None:
            raise DocumentNotFound(document_id)

    def __contains__(self, document_id: str) -> bool:
        return document_id in self._sessions
