import pytest

from annotation_service.models import FieldType
from annotation_service.normalizer import pin
from annotation_service.store import (
    AnnotationNotFound,
    AnnotationStore,
    DocumentNotFound,
    DocumentRegistry,
    DocumentSession,
)


def test_add_replaces_same_type():
    store = AnnotationStore()
    store.add(pin(FieldType.VENDOR, 0.1, 0.1, "Old"))
    store.add(pin(FieldType.TOTAL, 0.5, 0.5, "10"))
    store.add(pin(FieldType.VENDOR, 0.2, 0.2, "New"))

    annotations = store.get()
    assert [a.type for a in annotations] == [FieldType.TOTAL, FieldType.VENDOR]
    assert store.get_by_type(FieldType.VENDOR).value == "New"


def test_last_write_wins_for_any_sequence():
    store = AnnotationStore()
    sequence = [FieldType.DATE, FieldType.TAX, FieldType.DATE, FieldType.NOTES, FieldType.TAX, FieldType.TAX]
    latest = {}
    for i, field_type in enumerate(sequence):
        annotation = pin(field_type, 0.1, 0.1, str(i))
        store.add(annotation)
        latest[field_type] = annotation.value

    types = [a.type for a in store.get()]
    assert len(types) == len(set(types))
    assert {a.type: a.value for a in store.get()} == latest


def test_replace_all_installs_verbatim():
    store = AnnotationStore()
    store.add(pin(FieldType.NOTES, 0.1, 0.1, "manual"))
    fresh = [pin(FieldType.DATE, 0.2, 0.2, "2024-01-01"), pin(FieldType.TOTAL, 0.3, 0.3, "5")]

    store.replace_all(fresh)
    assert store.get() == fresh


def test_replace_all_rejects_duplicate_types():
    store = AnnotationStore()
    with pytest.raises(ValueError):
        store.replace_all([pin(FieldType.DATE, 0.1, 0.1), pin(FieldType.DATE, 0.2, 0.2)])
    assert store.get() == []


def test_update_value_keeps_position_and_type():
    store = AnnotationStore()
    annotation = pin(FieldType.TOTAL, 0.4, 0.6, "10")
    store.add(annotation)

    updated = store.update_value(annotation.id, "12.50")
    assert updated.value == "12.50"
    assert (updated.x, updated.y, updated.type) == (0.4, 0.6, FieldType.TOTAL)
    assert store.get()[0].value == "12.50"

    with pytest.raises(AnnotationNotFound):
        store.update_value("missing", "1")


def test_clear_and_connected():
    store = AnnotationStore()
    store.add(pin(FieldType.CURRENCY, 0.1, 0.1, "USD"))
    assert store.is_connected(FieldType.CURRENCY)
    assert not store.is_connected(FieldType.TAX)

    store.clear()
    assert len(store) == 0
    assert not store.is_connected(FieldType.CURRENCY)


def test_latest_issued_detection_wins():
    session = DocumentSession("doc-1")
    first = session.begin_detection()
    second = session.begin_detection()

    newer = [pin(FieldType.TOTAL, 0.1, 0.1, "200")]
    older = [pin(FieldType.TOTAL, 0.1, 0.1, "100")]

    assert session.complete_detection(second, newer) is True
    # The first request resolves late and must not overwrite the newer result.
    assert session.complete_detection(first, older) is False
    assert session.store.get() == newer


def test_failed_detection_leaves_store_unchanged():
    session = DocumentSession("doc-1")
    existing = pin(FieldType.VENDOR, 0.1, 0.1, "Acme")
    session.store.add(existing)

    ticket = session.begin_detection()
    session.fail_detection(ticket)
    assert session.store.get() == [existing]


def test_reset_voids_in_flight_detection():
    session = DocumentSession("doc-1")
    session.store.add(pin(FieldType.VENDOR, 0.1, 0.1, "Acme"))

    ticket = session.begin_detection()
    session.reset()

    assert session.complete_detection(ticket, [pin(FieldType.TOTAL, 0.1, 0.1, "200")]) is False
    assert session.store.get() == []


def test_detection_after_reset_still_applies():
    session = DocumentSession("doc-1")
    session.reset()

    ticket = session.begin_detection()
    annotations = [pin(FieldType.TOTAL, 0.1, 0.1, "200")]
    assert session.complete_detection(ticket, annotations) is True
    assert session.store.get() == annotations


def test_registry_lifecycle():
    registry = DocumentRegistry()
    session = registry.get_or_create("doc-1")
    assert registry.get_or_create("doc-1") is session
    assert "doc-1" in registry

    registry.discard("doc-1")
    with pytest.raises(DocumentNotFound):
        registry.get("doc-1")
    with pytest.raises(DocumentNotFound):
        registry.discard("doc-1")
