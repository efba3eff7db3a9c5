import pytest
from fastapi.testclient import TestClient

from annotation_service.config import config
from annotation_service.main import app
from annotation_service.models import PdfViewport
from annotation_service.store import DocumentRegistry


@pytest.fixture
def viewport():
    return PdfViewport(
        original_width=800,
        original_height=1000,
        rendered_width=800,
        rendered_height=1000,
        offset_x=10,
        offset_y=20,
    )


@pytest.fixture
def client():
    app.state.documents = DocumentRegistry()
    with TestClient(app) as test_client:
        test_client.headers.update({"X-API-Key": config.api_key})
        yield test_client
