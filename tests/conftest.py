from __future__ import annotations

import os

import pytest
from fastapi.testclient import TestClient

from filestore.common.config import FileStorageConfig, get_settings

os.environ.setdefault("S3_BUCKET", "test-bucket")
os.environ["S3_AUTO_CREATE_BUCKET"] = "false"
os.environ["DESTRUCTIVE_API_KEY"] = os.environ.get("DESTRUCTIVE_API_KEY") or "admin-secret"
get_settings.cache_clear()  # type: ignore[attr-defined]

from filestore.api.v1.deps import get_bucket_service, get_file_storage  # noqa: E402
from filestore.main import create_app  # noqa: E402
from filestore.services.bucket_service import BucketService  # noqa: E402
from filestore.services.file_storage_service import FileStorageService  # noqa: E402
from tests.services.mock_storage import MockStorageClient  # noqa: E402


@pytest.fixture()
def api_storage():
    return MockStorageClient()


@pytest.fixture()
def api_service(api_storage):
    config = FileStorageConfig(bucket="test-bucket", prefix="files", chunk_size=1024)
    return FileStorageService(api_storage, config)


@pytest.fixture()
def build_client(api_storage, api_service):
    """TestClient over a fresh app wired to the in-memory store."""

    def factory() -> TestClient:
        app = create_app()
        app.dependency_overrides[get_file_storage] = lambda: api_service
        app.dependency_overrides[get_bucket_service] = lambda: BucketService(
            api_storage, "test-bucket"
        )
        return TestClient(app)

    return factory


@pytest.fixture()
def api_client(build_client):
    return build_client()
