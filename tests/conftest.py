"""
Pytest configuration and shared fixtures for FileVault tests.
"""

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing the app
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["REDIS_URL"] = "redis://localhost:6379/1"
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["AWS_REGION"] = "us-east-1"
os.environ["S3_BUCKET_NAME"] = "test-bucket"
os.environ["TASK_RETRY_DELAYS"] = "1,2,4"
os.environ["DEBUG"] = "False"

from filevault import models  # noqa: F401, E402
from filevault.celery_app import celery  # noqa: E402
from filevault.database import Base  # noqa: E402
from filevault.main import app as fastapi_app  # noqa: E402
from filevault.utils import storage as storage_module  # noqa: E402
from filevault.utils.storage import PresignedUrl, StorageBroker  # noqa: E402

from tests.helpers import TEST_BUCKET  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def celery_eager():
    """Run tasks synchronously in-process; retries recurse without waiting."""
    celery.conf.task_always_eager = True
    celery.conf.task_eager_propagates = False
    yield
    celery.conf.task_always_eager = False


@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine, monkeypatch):
    """Session factory bound to the test engine, also used by the worker-side pipeline and background key-usage updates."""
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    monkeypatch.setattr("filevault.utils.pipeline.SessionLocal", factory)
    monkeypatch.setattr("filevault.utils.api_keys.SessionLocal", factory)
    return factory


@pytest.fixture(scope="function")
def db_session(session_factory):
    """Create a fresh database session for each test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def _not_found(operation: str) -> ClientError:
    return ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, operation)


@pytest.fixture(scope="function")
def storage(monkeypatch):
    """
    In-memory stand-in for the storage broker.

    ``storage.objects`` maps key -> (bytes, content_type); use ``put_object``
    (or ``tests.helpers.store_object``) to seed it.
    """
    broker = MagicMock(spec=StorageBroker)
    broker.bucket = TEST_BUCKET
    broker.objects = {}

    def create_upload_url(key, content_type, content_length=None, expires_in=None):
        return PresignedUrl(
            url=f"https://{TEST_BUCKET}.s3.amazonaws.com/{key}?X-Amz-Signature=put",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )

    def create_download_url(key, filename=None, expires_in=None):
        return PresignedUrl(
            url=f"https://{TEST_BUCKET}.s3.amazonaws.com/{key}?X-Amz-Signature=get",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )

    def head_object(key, bucket=None):
        if key not in broker.objects:
            raise _not_found("HeadObject")
        data, content_type = broker.objects[key]
        return {"ContentLength": len(data), "ContentType": content_type, "ETag": '"etag-' + key[-6:] + '"'}

    def read_object(key, bucket=None):
        if key not in broker.objects:
            raise _not_found("GetObject")
        return broker.objects[key][0]

    def iter_object_chunks(key, bucket=None, chunk_size=65536):
        data = read_object(key, bucket)
        return iter([data[i : i + chunk_size] for i in range(0, len(data), chunk_size)])

    def put_object(key, data, content_type, bucket=None):
        broker.objects[key] = (data, content_type)

    broker.create_upload_url.side_effect = create_upload_url
    broker.create_download_url.side_effect = create_download_url
    broker.head_object.side_effect = head_object
    broker.read_object.side_effect = read_object
    broker.iter_object_chunks.side_effect = iter_object_chunks
    broker.put_object.side_effect = put_object

    monkeypatch.setattr(storage_module, "_storage", broker)
    return broker


@pytest.fixture(scope="function")
def client(db_session, storage) -> TestClient:
    """Create a test client with a fresh database and the in-memory storage broker."""
    from filevault.database import get_db
    from filevault.utils.storage import get_storage

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_storage] = lambda: storage

    with TestClient(fastapi_app, base_url="http://localhost") as test_client:
        yield test_client

    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def organization(db_session):
    """An organization with its default admin key; returns ``(org, issued_key)``."""
    from filevault.utils.api_keys import create_organization

    return create_organization(db_session, "Acme")


@pytest.fixture
def admin_context(organization, db_session):
    from filevault.utils.api_keys import authenticate

    _org, issued = organization
    return authenticate(db_session, issued.key)


@pytest.fixture
def other_organization(db_session):
    from filevault.utils.api_keys import create_organization

    return create_organization(db_session, "Globex")


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual functions/methods")
    config.addinivalue_line("markers", "integration: Integration tests for API endpoints and workflows")
    config.addinivalue_line("markers", "security: Security-related tests")
    config.addinivalue_line("markers", "requires_redis: Tests requiring Redis")
