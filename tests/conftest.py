"""
Pytest configuration and fixtures for the customer import tests.

Every test gets a fresh in-memory SQLite database standing in for Postgres,
and API tests get an in-memory object store in place of S3.
"""

import os

# The app lifespan must not try to reach the real database.
os.environ["SKIP_DB_INIT"] = "1"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from crm_import.db.models import create_tables
from crm_import.domain.imports.sessions import SessionStore
from crm_import.domain.imports.store import CustomerStore
from crm_import.integrations.storage import FileStorage, StorageDownloadError


class InMemoryFileStorage(FileStorage):
    def __init__(self):
        self.objects = {}

    def upload(self, file_content, file_path):
        self.objects[file_path] = file_content
        return {"file_id": str(len(self.objects)), "file_path": file_path, "size": len(file_content)}

    def download(self, file_path):
        if file_path not in self.objects:
            raise StorageDownloadError(f"File not found: {file_path}")
        return self.objects[file_path]


@pytest.fixture
def test_engine():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def customer_store(test_engine):
    return CustomerStore(test_engine)


@pytest.fixture
def session_store(test_engine):
    return SessionStore(test_engine)


@pytest.fixture
def file_storage():
    return InMemoryFileStorage()


@pytest.fixture
def client(customer_store, session_store, file_storage):
    from crm_import.api.dependencies import get_customer_store, get_file_storage, get_session_store
    from crm_import.main import app

    app.dependency_overrides[get_customer_store] = lambda: customer_store
    app.dependency_overrides[get_session_store] = lambda: session_store
    app.dependency_overrides[get_file_storage] = lambda: file_storage
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
