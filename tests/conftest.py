"""
Shared fixtures for the document portal tests.

- Database fixtures: SQLite file per test, initialized pool manager
- Object store fixtures: in-memory store with switchable failures
- API fixtures: app wired with the fixtures above, TestClient with lifecycle
"""

from __future__ import annotations

from typing import Callable, Optional, Set

import pytest
from fastapi.testclient import TestClient

from apps.api.main import create_app
from apps.config import AuthConfig, BlobStoreConfig, DatabaseConfig, PortalConfig
from auth.identity_provider import InMemoryIdentityProvider
from documents.service import DocumentService
from storage.errors import DeleteFailed, SignFailed, StoreUnavailable, WriteFailed
from storage.object_store.buckets import InMemoryObjectStore
from storage.relational.pool import ConnectionPoolManager
from storage.relational.repository import DocumentRecord, DocumentRepository


class FlakyObjectStore(InMemoryObjectStore):
    """In-memory store whose operations can be switched to fail."""

    def __init__(self):
        super().__init__(container="documents", base_url="http://testserver/blobs")
        self.list_outage = False
        self.put_outage = False
        self.delete_outage = False
        self.unsignable: Set[str] = set()

    def list(self):
        if self.list_outage:
            raise StoreUnavailable("simulated listing outage")
        return super().list()

    def put(self, key, data, content_type=None):
        if self.put_outage:
            raise WriteFailed("Failed to upload file to object store", key=key)
        super().put(key, data, content_type)

    def delete(self, key):
        if self.delete_outage:
            raise DeleteFailed("Failed to delete file from object store", key=key)
        super().delete(key)

    def sign(self, key, ttl_seconds=3600):
        if key in self.unsignable:
            raise SignFailed(f"Failed to sign URL for {key}", key=key)
        return super().sign(key, ttl_seconds)


# =============================================================================
# DATABASE FIXTURES
# =============================================================================


@pytest.fixture
def db_config(tmp_path) -> DatabaseConfig:
    return DatabaseConfig(
        url=f"sqlite:///{tmp_path / 'documents.db'}",
        password="",
        pool_size=2,
        pool_timeout=0.5,
        wait_for_connections=True,
        idle_timeout=300,
        liveness_interval=3600,
        admin_url="",
        reset_users=[],
    )


@pytest.fixture
def pool_manager(db_config):
    manager = ConnectionPoolManager(db_config)
    manager.initialize()
    manager.ensure_schema()
    yield manager
    manager.shutdown(timeout=1)


@pytest.fixture
def seed(pool_manager) -> Callable[[str], DocumentRecord]:
    """Insert a record directly, bypassing the object store."""

    def _seed(title: str) -> DocumentRecord:
        with pool_manager.session() as db:
            return DocumentRepository.insert(db, title)

    return _seed


@pytest.fixture
def stored_titles(pool_manager) -> Callable[[], list]:
    def _titles() -> list:
        with pool_manager.session() as db:
            return [r.title for r in DocumentRepository.list_all(db)]

    return _titles


# =============================================================================
# OBJECT STORE / SERVICE FIXTURES
# =============================================================================


@pytest.fixture
def object_store() -> FlakyObjectStore:
    return FlakyObjectStore()


@pytest.fixture
def document_service(pool_manager, object_store) -> DocumentService:
    return DocumentService(pool_manager, object_store)


# =============================================================================
# API FIXTURES
# =============================================================================


@pytest.fixture
def portal_config(db_config) -> PortalConfig:
    return PortalConfig(
        database=db_config,
        blob_store=BlobStoreConfig(backend="memory"),
        auth=AuthConfig(mode="bypassed"),
    )


@pytest.fixture
def identity_provider() -> InMemoryIdentityProvider:
    return InMemoryIdentityProvider()


@pytest.fixture
def app(portal_config, pool_manager, object_store, identity_provider):
    return create_app(
        config=portal_config,
        pool=pool_manager,
        object_store=object_store,
        identity_provider=identity_provider,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
