"""
Tests for the object store gateways.

The Azure store is exercised against a mocked ContainerClient; SAS tokens are
generated for real with a throwaway account key.
"""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import Mock
from urllib.parse import parse_qs, urlparse

import pytest
from azure.core.exceptions import AzureError, ResourceExistsError, ResourceNotFoundError

from apps.config import BlobStoreConfig
from storage.errors import DeleteFailed, SignFailed, StoreUnavailable, WriteFailed
from storage.object_store.buckets import (
    AzureBlobStore,
    InMemoryObjectStore,
    build_object_store,
)

ACCOUNT_KEY = "dGVzdC1hY2NvdW50LWtleS1mb3ItdW5pdC10ZXN0cw=="


# =============================================================================
# In-memory store
# =============================================================================


class TestInMemoryObjectStore:
    def test_put_then_list_reports_size(self):
        store = InMemoryObjectStore()
        store.put("a.pdf", b"x" * 1024, "application/pdf")

        listing = store.list()

        assert set(listing) == {"a.pdf"}
        assert listing["a.pdf"].size == 1024
        assert listing["a.pdf"].exists is True
        assert listing["a.pdf"].last_modified.tzinfo is not None

    def test_put_overwrites(self):
        store = InMemoryObjectStore()
        store.put("a.pdf", b"old")
        store.put("a.pdf", b"newer")

        assert store.get("a.pdf") == b"newer"
        assert store.list()["a.pdf"].size == 5

    def test_delete_missing_key_is_not_an_error(self):
        store = InMemoryObjectStore()
        store.delete("never-existed.pdf")
        assert store.list() == {}

    def test_signed_url_verifies_until_expiry(self):
        store = InMemoryObjectStore(base_url="http://testserver/blobs")
        url = store.sign("report q3.pdf", 3600)

        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        assert parsed.path == "/blobs/documents/report%20q3.pdf"
        assert store.verify("report q3.pdf", int(query["se"][0]), query["sig"][0])
        assert not store.verify("other.pdf", int(query["se"][0]), query["sig"][0])

    def test_expired_url_does_not_verify(self):
        store = InMemoryObjectStore()
        query = parse_qs(urlparse(store.sign("a.pdf", -10)).query)

        assert not store.verify("a.pdf", int(query["se"][0]), query["sig"][0])

    def test_each_sign_call_is_fresh(self):
        store = InMemoryObjectStore()
        assert store.sign("a.pdf", 10) != store.sign("a.pdf", 7200)


# =============================================================================
# Azure store
# =============================================================================


@pytest.fixture
def container():
    client = Mock()
    client.get_blob_client.side_effect = lambda key: SimpleNamespace(
        url=f"https://portalacct.blob.core.windows.net/documents/{key}"
    )
    return client


@pytest.fixture
def azure_store(container):
    service = Mock()
    service.account_name = "portalacct"
    service.get_container_client.return_value = container
    return AzureBlobStore(service, "documents", account_key=ACCOUNT_KEY)


class TestAzureBlobStore:
    def test_list_maps_blob_properties(self, azure_store, container):
        modified = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        container.list_blobs.return_value = [
            SimpleNamespace(name="a.pdf", size=1024, last_modified=modified),
            SimpleNamespace(name="b.txt", size=0, last_modified=modified),
        ]

        listing = azure_store.list()

        assert listing["a.pdf"].size == 1024
        assert listing["a.pdf"].last_modified == modified
        assert listing["b.txt"].size == 0

    def test_list_failure_becomes_store_unavailable(self, azure_store, container):
        container.list_blobs.side_effect = AzureError("connection reset")

        with pytest.raises(StoreUnavailable):
            azure_store.list()

    def test_put_uploads_with_content_type(self, azure_store, container):
        azure_store.put("a.pdf", b"%PDF", "application/pdf")

        kwargs = container.upload_blob.call_args.kwargs
        assert kwargs["name"] == "a.pdf"
        assert kwargs["data"] == b"%PDF"
        assert kwargs["overwrite"] is True
        assert kwargs["content_settings"].content_type == "application/pdf"

    def test_put_failure_becomes_write_failed(self, azure_store, container):
        container.upload_blob.side_effect = AzureError("503")

        with pytest.raises(WriteFailed) as excinfo:
            azure_store.put("a.pdf", b"%PDF", "application/pdf")
        assert excinfo.value.key == "a.pdf"

    def test_delete_absent_blob_is_success(self, azure_store, container):
        container.delete_blob.side_effect = ResourceNotFoundError("BlobNotFound")
        azure_store.delete("gone.pdf")

    def test_delete_failure_becomes_delete_failed(self, azure_store, container):
        container.delete_blob.side_effect = AzureError("timeout")

        with pytest.raises(DeleteFailed):
            azure_store.delete("a.pdf")

    def test_sign_produces_read_only_sas_url(self, azure_store):
        url = azure_store.sign("a.pdf", 3600)

        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        assert url.startswith("https://portalacct.blob.core.windows.net/documents/a.pdf?")
        assert query["sp"] == ["r"]
        assert "sig" in query
        assert "se" in query

    def test_sign_without_account_key_fails(self, container):
        service = Mock()
        service.account_name = "portalacct"
        service.credential = None
        service.get_container_client.return_value = container
        store = AzureBlobStore(service, "documents")

        with pytest.raises(SignFailed):
            store.sign("a.pdf", 3600)

    def test_ensure_container_tolerates_existing(self, azure_store, container):
        container.create_container.side_effect = ResourceExistsError("ContainerAlreadyExists")
        azure_store.ensure_container()

    def test_ensure_container_logs_backend_errors(self, azure_store, container):
        container.create_container.side_effect = AzureError("forbidden")
        azure_store.ensure_container()


# =============================================================================
# Factory
# =============================================================================


def test_build_memory_store():
    store = build_object_store(BlobStoreConfig(backend="memory", container="docs"))
    assert isinstance(store, InMemoryObjectStore)
    assert store.name == "memory:docs"


def test_build_unknown_backend():
    with pytest.raises(ValueError):
        build_object_store(BlobStoreConfig(backend="ftp"))
