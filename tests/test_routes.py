"""
HTTP tests for the document, health and account endpoints (auth bypassed).
"""

from __future__ import annotations

from storage.relational.repository import DocumentRepository


def _upload(client, name="a.pdf", data=b"%PDF-1.4 test", content_type="application/pdf"):
    return client.post("/api/upload", files={"file": (name, data, content_type)})


class TestListEndpoint:
    def test_record_with_blob(self, client, seed, object_store):
        seed("a.pdf")
        object_store.put("a.pdf", b"x" * 1024, "application/pdf")

        response = client.get("/api/documents")

        assert response.status_code == 200
        [doc] = response.json()
        assert doc["id"] == 1
        assert doc["title"] == "a.pdf"
        assert doc["size"] == 1024
        assert doc["url"].startswith("http://testserver/blobs/documents/a.pdf?")
        assert doc["lastModified"] is not None
        assert doc["status"] == "available"
        assert doc["degraded"] is False

    def test_record_without_blob(self, client, seed):
        seed("a.pdf")

        [doc] = client.get("/api/documents").json()

        assert doc == {
            "id": 1,
            "title": "a.pdf",
            "lastModified": None,
            "size": 0,
            "url": None,
            "status": "file_not_found",
            "degraded": False,
        }

    def test_store_outage_still_returns_records(self, client, seed, object_store):
        seed("a.pdf")
        seed("b.pdf")
        object_store.list_outage = True

        response = client.get("/api/documents")

        assert response.status_code == 200
        body = response.json()
        assert [(d["id"], d["title"]) for d in body] == [(1, "a.pdf"), (2, "b.pdf")]
        assert all(d["degraded"] and d["url"] is None for d in body)

    def test_empty_portal(self, client):
        response = client.get("/api/documents")
        assert response.status_code == 200
        assert response.json() == []

    def test_pool_exhaustion_is_retryable(self, client, pool_manager):
        held = [pool_manager.acquire(), pool_manager.acquire()]
        try:
            response = client.get("/api/documents")
        finally:
            for connection in held:
                pool_manager.release(connection)

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"
        assert "error" in response.json()


class TestUploadEndpoint:
    def test_upload_success(self, client, object_store):
        response = _upload(client)

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "File uploaded successfully"
        assert body["file"]["id"] == 1
        assert body["file"]["name"] == "a.pdf"
        assert body["file"]["type"] == "application/pdf"
        assert body["file"]["size"] == len(b"%PDF-1.4 test")
        assert body["file"]["url"]
        assert object_store.get("a.pdf") == b"%PDF-1.4 test"

        listed = client.get("/api/documents").json()
        assert [d["title"] for d in listed] == ["a.pdf"]

    def test_upload_without_file(self, client):
        response = client.post("/api/upload")

        assert response.status_code == 400
        assert response.json() == {"error": "No file uploaded"}

    def test_store_failure_creates_no_record(self, client, object_store, stored_titles):
        object_store.put_outage = True

        response = _upload(client)

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to upload file to object store"}
        assert stored_titles() == []

    def test_record_failure_is_500_and_blob_remains(self, client, object_store, stored_titles, monkeypatch):
        from storage.errors import RecordStoreError

        def failing_insert(db, title):
            raise RecordStoreError("Failed to add document to database", key=title)

        monkeypatch.setattr(DocumentRepository, "insert", staticmethod(failing_insert))

        response = _upload(client)

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to add document to database"}
        assert "a.pdf" in object_store.list()
        assert stored_titles() == []


class TestDeleteEndpoint:
    def test_delete_success(self, client, seed, object_store):
        record = seed("a.pdf")
        object_store.put("a.pdf", b"data")

        response = client.delete(f"/api/documents/{record.id}")

        assert response.status_code == 200
        assert response.json() == {
            "message": "Document deleted successfully",
            "id": record.id,
            "fileName": "a.pdf",
        }
        assert client.get("/api/documents").json() == []

    def test_delete_unknown_id(self, client):
        response = client.delete("/api/documents/999")

        assert response.status_code == 404
        assert response.json() == {"error": "Document 999 not found"}

    def test_non_numeric_id_uses_error_shape(self, client, seed, stored_titles):
        seed("a.pdf")

        response = client.delete("/api/documents/abc")

        assert response.status_code == 400
        body = response.json()
        assert set(body) == {"error"}
        assert body["error"].startswith("Invalid document_id")
        assert stored_titles() == ["a.pdf"]

    def test_store_outage_keeps_record(self, client, seed, object_store, stored_titles):
        record = seed("a.pdf")
        object_store.put("a.pdf", b"data")
        object_store.delete_outage = True

        response = client.delete(f"/api/documents/{record.id}")

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to delete file from object store"}
        assert stored_titles() == ["a.pdf"]


class TestHealthEndpoint:
    def test_healthy(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"]["connectionLimit"] == 2
        assert body["database"]["dialect"] == "sqlite"
        assert "timestamp" in body

    def test_unhealthy_after_pool_shutdown(self, client, pool_manager):
        pool_manager.shutdown(timeout=1)

        response = client.get("/api/health")

        assert response.status_code == 500
        body = response.json()
        assert body["status"] == "unhealthy"
        assert body["error"]


class TestAccountEndpoints:
    def test_signup(self, client, identity_provider):
        response = client.post(
            "/api/signup",
            json={"username": "jdoe", "password": "Str0ng!pass", "email": "jdoe@example.com"},
        )

        assert response.status_code == 200
        assert response.json() == {"message": "User created successfully", "username": "jdoe"}
        assert identity_provider.verify_password("jdoe", "Str0ng!pass")

    def test_signup_missing_fields(self, client):
        response = client.post("/api/signup", json={"username": "jdoe"})

        assert response.status_code == 400
        assert response.json() == {"error": "Username, password, and email are required"}

    def test_signup_duplicate_user(self, client):
        payload = {"username": "jdoe", "password": "pw", "email": "jdoe@example.com"}
        client.post("/api/signup", json=payload)

        response = client.post("/api/signup", json=payload)

        assert response.status_code == 500
        assert response.json() == {"error": "User jdoe already exists"}

    def test_check_admin_bypassed(self, client):
        response = client.get("/api/check-admin", params={"username": "jdoe"})

        assert response.status_code == 200
        assert response.json() == {"isAdmin": True}

    def test_check_admin_requires_username(self, client):
        response = client.get("/api/check-admin")

        assert response.status_code == 400


def test_security_headers_present(client):
    response = client.get("/")
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "SAMEORIGIN"
