"""Tests for FastAPI endpoints."""

import pytest
from fastapi.testclient import TestClient

from app.docgrid.models import ExtractedValue

FULL_RESPONSE = {
    "title": ("Receipt 42", 0.9),
    "date": ("2024-05-01", 0.9),
    "total": ("12.50", 0.9),
    "vendor": ("Acme Bakery", 0.9),
}


@pytest.fixture
def image_document(make_document):
    return make_document(
        filename="receipt.png",
        storage_url="https://blob.example.com/receipt.png",
        mime_type="image/png",
        extension="png",
    )


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_root_endpoint(self, client: TestClient):
        """Test root endpoint returns health status."""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data

    def test_health_endpoint(self, client: TestClient):
        """Test /health endpoint returns health status."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestExtractEndpoint:
    """Tests for POST /extract."""

    def test_extract_document(self, client: TestClient, image_document, ai_stub):
        """Test extraction by document target with camelCase output."""
        ai_stub.visual = dict(FULL_RESPONSE)

        response = client.post("/extract", json={"documentId": image_document.id})

        assert response.status_code == 200
        data = response.json()
        assert data["successCount"] == 4
        assert data["totalColumns"] == 4
        assert data["perColumn"][0]["columnId"] == "title"
        assert data["perColumn"][0]["provenance"]["version"] == "vision-api-v1"

    def test_extract_requires_single_target(self, client: TestClient, project):
        """Test that giving both targets is rejected."""
        response = client.post("/extract", json={"documentId": "a", "collectionId": "b"})
        assert response.status_code == 422

    def test_extract_unknown_document(self, client: TestClient, project):
        response = client.post("/extract", json={"documentId": "missing"})
        assert response.status_code == 404

    def test_extract_without_permission(self, client: TestClient, image_document, ai_stub):
        """Test that the gateway's permission header is enforced."""
        response = client.post(
            "/extract",
            json={"documentId": image_document.id},
            headers={"X-Actor-Id": "viewer", "X-Can-Edit": "false"},
        )
        assert response.status_code == 403
        assert ai_stub.calls == []

    def test_extract_records_actor(self, client: TestClient, image_document, ai_stub):
        ai_stub.visual = dict(FULL_RESPONSE)
        client.post(
            "/extract",
            json={"documentId": image_document.id},
            headers={"X-Actor-Id": "editor-1"},
        )
        assert {entry.actor for entry in image_document.audit_log} == {"editor-1"}


class TestDocumentEndpoints:
    """Tests for /documents endpoints."""

    def test_extract_shortcut(self, client: TestClient, image_document, ai_stub):
        ai_stub.visual = dict(FULL_RESPONSE)
        response = client.post(f"/documents/{image_document.id}/extract")
        assert response.status_code == 200
        assert response.json()["documentId"] == image_document.id

    def test_get_document(self, client: TestClient, image_document, ai_stub):
        """Test that a document exposes processing state and values."""
        ai_stub.visual = dict(FULL_RESPONSE)
        client.post(f"/documents/{image_document.id}/extract")

        response = client.get(f"/documents/{image_document.id}")

        assert response.status_code == 200
        data = response.json()
        assert data["processing"]["status"] == "completed"
        assert data["processing"]["progress"] == 100
        assert data["extractedData"]["vendor"]["value"] == "Acme Bakery"

    def test_manual_edit(self, client: TestClient, image_document):
        response = client.put(
            f"/documents/{image_document.id}/values/vendor",
            json={"value": "Acme Bakery Ltd"},
            headers={"X-Actor-Id": "editor-1"},
        )
        assert response.status_code == 200
        value = response.json()["extractedData"]["vendor"]
        assert value["value"] == "Acme Bakery Ltd"
        assert value["provenance"]["method"] == "manual"
        assert value["confidence"] == 1.0

    def test_manual_edit_unknown_column(self, client: TestClient, image_document):
        response = client.put(
            f"/documents/{image_document.id}/values/ghost", json={"value": "x"}
        )
        assert response.status_code == 400

    def test_download_redirects_and_audits(self, client: TestClient, image_document):
        response = client.get(
            f"/documents/{image_document.id}/download", follow_redirects=False
        )
        assert response.status_code == 307
        assert response.headers["location"] == "https://blob.example.com/receipt.png"
        assert image_document.audit_log[-1].action == "downloaded"

    def test_download_without_url(self, client: TestClient, make_document):
        document = make_document(storage_url=None)
        response = client.get(f"/documents/{document.id}/download", follow_redirects=False)
        assert response.status_code == 404


class TestCollectionEndpoints:
    """Tests for /collections endpoints."""

    def test_extract_collection(
        self, client: TestClient, image_document, make_collection, ai_stub
    ):
        collection = make_collection([image_document])
        ai_stub.visual = dict(FULL_RESPONSE)

        response = client.post(
            f"/collections/{collection.id}/extract", json={"columnIds": ["vendor"]}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["perColumn"][0]["value"] == "Acme Bakery"
        assert data["contributingDocumentIds"] == {"vendor": [image_document.id]}

    def test_extract_collection_without_body(
        self, client: TestClient, image_document, make_collection, ai_stub
    ):
        collection = make_collection([image_document])
        ai_stub.visual = dict(FULL_RESPONSE)
        response = client.post(f"/collections/{collection.id}/extract")
        assert response.status_code == 200
        assert response.json()["totalColumns"] == 4

    def test_extract_collection_invalid_columns(
        self, client: TestClient, image_document, make_collection
    ):
        collection = make_collection([image_document])
        response = client.post(
            f"/collections/{collection.id}/extract", json={"columnIds": ["ghost"]}
        )
        assert response.status_code == 400
        assert "ghost" in response.json()["detail"]

    def test_unknown_collection(self, client: TestClient, project):
        assert client.get("/collections/missing").status_code == 404

    def test_hide_show_and_order(self, client: TestClient, make_document, make_collection):
        a, b = make_document(), make_document()
        collection = make_collection([a, b])

        hidden = client.post(f"/collections/{collection.id}/documents/{a.id}/hide").json()
        assert hidden["settings"]["hiddenDocumentIds"] == [a.id]

        shown = client.post(f"/collections/{collection.id}/documents/{a.id}/show").json()
        assert shown["settings"]["hiddenDocumentIds"] == []

        ordered = client.put(
            f"/collections/{collection.id}/order", json={"documentIds": [b.id, a.id]}
        ).json()
        assert ordered["settings"]["aggregationOrder"] == [b.id, a.id]
        assert ordered["stats"]["documentCount"] == 2

    def test_override_value(self, client: TestClient, make_document, make_collection):
        collection = make_collection([make_document()])
        response = client.put(
            f"/collections/{collection.id}/values/vendor",
            json={"value": "Manual Co", "confidence": 0.75},
            headers={"X-Actor-Id": "editor-1"},
        )
        assert response.status_code == 200
        value = response.json()["extractedData"]["vendor"]
        assert value["value"] == "Manual Co"
        assert value["provenance"]["actor"] == "editor-1"

    def test_add_and_remove_member(
        self, client: TestClient, make_document, make_collection
    ):
        """Test that membership changes re-fold the aggregate."""
        vendor = ExtractedValue(value="Initech", confidence=0.9)
        a = make_document(extracted_data={"vendor": vendor.model_dump(mode="json", by_alias=True)})
        b = make_document()
        collection = make_collection([b])

        added = client.post(f"/collections/{collection.id}/documents/{a.id}")
        assert added.status_code == 200
        data = added.json()
        assert data["documentIds"] == [b.id, a.id]
        assert data["extractedData"]["vendor"]["sourceDocumentIds"] == [a.id]

        removed = client.delete(f"/collections/{collection.id}/documents/{a.id}")
        assert removed.status_code == 200
        data = removed.json()
        assert data["documentIds"] == [b.id]
        assert data["stats"]["documentCount"] == 1
        assert "vendor" not in data["extractedData"]

    def test_add_unknown_document(self, client: TestClient, make_document, make_collection):
        collection = make_collection([make_document()])
        response = client.post(f"/collections/{collection.id}/documents/missing")
        assert response.status_code == 400

    def test_member_change_requires_permission(
        self, client: TestClient, make_document, make_collection
    ):
        a = make_document()
        collection = make_collection([a])
        response = client.post(
            f"/collections/{collection.id}/documents/{a.id}/hide",
            headers={"X-Can-Edit": "false"},
        )
        assert response.status_code == 403


class TestProjectEndpoints:
    """Tests for /projects endpoints."""

    def test_delete_column_cascades(
        self, client: TestClient, project, image_document, ai_stub
    ):
        ai_stub.visual = dict(FULL_RESPONSE)
        client.post(f"/documents/{image_document.id}/extract")

        response = client.delete(f"/projects/{project.id}/columns/vendor")

        assert response.status_code == 200
        assert response.json()["records_updated"] == 1
        data = client.get(f"/documents/{image_document.id}").json()
        assert "vendor" not in data["extractedData"]
        assert "title" in data["extractedData"]

    def test_delete_unknown_column(self, client: TestClient, project):
        response = client.delete(f"/projects/{project.id}/columns/ghost")
        assert response.status_code == 400

    def test_process_pending(self, client: TestClient, project, image_document, ai_stub):
        """Test batch processing of a project's pending documents."""
        ai_stub.visual = dict(FULL_RESPONSE)

        response = client.post(f"/projects/{project.id}/documents/process-pending")

        assert response.status_code == 200
        data = response.json()
        assert data["totalPending"] == 1
        assert data["processedCount"] == 1
        assert data["results"][0]["documentId"] == image_document.id
        assert data["results"][0]["status"] == "completed"
        assert data["results"][0]["successCount"] == 4

    def test_process_pending_requires_permission(self, client: TestClient, project):
        response = client.post(
            f"/projects/{project.id}/documents/process-pending",
            headers={"X-Can-Edit": "false"},
        )
        assert response.status_code == 403
