"""
Patient Image Backend - Image Endpoint Tests
==============================================

What:  End-to-end tests of the /image endpoints through the ASGI app.
How:   HTTPX AsyncClient + SQLite record store + temporary upload directory
       (see the test_client fixture in conftest.py).
"""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from app.dependencies import get_record_store
from app.main import app


async def _upload(client, patient_id, content, filename="scan.png"):
    return await client.post(
        "/image",
        data={"patientId": patient_id},
        files={"image": (filename, content, "image/png")},
    )


async def _stored_paths(client, patient_id):
    response = await client.get("/image", params={"patientId": patient_id})
    if response.status_code == 404:
        return []
    prefix = "http://test/"
    return [url.removeprefix(prefix) for url in response.json()["imageUrls"]]


class TestUpload:

    @pytest.mark.asyncio
    async def test_upload_then_list(self, test_client, sample_image_bytes):
        response = await _upload(test_client, "123", sample_image_bytes)

        assert response.status_code == 200
        assert response.json() == {"message": "Image saved successfully"}

        listing = await test_client.get("/image", params={"patientId": "123"})
        assert listing.status_code == 200
        body = listing.json()
        assert body["patientId"] == "123"
        assert len(body["imageUrls"]) == 1
        assert body["imageUrls"][0].startswith("http://test/uploads/")

    @pytest.mark.asyncio
    async def test_uploads_append_in_order(
        self, test_client, sample_image_bytes, sample_jpeg_bytes
    ):
        await _upload(test_client, "123", sample_image_bytes, "first.png")
        await _upload(test_client, "123", sample_jpeg_bytes, "second.jpg")

        paths = await _stored_paths(test_client, "123")

        assert len(paths) == 2
        assert paths[0].endswith(".png")
        assert paths[1].endswith(".jpg")

    @pytest.mark.asyncio
    async def test_listed_url_serves_file(self, test_client, sample_image_bytes):
        await _upload(test_client, "123", sample_image_bytes)
        listing = await test_client.get("/image", params={"patientId": "123"})

        served = await test_client.get(listing.json()["imageUrls"][0])

        assert served.status_code == 200
        assert served.content == sample_image_bytes

    @pytest.mark.asyncio
    async def test_unsupported_file_type_rejected(self, test_client, temp_storage):
        response = await _upload(test_client, "123", b"%PDF-1.4", "report.pdf")

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"
        assert (await test_client.get("/image", params={"patientId": "123"})).status_code == 404

    @pytest.mark.asyncio
    async def test_blank_patient_id_rejected(self, test_client, sample_image_bytes):
        response = await _upload(test_client, "   ", sample_image_bytes)

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_patient_id_is_an_exact_key(self, test_client, sample_image_bytes):
        await _upload(test_client, " 123 ", sample_image_bytes)

        padded = await test_client.get("/image", params={"patientId": " 123 "})
        bare = await test_client.get("/image", params={"patientId": "123"})

        assert padded.status_code == 200
        assert padded.json()["patientId"] == " 123 "
        assert bare.status_code == 404

    @pytest.mark.asyncio
    async def test_non_image_with_png_name_rejected(self, test_client, blob_store):
        response = await _upload(test_client, "123", b"definitely not pixels", "scan.png")

        assert response.status_code == 400
        assert response.json()["details"] == {"field": "image"}
        assert [p for p in blob_store.storage_root.rglob("*") if p.is_file()] == []
        assert (await test_client.get("/image", params={"patientId": "123"})).status_code == 404

    @pytest.mark.asyncio
    async def test_persistence_failure_returns_500_and_removes_upload(
        self, test_client, memory_store, blob_store, sample_image_bytes
    ):
        memory_store.fail_on_save = True
        app.dependency_overrides[get_record_store] = lambda: memory_store

        response = await _upload(test_client, "123", sample_image_bytes)

        assert response.status_code == 500
        assert response.json()["message"] == "Failed to save image"
        assert [p for p in blob_store.storage_root.rglob("*") if p.is_file()] == []


class TestList:

    @pytest.mark.asyncio
    async def test_unknown_patient_is_404(self, test_client):
        response = await test_client.get("/image", params={"patientId": "nobody"})

        assert response.status_code == 404
        assert response.json()["message"] == "No images for that user found"

    @pytest.mark.asyncio
    async def test_missing_patient_id_is_rejected(self, test_client):
        response = await test_client.get("/image")

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_response_carries_request_id(self, test_client):
        response = await test_client.get(
            "/image", params={"patientId": "nobody"}, headers={"X-Request-ID": "abc123"}
        )

        assert response.headers["X-Request-ID"] == "abc123"
        assert response.json()["request_id"] == "abc123"


class TestDeleteOne:

    @pytest.mark.asyncio
    async def test_delete_one_removes_path_and_file(
        self, test_client, blob_store, sample_image_bytes
    ):
        await _upload(test_client, "123", sample_image_bytes)
        await _upload(test_client, "123", sample_image_bytes)
        first, second = await _stored_paths(test_client, "123")

        response = await test_client.delete(
            "/image", params={"patientId": "123", "imagePath": first}
        )

        assert response.status_code == 200
        assert response.json() == {"message": "Image deleted successfully"}
        assert await _stored_paths(test_client, "123") == [second]
        assert not blob_store.resolve(first).exists()
        assert blob_store.resolve(second).exists()

    @pytest.mark.asyncio
    async def test_unknown_path_is_404(self, test_client, sample_image_bytes):
        await _upload(test_client, "123", sample_image_bytes)
        before = await _stored_paths(test_client, "123")

        response = await test_client.delete(
            "/image", params={"patientId": "123", "imagePath": "uploads/nope.png"}
        )

        assert response.status_code == 404
        assert response.json()["message"] == "Image path was not found for that user"
        assert await _stored_paths(test_client, "123") == before

    @pytest.mark.asyncio
    async def test_unknown_patient_is_404(self, test_client):
        response = await test_client.delete(
            "/image", params={"patientId": "nobody", "imagePath": "uploads/a.png"}
        )

        assert response.status_code == 404


class TestDeleteAll:

    @pytest.mark.asyncio
    async def test_delete_all_then_list_is_404(
        self, test_client, blob_store, sample_image_bytes
    ):
        await _upload(test_client, "123", sample_image_bytes)
        await _upload(test_client, "123", sample_image_bytes)
        paths = await _stored_paths(test_client, "123")

        response = await test_client.delete("/image/123")

        assert response.status_code == 200
        assert response.json()["patientId"] == "123"
        assert (await test_client.get("/image", params={"patientId": "123"})).status_code == 404
        assert all(not blob_store.resolve(p).exists() for p in paths)

    @pytest.mark.asyncio
    async def test_delete_all_twice_is_404(self, test_client, sample_image_bytes):
        await _upload(test_client, "123", sample_image_bytes)
        await test_client.delete("/image/123")

        response = await test_client.delete("/image/123")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_all_succeeds_when_files_already_gone(
        self, test_client, blob_store, sample_image_bytes
    ):
        await _upload(test_client, "123", sample_image_bytes)
        (path,) = await _stored_paths(test_client, "123")
        blob_store.resolve(path).unlink()

        response = await test_client.delete("/image/123")

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_upload_after_delete_all_reuses_record(self, test_client, sample_image_bytes):
        await _upload(test_client, "123", sample_image_bytes)
        await test_client.delete("/image/123")

        response = await _upload(test_client, "123", sample_image_bytes)

        assert response.status_code == 200
        assert len(await _stored_paths(test_client, "123")) == 1


class TestServeFile:

    @pytest.mark.asyncio
    async def test_missing_file_is_404(self, test_client):
        response = await test_client.get("/uploads/2024/01/15/missing.png")

        assert response.status_code == 404


class TestHealth:

    @pytest.mark.asyncio
    async def test_health_reports_dependencies(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["database"] == "connected"
        assert body["storage"] == "writable"
        assert body["status"] == "healthy"


class TestRequestContext:
    """Correlation ids and the access log."""

    @pytest.mark.asyncio
    async def test_unusable_client_request_id_replaced(self, test_client):
        response = await test_client.get(
            "/image", params={"patientId": "nobody"}, headers={"X-Request-ID": "x" * 200}
        )

        rid = response.headers["X-Request-ID"]
        assert rid != "x" * 200
        assert len(rid) == 8
        assert response.json()["request_id"] == rid

    @pytest.mark.asyncio
    async def test_unexpected_error_body_carries_request_id(self, test_client):
        broken_store = MagicMock()
        broken_store.find_by_patient_id = AsyncMock(side_effect=RuntimeError("boom"))
        app.dependency_overrides[get_record_store] = lambda: broken_store

        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get(
                "/image", params={"patientId": "123"}, headers={"X-Request-ID": "trace-1"}
            )

        assert response.status_code == 500
        assert response.json()["error"] == "internal_server_error"
        assert response.json()["request_id"] == "trace-1"
        assert "boom" not in response.text

    @pytest.mark.asyncio
    async def test_access_log_names_operation_and_patient(self, test_client, caplog):
        caplog.set_level(logging.INFO, logger="patient_images.access")

        await test_client.get("/image", params={"patientId": "123"})
        await test_client.delete("/image/456")

        records = [r for r in caplog.records if r.name == "patient_images.access"]
        assert [(r.operation, r.patient_id, r.status) for r in records] == [
            ("list_images", "123", 404),
            ("delete_all_images", "456", 404),
        ]

    @pytest.mark.asyncio
    async def test_access_log_never_reads_upload_form(
        self, test_client, caplog, sample_image_bytes
    ):
        caplog.set_level(logging.INFO, logger="patient_images.access")

        await _upload(test_client, "123", sample_image_bytes)

        (record,) = [r for r in caplog.records if r.name == "patient_images.access"]
        assert record.operation == "upload_image"
        assert record.patient_id is None

    @pytest.mark.asyncio
    async def test_health_is_not_access_logged(self, test_client, caplog):
        caplog.set_level(logging.INFO, logger="patient_images.access")

        await test_client.get("/health")

        assert not [r for r in caplog.records if r.name == "patient_images.access"]
