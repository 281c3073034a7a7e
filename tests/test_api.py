"""Tests for the Stowage HTTP API."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Iterator
from datetime import datetime
from typing import Any
from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient

from stowage import __version__
from stowage.adapters.memory import MemoryAdapter
from stowage.api.main import create_app
from stowage.config import StorageServiceConfig, StowageSettings
from stowage.metadata import MetadataSchema
from stowage.models import BucketOptions
from stowage.service import StorageService
from stowage.signing import sign_url

SECRET = "api-test-secret"
SIGNED_BASE = "http://testserver/v1/signed"


@pytest.fixture
def api_service() -> StorageService:
    """Return a service whose signed URLs point back at the test server."""
    adapter = MemoryAdapter(signing_secret=SECRET, signed_url_base=SIGNED_BASE)
    return StorageService(adapter, StorageServiceConfig(generate_unique_filenames=False))


@pytest.fixture
def client(api_service: StorageService) -> Iterator[TestClient]:
    """Create a test client with a "docs" bucket."""
    app = create_app(api_service, settings=StowageSettings(signing_secret=SECRET))
    with TestClient(app) as test_client:
        response = test_client.post("/v1/buckets", json={"name": "docs"})
        assert response.status_code == 201
        yield test_client


def _upload(
    client: TestClient,
    path: str,
    data: bytes = b"hello",
    *,
    headers: dict[str, str] | None = None,
    public: bool = False,
) -> dict[str, Any]:
    response = client.put(
        f"/v1/buckets/docs/objects/{path}",
        content=data,
        headers={"Content-Type": "text/plain", **(headers or {})},
        params={"public": "true"} if public else None,
    )
    assert response.status_code == 201, response.text
    return dict(response.json())


class TestHealth:
    """GET /health."""

    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "ok"
        assert data["version"] == __version__
        assert data["backend"] == "memory"
        datetime.fromisoformat(data["time"])

    def test_request_id_echoed(self, client: TestClient) -> None:
        response = client.get("/health", headers={"X-Request-Id": "req-123"})

        assert response.headers["X-Request-Id"] == "req-123"

    def test_request_id_generated(self, client: TestClient) -> None:
        request_id = client.get("/health").headers["X-Request-Id"]

        assert len(request_id) == 36


class TestBucketRoutes:
    """Bucket endpoints."""

    def test_list_buckets(self, client: TestClient) -> None:
        response = client.get("/v1/buckets")

        assert response.status_code == 200
        assert [b["name"] for b in response.json()["items"]] == ["docs"]

    def test_duplicate_bucket_conflict(self, client: TestClient) -> None:
        response = client.post("/v1/buckets", json={"name": "docs"})

        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "CONFLICT"
        assert body["details"] == {"bucket": "docs"}
        assert body["request_id"] == response.headers["X-Request-Id"]

    def test_invalid_bucket_name(self, client: TestClient) -> None:
        response = client.post("/v1/buckets", json={"name": "Not Valid"})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_delete_guard_and_force(self, client: TestClient) -> None:
        _upload(client, "a.txt")

        assert client.delete("/v1/buckets/docs").status_code == 409
        response = client.delete("/v1/buckets/docs", params={"force": "true"})

        assert response.status_code == 200
        assert response.json() == {"deleted": True}
        assert client.get("/v1/buckets").json()["items"] == []


class TestObjectRoutes:
    """Object endpoints."""

    def test_upload_and_download(self, client: TestClient) -> None:
        meta = json.dumps({"title": "Greeting"})
        info = _upload(client, "a/b.txt", b"hello", headers={"X-Object-Metadata": meta})

        assert info["path"] == "a/b.txt"
        assert info["size"] == 5
        assert info["metadata"]["title"] == "Greeting"

        response = client.get("/v1/buckets/docs/objects/a/b.txt")
        assert response.status_code == 200
        assert response.content == b"hello"
        assert response.headers["content-type"].startswith("text/plain")
        assert json.loads(response.headers["X-Object-Metadata"])["title"] == "Greeting"

    def test_duplicate_upload_conflicts(self, client: TestClient) -> None:
        _upload(client, "a.txt", b"first")

        response = client.put(
            "/v1/buckets/docs/objects/a.txt",
            content=b"second",
            headers={"Content-Type": "text/plain"},
        )

        assert response.status_code == 409
        assert client.get("/v1/buckets/docs/objects/a.txt").content == b"first"

    def test_unique_upload_gets_suffix(self, client: TestClient) -> None:
        _upload(client, "a.txt", b"first")

        response = client.put(
            "/v1/buckets/docs/objects/a.txt",
            content=b"second",
            headers={"Content-Type": "text/plain"},
            params={"unique": "true"},
        )

        assert response.status_code == 201
        assert response.json()["path"] == "a_2.txt"

    def test_file_under_existing_file_conflicts(self, client: TestClient) -> None:
        _upload(client, "a")

        response = client.put(
            "/v1/buckets/docs/objects/a/b.txt",
            content=b"x",
            headers={"Content-Type": "text/plain"},
        )

        assert response.status_code == 409

    def test_invalid_metadata_header(self, client: TestClient) -> None:
        response = client.put(
            "/v1/buckets/docs/objects/a.txt",
            content=b"x",
            headers={"X-Object-Metadata": "[1, 2]"},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_METADATA_HEADER"

    def test_missing_object(self, client: TestClient) -> None:
        response = client.get("/v1/buckets/docs/objects/missing.txt")

        assert response.status_code == 404
        assert response.json()["details"] == {"bucket": "docs", "path": "missing.txt"}

    def test_info_and_delete(self, client: TestClient) -> None:
        _upload(client, "a.txt")

        info = client.get("/v1/buckets/docs/info/a.txt").json()
        assert info["content_type"] == "text/plain"

        assert client.delete("/v1/buckets/docs/objects/a.txt").json() == {"deleted": True}
        assert client.get("/v1/buckets/docs/info/a.txt").status_code == 404

    def test_list_with_pagination(self, client: TestClient) -> None:
        for name in ["a.txt", "b.txt", "c.txt"]:
            _upload(client, name)

        first = client.get("/v1/buckets/docs/objects", params={"limit": 2}).json()
        second = client.get(
            "/v1/buckets/docs/objects", params={"limit": 2, "cursor": first["cursor"]}
        ).json()

        assert [f["path"] for f in first["files"]] == ["a.txt", "b.txt"]
        assert first["has_more"] is True
        assert [f["path"] for f in second["files"]] == ["c.txt"]
        assert second["has_more"] is False

    def test_list_limit_out_of_range(self, client: TestClient) -> None:
        response = client.get("/v1/buckets/docs/objects", params={"limit": 0})

        assert response.status_code == 400
        assert response.json()["code"] == "REQUEST_VALIDATION_FAILED"

    def test_bad_cursor(self, client: TestClient) -> None:
        _upload(client, "a.txt")

        response = client.get("/v1/buckets/docs/objects", params={"cursor": "nope"})

        assert response.status_code == 400

    def test_copy_and_move(self, client: TestClient) -> None:
        _upload(client, "a.txt")

        copied = client.post(
            "/v1/buckets/docs/copy",
            json={"source_path": "a.txt", "destination_path": "b.txt"},
        )
        assert copied.status_code == 201

        conflict = client.post(
            "/v1/buckets/docs/move",
            json={"source_path": "a.txt", "destination_path": "b.txt"},
        )
        assert conflict.status_code == 409

        moved = client.post(
            "/v1/buckets/docs/move",
            json={"source_path": "a.txt", "destination_path": "c.txt"},
        )
        assert moved.status_code == 200
        assert moved.json()["path"] == "c.txt"

    def test_metadata_patch_and_search(self, client: TestClient) -> None:
        _upload(client, "a.txt", headers={"X-Object-Metadata": '{"team": "red"}'})
        _upload(client, "b.txt", headers={"X-Object-Metadata": '{"team": "blue"}'})

        patched = client.patch(
            "/v1/buckets/docs/metadata/b.txt", json={"metadata": {"team": "red", "year": 2024}}
        )
        assert patched.status_code == 200
        assert patched.json()["metadata"]["year"] == 2024

        found = client.post(
            "/v1/buckets/docs/search", json={"metadata": {"team": "red", "year": 2024}}
        ).json()
        assert [f["path"] for f in found["files"]] == ["b.txt"]


class TestPolicyStatusCodes:
    """Policy violations map to distinct status codes."""

    @pytest.fixture
    def limited(self, client: TestClient) -> TestClient:
        response = client.post(
            "/v1/buckets",
            json={"name": "limited", "file_size_limit": 4, "allowed_mime_types": ["text/plain"]},
        )
        assert response.status_code == 201
        return client

    def test_too_large(self, limited: TestClient) -> None:
        response = limited.put(
            "/v1/buckets/limited/objects/a.txt",
            content=b"12345",
            headers={"Content-Type": "text/plain"},
        )

        assert response.status_code == 413
        assert response.json()["code"] == "FILE_TOO_LARGE"

    def test_type_not_allowed(self, limited: TestClient) -> None:
        response = limited.put(
            "/v1/buckets/limited/objects/a.png",
            content=b"1",
            headers={"Content-Type": "image/png"},
        )

        assert response.status_code == 415
        assert response.json()["code"] == "CONTENT_TYPE_NOT_ALLOWED"

    def test_content_type_parameters_ignored(self, limited: TestClient) -> None:
        response = limited.put(
            "/v1/buckets/limited/objects/a.txt",
            content=b"1",
            headers={"Content-Type": "text/plain; charset=utf-8"},
        )

        assert response.status_code == 201, response.text
        assert response.json()["content_type"] == "text/plain"

    def test_metadata_schema_violation(
        self, client: TestClient, api_service: StorageService
    ) -> None:
        asyncio.run(
            api_service.create_bucket(
                "catalog", BucketOptions(metadata_schema=MetadataSchema(required=["author"]))
            )
        )

        response = client.put("/v1/buckets/catalog/objects/a.txt", content=b"x")

        assert response.status_code == 422
        assert response.json()["code"] == "POLICY_VIOLATION"


class TestUrls:
    """Public and signed URLs."""

    def test_private_object_url_forbidden(self, client: TestClient) -> None:
        _upload(client, "a.txt")

        response = client.get("/v1/buckets/docs/url/a.txt")

        assert response.status_code == 403
        assert response.json()["code"] == "ACCESS_DENIED"

    def test_public_object_url(self, client: TestClient) -> None:
        _upload(client, "a.txt", public=True)

        response = client.get("/v1/buckets/docs/url/a.txt")

        assert response.json() == {"url": "memory://docs/a.txt"}

    def test_signed_read(self, client: TestClient) -> None:
        _upload(client, "a.txt", b"secret bytes")

        issued = client.post("/v1/buckets/docs/signed-url/a.txt", json={"expires_in": 60}).json()
        response = client.get(issued["url"])

        assert issued["action"] == "read"
        assert response.status_code == 200
        assert response.content == b"secret bytes"

    def test_signed_write_then_delete(self, client: TestClient) -> None:
        write = client.post(
            "/v1/buckets/docs/signed-url/up/new.txt", json={"action": "write"}
        ).json()

        uploaded = client.put(
            write["url"], content=b"via signed url", headers={"Content-Type": "text/plain"}
        )
        assert uploaded.status_code == 201
        assert client.get("/v1/buckets/docs/objects/up/new.txt").content == b"via signed url"

        delete = client.post(
            "/v1/buckets/docs/signed-url/up/new.txt", json={"action": "delete"}
        ).json()
        assert client.delete(delete["url"]).json() == {"deleted": True}

    def test_signed_write_keeps_signed_path(self) -> None:
        adapter = MemoryAdapter(signing_secret=SECRET, signed_url_base=SIGNED_BASE)
        service = StorageService(adapter, StorageServiceConfig())
        app = create_app(service, settings=StowageSettings(signing_secret=SECRET))

        with TestClient(app) as client:
            assert client.post("/v1/buckets", json={"name": "docs"}).status_code == 201
            write = client.post(
                "/v1/buckets/docs/signed-url/up/a.txt", json={"action": "write"}
            ).json()

            uploaded = client.put(
                write["url"], content=b"signed", headers={"Content-Type": "text/plain"}
            )
            read = client.post("/v1/buckets/docs/signed-url/up/a.txt", json={}).json()
            response = client.get(read["url"])

        assert uploaded.status_code == 201
        assert uploaded.json()["path"] == "up/a.txt"
        assert response.content == b"signed"

    def test_wrong_action_rejected(self, client: TestClient) -> None:
        _upload(client, "a.txt")
        issued = client.post("/v1/buckets/docs/signed-url/a.txt", json={}).json()

        response = client.delete(issued["url"])

        assert response.status_code == 403
        assert response.json()["code"] == "ACTION_NOT_GRANTED"
        assert client.get("/v1/buckets/docs/info/a.txt").status_code == 200

    def test_tampered_signature_rejected(self, client: TestClient) -> None:
        _upload(client, "a.txt")
        issued = client.post("/v1/buckets/docs/signed-url/a.txt", json={}).json()
        signature = parse_qs(urlsplit(issued["url"]).query)["signature"][0]
        forged = "0" * len(signature)

        response = client.get(issued["url"].replace(signature, forged))

        assert response.status_code == 403
        assert response.json()["code"] == "ACCESS_DENIED"

    def test_expired_url_rejected(self, client: TestClient) -> None:
        _upload(client, "a.txt")
        url = sign_url(SIGNED_BASE, "docs", "a.txt", "read", 1_000_000_000, SECRET)

        response = client.get(url)

        assert response.status_code == 403
        assert response.json()["code"] == "SIGNED_URL_EXPIRED"

    def test_missing_signature_params(self, client: TestClient) -> None:
        response = client.get("/v1/signed/docs/a.txt")

        assert response.status_code == 400
        assert response.json()["code"] == "REQUEST_VALIDATION_FAILED"


class TestStartup:
    """Bucket policies persisted by the backend are loaded on startup."""

    def test_startup_syncs_policies(self) -> None:
        adapter = MemoryAdapter(signing_secret=SECRET)
        asyncio.run(adapter.create_bucket("legacy", BucketOptions(file_size_limit=1)))
        service = StorageService(adapter, StorageServiceConfig(generate_unique_filenames=False))

        with TestClient(create_app(service, settings=StowageSettings())) as client:
            response = client.put(
                "/v1/buckets/legacy/objects/a.txt",
                content=b"too big",
                headers={"Content-Type": "text/plain"},
            )

        assert response.status_code == 413
