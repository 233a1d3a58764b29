"""Tests for the media and AI-quota HTTP endpoints.

The shared MediaManager is replaced per test through FastAPI dependency
overrides, and every network call is patched out.
"""

import base64
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from imagedata import noise_jpeg, noise_png

from ingestly.dependencies import configure, get_media_manager, get_rate_limiter
from ingestly.errors import ResourceExceeded
from ingestly.main import app
from ingestly.models.media_asset import MediaAsset
from ingestly.models.upload_request import MAX_ENCODED_FILE_LENGTH
from ingestly.services.fetcher import FetchResult
from ingestly.services.media_manager import MediaManager
from ingestly.services.quota import BYTES_PER_MB, QuotaEnforcer
from ingestly.services.rate_limiter import RateLimiter
from ingestly.services.storage import InMemoryMediaRepository, InMemoryObjectStorage

client = TestClient(app)

PROJECT = "proj-1"
HEADERS = {"X-User-Id": "user-1"}
MEDIA = f"/projects/{PROJECT}/media"


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Clear the slowapi in-memory counter before every test."""
    app.state.limiter._storage.reset()
    yield


@pytest.fixture
def manager():
    manager = MediaManager(InMemoryObjectStorage(), InMemoryMediaRepository())
    app.dependency_overrides[get_media_manager] = lambda: manager
    yield manager
    app.dependency_overrides.clear()


def _upload_body(data=None, **fields):
    body = {
        "file": base64.b64encode(data if data is not None else noise_png()).decode(),
        "filename": "logo.png",
        "file_type": "image/png",
        "tags": ["brand"],
    }
    body.update(fields)
    return body


def _upload(body=None):
    return client.post(f"{MEDIA}/upload", json=body or _upload_body(), headers=HEADERS)


def _page(url, content, content_type):
    return FetchResult(
        url=url, status_code=200, headers=httpx.Headers({"content-type": content_type}), content=content
    )


class TestHealth:
    def test_root(self):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json() == {"message": "Hello from Ingestly"}


class TestUploadEndpoint:
    def test_upload_returns_asset(self, manager):
        response = _upload()
        assert response.status_code == 201
        data = response.json()
        assert data["project_id"] == PROJECT
        assert data["user_id"] == "user-1"
        assert data["file_type"] == "image/png"
        assert data["tags"] == ["brand"]
        assert data["thumbnail_url"]
        assert len(manager.repository.assets) == 1

    def test_accepts_data_url_prefix(self, manager):
        body = _upload_body()
        body["file"] = "data:image/png;base64," + body["file"]
        assert _upload(body).status_code == 201

    def test_requires_user_header(self, manager):
        response = client.post(f"{MEDIA}/upload", json=_upload_body())
        assert response.status_code == 422

    def test_invalid_base64(self, manager):
        response = _upload(_upload_body(file="%%% not base64 %%%"))
        assert response.status_code == 400
        assert "base64" in response.json()["detail"]

    def test_spoofed_type_is_400(self, manager):
        response = _upload(_upload_body(data=noise_jpeg()))
        assert response.status_code == 400
        assert "does not match claimed type" in response.json()["detail"]
        assert manager.storage.objects == {}

    def test_dangerous_description_is_400(self, manager):
        response = _upload(_upload_body(description="<script>alert(1)</script>"))
        assert response.status_code == 400

    def test_quota_exceeded_is_413(self, manager):
        manager.repository.assets["old"] = MediaAsset(
            id="old",
            project_id=PROJECT,
            user_id="user-1",
            filename=f"{PROJECT}/old.png",
            original_filename="old.png",
            file_type="image/png",
            file_size=32 * BYTES_PER_MB,
            storage_url="memory://media/old.png",
            source="upload",
        )
        response = _upload()
        assert response.status_code == 413
        body = response.json()
        assert body["current_usage"] == 32
        assert body["limit"] == 32
        assert body["unit"] == "MB"
        assert body["detail"].startswith("Storage quota exceeded")

    def test_retryable_quota_is_429(self, manager):
        manager.upload_media = AsyncMock(
            side_effect=ResourceExceeded("AI quota exceeded", unit="requests", retry_after=120)
        )
        response = _upload()
        assert response.status_code == 429
        assert response.headers["retry-after"] == "120"

    def test_ai_tags_merged(self, manager):
        manager.classifier = AsyncMock(return_value=["Mountain"])
        response = _upload()
        assert response.json()["tags"] == ["brand", "mountain"]

    def test_ai_failure_does_not_fail_upload(self, manager):
        manager.classifier = AsyncMock(side_effect=ResourceExceeded("AI quota exceeded", retry_after=60))
        response = _upload()
        assert response.status_code == 201
        assert response.json()["tags"] == ["brand"]

    def test_unexpected_ai_error_does_not_fail_upload(self, manager):
        class ClassifierOutage(Exception):
            pass

        manager.classifier = AsyncMock(side_effect=ClassifierOutage("upstream 500"))
        response = _upload()
        assert response.status_code == 201
        assert response.json()["tags"] == ["brand"]
        assert len(manager.repository.assets) == 1

    def test_oversized_encoded_file_is_422(self, manager):
        response = _upload(_upload_body(file="A" * (MAX_ENCODED_FILE_LENGTH + 4)))
        assert response.status_code == 422
        assert manager.storage.objects == {}

    def test_decoded_file_over_ceiling_is_413(self, manager):
        manager.quota = QuotaEnforcer(manager.repository, max_file_mb=0.001)
        response = _upload()
        assert response.status_code == 413
        assert response.json()["detail"].startswith("File size exceeds maximum")
        assert manager.storage.objects == {}


class TestExtractEndpoint:
    def test_extracts_and_saves(self, manager):
        html = '<html><body><img src="/img/hero.png" alt="Hero"></body></html>'
        image = noise_png()

        async def fake_fetch(url, **kwargs):
            return _page(url, html.encode(), "text/html")

        async def fake_fetch_image(url, **kwargs):
            return _page(url, image, "image/png")

        with (
            patch("ingestly.services.crawler.fetch", new=AsyncMock(side_effect=fake_fetch)),
            patch(
                "ingestly.services.media_manager.fetch_image",
                new=AsyncMock(side_effect=fake_fetch_image),
            ),
        ):
            response = client.post(
                f"{MEDIA}/extract", json={"website_url": "example.com", "max_images": 5}, headers=HEADERS
            )

        assert response.status_code == 200
        data = response.json()
        assert data["total_found"] == 1
        assert len(data["saved"]) == 1
        assert data["saved"][0]["source"] == "website_extraction"
        assert data["saved"][0]["source_url"] == "https://example.com/img/hero.png"
        assert data["stats"]["saved"] == 1
        assert data["message"] == "Extracted 1 images from website"

    def test_invalid_url_is_400(self, manager):
        response = client.post(
            f"{MEDIA}/extract", json={"website_url": "ftp://example.com"}, headers=HEADERS
        )
        assert response.status_code == 400

    def test_max_images_bounds(self, manager):
        response = client.post(
            f"{MEDIA}/extract", json={"website_url": "example.com", "max_images": 51}, headers=HEADERS
        )
        assert response.status_code == 422

    def test_seed_failure_is_502(self, manager):
        with patch(
            "ingestly.services.crawler.fetch",
            new=AsyncMock(side_effect=httpx.ConnectError("refused")),
        ):
            response = client.post(
                f"{MEDIA}/extract", json={"website_url": "example.com"}, headers=HEADERS
            )
        assert response.status_code == 502

    def test_seed_timeout_is_504(self, manager):
        with patch(
            "ingestly.services.crawler.fetch",
            new=AsyncMock(side_effect=httpx.ReadTimeout("slow")),
        ):
            response = client.post(
                f"{MEDIA}/extract", json={"website_url": "example.com"}, headers=HEADERS
            )
        assert response.status_code == 504

    def test_rate_limited(self, manager):
        for _ in range(10):
            client.post(f"{MEDIA}/extract", json={"website_url": "ftp://x.com"}, headers=HEADERS)
        response = client.post(f"{MEDIA}/extract", json={"website_url": "ftp://x.com"}, headers=HEADERS)
        assert response.status_code == 429


class TestAssetEndpoints:
    def _create(self):
        return _upload().json()

    def test_list_returns_assets_and_quota(self, manager):
        asset = self._create()
        response = client.get(MEDIA, headers=HEADERS)
        assert response.status_code == 200
        data = response.json()
        assert [a["id"] for a in data["assets"]] == [asset["id"]]
        assert data["quota"]["allowed"] is True
        assert data["quota"]["limit"] == 32

    def test_list_hides_other_users(self, manager):
        self._create()
        response = client.get(MEDIA, headers={"X-User-Id": "someone-else"})
        assert response.json()["assets"] == []

    def test_patch_updates_metadata(self, manager):
        asset = self._create()
        response = client.patch(
            f"{MEDIA}/{asset['id']}", json={"alt_text": "Company logo"}, headers=HEADERS
        )
        assert response.status_code == 200
        assert response.json()["alt_text"] == "Company logo"

    def test_patch_rejects_dangerous_text(self, manager):
        asset = self._create()
        response = client.patch(
            f"{MEDIA}/{asset['id']}", json={"description": "javascript:alert(1)"}, headers=HEADERS
        )
        assert response.status_code == 400

    def test_patch_unknown_asset_is_404(self, manager):
        response = client.patch(f"{MEDIA}/missing", json={"alt_text": "x"}, headers=HEADERS)
        assert response.status_code == 404

    def test_delete(self, manager):
        asset = self._create()
        response = client.delete(f"{MEDIA}/{asset['id']}", headers=HEADERS)
        assert response.status_code == 200
        assert manager.repository.assets == {}
        assert manager.storage.objects == {}
        assert client.delete(f"{MEDIA}/{asset['id']}", headers=HEADERS).status_code == 404

    def test_usage_counter(self, manager):
        asset = self._create()
        client.post(f"{MEDIA}/{asset['id']}/usage", headers=HEADERS)
        response = client.post(f"{MEDIA}/{asset['id']}/usage", headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["usage_count"] == 2


class TestAiQuotaEndpoint:
    def test_reports_usage(self):
        limiter = RateLimiter()
        limiter.record_request(actual_tokens=42)
        app.dependency_overrides[get_rate_limiter] = lambda: limiter
        try:
            response = client.get("/ai/quota")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 200
        data = response.json()
        assert data["hourly"]["requests"] == 1
        assert data["hourly"]["tokens"] == 42
        assert data["hourly"]["limit"] == 50
        assert data["daily"]["limit"] == 500


class TestConfigure:
    def test_wraps_classifier_with_shared_rate_limiter(self):
        classify = AsyncMock(return_value=["tag"])
        manager = configure(classify=classify)
        assert get_media_manager() is manager
        assert manager.classifier.limiter is get_rate_limiter()
