"""HTTP surface tests using FastAPI's TestClient."""

import httpx
from fastapi.testclient import TestClient

from uisnap.inference import OllamaClient
from uisnap.main import create_app, status_for

from fakes import FakeLauncher, FakePage, make_pipeline


def ollama_up() -> OllamaClient:
    return OllamaClient(
        "http://ollama.test",
        transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"models": []})),
    )


def client_for(pipeline) -> TestClient:
    return TestClient(create_app(pipeline=pipeline, ollama=ollama_up()))


BODY = {"url": "https://example.com", "framework": "react", "styling": "tailwind"}


class TestAnalyzeRoute:
    def test_success(self):
        pipeline, _, _ = make_pipeline()
        with client_for(pipeline) as client:
            response = client.post("/analyze", json=BODY)
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["component"]["dependencies"]["tailwindcss"] == "^3.4.0"
        assert data["analysis"]["url"] == "https://example.com"

    def test_invalid_url_is_400(self):
        pipeline, launcher, _ = make_pipeline()
        with client_for(pipeline) as client:
            response = client.post("/analyze", json={**BODY, "url": "http://127.0.0.1:8080"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_URL"
        assert launcher.launches == 0

    def test_missing_framework_is_400(self):
        pipeline, _, _ = make_pipeline()
        with client_for(pipeline) as client:
            response = client.post("/analyze", json={"url": "https://example.com"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "UNSUPPORTED_FRAMEWORK"

    def test_rate_limit_sets_retry_after(self):
        pipeline, _, _ = make_pipeline(rate_limit=1)
        with client_for(pipeline) as client:
            assert client.post("/analyze", json=BODY).status_code == 200
            response = client.post("/analyze", json=BODY)
        assert response.status_code == 429
        assert response.json()["error"]["code"] == "RATE_LIMITED"
        assert int(response.headers["Retry-After"]) >= 1

    def test_oversized_page_is_413(self):
        launcher = FakeLauncher(page_factory=lambda: FakePage(dom_elements=900))
        pipeline, _, _ = make_pipeline(launcher=launcher)
        with client_for(pipeline) as client:
            response = client.post("/analyze", json=BODY)
        assert response.status_code == 413
        assert response.json()["error"]["details"]["elementCount"] == 900

    def test_options_of_wrong_type_is_structured_400(self):
        pipeline, launcher, _ = make_pipeline()
        with client_for(pipeline) as client:
            response = client.post("/analyze", json={**BODY, "options": "yes"})
        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["error"]["code"] == "VALIDATION_ERROR"
        assert launcher.launches == 0

    def test_non_string_url_is_structured_400(self):
        pipeline, _, _ = make_pipeline()
        with client_for(pipeline) as client:
            response = client.post("/analyze", json={**BODY, "url": 123})
        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["error"]["code"] == "INVALID_URL"
        assert data["error"]["details"]["reason"] == "URL must be a string"

    def test_non_object_body_is_structured_400(self):
        pipeline, _, _ = make_pipeline()
        with client_for(pipeline) as client:
            response = client.post("/analyze", json=["https://example.com"])
        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["error"]["code"] == "VALIDATION_ERROR"
        assert "requestId" in data["error"]


class TestStatusMapping:
    def test_known_codes(self):
        assert status_for("UNREACHABLE_URL") == 502
        assert status_for("TIMEOUT") == 504
        assert status_for("SERVICE_UNAVAILABLE") == 503
        assert status_for("INTERNAL_ERROR") == 500
        assert status_for("SOMETHING_NEW") == 500


class TestManagementRoutes:
    def test_cache_stats_and_clear(self):
        pipeline, _, _ = make_pipeline()
        with client_for(pipeline) as client:
            client.post("/analyze", json=BODY)
            stats = client.get("/cache/stats").json()
            cleared = client.post("/cache/clear").json()
            after = client.get("/cache/stats").json()
        assert stats["entries"] == 1
        assert isinstance(stats["oldestEntry"], str)
        assert cleared == {"cleared": 1}
        assert after["entries"] == 0
        assert after["oldestEntry"] is None

    def test_health(self):
        pipeline, _, _ = make_pipeline()
        with client_for(pipeline) as client:
            health = client.get("/health").json()
            ollama = client.get("/health/ollama").json()
            admission = client.get("/health/admission").json()
        assert health == {"status": "ok", "browser": {"active": False, "refCount": 0}, "cacheEntries": 0}
        assert ollama["available"] is True
        assert admission == {"active": 0, "max": 3, "queued": 0, "rateLimitedClients": 0}


def ollama_with(models) -> OllamaClient:
    return OllamaClient(
        "http://ollama.test",
        transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"models": models})),
    )


class TestModelsHealth:
    def setup_method(self):
        self.pipeline, _, _ = make_pipeline()

    def get_models(self, monkeypatch, ollama):
        monkeypatch.setenv("UISNAP_VISION_MODEL", "llava:7b")
        monkeypatch.setenv("UISNAP_CODE_MODEL", "codellama")
        with TestClient(create_app(pipeline=self.pipeline, ollama=ollama)) as client:
            return client.get("/health/models")

    def test_both_models_loaded(self, monkeypatch):
        response = self.get_models(monkeypatch, ollama_with([
            {"name": "llava:7b", "size": 4_700_000_000, "modified_at": "2024-05-01T10:00:00Z"},
            {"name": "codellama:latest", "size": 3_800_000_000},
            {"name": "mistral:7b", "size": 4_100_000_000},
        ]))
        assert response.status_code == 200
        models = response.json()["models"]
        assert models["vision"] == {
            "name": "llava:7b",
            "loaded": True,
            "size": 4_700_000_000,
            "version": "llava:7b",
            "modifiedAt": "2024-05-01T10:00:00Z",
        }
        assert models["code"]["loaded"] is True
        assert models["code"]["version"] == "codellama:latest"

    def test_missing_model_is_503(self, monkeypatch):
        response = self.get_models(monkeypatch, ollama_with([{"name": "llava:13b", "size": 1}]))
        assert response.status_code == 503
        models = response.json()["models"]
        assert models["vision"] == {"name": "llava:7b", "loaded": False}
        assert models["code"] == {"name": "codellama", "loaded": False}

    def test_backend_down_is_503(self, monkeypatch):
        def refuse(request):
            raise httpx.ConnectError("Connection refused", request=request)

        response = self.get_models(
            monkeypatch, OllamaClient("http://ollama.test", transport=httpx.MockTransport(refuse))
        )
        assert response.status_code == 503
        assert response.json()["models"]["vision"]["loaded"] is False
