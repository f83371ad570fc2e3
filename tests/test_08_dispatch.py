"""Tests for the capability table and routing decisions."""
from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from ai_gateway.api.dispatch import CapabilityDescriptor, Dispatcher, default_capabilities
from ai_gateway.core.errors import NotFoundError
from ai_gateway.main import create_app


class TestResolve:
    """Pure lookups."""

    @pytest.fixture
    def dispatcher(self):
        return Dispatcher()

    @pytest.mark.parametrize("path,identifier", [
        ("/v1/audio/speech", "speech-synthesis"),
        ("/v1/audio/transcriptions", "transcription"),
        ("/v1/audio/translations", "translation"),
        ("/v1/images/generations", "image-generation"),
        ("/v1/models", "models"),
        ("/v1/chat/completions", "proxy"),
        ("/v1/embeddings", "proxy"),
        ("/v1/models/qwen2.5-7b", "proxy"),
        ("/v1/audio/speech/extra", "proxy"),
    ])
    def test_resolve(self, dispatcher, path, identifier):
        assert dispatcher.resolve(path).identifier == identifier

    def test_outside_v1_not_found(self, dispatcher):
        with pytest.raises(NotFoundError):
            dispatcher.resolve("/v2/chat/completions")
        with pytest.raises(NotFoundError):
            dispatcher.resolve("/v1")

    def test_owns_only_v1_paths(self, dispatcher):
        assert dispatcher.owns("/v1/audio/speech")
        assert dispatcher.owns("/v1/chat/completions")
        assert not dispatcher.owns("/health")
        assert not dispatcher.owns("/metrics")
        assert not dispatcher.owns("/v1")

    def test_catch_all_sorted_last(self):
        proxy, *rest = default_capabilities()[::-1]
        dispatcher = Dispatcher([proxy, *rest])
        assert dispatcher.capabilities[-1].identifier == "proxy"
        assert dispatcher.resolve("/v1/audio/speech").identifier == "speech-synthesis"

    def test_labels(self, dispatcher):
        assert dispatcher.label("/health") == "health"
        assert dispatcher.label("/metrics") == "metrics"
        assert dispatcher.label("/") == "index"
        assert dispatcher.label("/v1/audio/speech") == "speech-synthesis"
        assert dispatcher.label("/nope") == "unmatched"

    def test_route_path(self):
        descriptor = CapabilityDescriptor("proxy", "/v1", ("GET",), "any", lambda: None, catch_all=True)
        assert descriptor.route_path == "/v1/{path:path}"
        assert descriptor.matches("/v1/x")
        assert not descriptor.matches("/v10/x")


class TestRouting:
    """Routing through the installed application."""

    @pytest.fixture
    def upstream_calls(self):
        return []

    @pytest.fixture
    def client(self, make_settings, fake_runner, upstream_calls):
        def handler(request: httpx.Request) -> httpx.Response:
            upstream_calls.append(request)
            return httpx.Response(200, json={"proxied": True})

        app = create_app(make_settings(), runner=fake_runner, transport=httpx.MockTransport(handler))
        return TestClient(app)

    def test_wrong_method_on_capability_is_405(self, client, upstream_calls):
        r = client.get("/v1/audio/speech")
        assert r.status_code == 405
        body = r.json()
        assert body["error"]["code"] == "method_not_allowed"
        assert "POST" in body["error"]["message"]
        assert upstream_calls == []

    def test_wrong_method_on_models_is_405(self, client, upstream_calls):
        r = client.post("/v1/models", json={})
        assert r.status_code == 405
        assert upstream_calls == []

    def test_unknown_v1_path_is_proxied(self, client, upstream_calls):
        r = client.get("/v1/some/new/endpoint")
        assert r.status_code == 200
        assert r.json() == {"proxied": True}
        assert upstream_calls[0].url.path == "/v1/some/new/endpoint"

    def test_unknown_path_is_404_envelope(self, client):
        r = client.get("/nowhere")
        assert r.status_code == 404
        assert r.json() == {"error": {
            "message": "Endpoint not found: GET /nowhere",
            "type": "not_found_error",
            "code": "endpoint_not_found",
        }}

    def test_wrong_method_on_system_route(self, client):
        r = client.post("/health")
        assert r.status_code == 405
        assert r.json()["error"]["code"] == "method_not_allowed"

    def test_request_metrics_labelled_by_capability(self, client):
        client.get("/v1/models")
        services = client.app.state.services
        assert services.metrics.registry.get_sample_value(
            "gateway_requests_total", {"capability": "models", "status": "200"}
        ) == 1.0
