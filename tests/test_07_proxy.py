"""Tests for the upstream proxy forwarder (httpx.MockTransport, no network)."""
from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from ai_gateway.core.config import OutboundProxyConfig
from ai_gateway.core.errors import ProxyError
from ai_gateway.core.metrics import GatewayMetrics
from ai_gateway.services.proxy import (
    ProxyForwarder,
    ProxyTarget,
    filter_headers,
    is_local_host,
    outbound_proxy_for,
)

LOCAL = ProxyTarget(base_url="http://127.0.0.1:1234", timeout_s=5)
REMOTE = ProxyTarget(base_url="https://api.example.com", timeout_s=5)


class Recorder:
    """MockTransport handler that remembers what it was sent."""

    def __init__(self, response: httpx.Response | None = None, raises: Exception | None = None):
        self.requests = []
        self.bodies = []
        self.response = response or httpx.Response(200, json={"ok": True})
        self.raises = raises

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.bodies.append(await request.aread())
        if self.raises is not None:
            raise self.raises
        return self.response


def run_forward(forwarder, *args, **kwargs):
    async def scenario():
        response = await forwarder.forward(*args, **kwargs)
        body = b"".join([chunk async for chunk in forwarder.relay(response)])
        await forwarder.aclose()
        return response, body
    return asyncio.run(scenario())


class TestLocalHosts:
    """Targets the outbound proxy must never be used for."""

    @pytest.mark.parametrize("host", [
        "localhost", "LOCALHOST", "0.0.0.0", "::1", "[::1]",
        "127.0.0.1", "127.10.0.1", "10.1.2.3", "172.16.0.1", "172.31.255.255", "192.168.1.10",
    ])
    def test_local(self, host):
        assert is_local_host(host)

    @pytest.mark.parametrize("host", [
        "api.example.com", "8.8.8.8", "172.32.0.1", "172.15.0.1", "192.169.0.1", "", None,
    ])
    def test_not_local(self, host):
        assert not is_local_host(host)

    def test_target_hostname(self):
        assert LOCAL.hostname == "127.0.0.1"
        assert LOCAL.is_local
        assert not REMOTE.is_local


class TestOutboundProxySelection:
    """Which targets go through the outbound proxy."""

    def test_disabled(self):
        assert outbound_proxy_for(REMOTE, OutboundProxyConfig(enabled=False, url="http://p:3128")) is None

    def test_enabled_without_url(self):
        assert outbound_proxy_for(REMOTE, OutboundProxyConfig(enabled=True, url="")) is None

    def test_remote_uses_proxy(self):
        assert outbound_proxy_for(REMOTE, OutboundProxyConfig(enabled=True, url="http://p:3128")) == "http://p:3128"

    def test_local_never_uses_proxy(self):
        assert outbound_proxy_for(LOCAL, OutboundProxyConfig(enabled=True, url="http://p:3128")) is None

    def test_forwarder_reports_proxy(self):
        forwarder = ProxyForwarder(REMOTE, OutboundProxyConfig(enabled=True, url="http://p:3128"))
        assert forwarder.proxy_url == "http://p:3128"
        asyncio.run(forwarder.aclose())


class TestFilterHeaders:
    """Hop-by-hop headers are dropped."""

    def test_filtered(self):
        headers = {
            "Host": "gw", "Connection": "keep-alive", "Transfer-Encoding": "chunked",
            "Content-Length": "10", "Proxy-Authorization": "x", "Keep-Alive": "5",
            "Content-Type": "application/json", "Authorization": "Bearer k", "X-Custom": "1",
        }
        assert filter_headers(headers) == {
            "Content-Type": "application/json", "Authorization": "Bearer k", "X-Custom": "1",
        }


class TestForward:
    """Requests reach the upstream unchanged apart from headers."""

    def test_post_with_body(self):
        recorder = Recorder(httpx.Response(200, json={"id": "chatcmpl-1"}))
        forwarder = ProxyForwarder(LOCAL, OutboundProxyConfig(), transport=httpx.MockTransport(recorder))
        payload = json.dumps({"model": "qwen", "messages": []}).encode()

        async def body():
            yield payload

        response, content = run_forward(
            forwarder, "POST", "chat/completions", "",
            {"content-type": "application/json", "content-length": str(len(payload)), "host": "gw"},
            body=body(),
        )

        sent = recorder.requests[0]
        assert sent.method == "POST"
        assert str(sent.url) == "http://127.0.0.1:1234/v1/chat/completions"
        assert recorder.bodies[0] == payload
        assert sent.headers["content-length"] == str(len(payload))
        assert sent.headers["host"] == "127.0.0.1:1234"
        assert response.status_code == 200
        assert json.loads(content) == {"id": "chatcmpl-1"}

    def test_query_string_kept(self):
        recorder = Recorder()
        forwarder = ProxyForwarder(LOCAL, OutboundProxyConfig(), transport=httpx.MockTransport(recorder))
        run_forward(forwarder, "GET", "/embeddings", "a=1&b=two", {})
        assert str(recorder.requests[0].url) == "http://127.0.0.1:1234/v1/embeddings?a=1&b=two"
        assert recorder.bodies[0] == b""

    def test_caller_authorization_passed_through(self):
        recorder = Recorder()
        forwarder = ProxyForwarder(LOCAL, OutboundProxyConfig(), transport=httpx.MockTransport(recorder))
        run_forward(forwarder, "GET", "models", "", {"authorization": "Bearer caller"})
        assert recorder.requests[0].headers["authorization"] == "Bearer caller"

    def test_configured_key_replaces_authorization(self):
        recorder = Recorder()
        target = ProxyTarget(base_url="http://127.0.0.1:1234", timeout_s=5, api_key="upstream-key")
        forwarder = ProxyForwarder(target, OutboundProxyConfig(), transport=httpx.MockTransport(recorder))
        run_forward(forwarder, "GET", "models", "", {"Authorization": "Bearer caller"})
        assert recorder.requests[0].headers.get_list("authorization") == ["Bearer upstream-key"]

    def test_error_status_relayed(self):
        recorder = Recorder(httpx.Response(429, json={"error": {"message": "slow down"}}))
        forwarder = ProxyForwarder(LOCAL, OutboundProxyConfig(), transport=httpx.MockTransport(recorder))
        response, content = run_forward(forwarder, "GET", "models", "", {})
        assert response.status_code == 429
        assert json.loads(content)["error"]["message"] == "slow down"

    def test_connection_failure(self):
        metrics = GatewayMetrics()
        recorder = Recorder(raises=httpx.ConnectError("connection refused by 10.0.0.5:1234"))
        forwarder = ProxyForwarder(LOCAL, OutboundProxyConfig(), metrics=metrics, transport=httpx.MockTransport(recorder))

        with pytest.raises(ProxyError) as exc:
            run_forward(forwarder, "GET", "models", "", {})
        assert exc.value.code == "lmstudio_unavailable"
        assert exc.value.message == "Upstream service unavailable (ConnectError)"
        assert "10.0.0.5" not in exc.value.message
        assert metrics.registry.get_sample_value("gateway_proxy_failures_total") == 1.0

    def test_timeout(self):
        recorder = Recorder(raises=httpx.ReadTimeout(""))
        forwarder = ProxyForwarder(LOCAL, OutboundProxyConfig(), transport=httpx.MockTransport(recorder))
        with pytest.raises(ProxyError, match="ReadTimeout"):
            run_forward(forwarder, "POST", "chat/completions", "", {})
