"""
Upstream Proxy Forwarder.

Relays any ``/v1`` request that no local capability claims to the
upstream completion service (LM Studio by default):

    <method> /v1/<path>?<query>  ->  <upstream.base_url>/v1/<path>?<query>

Request and response bodies are streamed in both directions. Hop-by-hop
headers are removed on the way in and on the way out. When
``upstream.api_key`` is set it replaces the caller's Authorization header.

Outbound network proxy:
    ``outbound_proxy.url`` is only used for targets that are not local
    (see ``is_local_host``). httpx clients are created with
    ``trust_env=False`` so proxy environment variables never apply behind
    the configuration's back.

Failures:
    Connection errors and timeouts raise ``ProxyError``
    (``lmstudio_unavailable``). Nothing is retried. Upstream error
    statuses are relayed unchanged.
"""
from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Dict, Mapping, Optional
from urllib.parse import urlsplit

import httpx

from ai_gateway.core.config import OutboundProxyConfig
from ai_gateway.core.errors import ProxyError
from ai_gateway.core.logging import error, get_logger, info, verbose
from ai_gateway.core.metrics import GatewayMetrics

_LOG = get_logger("ai-gateway.proxy")

HOP_BY_HOP_HEADERS = frozenset({
    "host",
    "connection",
    "keep-alive",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "content-length",
})

_PRIVATE_NETWORKS = (
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
)


def is_local_host(hostname: Optional[str]) -> bool:
    """
    True for hosts the outbound proxy must never be used for.

    localhost, 0.0.0.0, ::1, 127.0.0.0/8, 10.0.0.0/8, 172.16.0.0/12 and
    192.168.0.0/16. Hostnames are not resolved.
    """
    if not hostname:
        return False
    host = hostname.strip("[]").lower()
    if host in ("localhost", "0.0.0.0", "::1"):
        return True
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return False
    if addr.version == 6:
        return False
    return any(addr in net for net in _PRIVATE_NETWORKS)


@dataclass(frozen=True)
class ProxyTarget:
    """An upstream HTTP service the gateway talks to."""
    base_url: str
    timeout_s: float
    api_key: str = ""

    @property
    def hostname(self) -> str:
        return urlsplit(self.base_url).hostname or ""

    @property
    def is_local(self) -> bool:
        return is_local_host(self.hostname)


def outbound_proxy_for(target: ProxyTarget, config: OutboundProxyConfig) -> Optional[str]:
    """Proxy URL to use for ``target``, or None for a direct connection."""
    if not config.enabled or not config.url:
        return None
    if target.is_local:
        return None
    return config.url


def build_client(
    target: ProxyTarget,
    outbound: OutboundProxyConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Shared AsyncClient for one target."""
    proxy = outbound_proxy_for(target, outbound)
    info(_LOG, "upstream_client", base_url=target.base_url, local=target.is_local, via_proxy=bool(proxy))
    return httpx.AsyncClient(
        base_url=target.base_url,
        timeout=httpx.Timeout(target.timeout_s),
        proxy=proxy,
        transport=transport,
        trust_env=False,
    )


def filter_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Copy of ``headers`` without hop-by-hop entries."""
    return {
        k: v for k, v in headers.items()
        if k.lower() not in HOP_BY_HOP_HEADERS and not k.lower().startswith("proxy-")
    }


class ProxyForwarder:
    """Forwards requests to one upstream target over a shared client."""

    def __init__(
        self,
        target: ProxyTarget,
        outbound: OutboundProxyConfig,
        metrics: Optional[GatewayMetrics] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.target = target
        self.proxy_url = outbound_proxy_for(target, outbound)
        self._metrics = metrics
        self._client = build_client(target, outbound, transport)

    async def forward(
        self,
        method: str,
        path: str,
        query: str,
        headers: Mapping[str, str],
        body: Optional[AsyncIterable[bytes]] = None,
    ) -> httpx.Response:
        """
        Send the request upstream and return the response with its body
        unread. The caller must ``aclose()`` it.

        Raises:
            ProxyError: Upstream unreachable or timed out.
        """
        url = "/v1/" + path.lstrip("/")
        if query:
            url = f"{url}?{query}"

        out_headers = filter_headers(headers)
        if self.target.api_key:
            out_headers = {k: v for k, v in out_headers.items() if k.lower() != "authorization"}
            out_headers["Authorization"] = f"Bearer {self.target.api_key}"

        # A known length keeps the upstream request un-chunked
        length = next((v for k, v in headers.items() if k.lower() == "content-length"), None)
        if body is not None and length is not None:
            out_headers["Content-Length"] = length

        request = self._client.build_request(method, url, headers=out_headers, content=body)
        verbose(_LOG, "proxy_forward", method=method, url=url)
        try:
            return await self._client.send(request, stream=True)
        except httpx.TransportError as e:
            if self._metrics is not None:
                self._metrics.proxy_failure()
            error(_LOG, "proxy_failed", method=method, url=url, error=type(e).__name__, detail=str(e))
            raise ProxyError(f"Upstream service unavailable ({type(e).__name__})") from e

    async def relay(self, response: httpx.Response) -> AsyncIterator[bytes]:
        """Stream the upstream body; errors once streaming has begun are logged only."""
        try:
            async for chunk in response.aiter_raw():
                yield chunk
        except httpx.HTTPError as e:
            error(_LOG, "proxy_stream_interrupted", error=type(e).__name__)
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()
