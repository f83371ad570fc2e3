"""
Proxy catch-all endpoint.

Every ``/v1/...`` request no capability claims ends up here and is
forwarded to the upstream completion service (chat completions,
embeddings, upstream model listing, ...).

A path that belongs to a capability but arrived with another method
(for example ``GET /v1/audio/speech``) also lands here, because the
catch-all route accepts every method. Those requests are answered with
405 and never forwarded.
"""
from __future__ import annotations

from fastapi import Depends, Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from ai_gateway.api.dependencies import GatewayServices, get_services
from ai_gateway.core.errors import MethodNotAllowedError
from ai_gateway.core.logging import get_logger, get_request_id, verbose
from ai_gateway.services.proxy import filter_headers

_LOG = get_logger("ai-gateway.api.proxy")

_BODYLESS = ("GET", "HEAD", "OPTIONS")


async def proxy_upstream(
    path: str,
    request: Request,
    services: GatewayServices = Depends(get_services),
):
    capability = request.app.state.dispatcher.resolve(request.url.path)
    if not capability.catch_all:
        raise MethodNotAllowedError(
            f"Method {request.method} not allowed for {request.url.path}. Allowed: {', '.join(capability.methods)}"
        )

    has_body = request.method not in _BODYLESS or "content-length" in request.headers
    upstream = await services.proxy.forward(
        request.method,
        path,
        request.url.query,
        request.headers,
        body=request.stream() if has_body else None,
    )
    verbose(_LOG, "proxy_response", status=upstream.status_code)

    headers = filter_headers(upstream.headers)
    headers["X-Request-Id"] = get_request_id()
    return StreamingResponse(
        services.proxy.relay(upstream),
        status_code=upstream.status_code,
        headers=headers,
        background=BackgroundTask(upstream.aclose),
    )
