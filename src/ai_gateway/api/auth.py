"""
API key authentication.

``authenticate`` runs in the request middleware for every ``/v1`` path,
before routing, so no JSON or multipart body is read for a rejected
request. ``require_api_key`` is the route dependency that builds the
RequestContext for handlers.

Accepted header forms:
    Authorization: Bearer <key>
    Authorization: <key>

With ``auth.required`` false the gate is a no-op. Comparison is
constant-time.
"""
from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Mapping, Optional

from fastapi import Request

from ai_gateway.core.config import AuthConfig
from ai_gateway.core.errors import AuthenticationError
from ai_gateway.core.logging import get_logger, get_request_id, warn

_LOG = get_logger("ai-gateway.auth")


@dataclass(frozen=True)
class RequestContext:
    """Per-request view handed to handlers. Never shared between requests."""
    method: str
    path: str
    headers: Mapping[str, str]
    credential: Optional[str]
    request_id: str


def extract_credential(authorization: Optional[str]) -> Optional[str]:
    """Key from an Authorization header value, with or without ``Bearer``."""
    if not authorization:
        return None
    value = authorization.strip()
    scheme, _, rest = value.partition(" ")
    if scheme.lower() == "bearer":
        value = rest.strip()
    return value or None


def check_credential(config: AuthConfig, credential: Optional[str]) -> None:
    """
    Raises:
        AuthenticationError: ``missing_api_key`` or ``invalid_api_key``.
    """
    if not config.required:
        return
    if credential is None:
        raise AuthenticationError("Missing API key. Provide it in the Authorization header", code="missing_api_key")
    if not hmac.compare_digest(credential.encode("utf-8"), config.api_key.encode("utf-8")):
        raise AuthenticationError("Invalid API key", code="invalid_api_key")


def authenticate(request: Request) -> Optional[str]:
    """
    Check the request's Authorization header against ``auth`` settings.

    Raises:
        AuthenticationError: The gate rejects the request.
    """
    config = request.app.state.services.config.auth
    credential = extract_credential(request.headers.get("authorization"))
    try:
        check_credential(config, credential)
    except AuthenticationError as e:
        warn(_LOG, "auth_rejected", path=request.url.path, code=e.code)
        raise
    return credential


async def require_api_key(request: Request) -> RequestContext:
    """FastAPI dependency: authenticate and build the RequestContext."""
    credential = authenticate(request)

    context = RequestContext(
        method=request.method,
        path=request.url.path,
        headers=request.headers,
        credential=credential,
        request_id=get_request_id(),
    )
    request.state.context = context
    return context
