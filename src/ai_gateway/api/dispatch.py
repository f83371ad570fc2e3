"""
Capability Dispatch.

The ``/v1`` surface is described by a fixed, ordered table of
``CapabilityDescriptor`` entries. Specific capabilities come first; the
proxy catch-all comes last and takes every other ``/v1/...`` path.

    speech-synthesis   POST  /v1/audio/speech          json
    transcription      POST  /v1/audio/transcriptions  multipart
    translation        POST  /v1/audio/translations    multipart
    image-generation   POST  /v1/images/generations    json
    models             GET   /v1/models                none
    proxy              *     /v1/...                   any

``Dispatcher.resolve`` is a pure lookup used by the request middleware
(for metric labels) and by the proxy handler, which refuses to forward a
path that a capability owns but was called with the wrong method.
``Dispatcher.install`` registers the table as FastAPI routes in priority
order, each guarded by the API key dependency.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple

from fastapi import Depends, FastAPI

from ai_gateway.api.auth import require_api_key
from ai_gateway.api.openai_compat import (
    create_image,
    create_speech,
    create_transcription,
    create_translation,
)
from ai_gateway.api.proxy import proxy_upstream
from ai_gateway.api.routes import list_models
from ai_gateway.core.errors import NotFoundError

PROXY_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD")

# Routes outside the capability table, labelled for metrics
SYSTEM_PATHS = {"/": "index", "/health": "health", "/metrics": "metrics"}


@dataclass(frozen=True)
class CapabilityDescriptor:
    """
    One entry of the routing table.

    Attributes:
        identifier: Stable capability name (also the metrics label).
        path: Exact path, or the prefix for a catch-all entry.
        methods: Allowed HTTP methods.
        input_shape: json, multipart, none or any.
        handler: FastAPI endpoint function.
        catch_all: Match every path below ``path``.
    """
    identifier: str
    path: str
    methods: Tuple[str, ...]
    input_shape: str
    handler: Callable
    catch_all: bool = False

    def matches(self, path: str) -> bool:
        if self.catch_all:
            return path.startswith(self.path.rstrip("/") + "/")
        return path == self.path

    @property
    def route_path(self) -> str:
        if self.catch_all:
            return self.path.rstrip("/") + "/{path:path}"
        return self.path


def default_capabilities() -> List[CapabilityDescriptor]:
    return [
        CapabilityDescriptor("speech-synthesis", "/v1/audio/speech", ("POST",), "json", create_speech),
        CapabilityDescriptor("transcription", "/v1/audio/transcriptions", ("POST",), "multipart", create_transcription),
        CapabilityDescriptor("translation", "/v1/audio/translations", ("POST",), "multipart", create_translation),
        CapabilityDescriptor("image-generation", "/v1/images/generations", ("POST",), "json", create_image),
        CapabilityDescriptor("models", "/v1/models", ("GET",), "none", list_models),
        CapabilityDescriptor("proxy", "/v1", PROXY_METHODS, "any", proxy_upstream, catch_all=True),
    ]


class Dispatcher:
    """Ordered, read-only capability table."""

    def __init__(self, capabilities: Optional[Iterable[CapabilityDescriptor]] = None):
        table = list(capabilities) if capabilities is not None else default_capabilities()
        # Exact paths always outrank prefixes
        self._table: Tuple[CapabilityDescriptor, ...] = tuple(
            sorted(table, key=lambda c: c.catch_all)
        )

    @property
    def capabilities(self) -> Tuple[CapabilityDescriptor, ...]:
        return self._table

    def resolve(self, path: str) -> CapabilityDescriptor:
        """
        Capability owning ``path``.

        Raises:
            NotFoundError: No capability (not even the catch-all) matches.
        """
        for capability in self._table:
            if capability.matches(path):
                return capability
        raise NotFoundError(f"Endpoint not found: {path}")

    def owns(self, path: str) -> bool:
        """True for every path served by the capability table, catch-all included."""
        return any(c.matches(path) for c in self._table)

    def label(self, path: str) -> str:
        if path in SYSTEM_PATHS:
            return SYSTEM_PATHS[path]
        try:
            return self.resolve(path).identifier
        except NotFoundError:
            return "unmatched"

    def install(self, app: FastAPI) -> None:
        """Register every capability as a route, in priority order."""
        for capability in self._table:
            app.add_api_route(
                capability.route_path,
                capability.handler,
                methods=list(capability.methods),
                name=capability.identifier,
                dependencies=[Depends(require_api_key)],
                include_in_schema=not capability.catch_all,
            )
        app.state.dispatcher = self
