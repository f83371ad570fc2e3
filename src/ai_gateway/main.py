"""
FastAPI Application Entry Point.

``create_app`` wires the gateway together:

    1. Configure structured logging
    2. Build the service container (adapters, lifecycle manager, metrics)
    3. Install the request middleware (request id, access log, metrics)
    4. Install exception handlers that render every failure as an
       OpenAI-style error envelope
    5. Register the capability table and the service routes
    6. Start the artifact sweep in the lifespan, stop it on shutdown

Usage:
    # Run with uvicorn
    uvicorn ai_gateway.main:app --host 0.0.0.0 --port 3000

    # Or through the CLI
    ai-gateway serve --port 3000
"""
from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from ai_gateway import __version__
from ai_gateway.api.auth import authenticate
from ai_gateway.api.dependencies import build_services, get_settings
from ai_gateway.api.dispatch import Dispatcher
from ai_gateway.api.routes import router
from ai_gateway.core.config import Settings
from ai_gateway.core.errors import (
    AuthenticationError,
    ErrorKind,
    ERROR_TABLE,
    ErrorEnvelope,
    GatewayError,
    InvalidRequestError,
    MethodNotAllowedError,
    NotFoundError,
    translate_exception,
)
from ai_gateway.core.logging import configure_logging, error, get_logger, info, set_request_id, warn
from ai_gateway.core.process import ToolRunner, run_tool

_LOG = get_logger("ai-gateway.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = app.state.services
    services.lifecycle.start()
    info(_LOG, "startup", version=__version__, upstream=services.config.upstream.base_url)
    try:
        yield
    finally:
        await services.lifecycle.stop()
        await services.aclose()
        info(_LOG, "shutdown", **services.lifecycle.stats()["deleted"])


def _install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        envelope = exc.envelope()
        if envelope.http_status >= 500:
            error(_LOG, "request_failed", type=envelope.type, code=envelope.code, message=envelope.message)
        return envelope.to_response()

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        detail = "Invalid request"
        if errors:
            first = errors[0]
            location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
            detail = f"{location}: {first.get('msg', 'invalid value')}" if location else first.get("msg", detail)
        return InvalidRequestError(detail, code="validation_error").envelope().to_response()

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return NotFoundError(f"Endpoint not found: {request.method} {request.url.path}").envelope().to_response()
        if exc.status_code == 405:
            return MethodNotAllowedError(
                f"Method {request.method} not allowed for {request.url.path}"
            ).envelope().to_response()
        spec = ERROR_TABLE[ErrorKind.INVALID_REQUEST if exc.status_code < 500 else ErrorKind.SERVER]
        return ErrorEnvelope(
            message=str(exc.detail),
            type=spec.type,
            code=spec.code,
            http_status=exc.status_code,
        ).to_response(headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        error(_LOG, "unhandled_exception", exc_info=True, path=request.url.path, error=type(exc).__name__)
        return translate_exception(exc).to_response()


def create_app(
    settings: Optional[Settings] = None,
    runner: ToolRunner = run_tool,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings to use; defaults to the cached ``get_settings()``.
        runner: External tool runner (tests inject a fake).
        transport: httpx transport for upstream calls (tests inject a mock).

    Returns:
        FastAPI: Configured application instance.
    """
    configure_logging()

    settings = settings or get_settings()
    services = build_services(settings, runner=runner, transport=transport)

    app = FastAPI(title="ai-gateway", version=__version__, lifespan=lifespan)
    app.state.services = services

    dispatcher = Dispatcher()

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        rid = uuid.uuid4().hex[:12]
        set_request_id(rid)
        request.state.request_id = rid
        capability = dispatcher.label(request.url.path)

        t0 = time.perf_counter()
        try:
            if dispatcher.owns(request.url.path):
                authenticate(request)
            response = await call_next(request)
        except AuthenticationError as e:
            response = e.envelope().to_response()
        except Exception:
            services.metrics.record_request(capability, 500, time.perf_counter() - t0)
            raise
        seconds = time.perf_counter() - t0

        response.headers.setdefault("X-Request-Id", rid)
        services.metrics.record_request(capability, response.status_code, seconds)
        log = warn if response.status_code >= 400 else info
        log(
            _LOG,
            "request_done",
            method=request.method,
            path=request.url.path,
            capability=capability,
            status=response.status_code,
            seconds=seconds,
        )
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    _install_exception_handlers(app)

    app.include_router(router)      # /, /health, /metrics
    dispatcher.install(app)         # /v1 capabilities, proxy last

    return app


# Global application instance for ASGI servers (uvicorn, gunicorn, etc.)
app = create_app()
