"""
Gateway error taxonomy and the error envelope.

Every failure that reaches a client is rendered in OpenAI's error shape:

    {
        "error": {
            "message": "Missing required parameter: input",
            "type": "invalid_request_error",
            "code": "missing_required_parameter"
        }
    }

Each ``GatewayError`` subclass carries an ``ErrorKind``; ``ERROR_TABLE``
is the one place that decides the ``type``, default ``code`` and HTTP
status for a kind. Adapters raise these errors at their boundary so no
raw exception ever reaches the HTTP layer unshaped. Anything else is
caught by the last-resort handler in ``main`` and reported as
``server_error`` without internal detail.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, NamedTuple, Optional

from fastapi.responses import JSONResponse


class ErrorKind(str, Enum):
    INVALID_REQUEST = "invalid_request"
    AUTHENTICATION = "authentication"
    NOT_FOUND = "not_found"
    METHOD_NOT_ALLOWED = "method_not_allowed"
    CONFIGURATION = "configuration"
    SYNTHESIS = "synthesis"
    RECOGNITION = "recognition"
    TRANSLATION = "translation"
    IMAGE_GENERATION = "image_generation"
    PROXY = "proxy"
    SERVER = "server"


class ErrorSpec(NamedTuple):
    type: str
    code: str
    status: int


ERROR_TABLE: Dict[ErrorKind, ErrorSpec] = {
    ErrorKind.INVALID_REQUEST: ErrorSpec("invalid_request_error", "invalid_request", 400),
    ErrorKind.AUTHENTICATION: ErrorSpec("authentication_error", "unauthorized", 401),
    ErrorKind.NOT_FOUND: ErrorSpec("not_found_error", "endpoint_not_found", 404),
    ErrorKind.METHOD_NOT_ALLOWED: ErrorSpec("invalid_request_error", "method_not_allowed", 405),
    ErrorKind.CONFIGURATION: ErrorSpec("configuration_error", "configuration_error", 500),
    ErrorKind.SYNTHESIS: ErrorSpec("synthesis_error", "tts_error", 500),
    ErrorKind.RECOGNITION: ErrorSpec("recognition_error", "stt_error", 500),
    ErrorKind.TRANSLATION: ErrorSpec("translation_error", "translation_error", 500),
    ErrorKind.IMAGE_GENERATION: ErrorSpec("image_generation_error", "image_generation_error", 500),
    ErrorKind.PROXY: ErrorSpec("proxy_error", "lmstudio_unavailable", 500),
    ErrorKind.SERVER: ErrorSpec("server_error", "internal_error", 500),
}


@dataclass(frozen=True)
class ErrorEnvelope:
    """What the client sees: message, type tag, stable code, HTTP status."""
    message: str
    type: str
    code: str
    http_status: int

    def to_dict(self) -> Dict[str, Any]:
        return {"error": {"message": self.message, "type": self.type, "code": self.code}}

    def to_response(self, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
        return JSONResponse(status_code=self.http_status, content=self.to_dict(), headers=headers)


class GatewayError(Exception):
    """
    Base class for every error the gateway reports to clients.

    Attributes:
        message: Human readable message (the only free text sent out).
        code: Stable machine code; defaults to the kind's code.
        status: HTTP status; defaults to the kind's status.
    """
    kind: ErrorKind = ErrorKind.SERVER

    def __init__(self, message: str, code: Optional[str] = None, status: Optional[int] = None):
        spec = ERROR_TABLE[self.kind]
        self.message = message
        self.code = code or spec.code
        self.status = status or spec.status
        super().__init__(message)

    def envelope(self) -> ErrorEnvelope:
        return ErrorEnvelope(
            message=self.message,
            type=ERROR_TABLE[self.kind].type,
            code=self.code,
            http_status=self.status,
        )


class InvalidRequestError(GatewayError):
    kind = ErrorKind.INVALID_REQUEST


class AuthenticationError(GatewayError):
    kind = ErrorKind.AUTHENTICATION


class NotFoundError(GatewayError):
    kind = ErrorKind.NOT_FOUND


class MethodNotAllowedError(GatewayError):
    kind = ErrorKind.METHOD_NOT_ALLOWED


class ConfigurationError(GatewayError):
    """A request needs configuration the operator has not provided."""
    kind = ErrorKind.CONFIGURATION


class SynthesisError(GatewayError):
    kind = ErrorKind.SYNTHESIS


class RecognitionError(GatewayError):
    kind = ErrorKind.RECOGNITION


class TranslationError(RecognitionError):
    kind = ErrorKind.TRANSLATION


class ImageGenerationError(GatewayError):
    kind = ErrorKind.IMAGE_GENERATION


class ProxyError(GatewayError):
    """Upstream unreachable or timed out. Status may be any 5xx."""
    kind = ErrorKind.PROXY


def missing_parameter(name: str) -> InvalidRequestError:
    return InvalidRequestError(f"Missing required parameter: {name}", code="missing_required_parameter")


def translate_exception(exc: BaseException) -> ErrorEnvelope:
    """
    Map any exception to an envelope.

    Gateway errors keep their own message; everything else becomes a
    generic server_error so internal exception text never leaks.
    """
    if isinstance(exc, GatewayError):
        return exc.envelope()
    spec = ERROR_TABLE[ErrorKind.SERVER]
    return ErrorEnvelope(
        message="Internal server error",
        type=spec.type,
        code=spec.code,
        http_status=spec.status,
    )
