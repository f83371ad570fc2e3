"""
OpenAI-Compatible Capability Endpoints.

Handlers for the locally served ``/v1`` capabilities. They are registered
by ``ai_gateway.api.dispatch``, not by a router, so the capability table
stays the single source of routing truth.

    POST /v1/audio/speech          -> SynthesisAdapter (audio file)
    POST /v1/audio/transcriptions  -> RecognitionAdapter
    POST /v1/audio/translations    -> RecognitionAdapter (task=translate)
    POST /v1/images/generations    -> ImageGenerationAdapter

Errors are raised as ``GatewayError`` subclasses and rendered in OpenAI's
error shape by the exception handlers installed in ``main``:

    {"error": {"message": "...", "type": "...", "code": "..."}}

Example Usage:
    from openai import OpenAI
    client = OpenAI(base_url="http://localhost:3000/v1", api_key="your-api-key-here")
    response = client.audio.speech.create(model="tts-1", voice="alloy", input="你好")
    response.stream_to_file("speech.mp3")

    with open("speech.mp3", "rb") as f:
        client.audio.transcriptions.create(model="whisper-1", file=f)
"""
from __future__ import annotations

from typing import List, Optional, Tuple

from fastapi import Depends, Request
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, Field
from starlette.background import BackgroundTask
from starlette.datastructures import FormData, UploadFile

from ai_gateway.api.dependencies import GatewayServices, get_services
from ai_gateway.core.errors import InvalidRequestError, missing_parameter
from ai_gateway.core.logging import get_logger, get_request_id, info
from ai_gateway.services.images import ImageRequest
from ai_gateway.services.recognition import (
    GRANULARITIES,
    RESPONSE_FORMATS,
    TranscriptionRequest,
    render,
)
from ai_gateway.services.synthesis import SpeechRequest

_LOG = get_logger("ai-gateway.openai")


class OpenAISpeechRequest(BaseModel):
    """
    OpenAI-compatible speech synthesis request.

    ``input`` is optional at the schema level so a missing value is
    reported as ``missing_required_parameter`` rather than a generic
    validation error.

    Attributes:
        model: ``tts-1`` / ``tts-1-hd``; append ``:clone`` for the
            configured cloned voice.
        input: Text to speak (markdown is stripped).
        voice: alloy, echo, fable, onyx, nova, shimmer or a mapped name.
        response_format: mp3, wav, aiff, flac, aac or opus.
        speed: 0.25x to 4.0x.
    """
    model: str = Field(default="tts-1")
    input: Optional[str] = Field(default=None, max_length=4096)
    voice: str = Field(default="alloy")
    response_format: str = Field(default="mp3")
    speed: float = Field(default=1.0, ge=0.25, le=4.0)


class OpenAIImageRequest(BaseModel):
    prompt: Optional[str] = None
    n: int = 1
    size: str = "512x512"
    response_format: str = "b64_json"
    model: Optional[str] = None
    negative_prompt: Optional[str] = None
    steps: Optional[int] = Field(default=None, ge=1, le=150)


async def create_speech(
    body: OpenAISpeechRequest,
    services: GatewayServices = Depends(get_services),
):
    """
    Synthesize speech and stream the file back.

    Returns:
        FileResponse with Content-Disposition ``attachment;
        filename="speech.<fmt>"`` plus X-Request-Id and X-Voice-Mapped-To.
        The artifact is deleted by a background task once sent.
    """
    if body.input is None or not body.input.strip():
        raise missing_parameter("input")

    rid = get_request_id()
    result = await services.synthesis.synthesize(
        SpeechRequest(
            text=body.input,
            voice=body.voice,
            response_format=body.response_format,
            speed=body.speed,
            model=body.model,
        ),
        owner=rid,
    )

    lifecycle = services.lifecycle
    lifecycle.mark_served(result.artifact.id)
    return FileResponse(
        result.artifact.path,
        media_type=result.media_type,
        filename=result.filename,
        headers={"X-Request-Id": rid, "X-Voice-Mapped-To": result.voice},
        background=BackgroundTask(lifecycle.release, result.artifact.id),
    )


def _granularities(form: FormData) -> Tuple[str, ...]:
    values: List[str] = []
    for key in ("timestamp_granularities[]", "timestamp_granularities"):
        values.extend(str(v).strip() for v in form.getlist(key))
    values = [v for v in values if v]
    unknown = [v for v in values if v not in GRANULARITIES]
    if unknown:
        raise InvalidRequestError(
            f"Invalid timestamp_granularities: {', '.join(unknown)}. Supported: {', '.join(GRANULARITIES)}",
            code="invalid_timestamp_granularities",
        )
    return tuple(dict.fromkeys(values)) or ("segment",)


def _form_str(form: FormData, key: str) -> Optional[str]:
    value = form.get(key)
    if value is None or isinstance(value, UploadFile):
        return None
    value = str(value).strip()
    return value or None


async def _recognize(request: Request, services: GatewayServices, translate: bool) -> Response:
    adapter = services.recognition
    async with request.form() as form:
        upload = form.get("file")
        if not isinstance(upload, UploadFile):
            raise missing_parameter("file")

        response_format = _form_str(form, "response_format") or "json"
        if response_format not in RESPONSE_FORMATS:
            raise InvalidRequestError(
                f"Unsupported response_format '{response_format}'. Supported: {', '.join(RESPONSE_FORMATS)}",
                code="unsupported_response_format",
            )
        granularities = _granularities(form)
        stt_request = TranscriptionRequest(
            upload_path=await adapter.store_upload(upload),
            model=_form_str(form, "model"),
            language=None if translate else _form_str(form, "language"),
            response_format=response_format,
            granularities=granularities,
            prompt=_form_str(form, "prompt"),
        )

    info(_LOG, "recognition_request", task="translate" if translate else "transcribe", format=response_format)
    transcript = await adapter.transcribe(stt_request, owner=get_request_id(), translate=translate)
    content, media_type = render(transcript, response_format, granularities)
    if isinstance(content, dict):
        return JSONResponse(content)
    return PlainTextResponse(content, media_type=media_type)


async def create_transcription(request: Request, services: GatewayServices = Depends(get_services)):
    """Multipart: file, model, language, prompt, response_format, timestamp_granularities[]."""
    return await _recognize(request, services, translate=False)


async def create_translation(request: Request, services: GatewayServices = Depends(get_services)):
    """Like transcription, but the output is always English."""
    return await _recognize(request, services, translate=True)


async def create_image(
    body: OpenAIImageRequest,
    services: GatewayServices = Depends(get_services),
):
    return await services.images.generate(
        ImageRequest(
            prompt=body.prompt or "",
            n=body.n,
            size=body.size,
            response_format=body.response_format,
            model=body.model,
            negative_prompt=body.negative_prompt,
            steps=body.steps,
        )
    )
