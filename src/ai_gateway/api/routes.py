"""
Service Routes.

Endpoints:
    GET /           - Service index (name, version, endpoint map)
    GET /health     - Liveness plus per-capability availability
    GET /metrics    - Prometheus exposition
    GET /v1/models  - Models, voices and recognition languages
                      (registered through the capability table)

``/``, ``/health`` and ``/metrics`` are outside ``/v1`` and are never
authenticated. ``/health`` only reads state: it checks tool presence on
PATH and configuration, it does not start processes or call upstreams.
"""
from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response

from ai_gateway import __version__
from ai_gateway.api.dependencies import GatewayServices, get_services

router = APIRouter()

SERVICE_NAME = "ai-gateway"

_SPEECH_MODELS = ("tts-1", "tts-1-hd")


def _availability(ok: bool) -> str:
    return "available" if ok else "unavailable"


@router.get("/")
async def index():
    return {
        "name": SERVICE_NAME,
        "description": "OpenAI-compatible gateway for local speech, vision and chat services",
        "version": __version__,
        "endpoints": {
            "health": "/health",
            "metrics": "/metrics",
            "models": "/v1/models",
            "tts": "/v1/audio/speech",
            "stt": "/v1/audio/transcriptions",
            "translation": "/v1/audio/translations",
            "images": "/v1/images/generations",
            "chat": "/v1/chat/completions",
            "embeddings": "/v1/embeddings",
        },
        "documentation": "https://platform.openai.com/docs/api-reference",
    }


@router.get("/health")
async def health(services: GatewayServices = Depends(get_services)):
    """
    Health check for load balancers and probes.

    Always returns ``status: "ok"`` while the process serves requests;
    the ``services`` block reports what each capability can do right now.
    """
    tts = services.synthesis.availability()
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "services": {
            "tts": _availability(tts["say"]),
            "tts_clone": _availability(tts["clone"]),
            "stt": _availability(services.recognition.available()),
            "images": "enabled" if services.images.enabled else "disabled",
            "upstream": services.proxy.target.base_url,
        },
    }


@router.get("/metrics")
async def metrics(services: GatewayServices = Depends(get_services)):
    content, content_type = services.metrics.get_metrics_response()
    return Response(content=content, media_type=content_type)


async def list_models(services: GatewayServices = Depends(get_services)):
    """Speech and recognition models, ``say`` voices and recognition languages."""
    created = 0
    data = [
        {"id": model_id, "object": "model", "created": created, "owned_by": SERVICE_NAME}
        for model_id in _SPEECH_MODELS
    ]
    if services.synthesis.clone_ready():
        data.extend(
            {"id": f"{model_id}:clone", "object": "model", "created": created, "owned_by": SERVICE_NAME}
            for model_id in _SPEECH_MODELS
        )
    data.append({"id": "whisper-1", "object": "model", "created": created, "owned_by": SERVICE_NAME})
    data.extend(
        {"id": model_id, "object": "model", "created": created, "owned_by": "mlx-community"}
        for model_id in services.recognition.models()
    )
    return {
        "object": "list",
        "data": data,
        "voices": await services.synthesis.list_voices(),
        "languages": services.recognition.languages(),
    }
