"""
Image Generation Adapter.

Translates OpenAI ``/v1/images/generations`` requests into the
Stable-Diffusion-WebUI style API that Draw Things exposes:

    POST <images.base_url>/sdapi/v1/txt2img
        {prompt, negative_prompt, width, height, steps, batch_size, model?}
    -> {"images": ["<base64 png>", ...]}

and returns ``{"created": <unix>, "data": [{"b64_json": ...}, ...]}``.

The backend is optional. With ``images.enabled`` false every request is
answered with 503 ``image_generation_disabled``.
"""
from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from ai_gateway.core.config import ImagesConfig, OutboundProxyConfig
from ai_gateway.core.errors import ImageGenerationError, InvalidRequestError
from ai_gateway.core.logging import error, get_logger, info
from ai_gateway.services.proxy import ProxyTarget, build_client

_LOG = get_logger("ai-gateway.images")

_SIZE_RE = re.compile(r"^(\d{2,4})x(\d{2,4})$")
MAX_IMAGES = 10
DEFAULT_STEPS = 20


@dataclass
class ImageRequest:
    prompt: str
    n: int = 1
    size: str = "512x512"
    response_format: str = "b64_json"
    model: Optional[str] = None
    negative_prompt: Optional[str] = None
    steps: Optional[int] = None


def parse_size(size: str) -> tuple[int, int]:
    match = _SIZE_RE.match((size or "").strip().lower())
    if not match:
        raise InvalidRequestError(f"Invalid size '{size}'. Expected WIDTHxHEIGHT, e.g. 512x512", code="invalid_size")
    return int(match.group(1)), int(match.group(2))


class ImageGenerationAdapter:
    """Client for the Draw Things txt2img endpoint."""

    def __init__(
        self,
        config: ImagesConfig,
        outbound: OutboundProxyConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.target = ProxyTarget(base_url=config.base_url, timeout_s=config.timeout_s)
        self._client = build_client(self.target, outbound, transport) if config.enabled else None

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def build_payload(self, request: ImageRequest) -> Dict[str, Any]:
        if not (request.prompt or "").strip():
            raise InvalidRequestError("Missing required parameter: prompt", code="missing_required_parameter")
        if request.response_format != "b64_json":
            raise InvalidRequestError(
                "Only response_format 'b64_json' is supported",
                code="unsupported_response_format",
            )
        if not 1 <= request.n <= MAX_IMAGES:
            raise InvalidRequestError(f"n must be between 1 and {MAX_IMAGES}", code="invalid_n")
        width, height = parse_size(request.size)

        payload: Dict[str, Any] = {
            "prompt": request.prompt,
            "negative_prompt": request.negative_prompt or "",
            "width": width,
            "height": height,
            "steps": request.steps or DEFAULT_STEPS,
            "batch_size": request.n,
        }
        if request.model:
            payload["model"] = request.model
        return payload

    async def generate(self, request: ImageRequest) -> Dict[str, Any]:
        """
        Raises:
            ImageGenerationError: Disabled (503) or backend failure (500).
            InvalidRequestError: Bad parameters.
        """
        if self._client is None:
            raise ImageGenerationError(
                "Image generation is not enabled on this server",
                code="image_generation_disabled",
                status=503,
            )
        payload = self.build_payload(request)
        info(_LOG, "image_start", width=payload["width"], height=payload["height"], n=request.n)

        t0 = time.perf_counter()
        try:
            response = await self._client.post("/sdapi/v1/txt2img", json=payload)
        except httpx.HTTPError as e:
            error(_LOG, "image_backend_unreachable", error=type(e).__name__, detail=str(e))
            raise ImageGenerationError(f"Image backend unavailable ({type(e).__name__})") from e

        if response.status_code >= 400:
            error(_LOG, "image_backend_failed", status=response.status_code)
            raise ImageGenerationError(f"Image backend returned HTTP {response.status_code}")

        try:
            images: List[str] = response.json().get("images") or []
        except (ValueError, AttributeError) as e:
            raise ImageGenerationError("Image backend returned an unreadable response") from e
        if not images:
            raise ImageGenerationError("Image backend returned no images")

        info(_LOG, "image_done", images=len(images), seconds=round(time.perf_counter() - t0, 3))
        return {"created": int(time.time()), "data": [{"b64_json": img} for img in images[: request.n]]}

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
