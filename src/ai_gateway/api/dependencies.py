"""
FastAPI Dependency Injection Providers.

The gateway has no module-level service singletons. ``create_app`` builds
one ``GatewayServices`` container per application and stores it on
``app.state.services``; route handlers receive it through
``Depends(get_services)``.

Hierarchy:
    1. get_settings()   - cached Settings for the default app
    2. build_services() - adapters, lifecycle manager and metrics
    3. get_services()   - per-request accessor used by handlers

Usage in Route Handlers:
    from fastapi import Depends
    from ai_gateway.api.dependencies import GatewayServices, get_services

    async def handler(services: GatewayServices = Depends(get_services)):
        ...

Tests build their own app with ``create_app(settings, runner=fake)`` so
nothing leaks between test cases.
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import httpx
from fastapi import Request

from ai_gateway.artifacts.lifecycle import ArtifactLifecycleManager
from ai_gateway.core.config import GatewayConfig, Settings, load_settings
from ai_gateway.core.metrics import GatewayMetrics
from ai_gateway.core.process import ToolRunner, run_tool
from ai_gateway.services.images import ImageGenerationAdapter
from ai_gateway.services.proxy import ProxyForwarder, ProxyTarget
from ai_gateway.services.recognition import RecognitionAdapter
from ai_gateway.services.synthesis import SynthesisAdapter


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and cache settings (config/settings.yaml or AI_GATEWAY_SETTINGS,
    merged with environment overrides).
    """
    return load_settings()


@dataclass
class GatewayServices:
    """Everything a request handler may need, built once at startup."""
    settings: Settings
    config: GatewayConfig
    metrics: GatewayMetrics
    lifecycle: ArtifactLifecycleManager
    synthesis: SynthesisAdapter
    recognition: RecognitionAdapter
    images: ImageGenerationAdapter
    proxy: ProxyForwarder

    async def aclose(self) -> None:
        await self.proxy.aclose()
        await self.images.aclose()


def build_services(
    settings: Settings,
    runner: ToolRunner = run_tool,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> GatewayServices:
    """
    Construct the service graph from settings.

    Args:
        settings: Loaded settings.
        runner: External tool runner (tests pass a fake).
        transport: httpx transport for upstream and image backends
            (tests pass ``httpx.MockTransport``).
    """
    config = settings.get_config()
    metrics = GatewayMetrics()
    lifecycle = ArtifactLifecycleManager(
        directories=[config.tts.temp_dir, config.stt.output_dir, config.stt.upload_dir],
        max_age_s=config.artifacts.max_age_s,
        sweep_interval_s=config.artifacts.sweep_interval_s,
        grace_s=config.artifacts.grace_s,
        metrics=metrics,
    )
    upstream = ProxyTarget(
        base_url=config.upstream.base_url,
        timeout_s=config.upstream.timeout_s,
        api_key=config.upstream.api_key,
    )
    return GatewayServices(
        settings=settings,
        config=config,
        metrics=metrics,
        lifecycle=lifecycle,
        synthesis=SynthesisAdapter(config.tts, lifecycle, runner=runner, metrics=metrics),
        recognition=RecognitionAdapter(config.stt, lifecycle, runner=runner, metrics=metrics),
        images=ImageGenerationAdapter(config.images, config.outbound_proxy, transport=transport),
        proxy=ProxyForwarder(upstream, config.outbound_proxy, metrics=metrics, transport=transport),
    )


def get_services(request: Request) -> GatewayServices:
    return request.app.state.services
