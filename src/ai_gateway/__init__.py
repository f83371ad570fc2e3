"""
ai-gateway: one OpenAI-compatible HTTP surface for local AI capabilities.

Capabilities:
    - Speech synthesis (/v1/audio/speech) via macOS ``say`` or an
      ``mlx_audio`` voice-clone model, transcoded with ffmpeg
    - Speech recognition and translation (/v1/audio/transcriptions,
      /v1/audio/translations) via ``mlx_whisper``
    - Image generation (/v1/images/generations) via a Draw Things backend
    - Everything else under /v1 proxied to an upstream completion service
      (LM Studio)

Every file an adapter produces is tracked by the artifact lifecycle
manager and deleted after it is sent, with a periodic sweep as backstop.

Usage:
    uvicorn ai_gateway.main:app --host 0.0.0.0 --port 3000
    # or
    ai-gateway serve --port 3000
"""

__version__ = "1.0.0"
__all__ = ["__version__"]
