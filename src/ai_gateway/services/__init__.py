"""
Gateway Services Layer.

Adapters between the HTTP layer and the external collaborators:

    - synthesis.py: ``say`` / ``mlx_audio`` speech synthesis (+ ffmpeg)
    - recognition.py: ``mlx_whisper`` transcription and translation
    - images.py: Draw Things txt2img backend
    - proxy.py: pass-through forwarding to the upstream completion service

Adapters are plain objects constructed once per application by
``ai_gateway.api.dependencies.build_services`` and shared by all requests.
"""
from .images import ImageGenerationAdapter, ImageRequest
from .proxy import ProxyForwarder, ProxyTarget, is_local_host
from .recognition import RecognitionAdapter, Transcript, TranscriptionRequest
from .synthesis import SpeechRequest, SpeechResult, SynthesisAdapter

__all__ = [
    "ImageGenerationAdapter",
    "ImageRequest",
    "ProxyForwarder",
    "ProxyTarget",
    "RecognitionAdapter",
    "SpeechRequest",
    "SpeechResult",
    "SynthesisAdapter",
    "Transcript",
    "TranscriptionRequest",
    "is_local_host",
]
