"""
Configuration Management for ai-gateway.

Configuration Hierarchy (highest priority first):
    1. Environment variables (LMSTUDIO_BASE_URL, API_KEY, TTS_VOICE, ...)
    2. YAML config file (config/settings.yaml, or AI_GATEWAY_SETTINGS)
    3. Defaults class values

Example settings.yaml:
    server:
      port: 3000

    tts:
      voice: Yue
      output_format: mp3
      clone:
        enabled: true
        ref_audio: /srv/voices/ref.wav
        ref_text: "reference transcript"

    upstream:
      base_url: http://127.0.0.1:1234
      timeout_s: 60

    auth:
      required: true
      api_key: change-me

``Settings`` holds the raw merged dictionary; ``GatewayConfig.from_settings``
turns it into validated, typed dataclasses used by the services.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml


class ConfigValidationError(ValueError):
    """Raised when a configuration value is out of bounds or unparseable."""
    pass


class Defaults:
    """Centralized default configuration values."""

    # ─────────────────────────────────────────────────────────────────────────
    # Server
    # ─────────────────────────────────────────────────────────────────────────
    SERVER_HOST = "0.0.0.0"
    SERVER_PORT = 3000

    # ─────────────────────────────────────────────────────────────────────────
    # Speech synthesis
    # ─────────────────────────────────────────────────────────────────────────
    TTS_VOICE = "Yue"
    TTS_OUTPUT_FORMAT = "mp3"
    TTS_TEMP_DIR = "/tmp/miniAiApi"
    TTS_TIMEOUT_S = 120.0
    TTS_SAY_COMMAND = "say"
    TTS_FFMPEG_COMMAND = "ffmpeg"

    TTS_CLONE_ENABLED = False
    TTS_CLONE_MODEL = "mlx-community/Spark-TTS-0.5B-16bf"
    TTS_CLONE_COMMAND = "python3 -m mlx_audio.tts.generate"
    TTS_CLONE_LANG_CODE = "z"
    TTS_CLONE_SPEED = 1.0

    # ─────────────────────────────────────────────────────────────────────────
    # Speech recognition
    # ─────────────────────────────────────────────────────────────────────────
    STT_MODEL = "mlx-community/whisper-large-v3-mlx"
    STT_LANGUAGE = "zh"
    STT_OUTPUT_DIR = "/tmp/whisper_output"
    STT_UPLOAD_DIR = "/tmp/uploads"
    STT_TIMEOUT_S = 600.0
    STT_COMMAND = "mlx_whisper"
    STT_MAX_UPLOAD_BYTES = 50 * 1024 * 1024

    # ─────────────────────────────────────────────────────────────────────────
    # Auth
    # ─────────────────────────────────────────────────────────────────────────
    AUTH_REQUIRED = False
    AUTH_API_KEY = "your-api-key-here"

    # ─────────────────────────────────────────────────────────────────────────
    # Upstream completion service (LM Studio)
    # ─────────────────────────────────────────────────────────────────────────
    UPSTREAM_BASE_URL = "http://127.0.0.1:1234"
    UPSTREAM_TIMEOUT_S = 60.0

    # ─────────────────────────────────────────────────────────────────────────
    # Image generation backend (Draw Things)
    # ─────────────────────────────────────────────────────────────────────────
    IMAGES_ENABLED = False
    IMAGES_BASE_URL = "http://127.0.0.1:7860"
    IMAGES_TIMEOUT_S = 120.0

    # ─────────────────────────────────────────────────────────────────────────
    # Outbound network proxy
    # ─────────────────────────────────────────────────────────────────────────
    OUTBOUND_PROXY_ENABLED = False

    # ─────────────────────────────────────────────────────────────────────────
    # Artifact lifecycle
    # ─────────────────────────────────────────────────────────────────────────
    ARTIFACT_SWEEP_INTERVAL_S = 3600.0   # hourly sweep
    ARTIFACT_MAX_AGE_S = 3600.0          # files older than this are swept
    ARTIFACT_GRACE_S = 1.0               # delay between send and delete

    # ─────────────────────────────────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────────────────────────────────
    LOGGING_LEVEL = 2


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _ms_to_seconds(value: str) -> float:
    return float(value) / 1000.0


# env var -> (section path, key, converter)
_ENV_OVERRIDES: List[Tuple[str, Tuple[str, ...], str, Callable[[str], Any]]] = [
    ("HOST", ("server",), "host", str),
    ("PORT", ("server",), "port", int),
    ("TTS_VOICE", ("tts",), "voice", str),
    ("TTS_OUTPUT_FORMAT", ("tts",), "output_format", str),
    ("TTS_TEMP_DIR", ("tts",), "temp_dir", str),
    ("TTS_TIMEOUT", ("tts",), "timeout_s", float),
    ("TTS_CLONE_ENABLED", ("tts", "clone"), "enabled", _parse_bool),
    ("TTS_CLONE_MODEL", ("tts", "clone"), "model", str),
    ("TTS_CLONE_REF_AUDIO", ("tts", "clone"), "ref_audio", str),
    ("TTS_CLONE_REF_TEXT", ("tts", "clone"), "ref_text", str),
    ("TTS_CLONE_LANG_CODE", ("tts", "clone"), "lang_code", str),
    ("TTS_CLONE_SPEED", ("tts", "clone"), "speed", float),
    ("STT_MODEL", ("stt",), "model", str),
    ("STT_LANGUAGE", ("stt",), "language", str),
    ("STT_OUTPUT_DIR", ("stt",), "output_dir", str),
    ("STT_UPLOAD_DIR", ("stt",), "upload_dir", str),
    ("STT_TIMEOUT", ("stt",), "timeout_s", float),
    ("API_KEY_REQUIRED", ("auth",), "required", _parse_bool),
    ("API_KEY", ("auth",), "api_key", str),
    ("LMSTUDIO_BASE_URL", ("upstream",), "base_url", str),
    ("LMSTUDIO_API_KEY", ("upstream",), "api_key", str),
    ("LMSTUDIO_TIMEOUT", ("upstream",), "timeout_s", _ms_to_seconds),
    ("DRAW_THINGS_ENABLED", ("images",), "enabled", _parse_bool),
    ("DRAW_THINGS_BASE_URL", ("images",), "base_url", str),
    ("DRAW_THINGS_TIMEOUT", ("images",), "timeout_s", _ms_to_seconds),
    ("LOCAL_PROXY_ENABLED", ("outbound_proxy",), "enabled", _parse_bool),
    ("ARTIFACT_SWEEP_INTERVAL", ("artifacts",), "sweep_interval_s", float),
    ("ARTIFACT_MAX_AGE", ("artifacts",), "max_age_s", float),
    ("ARTIFACT_GRACE", ("artifacts",), "grace_s", float),
]

# First one set wins, same order curl uses
_PROXY_URL_ENV = ("https_proxy", "HTTPS_PROXY", "http_proxy", "HTTP_PROXY")


def apply_env_overrides(raw: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """
    Merge environment overrides into a raw settings dict (in place).

    Args:
        raw: Settings dictionary loaded from YAML.
        environ: Mapping to read from (defaults to os.environ).

    Raises:
        ConfigValidationError: If a variable cannot be converted.
    """
    env = os.environ if environ is None else environ

    for name, path, key, convert in _ENV_OVERRIDES:
        value = env.get(name)
        if value is None or value == "":
            continue
        try:
            converted = convert(value)
        except ValueError as e:
            raise ConfigValidationError(f"{name}={value!r} is invalid: {e}") from e
        section = raw
        for part in path:
            section = section.setdefault(part, {})
        section[key] = converted

    for name in _PROXY_URL_ENV:
        if env.get(name):
            section = raw.setdefault("outbound_proxy", {})
            # An empty url in YAML still falls back to the environment
            if not section.get("url"):
                section["url"] = env[name]
            break

    return raw


@dataclass
class ServerConfig:
    host: str = Defaults.SERVER_HOST
    port: int = Defaults.SERVER_PORT


@dataclass
class CloneConfig:
    """
    Voice-clone synthesis settings.

    Clone requests fail with a configuration error unless ``enabled`` is
    set and both reference assets are present.
    """
    enabled: bool = Defaults.TTS_CLONE_ENABLED
    model: str = Defaults.TTS_CLONE_MODEL
    command: List[str] = field(default_factory=lambda: Defaults.TTS_CLONE_COMMAND.split())
    ref_audio: str = ""
    ref_text: str = ""
    lang_code: str = Defaults.TTS_CLONE_LANG_CODE
    speed: float = Defaults.TTS_CLONE_SPEED


@dataclass
class SynthesisConfig:
    voice: str = Defaults.TTS_VOICE
    output_format: str = Defaults.TTS_OUTPUT_FORMAT
    temp_dir: str = Defaults.TTS_TEMP_DIR
    timeout_s: float = Defaults.TTS_TIMEOUT_S
    say_command: List[str] = field(default_factory=lambda: [Defaults.TTS_SAY_COMMAND])
    ffmpeg_command: List[str] = field(default_factory=lambda: [Defaults.TTS_FFMPEG_COMMAND])
    voice_mapping: Dict[str, str] = field(default_factory=dict)
    clone: CloneConfig = field(default_factory=CloneConfig)


@dataclass
class RecognitionConfig:
    model: str = Defaults.STT_MODEL
    language: str = Defaults.STT_LANGUAGE
    output_dir: str = Defaults.STT_OUTPUT_DIR
    upload_dir: str = Defaults.STT_UPLOAD_DIR
    timeout_s: float = Defaults.STT_TIMEOUT_S
    command: List[str] = field(default_factory=lambda: [Defaults.STT_COMMAND])
    max_upload_bytes: int = Defaults.STT_MAX_UPLOAD_BYTES


@dataclass
class AuthConfig:
    required: bool = Defaults.AUTH_REQUIRED
    api_key: str = Defaults.AUTH_API_KEY


@dataclass
class UpstreamConfig:
    """The OpenAI-compatible completion service everything else is proxied to."""
    base_url: str = Defaults.UPSTREAM_BASE_URL
    api_key: str = ""
    timeout_s: float = Defaults.UPSTREAM_TIMEOUT_S


@dataclass
class ImagesConfig:
    enabled: bool = Defaults.IMAGES_ENABLED
    base_url: str = Defaults.IMAGES_BASE_URL
    timeout_s: float = Defaults.IMAGES_TIMEOUT_S


@dataclass
class OutboundProxyConfig:
    """HTTP(S) proxy for calls leaving the host. Never used for local targets."""
    enabled: bool = Defaults.OUTBOUND_PROXY_ENABLED
    url: str = ""


@dataclass
class ArtifactsConfig:
    sweep_interval_s: float = Defaults.ARTIFACT_SWEEP_INTERVAL_S
    max_age_s: float = Defaults.ARTIFACT_MAX_AGE_S
    grace_s: float = Defaults.ARTIFACT_GRACE_S


@dataclass
class GatewayConfig:
    """
    Validated configuration for the whole gateway.

    Usage:
        settings = load_settings()
        config = GatewayConfig.from_settings(settings)
        config.upstream.base_url
    """
    server: ServerConfig = field(default_factory=ServerConfig)
    tts: SynthesisConfig = field(default_factory=SynthesisConfig)
    stt: RecognitionConfig = field(default_factory=RecognitionConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    images: ImagesConfig = field(default_factory=ImagesConfig)
    outbound_proxy: OutboundProxyConfig = field(default_factory=OutboundProxyConfig)
    artifacts: ArtifactsConfig = field(default_factory=ArtifactsConfig)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "GatewayConfig":
        """
        Build typed configuration from raw settings.

        Raises:
            ConfigValidationError: If any value fails validation.
        """
        raw = settings.raw

        try:
            # ─────────────────────────────────────────────────────────────
            # Server
            # ─────────────────────────────────────────────────────────────
            server_raw = raw.get("server", {}) or {}
            server = ServerConfig(
                host=str(server_raw.get("host", Defaults.SERVER_HOST)),
                port=int(server_raw.get("port", Defaults.SERVER_PORT)),
            )
            cls._validate_range("server.port", server.port, 1, 65535)

            # ─────────────────────────────────────────────────────────────
            # Speech synthesis (+ clone mode)
            # ─────────────────────────────────────────────────────────────
            tts_raw = raw.get("tts", {}) or {}
            clone_raw = tts_raw.get("clone", {}) or {}
            clone = CloneConfig(
                enabled=bool(clone_raw.get("enabled", Defaults.TTS_CLONE_ENABLED)),
                model=str(clone_raw.get("model", Defaults.TTS_CLONE_MODEL)),
                command=cls._as_argv(clone_raw.get("command", Defaults.TTS_CLONE_COMMAND)),
                ref_audio=str(clone_raw.get("ref_audio", "") or ""),
                ref_text=str(clone_raw.get("ref_text", "") or ""),
                lang_code=str(clone_raw.get("lang_code", Defaults.TTS_CLONE_LANG_CODE)),
                speed=float(clone_raw.get("speed", Defaults.TTS_CLONE_SPEED)),
            )
            cls._validate_positive("tts.clone.speed", clone.speed)

            tts = SynthesisConfig(
                voice=str(tts_raw.get("voice", Defaults.TTS_VOICE)),
                output_format=str(tts_raw.get("output_format", Defaults.TTS_OUTPUT_FORMAT)).lower(),
                temp_dir=str(tts_raw.get("temp_dir", Defaults.TTS_TEMP_DIR)),
                timeout_s=float(tts_raw.get("timeout_s", Defaults.TTS_TIMEOUT_S)),
                say_command=cls._as_argv(tts_raw.get("say_command", Defaults.TTS_SAY_COMMAND)),
                ffmpeg_command=cls._as_argv(tts_raw.get("ffmpeg_command", Defaults.TTS_FFMPEG_COMMAND)),
                voice_mapping={str(k): str(v) for k, v in (tts_raw.get("voice_mapping") or {}).items()},
                clone=clone,
            )
            cls._validate_positive("tts.timeout_s", tts.timeout_s)

            # ─────────────────────────────────────────────────────────────
            # Speech recognition
            # ─────────────────────────────────────────────────────────────
            stt_raw = raw.get("stt", {}) or {}
            stt = RecognitionConfig(
                model=str(stt_raw.get("model", Defaults.STT_MODEL)),
                language=str(stt_raw.get("language", Defaults.STT_LANGUAGE)),
                output_dir=str(stt_raw.get("output_dir", Defaults.STT_OUTPUT_DIR)),
                upload_dir=str(stt_raw.get("upload_dir", Defaults.STT_UPLOAD_DIR)),
                timeout_s=float(stt_raw.get("timeout_s", Defaults.STT_TIMEOUT_S)),
                command=cls._as_argv(stt_raw.get("command", Defaults.STT_COMMAND)),
                max_upload_bytes=int(stt_raw.get("max_upload_bytes", Defaults.STT_MAX_UPLOAD_BYTES)),
            )
            cls._validate_positive("stt.timeout_s", stt.timeout_s)
            cls._validate_positive("stt.max_upload_bytes", stt.max_upload_bytes)

            # ─────────────────────────────────────────────────────────────
            # Auth
            # ─────────────────────────────────────────────────────────────
            auth_raw = raw.get("auth", {}) or {}
            auth = AuthConfig(
                required=bool(auth_raw.get("required", Defaults.AUTH_REQUIRED)),
                api_key=str(auth_raw.get("api_key", Defaults.AUTH_API_KEY)),
            )
            if auth.required and not auth.api_key:
                raise ConfigValidationError("auth.api_key must be set when auth.required is true")

            # ─────────────────────────────────────────────────────────────
            # Upstream, images, outbound proxy
            # ─────────────────────────────────────────────────────────────
            upstream_raw = raw.get("upstream", {}) or {}
            upstream = UpstreamConfig(
                base_url=str(upstream_raw.get("base_url", Defaults.UPSTREAM_BASE_URL)).rstrip("/"),
                api_key=str(upstream_raw.get("api_key", "") or ""),
                timeout_s=float(upstream_raw.get("timeout_s", Defaults.UPSTREAM_TIMEOUT_S)),
            )
            cls._validate_url("upstream.base_url", upstream.base_url)
            cls._validate_positive("upstream.timeout_s", upstream.timeout_s)

            images_raw = raw.get("images", {}) or {}
            images = ImagesConfig(
                enabled=bool(images_raw.get("enabled", Defaults.IMAGES_ENABLED)),
                base_url=str(images_raw.get("base_url", Defaults.IMAGES_BASE_URL)).rstrip("/"),
                timeout_s=float(images_raw.get("timeout_s", Defaults.IMAGES_TIMEOUT_S)),
            )
            cls._validate_url("images.base_url", images.base_url)
            cls._validate_positive("images.timeout_s", images.timeout_s)

            proxy_raw = raw.get("outbound_proxy", {}) or {}
            outbound_proxy = OutboundProxyConfig(
                enabled=bool(proxy_raw.get("enabled", Defaults.OUTBOUND_PROXY_ENABLED)),
                url=str(proxy_raw.get("url", "") or ""),
            )

            # ─────────────────────────────────────────────────────────────
            # Artifact lifecycle
            # ─────────────────────────────────────────────────────────────
            artifacts_raw = raw.get("artifacts", {}) or {}
            artifacts = ArtifactsConfig(
                sweep_interval_s=float(artifacts_raw.get("sweep_interval_s", Defaults.ARTIFACT_SWEEP_INTERVAL_S)),
                max_age_s=float(artifacts_raw.get("max_age_s", Defaults.ARTIFACT_MAX_AGE_S)),
                grace_s=float(artifacts_raw.get("grace_s", Defaults.ARTIFACT_GRACE_S)),
            )
            cls._validate_positive("artifacts.sweep_interval_s", artifacts.sweep_interval_s)
            cls._validate_positive("artifacts.max_age_s", artifacts.max_age_s)
            cls._validate_non_negative("artifacts.grace_s", artifacts.grace_s)
        except (TypeError, ValueError) as e:
            if isinstance(e, ConfigValidationError):
                raise
            raise ConfigValidationError(str(e)) from e

        return cls(
            server=server,
            tts=tts,
            stt=stt,
            auth=auth,
            upstream=upstream,
            images=images,
            outbound_proxy=outbound_proxy,
            artifacts=artifacts,
        )

    @staticmethod
    def _as_argv(value: Any) -> List[str]:
        """Accept either a list or a whitespace separated string."""
        if isinstance(value, (list, tuple)):
            argv = [str(v) for v in value]
        else:
            argv = str(value).split()
        if not argv:
            raise ConfigValidationError("command must not be empty")
        return argv

    @staticmethod
    def _validate_positive(name: str, value: int | float) -> None:
        if value <= 0:
            raise ConfigValidationError(f"{name} must be positive, got {value}")

    @staticmethod
    def _validate_non_negative(name: str, value: int | float) -> None:
        if value < 0:
            raise ConfigValidationError(f"{name} must be non-negative, got {value}")

    @staticmethod
    def _validate_range(name: str, value: int | float, min_val: int | float, max_val: int | float) -> None:
        if not (min_val <= value <= max_val):
            raise ConfigValidationError(f"{name} must be between {min_val} and {max_val}, got {value}")

    @staticmethod
    def _validate_url(name: str, value: str) -> None:
        if not value.startswith(("http://", "https://")):
            raise ConfigValidationError(f"{name} must be an http(s) URL, got {value!r}")


@dataclass(frozen=True)
class Settings:
    """
    Immutable settings container (YAML merged with environment).

    Attributes:
        raw: Dictionary of raw configuration values.
    """
    raw: Dict[str, Any]

    @property
    def version(self) -> str:
        from ai_gateway import __version__
        return __version__

    def get_config(self) -> GatewayConfig:
        """Validated typed view of these settings."""
        return GatewayConfig.from_settings(self)


DEFAULT_SETTINGS_PATH = "config/settings.yaml"


def load_settings(path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> Settings:
    """
    Load settings from YAML and apply environment overrides.

    Args:
        path: Settings file. When omitted, AI_GATEWAY_SETTINGS or
            config/settings.yaml is used if it exists; a missing default
            file is not an error.
        environ: Environment mapping (defaults to os.environ).

    Raises:
        FileNotFoundError: If an explicitly given file does not exist.
        ConfigValidationError: If the YAML or an env value is invalid.
    """
    env = os.environ if environ is None else environ
    explicit = path is not None or bool(env.get("AI_GATEWAY_SETTINGS"))
    p = Path(path or env.get("AI_GATEWAY_SETTINGS") or DEFAULT_SETTINGS_PATH)

    raw: Dict[str, Any] = {}
    if p.exists():
        try:
            with p.open("r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"invalid settings file {p}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigValidationError(f"settings file {p} must contain a mapping")
    elif explicit:
        raise FileNotFoundError(f"settings file not found: {p.resolve()}")

    return Settings(raw=apply_env_overrides(raw, env))
