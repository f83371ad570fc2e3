"""
Speech Synthesis Adapter.

Turns text into an audio artifact with an external tool:

    Standard mode:  say -v <voice> -o <file.aiff> [-r <wpm>] <text>
    Clone mode:     python3 -m mlx_audio.tts.generate --model <m> --text <text>
                        --ref_audio <wav> --ref_text <transcript>
                        --lang_code <code> --speed <s>
                        --file_prefix <prefix> --audio_format wav --join_audio

Clone mode is selected by a model id ending in ``:clone`` (for example
``tts-1:clone``). It needs ``tts.clone.enabled`` plus a reference audio
file and its transcript; without them the request fails with a
configuration error before any process is started.

If the requested format differs from the tool's native output (aiff for
``say``, wav for clone) the file is transcoded with ffmpeg and the
intermediate is removed. Any failure removes every file this request
wrote before the error propagates. On success the final file is
registered with the lifecycle manager as the request's artifact.

Voice Mapping:
    OpenAI voice names map to macOS voices; unknown names fall back to
    the configured default voice. ``tts.voice_mapping`` in settings.yaml
    overrides individual entries.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from ai_gateway.artifacts.lifecycle import Artifact, ArtifactLifecycleManager, remove_file
from ai_gateway.core.config import SynthesisConfig
from ai_gateway.core.errors import ConfigurationError, InvalidRequestError, SynthesisError
from ai_gateway.core.logging import get_logger, info, verbose, warn
from ai_gateway.core.metrics import GatewayMetrics
from ai_gateway.core.process import ToolError, ToolRunner, ToolTimeoutError, run_tool, tool_available
from ai_gateway.utils.text import sanitize_for_speech

_LOG = get_logger("ai-gateway.synthesis")

CLONE_SUFFIX = ":clone"

VOICE_MAPPING: Dict[str, str] = {
    "alloy": "Yue",
    "echo": "Ting-Ting",
    "fable": "Sin-ji",
    "onyx": "Li-mu",
    "nova": "Mei-Jia",
    "shimmer": "Yu-shu",
}

MEDIA_TYPES: Dict[str, str] = {
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "aiff": "audio/aiff",
    "flac": "audio/flac",
    "aac": "audio/aac",
    "opus": "audio/ogg",
}

SUPPORTED_FORMATS = tuple(MEDIA_TYPES)

# say's default speaking rate in words per minute
_SAY_DEFAULT_WPM = 175

_VOICE_LINE_RE = re.compile(r"^(?P<name>.+?)\s+(?P<language>[a-z]{2,3}[_-][A-Za-z0-9]{2,4})\s+#\s?(?P<description>.*)$")


@dataclass
class SpeechRequest:
    """
    Normalized synthesis request.

    Attributes:
        text: Raw input text (sanitized by the adapter).
        voice: OpenAI-style voice name.
        response_format: One of SUPPORTED_FORMATS.
        speed: Speaking speed multiplier.
        model: Model id; a ``:clone`` suffix selects clone mode.
    """
    text: str
    voice: str = "alloy"
    response_format: str = "mp3"
    speed: float = 1.0
    model: str = "tts-1"


@dataclass
class SpeechResult:
    artifact: Artifact
    media_type: str
    voice: str
    clone: bool

    @property
    def filename(self) -> str:
        return f"speech.{self.artifact.fmt}"


def is_clone_model(model: Optional[str]) -> bool:
    return bool(model) and model.endswith(CLONE_SUFFIX)


class SynthesisAdapter:
    """Drives ``say`` / ``mlx_audio`` plus ffmpeg to produce audio artifacts."""

    def __init__(
        self,
        config: SynthesisConfig,
        lifecycle: ArtifactLifecycleManager,
        runner: ToolRunner = run_tool,
        metrics: Optional[GatewayMetrics] = None,
    ):
        self.config = config
        self._lifecycle = lifecycle
        self._run = runner
        self._metrics = metrics

    # ─────────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────────

    def map_voice(self, voice: Optional[str]) -> str:
        """OpenAI voice name -> internal voice (custom mapping first)."""
        if not voice:
            return self.config.voice
        if voice in self.config.voice_mapping:
            return self.config.voice_mapping[voice]
        return VOICE_MAPPING.get(voice, self.config.voice)

    def clone_ready(self) -> bool:
        clone = self.config.clone
        return clone.enabled and bool(clone.ref_text) and bool(clone.ref_audio) and Path(clone.ref_audio).is_file()

    async def synthesize(self, request: SpeechRequest, owner: str) -> SpeechResult:
        """
        Produce an audio artifact owned by ``owner``.

        Raises:
            InvalidRequestError: Empty text after sanitizing, unknown format.
            ConfigurationError: Clone mode without reference assets.
            SynthesisError: Tool failure, timeout, missing output, transcoding failure.
        """
        fmt = (request.response_format or self.config.output_format).lower()
        if fmt not in MEDIA_TYPES:
            raise InvalidRequestError(
                f"Unsupported response_format '{fmt}'. Supported: {', '.join(SUPPORTED_FORMATS)}",
                code="unsupported_response_format",
            )

        text = sanitize_for_speech(request.text or "")
        if not text:
            raise InvalidRequestError("Input contains no speakable text", code="invalid_input")

        clone = is_clone_model(request.model)
        if clone:
            self._check_clone_config()

        temp_dir = Path(self.config.temp_dir)
        temp_dir.mkdir(parents=True, exist_ok=True)

        native_ext = "wav" if clone else "aiff"
        native_path = ArtifactLifecycleManager.new_path(temp_dir, "speech", native_ext)
        final_path = native_path if fmt == native_ext else native_path.with_suffix(f".{fmt}")
        written: List[Path] = [native_path, final_path]

        voice = self.map_voice(request.voice)
        info(_LOG, "synthesis_start", mode="clone" if clone else "standard", voice=voice, format=fmt, chars=len(text))

        try:
            if clone:
                await self._render_clone(text, request.speed, native_path)
            else:
                await self._render_standard(text, voice, request.speed, native_path)

            if not _has_content(native_path):
                raise SynthesisError("Speech synthesis failed: tool produced no audio file")

            if final_path != native_path:
                await self._transcode(native_path, final_path)
                remove_file(native_path)
                if not _has_content(final_path):
                    raise SynthesisError("Speech synthesis failed: transcoding produced no output")
        except ToolError as e:
            self._cleanup(written, clone)
            raise SynthesisError(f"Speech synthesis failed: {e.message}") from e
        except BaseException:
            self._cleanup(written, clone)
            raise

        artifact = self._lifecycle.register(final_path, owner=owner, fmt=fmt, kind="speech")
        self._lifecycle.mark_ready(artifact.id)
        info(_LOG, "synthesis_done", voice=voice, format=fmt, bytes=final_path.stat().st_size)
        return SpeechResult(artifact=artifact, media_type=MEDIA_TYPES[fmt], voice=voice, clone=clone)

    async def list_voices(self) -> List[Dict[str, str]]:
        """Voices reported by ``say -v ?``; empty when the tool is unavailable."""
        try:
            result = await self._run([*self.config.say_command, "-v", "?"], timeout_s=10.0)
        except ToolError as e:
            warn(_LOG, "voice_list_failed", error=e.message)
            return []
        return parse_voice_list(result.stdout)

    def availability(self) -> Dict[str, bool]:
        return {
            "say": tool_available(self.config.say_command[0]),
            "ffmpeg": tool_available(self.config.ffmpeg_command[0]),
            "clone": self.clone_ready(),
        }

    # ─────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────

    def _check_clone_config(self) -> None:
        clone = self.config.clone
        if not clone.enabled:
            raise ConfigurationError("Voice cloning is not enabled on this server", code="clone_not_enabled")
        missing = [name for name, value in (("ref_audio", clone.ref_audio), ("ref_text", clone.ref_text)) if not value]
        if missing:
            raise ConfigurationError(
                f"Voice cloning requires {' and '.join(missing)} to be configured",
                code="clone_not_configured",
            )
        if not Path(clone.ref_audio).is_file():
            raise ConfigurationError("Configured clone reference audio does not exist", code="clone_not_configured")

    async def _invoke(self, tool: str, argv: List[str]) -> None:
        outcome = "ok"
        try:
            await self._run(argv, timeout_s=self.config.timeout_s)
        except ToolTimeoutError:
            outcome = "timeout"
            raise
        except ToolError:
            outcome = "failed"
            raise
        finally:
            if self._metrics is not None:
                self._metrics.record_tool(tool, outcome)

    async def _render_standard(self, text: str, voice: str, speed: float, out: Path) -> None:
        argv = [*self.config.say_command, "-v", voice, "-o", str(out)]
        if speed and abs(speed - 1.0) > 1e-6:
            argv += ["-r", str(round(_SAY_DEFAULT_WPM * speed))]
        argv.append(text)
        await self._invoke("say", argv)

    async def _render_clone(self, text: str, speed: float, out: Path) -> None:
        """Run the clone model and leave its joined output at ``out``."""
        clone = self.config.clone
        prefix = out.with_suffix("")
        effective_speed = speed if speed and abs(speed - 1.0) > 1e-6 else clone.speed
        argv = [
            *clone.command,
            "--model", clone.model,
            "--text", text,
            "--ref_audio", clone.ref_audio,
            "--ref_text", clone.ref_text,
            "--lang_code", clone.lang_code,
            "--speed", str(effective_speed),
            "--file_prefix", str(prefix),
            "--audio_format", "wav",
            "--join_audio",
        ]
        await self._invoke("clone", argv)

        # Some mlx_audio versions write <prefix>_000.wav even when joining
        chunks = _clone_chunks(out)
        if not out.exists() and chunks:
            verbose(_LOG, "clone_output_renamed", source=chunks[0].name)
            chunks[0].replace(out)
            chunks = chunks[1:]
        for extra in chunks:
            remove_file(extra)

    async def _transcode(self, src: Path, dst: Path) -> None:
        argv = [*self.config.ffmpeg_command, "-y", "-loglevel", "error", "-i", str(src), str(dst)]
        await self._invoke("ffmpeg", argv)

    @staticmethod
    def _cleanup(paths: List[Path], clone: bool = False) -> None:
        # A failed clone run can leave numbered chunks next to the output
        if clone and paths:
            paths = paths + _clone_chunks(paths[0])
        for path in dict.fromkeys(paths):
            remove_file(path)


def _clone_chunks(out: Path) -> List[Path]:
    prefix = out.with_suffix("")
    return sorted(prefix.parent.glob(f"{prefix.name}_*.wav"))


def _has_content(path: Path) -> bool:
    try:
        return path.stat().st_size > 0
    except OSError:
        return False


def parse_voice_list(output: str) -> List[Dict[str, str]]:
    """
    Parse ``say -v ?`` output.

    Lines look like ``Ting-Ting           zh_CN    # 你好！我叫婷婷。``;
    voice names may contain spaces.
    """
    voices = []
    for line in output.splitlines():
        line = line.rstrip()
        if not line.strip():
            continue
        match = _VOICE_LINE_RE.match(line)
        if match:
            voices.append({
                "name": match.group("name").strip(),
                "language": match.group("language"),
                "description": match.group("description").strip(),
            })
        else:
            parts = line.split(None, 2)
            voices.append({
                "name": parts[0],
                "language": parts[1] if len(parts) > 1 else "",
                "description": parts[2].lstrip("# ") if len(parts) > 2 else "",
            })
    return voices
