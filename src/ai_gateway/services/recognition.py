"""
Speech Recognition Adapter.

Runs mlx_whisper on an uploaded audio file and shapes the result into
OpenAI-compatible transcription / translation responses.

Flow:
    1. ``store_upload`` streams the multipart upload to
       ``<stt.upload_dir>/upload_<uuid><ext>`` (size-limited).
    2. ``transcribe`` runs

           mlx_whisper <upload> --model <m> --output-format json
               --output-dir <dir> [--language <l>] [--task translate]
               [--word-timestamps True]

       with ``TRANSFORMERS_OFFLINE=1`` in the tool's environment.
    3. ``<output_dir>/<upload stem>.json`` is registered as the request's
       artifact, parsed into a ``Transcript`` and discarded.
    4. The upload is deleted whatever happened.

``render`` turns a Transcript into one of the response formats:
json, text, verbose_json, srt, vtt.
"""
from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from ai_gateway.artifacts.lifecycle import ArtifactLifecycleManager, remove_file
from ai_gateway.core.config import RecognitionConfig
from ai_gateway.core.errors import InvalidRequestError, RecognitionError, TranslationError
from ai_gateway.core.logging import get_logger, info, verbose, warn
from ai_gateway.core.metrics import GatewayMetrics
from ai_gateway.core.process import ToolError, ToolRunner, ToolTimeoutError, run_tool, tool_available
from ai_gateway.utils.text import format_timestamp

_LOG = get_logger("ai-gateway.recognition")

RESPONSE_FORMATS = ("json", "text", "verbose_json", "srt", "vtt")
GRANULARITIES = ("segment", "word")

_UPLOAD_CHUNK = 1024 * 1024

AVAILABLE_MODELS = [
    "mlx-community/whisper-tiny",
    "mlx-community/whisper-tiny-en",
    "mlx-community/whisper-base",
    "mlx-community/whisper-base-en",
    "mlx-community/whisper-small",
    "mlx-community/whisper-small-en",
    "mlx-community/whisper-medium",
    "mlx-community/whisper-medium-en",
    "mlx-community/whisper-large-v2",
    "mlx-community/whisper-large-v3",
    "mlx-community/whisper-large-v3-mlx",
    "mlx-community/whisper-large-v3-turbo",
]

SUPPORTED_LANGUAGES = [
    {"code": "zh", "name": "中文"},
    {"code": "en", "name": "English"},
    {"code": "ja", "name": "日本語"},
    {"code": "ko", "name": "한국어"},
    {"code": "es", "name": "Español"},
    {"code": "fr", "name": "Français"},
    {"code": "de", "name": "Deutsch"},
    {"code": "ru", "name": "Русский"},
    {"code": "ar", "name": "العربية"},
    {"code": "auto", "name": "Auto Detect"},
]


@dataclass
class TranscriptionRequest:
    upload_path: Path
    model: Optional[str] = None
    language: Optional[str] = None
    response_format: str = "json"
    granularities: Tuple[str, ...] = ("segment",)
    prompt: Optional[str] = None  # accepted for compatibility, not forwarded


@dataclass
class Transcript:
    """Parsed recognition output."""
    text: str
    segments: List[Dict[str, Any]] = field(default_factory=list)
    words: List[Dict[str, Any]] = field(default_factory=list)
    language: str = ""
    duration: float = 0.0
    task: str = "transcribe"


def parse_output(data: Dict[str, Any], fallback_language: str = "") -> Transcript:
    """Build a Transcript from mlx_whisper's JSON document."""
    segments = []
    words = []
    for index, seg in enumerate(data.get("segments") or []):
        entry = {
            "id": seg.get("id", index),
            "start": float(seg.get("start", 0.0)),
            "end": float(seg.get("end", 0.0)),
            "text": str(seg.get("text", "")).strip(),
        }
        for optional in ("tokens", "avg_logprob", "no_speech_prob"):
            if optional in seg:
                entry[optional] = seg[optional]
        segments.append(entry)

        for w in seg.get("words") or []:
            words.append({
                "word": str(w.get("word", "")).strip(),
                "start": float(w.get("start", 0.0)),
                "end": float(w.get("end", 0.0)),
                "probability": w.get("probability"),
            })

    duration = data.get("duration")
    if duration is None:
        duration = segments[-1]["end"] if segments else 0.0

    return Transcript(
        text=str(data.get("text", "")).strip(),
        segments=segments,
        words=words,
        language=str(data.get("language") or fallback_language),
        duration=float(duration),
    )


def _subtitles(segments: Sequence[Dict[str, Any]], vtt: bool) -> str:
    sep = "." if vtt else ","
    blocks = []
    for number, seg in enumerate(segments, start=1):
        timing = f"{format_timestamp(seg['start'], sep)} --> {format_timestamp(seg['end'], sep)}"
        if vtt:
            blocks.append(f"{timing}\n{seg['text']}\n")
        else:
            blocks.append(f"{number}\n{timing}\n{seg['text']}\n")
    body = "\n".join(blocks)
    return f"WEBVTT\n\n{body}" if vtt else body


def render(
    transcript: Transcript,
    response_format: str,
    granularities: Sequence[str] = ("segment",),
) -> Tuple[Any, str]:
    """
    Shape a transcript for the client.

    Returns:
        (body, media_type); body is a dict for JSON formats, else a str.
    """
    if response_format == "text":
        return transcript.text, "text/plain"
    if response_format == "srt":
        return _subtitles(transcript.segments, vtt=False), "text/plain"
    if response_format == "vtt":
        return _subtitles(transcript.segments, vtt=True), "text/vtt"

    if response_format == "verbose_json":
        body: Dict[str, Any] = {
            "task": transcript.task,
            "language": transcript.language,
            "duration": transcript.duration,
            "text": transcript.text,
        }
    else:
        body = {"text": transcript.text}

    if "segment" in granularities and transcript.segments:
        body["segments"] = transcript.segments
    if "word" in granularities and transcript.words:
        body["words"] = transcript.words
    return body, "application/json"


class RecognitionAdapter:
    """Wraps the mlx_whisper CLI."""

    def __init__(
        self,
        config: RecognitionConfig,
        lifecycle: ArtifactLifecycleManager,
        runner: ToolRunner = run_tool,
        metrics: Optional[GatewayMetrics] = None,
    ):
        self.config = config
        self._lifecycle = lifecycle
        self._run = runner
        self._metrics = metrics

    # ─────────────────────────────────────────────────────────────────────
    # Uploads
    # ─────────────────────────────────────────────────────────────────────

    async def store_upload(self, upload: UploadFile) -> Path:
        """
        Stream an upload into ``stt.upload_dir``.

        Raises:
            InvalidRequestError: ``empty_file`` or ``file_too_large``.
        """
        upload_dir = Path(self.config.upload_dir)
        await run_in_threadpool(upload_dir.mkdir, parents=True, exist_ok=True)
        ext = Path(upload.filename or "").suffix.lower()[:10]
        path = upload_dir / f"upload_{uuid.uuid4().hex}{ext}"

        total = 0
        f = await run_in_threadpool(path.open, "wb")
        try:
            while True:
                chunk = await upload.read(_UPLOAD_CHUNK)
                if not chunk:
                    break
                total += len(chunk)
                if total > self.config.max_upload_bytes:
                    raise InvalidRequestError(
                        f"File exceeds the maximum upload size of {self.config.max_upload_bytes} bytes",
                        code="file_too_large",
                    )
                await run_in_threadpool(f.write, chunk)
        except BaseException:
            f.close()
            remove_file(path)
            raise
        f.close()

        if total == 0:
            remove_file(path)
            raise InvalidRequestError("Uploaded file is empty", code="empty_file")
        verbose(_LOG, "upload_stored", path=str(path), bytes=total)
        return path

    # ─────────────────────────────────────────────────────────────────────
    # Recognition
    # ─────────────────────────────────────────────────────────────────────

    def resolve_model(self, model: Optional[str]) -> str:
        """OpenAI ids such as ``whisper-1`` map to the configured model."""
        if model and model in AVAILABLE_MODELS:
            return model
        return self.config.model

    def build_argv(self, upload: Path, model: str, language: Optional[str], translate: bool, words: bool) -> List[str]:
        argv = [
            *self.config.command,
            str(upload),
            "--model", model,
            "--output-format", "json",
            "--output-dir", self.config.output_dir,
        ]
        if language and language != "auto":
            argv += ["--language", language]
        if translate:
            argv += ["--task", "translate"]
        if words:
            argv += ["--word-timestamps", "True"]
        return argv

    async def transcribe(self, request: TranscriptionRequest, owner: str, translate: bool = False) -> Transcript:
        """
        Run recognition (or translation to English) on a stored upload.

        The upload is always deleted before this returns or raises.

        Raises:
            RecognitionError / TranslationError: Tool failure, timeout,
                missing or unparsable output.
        """
        failure = TranslationError if translate else RecognitionError
        label = "Translation" if translate else "Speech recognition"

        upload = Path(request.upload_path)
        language = None if translate else (request.language or self.config.language)
        model = self.resolve_model(request.model)
        words = "word" in request.granularities
        output_path = Path(self.config.output_dir) / f"{upload.stem}.json"

        info(_LOG, "recognition_start", task="translate" if translate else "transcribe", model=model, language=language or "auto")
        try:
            Path(self.config.output_dir).mkdir(parents=True, exist_ok=True)
            await self._invoke(self.build_argv(upload, model, language, translate, words))

            if not output_path.is_file():
                raise failure(f"{label} failed: no output produced")
            artifact = self._lifecycle.register(output_path, owner=owner, fmt="json", kind="recognition")
            try:
                self._lifecycle.mark_ready(artifact.id)
                data = json.loads(output_path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                raise failure(f"{label} failed: unreadable output ({e})") from e
            finally:
                self._lifecycle.discard(artifact.id, reason="consumed")
        except ToolError as e:
            remove_file(output_path)
            raise failure(f"{label} failed: {e.message}") from e
        finally:
            remove_file(upload)

        if not isinstance(data, dict):
            raise failure(f"{label} failed: unexpected output document")

        transcript = parse_output(data, fallback_language=language or "")
        if translate:
            transcript.task = "translate"
            transcript.language = "english"
        info(_LOG, "recognition_done", chars=len(transcript.text), segments=len(transcript.segments))
        return transcript

    async def _invoke(self, argv: List[str]) -> None:
        outcome = "ok"
        try:
            await self._run(argv, timeout_s=self.config.timeout_s, env={"TRANSFORMERS_OFFLINE": "1"})
        except ToolTimeoutError:
            outcome = "timeout"
            raise
        except ToolError:
            outcome = "failed"
            raise
        finally:
            if self._metrics is not None:
                self._metrics.record_tool("whisper", outcome)

    # ─────────────────────────────────────────────────────────────────────
    # Introspection
    # ─────────────────────────────────────────────────────────────────────

    def available(self) -> bool:
        ok = tool_available(self.config.command[0])
        if not ok:
            warn(_LOG, "whisper_unavailable", command=self.config.command[0])
        return ok

    @staticmethod
    def models() -> List[str]:
        return list(AVAILABLE_MODELS)

    @staticmethod
    def languages() -> List[Dict[str, str]]:
        return [dict(lang) for lang in SUPPORTED_LANGUAGES]
