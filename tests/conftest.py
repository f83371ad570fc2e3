"""Shared fixtures: isolated settings and a fake external tool runner."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from ai_gateway.core.config import Settings
from ai_gateway.core.process import ToolError, ToolResult

SAY_VOICES = (
    "Albert              en_US    # Hello! My name is Albert.\n"
    "Bad News            en_US    # Hello! My name is Bad News.\n"
    "Ting-Ting           zh_CN    # 你好！我叫婷婷。\n"
)

WHISPER_OUTPUT = {
    "text": " 你好，世界。 今天天气很好。",
    "language": "zh",
    "segments": [
        {
            "id": 0, "start": 0.0, "end": 1.5, "text": " 你好，世界。",
            "tokens": [1, 2], "avg_logprob": -0.2, "no_speech_prob": 0.01,
            "words": [
                {"word": " 你好", "start": 0.0, "end": 0.6, "probability": 0.9},
                {"word": "世界", "start": 0.6, "end": 1.5, "probability": 0.8},
            ],
        },
        {"id": 1, "start": 1.5, "end": 3.25, "text": " 今天天气很好。"},
    ],
}


def _deep_merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


@pytest.fixture
def make_settings(tmp_path):
    """Factory for Settings whose artifact directories live under tmp_path."""
    def _make(**sections: Dict[str, Any]) -> Settings:
        raw: Dict[str, Any] = {
            "tts": {"temp_dir": str(tmp_path / "tts")},
            "stt": {
                "output_dir": str(tmp_path / "stt_out"),
                "upload_dir": str(tmp_path / "uploads"),
            },
            "artifacts": {"grace_s": 0},
        }
        return Settings(raw=_deep_merge(raw, sections))
    return _make


class FakeRunner:
    """
    Stand-in for ``run_tool``.

    Writes the files each tool would produce and records every argv.
    ``fail`` maps a program name to the ToolError it should raise.
    """

    def __init__(self, whisper_output: Optional[Dict[str, Any]] = None):
        self.calls: List[List[str]] = []
        self.envs: List[Optional[Dict[str, str]]] = []
        self.fail: Dict[str, ToolError] = {}
        self.whisper_output = WHISPER_OUTPUT if whisper_output is None else whisper_output
        self.write_output = True

    def programs(self) -> List[str]:
        return [Path(argv[0]).name for argv in self.calls]

    async def __call__(self, argv, timeout_s, env=None) -> ToolResult:
        argv = list(argv)
        self.calls.append(argv)
        self.envs.append(env)
        program = Path(argv[0]).name

        if program in self.fail:
            raise self.fail[program]

        stdout = ""
        if program == "say" and argv[1:] == ["-v", "?"]:
            stdout = SAY_VOICES
        elif self.write_output:
            self._produce(program, argv)
        return ToolResult(argv=argv, returncode=0, stdout=stdout, stderr="", seconds=0.01)

    def _produce(self, program: str, argv: List[str]) -> None:
        if program == "say":
            Path(argv[argv.index("-o") + 1]).write_bytes(b"FORM....AIFF")
        elif program == "ffmpeg":
            Path(argv[-1]).write_bytes(b"ID3-transcoded")
        elif program == "mlx_whisper":
            upload = Path(argv[1])
            out_dir = Path(argv[argv.index("--output-dir") + 1])
            (out_dir / f"{upload.stem}.json").write_text(json.dumps(self.whisper_output), encoding="utf-8")
        elif "--file_prefix" in argv:
            prefix = argv[argv.index("--file_prefix") + 1]
            Path(f"{prefix}.wav").write_bytes(b"RIFF....WAVE")


@pytest.fixture
def fake_runner():
    return FakeRunner()
