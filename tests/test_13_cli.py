"""Tests for the ai-gateway CLI."""
from __future__ import annotations

import json
import os
import stat
import time

import pytest

from ai_gateway import __version__
from ai_gateway.cli import main


def report_from(output: str) -> dict:
    return json.loads(output[output.index("{"): output.rindex("}") + 1])


@pytest.fixture
def settings_file(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(
        "tts:\n"
        f"  temp_dir: {tmp_path / 'tts'}\n"
        "stt:\n"
        f"  output_dir: {tmp_path / 'stt_out'}\n"
        f"  upload_dir: {tmp_path / 'uploads'}\n"
        "artifacts:\n"
        "  max_age_s: 60\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def fake_tools(tmp_path, monkeypatch):
    """Put executable say/ffmpeg/mlx_whisper stand-ins on PATH."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    for name in ("say", "ffmpeg", "mlx_whisper"):
        tool = bin_dir / name
        tool.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
        tool.chmod(tool.stat().st_mode | stat.S_IXUSR)
    monkeypatch.setenv("PATH", str(bin_dir))
    return bin_dir


class TestCheck:
    """ai-gateway check"""

    def test_all_tools_present(self, settings_file, fake_tools, capsys):
        assert main(["--settings", str(settings_file), "check"]) == 0
        report = report_from(capsys.readouterr().out)
        assert report["say"] is True
        assert report["ffmpeg"] is True
        assert report["whisper"] is True
        assert report["clone"] is False
        assert report["images_enabled"] is False
        assert report["upstream"] == "http://127.0.0.1:1234"

    def test_missing_tools(self, settings_file, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("PATH", str(tmp_path / "empty"))
        assert main(["--settings", str(settings_file), "check"]) == 1
        report = report_from(capsys.readouterr().out)
        assert report["say"] is False


class TestSweep:
    """ai-gateway sweep"""

    def test_removes_old_files(self, settings_file, tmp_path, capsys):
        (tmp_path / "tts").mkdir()
        old = tmp_path / "tts" / "speech_old.mp3"
        old.write_bytes(b"12345")
        then = time.time() - 3600
        os.utime(old, (then, then))
        young = tmp_path / "tts" / "speech_new.mp3"
        young.write_bytes(b"1")

        assert main(["--settings", str(settings_file), "sweep"]) == 0
        stats = report_from(capsys.readouterr().out)
        assert stats["files_removed"] == 1
        assert stats["bytes_freed"] == 5
        assert not old.exists()
        assert young.exists()

    def test_max_age_override(self, settings_file, tmp_path, capsys):
        (tmp_path / "uploads").mkdir()
        path = tmp_path / "uploads" / "upload_x.wav"
        path.write_bytes(b"1")
        then = time.time() - 30
        os.utime(path, (then, then))

        assert main(["--settings", str(settings_file), "sweep", "--max-age", "5"]) == 0
        assert not path.exists()


class TestArguments:
    """Argument handling."""

    def test_missing_settings_file(self, tmp_path):
        assert main(["--settings", str(tmp_path / "nope.yaml"), "check"]) == 2

    def test_invalid_settings(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("server:\n  port: 0\n", encoding="utf-8")
        assert main(["--settings", str(path), "check"]) == 2

    def test_command_required(self):
        with pytest.raises(SystemExit):
            main([])

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["--version"])
        assert exc.value.code == 0
        assert __version__ in capsys.readouterr().out
