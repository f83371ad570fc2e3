"""Tests for pyproject.toml and package installation."""
from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import pytest

PYPROJECT = Path(__file__).parent.parent / "pyproject.toml"


class TestPackageInstallation:
    """The package imports without PYTHONPATH tricks."""

    def test_version_defined(self):
        import ai_gateway
        assert isinstance(ai_gateway.__version__, str)
        assert ai_gateway.__version__

    def test_modules_importable(self):
        from ai_gateway.api import dispatch, openai_compat, routes
        from ai_gateway.artifacts import lifecycle
        from ai_gateway.core import config, errors, logging, metrics, process
        from ai_gateway.services import images, proxy, recognition, synthesis

        for module in (dispatch, openai_compat, routes, lifecycle, config, errors,
                       logging, metrics, process, images, proxy, recognition, synthesis):
            assert module is not None


class TestCLIEntryPoint:
    """python -m ai_gateway.cli"""

    def test_cli_help_exits_zero(self):
        result = subprocess.run(
            [sys.executable, "-m", "ai_gateway.cli", "--help"],
            capture_output=True,
            text=True,
        )
        assert result.returncode == 0
        assert "ai-gateway CLI" in result.stdout


class TestPyprojectToml:
    """pyproject.toml contents."""

    @pytest.fixture
    def data(self):
        tomllib = pytest.importorskip("tomllib")
        return tomllib.loads(PYPROJECT.read_text(encoding="utf-8"))

    def test_name_and_script(self, data):
        assert data["project"]["name"] == "ai-gateway"
        assert data["project"]["scripts"]["ai-gateway"] == "ai_gateway.cli:main"

    def test_dependencies(self, data):
        names = [d.split(">=")[0].split("[")[0] for d in data["project"]["dependencies"]]
        for required in ("fastapi", "uvicorn", "pydantic", "pyyaml", "httpx", "prometheus-client", "python-multipart"):
            assert required in names

    def test_version_matches_package(self, data):
        import ai_gateway
        assert data["project"]["version"] == ai_gateway.__version__
