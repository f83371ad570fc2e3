"""Tests for run_tool using the current interpreter as the external program."""
from __future__ import annotations

import asyncio
import sys
import time

import pytest

from ai_gateway.core.process import ToolError, ToolTimeoutError, run_tool, tool_available


class TestRunTool:
    """Subprocess execution without a shell."""

    def test_success(self):
        result = asyncio.run(run_tool([sys.executable, "-c", "print('hello')"], timeout_s=30))
        assert result.returncode == 0
        assert result.stdout.strip() == "hello"
        assert result.seconds >= 0

    def test_argument_not_shell_parsed(self):
        text = "$HOME; echo `id` && 'quoted'"
        result = asyncio.run(run_tool([sys.executable, "-c", "import sys; print(sys.argv[1])", text], timeout_s=30))
        assert result.stdout.rstrip("\n") == text

    def test_env_merged(self):
        code = "import os; print(os.environ['TRANSFORMERS_OFFLINE'], 'PATH' in os.environ)"
        result = asyncio.run(run_tool([sys.executable, "-c", code], timeout_s=30, env={"TRANSFORMERS_OFFLINE": "1"}))
        assert result.stdout.split() == ["1", "True"]

    def test_non_zero_exit(self):
        code = "import sys; sys.stderr.write('bad things'); sys.exit(3)"
        with pytest.raises(ToolError) as exc:
            asyncio.run(run_tool([sys.executable, "-c", code], timeout_s=30))
        assert exc.value.returncode == 3
        assert "status 3" in exc.value.message
        assert "bad things" in exc.value.message

    def test_long_stderr_truncated(self):
        code = "import sys; sys.stderr.write('x' * 5000); sys.exit(1)"
        with pytest.raises(ToolError) as exc:
            asyncio.run(run_tool([sys.executable, "-c", code], timeout_s=30))
        assert len(exc.value.message) < 700

    def test_timeout_kills_process(self):
        t0 = time.perf_counter()
        with pytest.raises(ToolTimeoutError) as exc:
            asyncio.run(run_tool([sys.executable, "-c", "import time; time.sleep(30)"], timeout_s=0.5))
        assert time.perf_counter() - t0 < 10
        assert "timed out" in exc.value.message

    def test_timeout_is_tool_error(self):
        assert issubclass(ToolTimeoutError, ToolError)

    def test_missing_program(self):
        with pytest.raises(ToolError, match="not found"):
            asyncio.run(run_tool(["definitely-not-a-real-tool-xyz"], timeout_s=5))

    def test_empty_argv(self):
        with pytest.raises(ToolError):
            asyncio.run(run_tool([], timeout_s=5))


class TestToolAvailable:
    """PATH lookups."""

    def test_interpreter_available(self):
        assert tool_available(sys.executable)

    def test_missing(self):
        assert not tool_available("definitely-not-a-real-tool-xyz")
