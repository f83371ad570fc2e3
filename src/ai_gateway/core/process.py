"""
External tool invocation.

All external programs (``say``, ``ffmpeg``, ``mlx_whisper``,
``mlx_audio``) are started through ``run_tool`` with an argv list. No
shell is involved, so user text handed to a tool is a single argument and
is never re-parsed.

The call is a suspension point: the event loop keeps serving other
requests while the tool runs. Each run is bounded by a timeout; on
expiry the process is killed and ``ToolTimeoutError`` is raised. Adapters
catch ``ToolError`` and turn it into their own gateway error.

Adapters receive the runner as a constructor argument (``ToolRunner``),
so tests substitute a fake that writes the expected output files.
"""
from __future__ import annotations

import asyncio
import os
import shutil
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Sequence

from ai_gateway.core.logging import debug, get_logger, verbose, warn

_LOG = get_logger("ai-gateway.process")

# Keep error messages readable when a tool dumps a lot on stderr
_MAX_ERROR_CHARS = 500


class ToolError(Exception):
    """An external tool could not be run or exited unsuccessfully."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        self.message = message
        self.returncode = returncode
        super().__init__(message)


class ToolTimeoutError(ToolError):
    """An external tool exceeded its time budget and was killed."""


@dataclass
class ToolResult:
    """Completed tool run."""
    argv: Sequence[str]
    returncode: int
    stdout: str
    stderr: str
    seconds: float


ToolRunner = Callable[..., Awaitable[ToolResult]]


def _tail(text: str) -> str:
    text = text.strip()
    if len(text) > _MAX_ERROR_CHARS:
        return "..." + text[-_MAX_ERROR_CHARS:]
    return text


async def run_tool(
    argv: Sequence[str],
    timeout_s: float,
    env: Optional[Dict[str, str]] = None,
) -> ToolResult:
    """
    Run ``argv`` to completion.

    Args:
        argv: Program and arguments; argv[0] is resolved on PATH.
        timeout_s: Wall clock budget for the whole run.
        env: Extra environment variables merged over os.environ.

    Returns:
        ToolResult for a zero exit status.

    Raises:
        ToolError: Program missing or non-zero exit.
        ToolTimeoutError: Timeout exceeded.
    """
    if not argv:
        raise ToolError("empty command")

    program = argv[0]
    full_env = {**os.environ, **env} if env else None
    verbose(_LOG, "tool_start", program=program, args=len(argv) - 1)
    debug(_LOG, "tool_argv", argv=list(argv))

    t0 = time.perf_counter()
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=full_env,
        )
    except FileNotFoundError as e:
        raise ToolError(f"{program} not found") from e
    except OSError as e:
        raise ToolError(f"{program} could not be started: {e}") from e

    try:
        stdout_b, stderr_b = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    except asyncio.TimeoutError as e:
        proc.kill()
        await proc.wait()
        warn(_LOG, "tool_timeout", program=program, timeout_s=timeout_s)
        raise ToolTimeoutError(f"{program} timed out after {timeout_s:g}s") from e
    except asyncio.CancelledError:
        # Request cancelled (client went away); do not leave the tool running
        proc.kill()
        await proc.wait()
        raise

    seconds = time.perf_counter() - t0
    stdout = stdout_b.decode("utf-8", errors="replace")
    stderr = stderr_b.decode("utf-8", errors="replace")

    if proc.returncode != 0:
        detail = _tail(stderr) or _tail(stdout) or "no output"
        warn(_LOG, "tool_failed", program=program, returncode=proc.returncode, seconds=round(seconds, 3))
        raise ToolError(f"{program} exited with status {proc.returncode}: {detail}", proc.returncode)

    verbose(_LOG, "tool_done", program=program, seconds=round(seconds, 3))
    return ToolResult(argv=list(argv), returncode=0, stdout=stdout, stderr=stderr, seconds=seconds)


def tool_available(program: str) -> bool:
    """True if ``program`` resolves on PATH (or is an existing executable path)."""
    return shutil.which(program) is not None
