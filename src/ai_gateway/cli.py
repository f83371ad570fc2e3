"""
Command-Line Interface for ai-gateway.

Usage Examples:
    # Run the HTTP server (uvicorn)
    ai-gateway serve --host 0.0.0.0 --port 3000

    # Use a specific settings file
    ai-gateway serve --settings /etc/ai-gateway/settings.yaml

    # Report which external tools are available
    ai-gateway check

    # Remove stale artifacts once, without starting the server
    ai-gateway sweep --max-age 600

Environment Variables:
    AI_GATEWAY_SETTINGS: Settings file (default config/settings.yaml)
    AI_GATEWAY_LOG_LEVEL: 1-4 (MINIMAL, NORMAL, VERBOSE, DEBUG)
    HOST, PORT, API_KEY, ...: see config/settings.yaml
"""
from __future__ import annotations

import argparse
import json
import os
from typing import List, Optional

from ai_gateway import __version__
from ai_gateway.artifacts.lifecycle import ArtifactLifecycleManager
from ai_gateway.core.config import ConfigValidationError, load_settings
from ai_gateway.core.logging import configure_logging, fail, get_logger, success
from ai_gateway.core.process import tool_available

_LOG = get_logger("ai-gateway.cli")


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ai-gateway", description="ai-gateway CLI (OpenAI-compatible local AI gateway)")
    parser.add_argument("--version", action="version", version=f"ai-gateway {__version__}")
    parser.add_argument("--settings", help="Settings YAML file")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", help="Bind address (overrides settings)")
    serve.add_argument("--port", type=int, help="Port (overrides settings)")
    serve.add_argument("--reload", action="store_true", help="Auto-reload on code changes")

    sub.add_parser("check", help="Print external tool availability as JSON")

    sweep = sub.add_parser("sweep", help="Delete stale artifacts once and print stats as JSON")
    sweep.add_argument("--max-age", type=float, help="Age threshold in seconds (default from settings)")

    return parser.parse_args(argv)


def _serve(args: argparse.Namespace, config) -> int:
    import uvicorn

    if args.settings:
        # The ASGI app loads settings itself; make sure it sees the same file
        os.environ["AI_GATEWAY_SETTINGS"] = args.settings
    uvicorn.run(
        "ai_gateway.main:app",
        host=args.host or config.server.host,
        port=args.port or config.server.port,
        reload=args.reload,
        access_log=False,
    )
    return 0


def _check(config) -> int:
    clone = config.tts.clone
    report = {
        "say": tool_available(config.tts.say_command[0]),
        "ffmpeg": tool_available(config.tts.ffmpeg_command[0]),
        "whisper": tool_available(config.stt.command[0]),
        "clone": clone.enabled and tool_available(clone.command[0]) and bool(clone.ref_audio and clone.ref_text),
        "images_enabled": config.images.enabled,
        "upstream": config.upstream.base_url,
    }
    print(json.dumps(report, indent=2))
    required = ("say", "ffmpeg", "whisper")
    if all(report[name] for name in required):
        success(_LOG, "tools_ok")
        return 0
    fail(_LOG, "tools_missing", missing=[name for name in required if not report[name]])
    return 1


def _sweep(args: argparse.Namespace, config) -> int:
    manager = ArtifactLifecycleManager(
        directories=[config.tts.temp_dir, config.stt.output_dir, config.stt.upload_dir],
        max_age_s=config.artifacts.max_age_s,
    )
    stats = manager.sweep_all(max_age_s=args.max_age)
    print(json.dumps(stats, indent=2))
    return 0 if stats["errors"] == 0 else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    configure_logging()

    try:
        config = load_settings(args.settings).get_config()
    except (FileNotFoundError, ConfigValidationError) as e:
        fail(_LOG, "config_invalid", error=str(e))
        return 2

    if args.command == "serve":
        return _serve(args, config)
    if args.command == "check":
        return _check(config)
    return _sweep(args, config)


if __name__ == "__main__":
    raise SystemExit(main())
