"""
Text helpers.

Synthesis input arrives as chat-model output, so it is full of markdown.
``sanitize_for_speech`` removes what a voice should not read aloud and
anything that could confuse the synthesis tool's argument parsing:

    1. Drop markdown markers (* _ ~ ` # [ ])
    2. Drop control characters (keeps regular whitespace)
    3. Collapse runs of whitespace to a single space
    4. Trim, then strip leading dashes so the text can never be taken
       for a command-line option

The text is passed to the tool as one argv element, so quotes, ``$``
and backticks need no escaping.

Example:
    >>> sanitize_for_speech("## Hello\\n\\n**world**  -- ok")
    'Hello world -- ok'
"""
from __future__ import annotations

import re
import unicodedata

_MARKDOWN_RE = re.compile(r"[*_~`#\[\]]")
_WS_RE = re.compile(r"\s+")


def _strip_control(text: str) -> str:
    return "".join(
        ch for ch in text
        if ch.isspace() or unicodedata.category(ch) not in ("Cc", "Cf")
    )


def sanitize_for_speech(text: str) -> str:
    """Return text safe to hand to a synthesis tool as a single argument."""
    s = _MARKDOWN_RE.sub("", text)
    s = _strip_control(s)
    s = _WS_RE.sub(" ", s).strip()
    return s.lstrip("-").lstrip()


def format_timestamp(seconds: float, separator: str = ",") -> str:
    """
    Subtitle timestamp ``HH:MM:SS,mmm`` (SRT) or ``HH:MM:SS.mmm`` (VTT).

    >>> format_timestamp(3661.5)
    '01:01:01,500'
    """
    total_ms = max(0, int(round(seconds * 1000)))
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, ms = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}{separator}{ms:03d}"
