"""Helpers for turning raw process output into displayable text.

``sanitize_binary_output`` is the only place that decides what a byte
stream looks like once it lands in a session log: invalid UTF-8 is
replaced, ANSI escape sequences are dropped, and the remaining control
characters (other than tab and newline) are removed.
"""

import re
from typing import List, Union

# CSI / OSC / single-character escape sequences emitted by colourised tools
_ANSI_RE = re.compile(
    r"\x1b\[[0-?]*[ -/]*[@-~]"          # CSI ... final byte
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"  # OSC ... BEL or ST
    r"|\x1b[@-Z\\-_]"                    # 2-byte sequences
)

# C0 controls except \t and \n, DEL, and C1 controls
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f-\x9f]")

# Lone surrogates left over from "surrogateescape" decoding elsewhere
_SURROGATE_RE = re.compile(r"[\ud800-\udfff]")

SESSION_NAME_MAX_CHARS = 80


def sanitize_binary_output(data: Union[bytes, str]) -> str:
    """Convert raw process output into printable text.

    Carriage-return line endings are normalised to ``\\n`` before control
    characters are stripped so progress-bar style output still splits
    into lines.
    """
    if not data:
        return ""
    if isinstance(data, bytes):
        text = data.decode("utf-8", errors="replace")
    else:
        text = data
    text = _ANSI_RE.sub("", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _CONTROL_RE.sub("", text)
    text = _SURROGATE_RE.sub("�", text)
    return text


def split_output_lines(text: str) -> List[str]:
    """Split sanitized text into lines, dropping trailing whitespace per line."""
    return [line.rstrip() for line in text.split("\n")]


def derive_session_name(command: str, max_chars: int = SESSION_NAME_MAX_CHARS) -> str:
    """Build a display label from a command string.

    Uses the first non-empty line with runs of whitespace collapsed.
    ``"echo hello"`` stays ``"echo hello"``; long commands are cut at
    ``max_chars`` and end with ``...``.
    """
    first = ""
    for line in command.splitlines():
        if line.strip():
            first = line
            break
    name = " ".join(first.split())
    if len(name) > max_chars:
        name = name[: max_chars - 3].rstrip() + "..."
    return name


def truncate_middle(text: str, max_chars: int) -> str:
    """Cap text at ``max_chars``, keeping the head and the tail."""
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    marker = f"\n... [{len(text) - max_chars} chars truncated] ...\n"
    keep = max(max_chars - len(marker), 0)
    head = keep // 3
    tail = keep - head
    return text[:head] + marker + (text[-tail:] if tail else "")
