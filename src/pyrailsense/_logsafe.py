"""Helpers for safe debug logging.

Status lines come straight off a serial link or socket and may carry line
noise, control bytes or an unterminated flood of garbage.  This module
renders such input in a bounded, printable form before it is logged.
"""

from __future__ import annotations

from typing import Any

_ESCAPES: dict[str, str] = {
    "\r": "\\r",
    "\n": "\\n",
    "\t": "\\t",
}


def line_for_log(value: Any, *, max_length: int = 160) -> str:
    """Return a printable, truncated rendering of a raw line."""
    if value is None:
        return "<none>"
    if isinstance(value, (bytes, bytearray)):
        value = bytes(value).decode("ascii", errors="backslashreplace")
    text = str(value)

    truncated = len(text) > max_length
    if truncated:
        text = text[:max_length]

    parts: list[str] = []
    for ch in text:
        if ch in _ESCAPES:
            parts.append(_ESCAPES[ch])
        elif ch.isprintable():
            parts.append(ch)
        else:
            parts.append(f"\\x{ord(ch):02x}" if ord(ch) < 0x100 else f"\\u{ord(ch):04x}")
    rendered = "".join(parts)
    if truncated:
        return f"{rendered}…<truncated>"
    return rendered
