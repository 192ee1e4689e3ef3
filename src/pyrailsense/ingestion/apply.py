"""Ingestion application helpers.

This module centralizes the line pipeline shared by the engine, the
`line_probe` script and tests:

- tokenize the raw line
- classify it into a candidate event kind
- decode it into a typed event
- apply the event to a store

Decoding completes before anything is applied, so a bad line can never
leave a partial update behind.
"""

from __future__ import annotations

from collections.abc import Callable

from pyrailsense.ingestion.classify import ParseMode, classify
from pyrailsense.ingestion.decode import decode
from pyrailsense.ingestion.tokenize import tokenize
from pyrailsense.state.events import StateChange, StatusEvent


def parse_line(line: str, mode: ParseMode = ParseMode.STRICT) -> StatusEvent:
    """Parse one raw status line into a typed event.

    Raises :class:`~pyrailsense.exceptions.RailDecodeError` subclasses for
    lines that are classified but cannot be decoded.
    """
    text = line.rstrip("\r\n")
    tokens = tokenize(text)
    return decode(classify(text, tokens, mode), mode)


def apply_line_to_store(
    store_apply: Callable[[StatusEvent], StateChange | None],
    line: str,
    *,
    mode: ParseMode = ParseMode.STRICT,
) -> tuple[StatusEvent, StateChange | None]:
    """Parse a line and apply the resulting event to a store."""

    event = parse_line(line, mode)
    return event, store_apply(event)
