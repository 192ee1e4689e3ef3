"""Event classification for status lines.

Two modes are supported:

``LEGACY``
    Substring containment on the whole line, exactly like the original
    field-controller app: ``"BLOCK "`` anywhere makes a block line,
    ``"TRAIN "`` together with ``"STATUS"`` makes a train line.  Tolerates
    leading noise but misclassifies values that happen to contain a keyword.

``STRICT``
    Keyword equality at fixed token positions: ``BLOCK`` must be the first
    token; ``TRAIN`` must be the first token and ``STATUS`` one of the
    following ones.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum

from pyrailsense.state.events import EventKind

BLOCK_KEYWORD = "BLOCK"
TRAIN_KEYWORD = "TRAIN"
STATUS_KEYWORD = "STATUS"


class ParseMode(StrEnum):
    STRICT = "strict"
    LEGACY = "legacy"


@dataclass(frozen=True)
class Classified:
    """Candidate event kind plus everything the decoder needs."""

    kind: EventKind
    tokens: tuple[str, ...]
    line: str


def _classify_legacy(line: str) -> EventKind:
    if f"{BLOCK_KEYWORD} " in line:
        return EventKind.BLOCK_STATE
    if f"{TRAIN_KEYWORD} " in line and STATUS_KEYWORD in line:
        return EventKind.TRAIN_STATUS
    return EventKind.UNRECOGNIZED


def _classify_strict(tokens: Sequence[str]) -> EventKind:
    if not tokens:
        return EventKind.UNRECOGNIZED
    if tokens[0] == BLOCK_KEYWORD:
        return EventKind.BLOCK_STATE
    if tokens[0] == TRAIN_KEYWORD and STATUS_KEYWORD in tokens[1:]:
        return EventKind.TRAIN_STATUS
    return EventKind.UNRECOGNIZED


def classify(line: str, tokens: Sequence[str], mode: ParseMode = ParseMode.STRICT) -> Classified:
    """Decide the candidate event kind of a tokenized line.

    First match wins: block, then train status, then unrecognized.
    """
    if mode == ParseMode.LEGACY:
        kind = _classify_legacy(line)
    else:
        kind = _classify_strict(tokens)
    return Classified(kind=kind, tokens=tuple(tokens), line=line)
