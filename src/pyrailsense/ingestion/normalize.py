"""Normalization helpers.

Centralizes defensive parsing of individual tokens.
"""

from __future__ import annotations

import re

from pyrailsense.state.events import MAX_ENTITY_ID, OccupancyState

# ASCII digits only: int() would also accept "1_000", " 7" and non-ASCII digits.
# Ten digits cover the signed 32-bit range; longer tokens never reach int().
_ID_PATTERN = re.compile(r"\+?[0-9]{1,10}")


def parse_entity_id(token: str) -> int | None:
    """Parse a block or track id.

    Returns ``None`` for anything that is not a non-negative decimal that
    fits the controller's signed 32-bit range.
    """
    if not _ID_PATTERN.fullmatch(token):
        return None
    value = int(token)
    if value > MAX_ENTITY_ID:
        return None
    return value


def resolve_occupancy(token: str, *, containment: bool) -> OccupancyState | None:
    """Resolve a state keyword token.

    Candidates are tested in ``OFF``, ``STANDING``, ``RUNNING`` order and the
    first hit wins.  With *containment* a token such as ``"RUNNING,"`` or
    ``"xOFFx"`` still resolves; without it the token must equal the keyword.
    """
    for state in OccupancyState:
        if containment:
            if state.value in token:
                return state
        elif token == state.value:
            return state
    return None
