"""Decode classified status lines into typed events.

Token layout::

    BLOCK <blockId> <STATE> [ignored...]
    TRAIN <trackId> STATUS <direction> [ignored...]

Decoding either fully succeeds or raises before anything is applied.
"""

from __future__ import annotations

from pyrailsense.exceptions import MalformedLineError, UnrecognizedKeywordError
from pyrailsense.ingestion.classify import STATUS_KEYWORD, Classified, ParseMode
from pyrailsense.ingestion.normalize import parse_entity_id, resolve_occupancy
from pyrailsense.state.events import (
    BlockStateEvent,
    EventKind,
    StatusEvent,
    TrainStatusEvent,
    UnrecognizedEvent,
)

#: Minimum token count for both block and train-status lines.
MIN_TOKENS = 4


def _require_tokens(classified: Classified, what: str) -> tuple[str, ...]:
    tokens = classified.tokens
    if len(tokens) < MIN_TOKENS:
        raise MalformedLineError(
            f"{what} line needs at least {MIN_TOKENS} tokens, got {len(tokens)}",
            line=classified.line,
            reason="token_count",
        )
    return tokens


def _require_id(classified: Classified, token: str, what: str) -> int:
    value = parse_entity_id(token)
    if value is None:
        raise MalformedLineError(
            f"{what} id {token!r} is not a non-negative integer",
            line=classified.line,
            reason="invalid_id",
        )
    return value


def decode_block_state(classified: Classified, mode: ParseMode = ParseMode.STRICT) -> BlockStateEvent:
    tokens = _require_tokens(classified, "BLOCK")
    block_id = _require_id(classified, tokens[1], "block")
    state = resolve_occupancy(tokens[2], containment=mode == ParseMode.LEGACY)
    if state is None:
        raise UnrecognizedKeywordError(
            f"block state {tokens[2]!r} is not OFF, STANDING or RUNNING",
            line=classified.line,
            reason="state_keyword",
        )
    return BlockStateEvent(block_id=block_id, state=state, raw_line=classified.line)


def decode_train_status(classified: Classified, mode: ParseMode = ParseMode.STRICT) -> TrainStatusEvent:
    tokens = _require_tokens(classified, "TRAIN STATUS")
    track_id = _require_id(classified, tokens[1], "track")
    if mode == ParseMode.STRICT and tokens[2] != STATUS_KEYWORD:
        raise MalformedLineError(
            f"expected {STATUS_KEYWORD} as third token, got {tokens[2]!r}",
            line=classified.line,
            reason="status_position",
        )
    return TrainStatusEvent(track_id=track_id, direction=tokens[3], raw_line=classified.line)


def decode(classified: Classified, mode: ParseMode = ParseMode.STRICT) -> StatusEvent:
    """Convert a classified line into its typed event.

    Raises
    ------
    MalformedLineError
        Too few tokens or an invalid id.
    UnrecognizedKeywordError
        A block line whose state token matches no known keyword.
    """
    if classified.kind == EventKind.BLOCK_STATE:
        return decode_block_state(classified, mode)
    if classified.kind == EventKind.TRAIN_STATUS:
        return decode_train_status(classified, mode)
    return UnrecognizedEvent(raw_line=classified.line)
