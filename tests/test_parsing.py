from __future__ import annotations

import pytest

from pyrailsense.exceptions import MalformedLineError, UnrecognizedKeywordError
from pyrailsense.ingestion.apply import parse_line
from pyrailsense.ingestion.classify import ParseMode, classify
from pyrailsense.ingestion.normalize import parse_entity_id, resolve_occupancy
from pyrailsense.ingestion.tokenize import tokenize
from pyrailsense.state.events import (
    BlockStateEvent,
    EventKind,
    OccupancyState,
    TrainStatusEvent,
    UnrecognizedEvent,
)


def test_tokenize_collapses_repeated_whitespace() -> None:
    assert tokenize("  BLOCK \t 3   RUNNING  x ") == ["BLOCK", "3", "RUNNING", "x"]


def test_tokenize_empty_line_yields_no_tokens() -> None:
    assert tokenize("") == []
    assert tokenize("   \t ") == []


def test_classify_precedence_block_before_train() -> None:
    line = "BLOCK 1 TRAIN STATUS"
    assert classify(line, tokenize(line), ParseMode.LEGACY).kind == EventKind.BLOCK_STATE
    assert classify(line, tokenize(line), ParseMode.STRICT).kind == EventKind.BLOCK_STATE


def test_classify_legacy_tolerates_leading_noise() -> None:
    line = "xxBLOCK 3 STANDING 0"
    assert classify(line, tokenize(line), ParseMode.LEGACY).kind == EventKind.BLOCK_STATE
    assert classify(line, tokenize(line), ParseMode.STRICT).kind == EventKind.UNRECOGNIZED


def test_classify_legacy_requires_both_train_keywords() -> None:
    line = "TRAIN 1 NORTH"
    assert classify(line, tokenize(line), ParseMode.LEGACY).kind == EventKind.UNRECOGNIZED


def test_parse_entity_id_rejects_non_decimal_values() -> None:
    assert parse_entity_id("7") == 7
    assert parse_entity_id("+7") == 7
    assert parse_entity_id("-1") is None
    assert parse_entity_id("1_000") is None
    assert parse_entity_id("seven") is None
    assert parse_entity_id("2147483648") is None
    assert parse_entity_id("12345678901") is None
    assert parse_entity_id("9" * 5000) is None
    assert parse_entity_id("\uff17") is None


def test_resolve_occupancy_priority_order_in_containment_mode() -> None:
    # Contains both OFF and RUNNING: OFF is tested first and wins.
    assert resolve_occupancy("OFFRUNNING", containment=True) == OccupancyState.OFF
    assert resolve_occupancy("RUNNING,", containment=True) == OccupancyState.RUNNING
    assert resolve_occupancy("RUNNING,", containment=False) is None


def test_parse_block_line() -> None:
    event = parse_line("BLOCK 12 STANDING 0\r\n")

    assert isinstance(event, BlockStateEvent)
    assert event.block_id == 12
    assert event.state == OccupancyState.STANDING
    assert event.raw_line == "BLOCK 12 STANDING 0"


def test_parse_block_line_with_too_few_tokens_is_malformed() -> None:
    with pytest.raises(MalformedLineError) as excinfo:
        parse_line("BLOCK 7")
    assert excinfo.value.reason == "token_count"

    with pytest.raises(MalformedLineError):
        parse_line("BLOCK 7 RUNNING")


def test_parse_block_line_with_bad_id_is_malformed() -> None:
    with pytest.raises(MalformedLineError) as excinfo:
        parse_line("BLOCK -3 RUNNING 0")
    assert excinfo.value.reason == "invalid_id"

    with pytest.raises(MalformedLineError):
        parse_line("BLOCK three RUNNING 0")


def test_parse_block_line_with_oversized_id_is_malformed_not_a_crash() -> None:
    with pytest.raises(MalformedLineError) as excinfo:
        parse_line("BLOCK " + "9" * 5000 + " RUNNING 0")
    assert excinfo.value.reason == "invalid_id"

    with pytest.raises(MalformedLineError):
        parse_line("TRAIN " + "1" * 5000 + " STATUS NORTH", ParseMode.LEGACY)


def test_parse_block_line_with_unknown_state_keyword() -> None:
    with pytest.raises(UnrecognizedKeywordError) as excinfo:
        parse_line("BLOCK 3 FLASHING 0")
    assert excinfo.value.line == "BLOCK 3 FLASHING 0"


def test_parse_block_state_containment_only_in_legacy_mode() -> None:
    event = parse_line("BLOCK 3 RUNNING, 0", ParseMode.LEGACY)
    assert isinstance(event, BlockStateEvent)
    assert event.state == OccupancyState.RUNNING

    with pytest.raises(UnrecognizedKeywordError):
        parse_line("BLOCK 3 RUNNING, 0", ParseMode.STRICT)


def test_parse_train_status_line() -> None:
    event = parse_line("TRAIN 1 STATUS NORTH")

    assert isinstance(event, TrainStatusEvent)
    assert event.track_id == 1
    assert event.direction == "NORTH"


def test_parse_train_status_strict_requires_status_in_third_position() -> None:
    with pytest.raises(MalformedLineError) as excinfo:
        parse_line("TRAIN 1 NORTH STATUS")
    assert excinfo.value.reason == "status_position"

    event = parse_line("TRAIN 1 NORTH STATUS", ParseMode.LEGACY)
    assert isinstance(event, TrainStatusEvent)
    assert event.direction == "STATUS"


def test_parse_train_status_with_too_few_tokens_is_malformed() -> None:
    with pytest.raises(MalformedLineError):
        parse_line("TRAIN 1 STATUS")


def test_parse_unrecognized_line() -> None:
    event = parse_line("PING")

    assert isinstance(event, UnrecognizedEvent)
    assert event.raw_line == "PING"
    assert isinstance(parse_line(""), UnrecognizedEvent)
