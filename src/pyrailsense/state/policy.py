"""Deterministic state merge policy.

This module contains *no* line parsing. The ingestion layer is responsible
for producing validated events; the policy only decides which entity an
event lands on and whether applying it is a visible change.
"""

from __future__ import annotations

from enum import StrEnum

#: Entity the two-track layout uses for track ``1``.
PRIMARY_TRACK = 1
#: Entity every other track id collapses into under ``TrackMapping.TWO_TRACK``.
FALLBACK_TRACK = 2


class TrackMapping(StrEnum):
    PER_TRACK = "per_track"
    TWO_TRACK = "two_track"


def resolve_track_entity(track_id: int, mapping: TrackMapping) -> int:
    """Map a reported track id onto the TrackStatus entity it updates.

    Under ``TWO_TRACK`` anything that is not track 1 is "the other track":
    ``TRAIN 5 STATUS ...`` and ``TRAIN 0 STATUS ...`` both update entity 2.
    This mirrors two-track displays with exactly two direction fields.
    """
    if track_id < 0:
        raise ValueError(f"track id must be non-negative, got {track_id}")
    if mapping == TrackMapping.TWO_TRACK:
        return PRIMARY_TRACK if track_id == PRIMARY_TRACK else FALLBACK_TRACK
    return track_id


def should_emit_change(current: str | None, incoming: str) -> bool:
    """Self-transitions are no-ops: only a differing value is a change."""
    return current != incoming
