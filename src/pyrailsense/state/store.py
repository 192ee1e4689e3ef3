"""Deterministic in-memory state store.

This is the only component allowed to merge decoded status events.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import UTC, datetime

from pyrailsense.state.events import (
    BlockStateEvent,
    EntityKind,
    OccupancyState,
    StateChange,
    StatusEvent,
    TrainStatusEvent,
)
from pyrailsense.state.policy import TrackMapping, resolve_track_entity, should_emit_change

#: Occupancy reported for a block that has not been seen yet.
DEFAULT_OCCUPANCY = OccupancyState.OFF


def _utcnow() -> datetime:
    return datetime.now(UTC)


class StateStore:
    """In-memory store for block occupancy and per-track train direction.

    Given the same sequence of events the store produces the same state and
    the same sequence of :class:`StateChange` notifications.  Re-applying an
    event is idempotent.

    One writer (the ingestion path) and any number of readers (renderer,
    queries from other threads) may use the store concurrently.  The blocks
    table and the track table are guarded by independent locks since no
    operation touches both.
    """

    def __init__(
        self,
        *,
        track_mapping: TrackMapping = TrackMapping.PER_TRACK,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._track_mapping = track_mapping
        self._clock = clock
        self._blocks: dict[int, OccupancyState] = {}
        self._tracks: dict[int, str] = {}
        self._blocks_lock = threading.Lock()
        self._tracks_lock = threading.Lock()

    @property
    def track_mapping(self) -> TrackMapping:
        return self._track_mapping

    def apply(self, event: StatusEvent) -> StateChange | None:
        """Apply a decoded event.

        Returns the resulting change, or ``None`` when the value did not
        change or the event carries no state (unrecognized lines).
        """
        if isinstance(event, BlockStateEvent):
            return self._apply_block(event)
        if isinstance(event, TrainStatusEvent):
            return self._apply_train_status(event)
        return None

    def _apply_block(self, event: BlockStateEvent) -> StateChange | None:
        with self._blocks_lock:
            current = self._blocks.get(event.block_id, DEFAULT_OCCUPANCY)
            # Record the block even on a no-op so it shows up in snapshots.
            self._blocks[event.block_id] = event.state
            if not should_emit_change(current, event.state):
                return None
        return StateChange(
            entity_kind=EntityKind.BLOCK,
            entity_id=event.block_id,
            new_value=event.state.value,
            previous_value=current.value,
            observed_at=self._clock(),
        )

    def _apply_train_status(self, event: TrainStatusEvent) -> StateChange | None:
        entity_id = resolve_track_entity(event.track_id, self._track_mapping)
        with self._tracks_lock:
            current = self._tracks.get(entity_id)
            if not should_emit_change(current, event.direction):
                return None
            self._tracks[entity_id] = event.direction
        return StateChange(
            entity_kind=EntityKind.TRACK_STATUS,
            entity_id=entity_id,
            new_value=event.direction,
            previous_value=current,
            observed_at=self._clock(),
        )

    def get_block(self, block_id: int) -> OccupancyState:
        """Current occupancy of a block (``OFF`` if never reported)."""
        with self._blocks_lock:
            return self._blocks.get(block_id, DEFAULT_OCCUPANCY)

    def get_track_direction(self, track_id: int) -> str | None:
        """Last reported direction for a track, or ``None``.

        *track_id* is resolved with the store's track mapping, so under
        ``TWO_TRACK`` asking for track 5 returns the fallback entity.
        A negative id is never stored and reads as ``None``.
        """
        if track_id < 0:
            return None
        entity_id = resolve_track_entity(track_id, self._track_mapping)
        with self._tracks_lock:
            return self._tracks.get(entity_id)

    def blocks_snapshot(self) -> dict[int, OccupancyState]:
        with self._blocks_lock:
            return dict(self._blocks)

    def tracks_snapshot(self) -> dict[int, str]:
        with self._tracks_lock:
            return dict(self._tracks)
