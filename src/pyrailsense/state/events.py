"""Typed status events and outward change notifications.

The ingestion layer converts raw status lines into these events. Only the
state/store layer is allowed to apply them.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

#: Largest id the field controller can report (signed 32-bit).
MAX_ENTITY_ID = 2**31 - 1


class OccupancyState(StrEnum):
    """Current-sensor reading for one block.

    Member order is the keyword priority used when decoding.
    """

    OFF = "OFF"
    STANDING = "STANDING"
    RUNNING = "RUNNING"


class EventKind(StrEnum):
    BLOCK_STATE = "block_state"
    TRAIN_STATUS = "train_status"
    UNRECOGNIZED = "unrecognized"


class EntityKind(StrEnum):
    BLOCK = "block"
    TRACK_STATUS = "track_status"


class _EventBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    raw_line: str = Field(default="", description="Line as received, for diagnostics")


class BlockStateEvent(_EventBase):
    """A current sensor reported a new occupancy for a block."""

    kind: EventKind = EventKind.BLOCK_STATE
    block_id: int = Field(..., ge=0, le=MAX_ENTITY_ID)
    state: OccupancyState


class TrainStatusEvent(_EventBase):
    """A direction detector reported the train direction on a track."""

    kind: EventKind = EventKind.TRAIN_STATUS
    track_id: int = Field(..., ge=0, le=MAX_ENTITY_ID)
    direction: str

    @field_validator("direction")
    @classmethod
    def _non_empty_direction(cls, value: str) -> str:
        if not value or value != value.strip():
            raise ValueError("direction must be a single non-empty token")
        return value


class UnrecognizedEvent(_EventBase):
    """A line that matched neither protocol pattern."""

    kind: EventKind = EventKind.UNRECOGNIZED


StatusEvent = BlockStateEvent | TrainStatusEvent | UnrecognizedEvent


class StateChange(BaseModel):
    """An inert description of one committed state transition.

    Carries no rendering concern; the renderer maps ``new_value`` to
    whatever visual asset it owns.
    """

    model_config = ConfigDict(frozen=True)

    entity_kind: EntityKind
    entity_id: int
    new_value: str
    previous_value: str | None = None
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("observed_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value
