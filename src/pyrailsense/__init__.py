"""pyrailsense - Async block-occupancy and train-status reconciliation for model railroads."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyrailsense")
except PackageNotFoundError:
    __version__ = "0+local"
from pyrailsense._mqtt import MqttLineTransport, MqttSettings
from pyrailsense._publisher import ChangePublisher
from pyrailsense._transport import LineTransport, ReplayLineTransport, TcpLineTransport, WebSocketLineTransport
from pyrailsense.config import RailConfig
from pyrailsense.diagnostics import Diagnostic, DiagnosticKind, IngestionStats
from pyrailsense.engine import RailSenseEngine
from pyrailsense.exceptions import (
    MalformedLineError,
    RailConfigError,
    RailDecodeError,
    RailError,
    RailTransportError,
    UnrecognizedKeywordError,
)
from pyrailsense.ingestion.apply import parse_line
from pyrailsense.ingestion.classify import ParseMode
from pyrailsense.state.events import (
    BlockStateEvent,
    EntityKind,
    EventKind,
    OccupancyState,
    StateChange,
    TrainStatusEvent,
    UnrecognizedEvent,
)
from pyrailsense.state.policy import TrackMapping
from pyrailsense.state.store import StateStore

__all__ = [
    "__version__",
    "BlockStateEvent",
    "ChangePublisher",
    "Diagnostic",
    "DiagnosticKind",
    "EntityKind",
    "EventKind",
    "IngestionStats",
    "LineTransport",
    "MalformedLineError",
    "MqttLineTransport",
    "MqttSettings",
    "OccupancyState",
    "ParseMode",
    "RailConfig",
    "RailConfigError",
    "RailDecodeError",
    "RailError",
    "RailSenseEngine",
    "RailTransportError",
    "ReplayLineTransport",
    "StateChange",
    "StateStore",
    "TcpLineTransport",
    "TrackMapping",
    "TrainStatusEvent",
    "UnrecognizedEvent",
    "UnrecognizedKeywordError",
    "WebSocketLineTransport",
]
