"""Engine configuration for pyrailsense."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pyrailsense.exceptions import RailConfigError
from pyrailsense.ingestion.classify import ParseMode
from pyrailsense.state.policy import TrackMapping

TRANSPORTS = frozenset({"tcp", "websocket", "mqtt"})


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, value: str, cast: type[int] | type[float]) -> int | float:
    try:
        return cast(value)
    except ValueError as exc:
        raise RailConfigError(f"{env_key} must be a number, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class RailConfig:
    """Engine configuration.

    Parameters
    ----------
    transport : str
        Line transport to open: ``"tcp"``, ``"websocket"`` or ``"mqtt"``.
    host : str
        Field controller host (TCP) or MQTT broker host.
    port : int
        Field controller TCP port or MQTT broker port.
    websocket_url : str
        Full ``ws://`` / ``wss://`` URL when ``transport="websocket"``.
    mqtt_topic : str
        Topic the controller publishes status lines on.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_username : str or None
        Optional broker username.
    mqtt_password : str or None
        Optional broker password.
    mqtt_tls : bool
        Enable TLS towards the broker.
    encoding : str
        Text encoding of the status stream.  Undecodable bytes are
        replaced, never fatal.
    max_line_length : int
        Upper bound for one status line: bytes on TCP (stream reader
        limit), characters on the WebSocket, MQTT and replay transports.
        Longer lines are discarded with a warning on every transport.
    mqtt_queue_size : int
        Capacity of the queue between the MQTT network thread and the
        ingestion loop.  Lines arriving while it is full are dropped.
    parse_mode : ParseMode
        ``STRICT`` token-position matching or ``LEGACY`` substring
        containment as done by the original field-controller app.
    track_mapping : TrackMapping
        ``PER_TRACK`` keeps every track id distinct; ``TWO_TRACK`` maps
        track ``1`` to entity 1 and every other id to entity 2.
    publish_queue_size : int
        Capacity of the hand-off queue towards the renderer.
    publish_timeout : float
        Seconds to wait for room in the hand-off queue before the change
        is dropped with a diagnostic.
    flush_timeout : float
        Seconds shutdown waits for the renderer to take queued changes;
        anything still undelivered afterwards is dropped with a diagnostic.
    """

    transport: str = "tcp"
    host: str = "localhost"
    port: int = 2560
    websocket_url: str = ""
    mqtt_topic: str = "layout/status"
    mqtt_keepalive: int = 60
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_tls: bool = False
    encoding: str = "utf-8"
    max_line_length: int = 4096
    mqtt_queue_size: int = 1024
    parse_mode: ParseMode = ParseMode.STRICT
    track_mapping: TrackMapping = TrackMapping.PER_TRACK
    publish_queue_size: int = 256
    publish_timeout: float = 1.0
    flush_timeout: float = 5.0

    def __post_init__(self) -> None:
        if self.transport not in TRANSPORTS:
            raise RailConfigError(f"Unknown transport {self.transport!r} (expected one of {sorted(TRANSPORTS)})")
        try:
            object.__setattr__(self, "parse_mode", ParseMode(self.parse_mode))
            object.__setattr__(self, "track_mapping", TrackMapping(self.track_mapping))
        except ValueError as exc:
            raise RailConfigError(str(exc)) from exc
        if self.publish_queue_size < 1:
            raise RailConfigError("publish_queue_size must be at least 1")
        if self.publish_timeout <= 0:
            raise RailConfigError("publish_timeout must be positive")
        if self.flush_timeout <= 0:
            raise RailConfigError("flush_timeout must be positive")
        if self.mqtt_queue_size < 1:
            raise RailConfigError("mqtt_queue_size must be at least 1")
        if self.max_line_length < 16:
            raise RailConfigError("max_line_length must be at least 16")

    @classmethod
    def from_env(cls, **overrides: Any) -> RailConfig:
        """Create configuration from environment variables.

        Reads optional ``RAIL_*`` variables (``RAIL_TRANSPORT``,
        ``RAIL_HOST``, ``RAIL_PORT``, ...).  Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        RailConfig
            Populated configuration.

        Raises
        ------
        RailConfigError
            If a variable holds an invalid value.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "RAIL_TRANSPORT": "transport",
            "RAIL_HOST": "host",
            "RAIL_WEBSOCKET_URL": "websocket_url",
            "RAIL_MQTT_TOPIC": "mqtt_topic",
            "RAIL_MQTT_USERNAME": "mqtt_username",
            "RAIL_MQTT_PASSWORD": "mqtt_password",
            "RAIL_ENCODING": "encoding",
            "RAIL_PARSE_MODE": "parse_mode",
            "RAIL_TRACK_MAPPING": "track_mapping",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val.strip()

        _ENV_NUMERIC_MAP: dict[str, tuple[str, type[int] | type[float]]] = {
            "RAIL_PORT": ("port", int),
            "RAIL_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
            "RAIL_MAX_LINE_LENGTH": ("max_line_length", int),
            "RAIL_PUBLISH_QUEUE_SIZE": ("publish_queue_size", int),
            "RAIL_PUBLISH_TIMEOUT": ("publish_timeout", float),
            "RAIL_FLUSH_TIMEOUT": ("flush_timeout", float),
            "RAIL_MQTT_QUEUE_SIZE": ("mqtt_queue_size", int),
        }
        for env_key, (field_name, cast) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_number(env_key, val, cast)

        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("RAIL_MQTT_TLS"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
