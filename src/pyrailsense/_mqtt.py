"""MQTT line transport.

Some layout controllers publish their status lines to an MQTT broker
instead of exposing a socket.  The paho-mqtt network loop runs in its own
thread; received lines are handed to the asyncio loop with
``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from pyrailsense._logsafe import line_for_log
from pyrailsense._transport import split_lines
from pyrailsense.exceptions import RailTransportError


@dataclass(frozen=True)
class MqttSettings:
    """Broker connection details for the status topic."""

    broker_host: str
    broker_port: int
    topic: str
    client_id: str = ""
    username: str | None = None
    password: str | None = None
    tls: bool = False
    keepalive: int = 60


def decode_mqtt_payload(payload: bytes, encoding: str = "utf-8", max_line_length: int | None = None) -> list[str]:
    """Decode an MQTT payload into the status lines it carries."""
    return split_lines(payload.decode(encoding, errors="replace"), max_line_length)


class MqttLineRuntime:
    """Threaded paho-mqtt runtime that emits status lines onto an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_line: Callable[[str], None],
        on_failure: Callable[[str], None],
        encoding: str = "utf-8",
        max_line_length: int | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_line = on_line
        self._on_failure = on_failure
        self._encoding = encoding
        self._max_line_length = max_line_length
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._topic: str | None = None

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def start(self, settings: MqttSettings) -> None:
        """Connect and subscribe with the provided broker details."""
        self.stop()
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s topic=%s client_id=%s",
            settings.broker_host,
            settings.broker_port,
            settings.topic,
            settings.client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=settings.client_id,
            protocol=mqtt.MQTTv311,
        )
        client.enable_logger(self._logger)
        if settings.username:
            client.username_pw_set(settings.username, settings.password)
        if settings.tls:
            client.tls_set()

        self._topic = settings.topic

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.is_failure:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                self._loop.call_soon_threadsafe(self._on_failure, f"MQTT connect failed: {reason_code}")
                return
            self._logger.debug("MQTT connected successfully reason=%s", reason_code)
            if self._topic:
                self._logger.debug("MQTT subscribing topic=%s", self._topic)
                c.subscribe(self._topic, qos=0)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            for line in decode_mqtt_payload(msg.payload, self._encoding, self._max_line_length):
                self._logger.debug("Received PUBLISH topic=%s line=%s", msg.topic, line_for_log(line))
                self._loop.call_soon_threadsafe(self._on_line, line)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)
                self._loop.call_soon_threadsafe(self._on_failure, f"MQTT disconnected: {reason_code}")

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(settings.broker_host, settings.broker_port, keepalive=settings.keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._topic = None

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")


@dataclass(frozen=True)
class _StreamEnd:
    error: str | None = None


class MqttLineTransport:
    """Line transport over an MQTT status topic.

    Lines are buffered between the network thread and the ingestion loop
    in a bounded queue; when ingestion falls behind by ``queue_size`` lines
    new lines are dropped with a warning.
    """

    def __init__(
        self,
        settings: MqttSettings,
        *,
        encoding: str = "utf-8",
        queue_size: int = 1024,
        max_line_length: int | None = 4096,
        logger: logging.Logger | None = None,
    ) -> None:
        self._settings = settings
        self._encoding = encoding
        self._queue_size = queue_size
        self._max_line_length = max_line_length
        self._logger = logger or logging.getLogger(__name__)
        self._queue: asyncio.Queue[str | _StreamEnd] = asyncio.Queue(maxsize=queue_size)
        self._runtime: MqttLineRuntime | None = None
        self.dropped = 0

    @property
    def endpoint(self) -> str:
        return f"mqtt://{self._settings.broker_host}:{self._settings.broker_port}/{self._settings.topic}"

    def _on_line(self, line: str) -> None:
        try:
            self._queue.put_nowait(line)
        except asyncio.QueueFull:
            self.dropped += 1
            self._logger.warning(
                "Dropping MQTT status line, ingestion is %s lines behind: %s",
                self._queue_size,
                line_for_log(line),
            )

    def _end_stream(self, end: _StreamEnd) -> None:
        # The end marker must always get through; evict the oldest line if needed.
        while True:
            try:
                self._queue.put_nowait(end)
                return
            except asyncio.QueueFull:
                self.dropped += 1
                self._queue.get_nowait()

    def _on_failure(self, reason: str) -> None:
        self._end_stream(_StreamEnd(error=reason))

    async def lines(self) -> AsyncIterator[str]:
        # A fresh queue per session: nothing left over from a previous close() leaks in.
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        loop = asyncio.get_running_loop()
        runtime = MqttLineRuntime(
            loop=loop,
            on_line=self._on_line,
            on_failure=self._on_failure,
            encoding=self._encoding,
            max_line_length=self._max_line_length,
            logger=self._logger,
        )
        try:
            await loop.run_in_executor(None, runtime.start, self._settings)
        except OSError as exc:
            raise RailTransportError(f"MQTT connect to {self.endpoint} failed: {exc}", endpoint=self.endpoint) from exc
        self._runtime = runtime

        try:
            while True:
                item = await self._queue.get()
                if isinstance(item, _StreamEnd):
                    if item.error is not None:
                        raise RailTransportError(item.error, endpoint=self.endpoint)
                    return
                yield item
        finally:
            await self._stop_runtime()

    async def _stop_runtime(self) -> None:
        runtime = self._runtime
        self._runtime = None
        if runtime is None:
            return
        await asyncio.get_running_loop().run_in_executor(None, runtime.stop)

    async def close(self) -> None:
        self._end_stream(_StreamEnd())
        await self._stop_runtime()
