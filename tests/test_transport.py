from __future__ import annotations

import asyncio

import pytest

from pyrailsense import _mqtt
from pyrailsense._logsafe import line_for_log
from pyrailsense._mqtt import MqttLineTransport, MqttSettings, decode_mqtt_payload
from pyrailsense._transport import ReplayLineTransport, TcpLineTransport, decode_line, split_lines
from pyrailsense.exceptions import RailTransportError


def test_decode_line_strips_terminator_and_replaces_bad_bytes() -> None:
    assert decode_line(b"BLOCK 1 OFF 0\r\n") == "BLOCK 1 OFF 0"
    assert decode_line(b"BLOCK \xff 1\n") == "BLOCK \ufffd 1"


def test_mqtt_payload_may_carry_several_lines() -> None:
    assert decode_mqtt_payload(b"BLOCK 1 RUNNING 0\nTRAIN 1 STATUS NORTH\n") == [
        "BLOCK 1 RUNNING 0",
        "TRAIN 1 STATUS NORTH",
    ]


def test_message_lines_longer_than_limit_are_discarded() -> None:
    text = "BLOCK 1 RUNNING 0\n" + "B" * 5000 + "\nBLOCK 2 OFF 0"

    assert split_lines(text, 100) == ["BLOCK 1 RUNNING 0", "BLOCK 2 OFF 0"]
    assert len(split_lines(text)) == 3
    assert decode_mqtt_payload(text.encode(), max_line_length=100) == ["BLOCK 1 RUNNING 0", "BLOCK 2 OFF 0"]


def test_line_for_log_escapes_control_bytes_and_truncates() -> None:
    assert line_for_log("BLOCK\t1\r\n\x07") == "BLOCK\\t1\\r\\n\\x07"
    assert line_for_log(b"OK\x01") == "OK\\x01"
    rendered = line_for_log("x" * 50, max_length=10)
    assert rendered.startswith("x" * 10)
    assert "<truncated>" in rendered


@pytest.mark.asyncio
async def test_replay_transport_from_file(tmp_path) -> None:
    capture = tmp_path / "capture.txt"
    capture.write_text("BLOCK 1 RUNNING 0\r\nPING\r\n", encoding="utf-8")

    transport = ReplayLineTransport.from_file(capture)
    lines = [line async for line in transport.lines()]

    assert lines == ["BLOCK 1 RUNNING 0", "PING"]


@pytest.mark.asyncio
async def test_replay_transport_discards_overlong_lines(tmp_path) -> None:
    capture = tmp_path / "capture.txt"
    capture.write_text("BLOCK 1 RUNNING 0\n" + "X" * 100 + "\nPING\n", encoding="utf-8")

    from_file = ReplayLineTransport.from_file(capture, max_line_length=20)
    in_memory = ReplayLineTransport(["BLOCK 1 RUNNING 0", "X" * 100], max_line_length=20)

    assert [line async for line in from_file.lines()] == ["BLOCK 1 RUNNING 0", "PING"]
    assert [line async for line in in_memory.lines()] == ["BLOCK 1 RUNNING 0"]


@pytest.mark.asyncio
async def test_tcp_transport_reads_lines_and_fails_on_peer_close() -> None:
    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        writer.write(b"BLOCK 3 STANDING 0\r\nTRAIN 1 STATUS NORTH\n")
        await writer.drain()
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    received: list[str] = []
    try:
        transport = TcpLineTransport("127.0.0.1", port)
        with pytest.raises(RailTransportError) as excinfo:
            async for line in transport.lines():
                received.append(line)
    finally:
        server.close()
        await server.wait_closed()

    assert received == ["BLOCK 3 STANDING 0", "TRAIN 1 STATUS NORTH"]
    assert excinfo.value.endpoint == f"tcp://127.0.0.1:{port}"


@pytest.mark.asyncio
async def test_tcp_transport_connect_failure_raises_transport_error() -> None:
    server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()

    transport = TcpLineTransport("127.0.0.1", port)
    with pytest.raises(RailTransportError):
        async for _ in transport.lines():
            pass


class _FakeRuntime:
    """Stands in for the paho network thread."""

    def __init__(self, *, loop, on_line, on_failure, encoding, max_line_length, logger) -> None:
        self._loop = loop
        self._on_line = on_line
        self._on_failure = on_failure
        self._max_line_length = max_line_length
        self.stopped = False

    def start(self, settings: MqttSettings) -> None:
        payload = b"BLOCK 1 RUNNING 0\nBLOCK 2 OFF 0"
        for line in decode_mqtt_payload(payload, max_line_length=self._max_line_length):
            self._loop.call_soon_threadsafe(self._on_line, line)
        self._loop.call_soon_threadsafe(self._on_failure, "MQTT disconnected: broker went away")

    def stop(self) -> None:
        self.stopped = True


@pytest.mark.asyncio
async def test_mqtt_transport_forwards_lines_then_fails_on_disconnect(monkeypatch) -> None:
    monkeypatch.setattr(_mqtt, "MqttLineRuntime", _FakeRuntime)
    settings = MqttSettings(broker_host="broker.local", broker_port=1883, topic="layout/status")
    transport = MqttLineTransport(settings)
    received: list[str] = []

    with pytest.raises(RailTransportError) as excinfo:
        async for line in transport.lines():
            received.append(line)

    assert received == ["BLOCK 1 RUNNING 0", "BLOCK 2 OFF 0"]
    assert "broker went away" in str(excinfo.value)
    assert excinfo.value.endpoint == "mqtt://broker.local:1883/layout/status"


class _QuietRuntime(_FakeRuntime):
    """Delivers one message per session and stays connected."""

    sessions = 0

    def start(self, settings: MqttSettings) -> None:
        type(self).sessions += 1
        self._loop.call_soon_threadsafe(self._on_line, f"BLOCK {self.sessions} RUNNING 0")


@pytest.mark.asyncio
async def test_mqtt_transport_can_be_read_again_after_close(monkeypatch) -> None:
    monkeypatch.setattr(_mqtt, "MqttLineRuntime", _QuietRuntime)
    monkeypatch.setattr(_QuietRuntime, "sessions", 0)
    settings = MqttSettings(broker_host="broker.local", broker_port=1883, topic="layout/status")
    transport = MqttLineTransport(settings)

    first: list[str] = []
    async for line in transport.lines():
        first.append(line)
        await transport.close()
    # A close with no session running must not end the next session early.
    await transport.close()

    second: list[str] = []
    async for line in transport.lines():
        second.append(line)
        await transport.close()

    assert first == ["BLOCK 1 RUNNING 0"]
    assert second == ["BLOCK 2 RUNNING 0"]


def test_mqtt_transport_drops_lines_when_ingestion_falls_behind() -> None:
    settings = MqttSettings(broker_host="broker.local", broker_port=1883, topic="layout/status")
    transport = MqttLineTransport(settings, queue_size=2)

    for block_id in range(1, 5):
        transport._on_line(f"BLOCK {block_id} RUNNING 0")
    assert transport.dropped == 2

    # A disconnect still gets through a full buffer by evicting the oldest line.
    transport._on_failure("MQTT disconnected: broker went away")
    assert transport.dropped == 3
