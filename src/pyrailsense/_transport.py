"""Line transports delivering raw status lines from the field controller.

Every transport yields one decoded text line per status message, in arrival
order, without its line terminator.  A transport that fails or is closed
by the remote end raises :class:`RailTransportError`; a transport closed
locally via :meth:`close` simply stops yielding.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from pathlib import Path
from typing import Protocol

import aiohttp

from pyrailsense._logsafe import line_for_log
from pyrailsense.exceptions import RailTransportError

_logger = logging.getLogger(__name__)


class LineTransport(Protocol):
    """Structural transport interface used by the engine.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementations concrete.
    """

    def lines(self) -> AsyncIterator[str]:
        ...

    async def close(self) -> None:
        ...


def decode_line(raw: bytes, encoding: str = "utf-8") -> str:
    """Decode one framed line; undecodable bytes are replaced, never fatal."""
    return raw.decode(encoding, errors="replace").rstrip("\r\n")


def split_lines(text: str, max_length: int | None = None) -> list[str]:
    """Split a multi-line chunk (WebSocket/MQTT message) into status lines.

    Lines longer than *max_length* characters are discarded.
    """
    return [line for line in text.splitlines() if within_limit(line, max_length)]


def within_limit(line: str, max_length: int | None) -> bool:
    if max_length is None or len(line) <= max_length:
        return True
    _logger.warning("Discarding status line longer than %s characters: %s", max_length, line_for_log(line))
    return False


class TcpLineTransport:
    """Newline-delimited status stream over a TCP socket.

    Also covers serial links exposed through a serial-to-network bridge.
    """

    def __init__(
        self,
        host: str,
        port: int,
        *,
        encoding: str = "utf-8",
        limit: int = 4096,
    ) -> None:
        self._host = host
        self._port = port
        self._encoding = encoding
        self._limit = limit
        self._writer: asyncio.StreamWriter | None = None
        self._closing = False

    @property
    def endpoint(self) -> str:
        return f"tcp://{self._host}:{self._port}"

    async def lines(self) -> AsyncIterator[str]:
        try:
            reader, writer = await asyncio.open_connection(self._host, self._port, limit=self._limit)
        except OSError as exc:
            raise RailTransportError(f"Connect to {self.endpoint} failed: {exc}", endpoint=self.endpoint) from exc
        self._writer = writer
        _logger.debug("TCP transport connected endpoint=%s", self.endpoint)

        try:
            while True:
                try:
                    raw = await reader.readline()
                except ValueError:
                    # StreamReader already discarded the oversized chunk.
                    _logger.warning("Discarding status line longer than %s bytes from %s", self._limit, self.endpoint)
                    continue
                except OSError as exc:
                    if self._closing:
                        return
                    raise RailTransportError(f"Read from {self.endpoint} failed: {exc}", endpoint=self.endpoint) from exc
                if not raw:
                    if self._closing:
                        return
                    raise RailTransportError(f"Connection to {self.endpoint} closed by peer", endpoint=self.endpoint)
                yield decode_line(raw, self._encoding)
        finally:
            await self.close()

    async def close(self) -> None:
        self._closing = True
        writer = self._writer
        self._writer = None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            _logger.debug("TCP transport close failed endpoint=%s", self.endpoint, exc_info=True)
        _logger.debug("TCP transport closed endpoint=%s", self.endpoint)


class WebSocketLineTransport:
    """Status stream delivered as WebSocket text or binary messages.

    A single message may carry several newline-separated status lines.
    """

    def __init__(
        self,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        encoding: str = "utf-8",
        max_line_length: int | None = 4096,
        heartbeat: float | None = 30.0,
    ) -> None:
        self._url = url
        self._external_session = session is not None
        self._http_session = session
        self._encoding = encoding
        self._heartbeat = heartbeat
        self._max_line_length = max_line_length
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._closing = False

    @property
    def endpoint(self) -> str:
        return self._url

    async def lines(self) -> AsyncIterator[str]:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        try:
            self._ws = await self._http_session.ws_connect(self._url, heartbeat=self._heartbeat)
        except (aiohttp.ClientError, TimeoutError) as exc:
            await self.close()
            raise RailTransportError(f"WebSocket connect to {self._url} failed: {exc}", endpoint=self._url) from exc
        _logger.debug("WebSocket transport connected url=%s", self._url)

        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    text = msg.data
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    text = msg.data.decode(self._encoding, errors="replace")
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    raise RailTransportError(
                        f"WebSocket error from {self._url}: {self._ws.exception()}",
                        endpoint=self._url,
                    )
                else:
                    _logger.debug("Ignoring WebSocket message type=%s", msg.type)
                    continue
                for line in split_lines(text, self._max_line_length):
                    yield line
            if not self._closing:
                raise RailTransportError(f"WebSocket {self._url} closed by peer", endpoint=self._url)
        finally:
            await self.close()

    async def close(self) -> None:
        self._closing = True
        ws = self._ws
        self._ws = None
        if ws is not None and not ws.closed:
            await ws.close()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None


class ReplayLineTransport:
    """Replays a fixed sequence of lines (capture files, tests).

    Reaching the end of the sequence is a normal end of stream.
    """

    def __init__(
        self,
        lines: Iterable[str],
        *,
        delay: float = 0.0,
        max_line_length: int | None = None,
    ) -> None:
        self._lines = lines
        self._delay = delay
        self._max_line_length = max_line_length
        self._closing = False

    @classmethod
    def from_file(
        cls,
        path: str | Path,
        *,
        encoding: str = "utf-8",
        delay: float = 0.0,
        max_line_length: int | None = None,
    ) -> ReplayLineTransport:
        text = Path(path).read_text(encoding=encoding, errors="replace")
        return cls(split_lines(text), delay=delay, max_line_length=max_line_length)

    async def lines(self) -> AsyncIterator[str]:
        for line in self._lines:
            if self._closing:
                return
            line = line.rstrip("\r\n")
            if within_limit(line, self._max_line_length):
                _logger.debug("Replaying line=%s", line_for_log(line))
                yield line
            # Always yield control so a stop request can interleave.
            await asyncio.sleep(self._delay)

    async def close(self) -> None:
        self._closing = True
