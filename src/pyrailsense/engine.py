"""High-level async reconciliation engine for layout status lines."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from pyrailsense._logsafe import line_for_log
from pyrailsense._mqtt import MqttLineTransport, MqttSettings
from pyrailsense._publisher import ChangePublisher, ChangeSink
from pyrailsense._transport import LineTransport, TcpLineTransport, WebSocketLineTransport
from pyrailsense.config import RailConfig
from pyrailsense.diagnostics import DIAGNOSTIC_LEVELS, Diagnostic, DiagnosticKind, IngestionStats
from pyrailsense.exceptions import RailConfigError, RailDecodeError, RailError, RailTransportError
from pyrailsense.ingestion.apply import apply_line_to_store
from pyrailsense.state.events import StateChange, UnrecognizedEvent
from pyrailsense.state.store import StateStore

_logger = logging.getLogger(__name__)


class RailSenseEngine:
    """Reconciles a stream of status lines into an authoritative state store.

    Usage::

        async with RailSenseEngine(config, on_change=renderer.update) as engine:
            await engine.run(engine.open_transport())

    Lines are consumed sequentially in arrival order.  Each line is decoded
    completely, applied to the store, and any resulting change is handed to
    ``on_change`` through a bounded queue, so a slow renderer never stalls
    ingestion for longer than ``config.publish_timeout`` and never holds up
    shutdown for longer than ``config.flush_timeout``.
    """

    def __init__(
        self,
        config: RailConfig | None = None,
        *,
        store: StateStore | None = None,
        on_change: ChangeSink | None = None,
        on_diagnostic: Callable[[Diagnostic], None] | None = None,
    ) -> None:
        self._config = config or RailConfig()
        self._store = store or StateStore(track_mapping=self._config.track_mapping)
        self._on_diagnostic = on_diagnostic
        self._stats = IngestionStats()
        self._publisher = ChangePublisher(
            on_change,
            maxsize=self._config.publish_queue_size,
            put_timeout=self._config.publish_timeout,
            flush_timeout=self._config.flush_timeout,
            on_drop=self._on_publish_dropped,
        )
        self._stop_event = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._running = False
        self._transport: LineTransport | None = None
        self.last_error: RailError | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> RailSenseEngine:
        self._publisher.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> RailConfig:
        return self._config

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def stats(self) -> IngestionStats:
        return self._stats

    @property
    def is_running(self) -> bool:
        """Whether :meth:`run` is currently consuming a transport."""
        return self._running

    # ------------------------------------------------------------------
    # Transports
    # ------------------------------------------------------------------

    def open_transport(self) -> LineTransport:
        """Build the transport described by the configuration."""
        config = self._config
        if config.transport == "tcp":
            return TcpLineTransport(
                config.host,
                config.port,
                encoding=config.encoding,
                limit=config.max_line_length,
            )
        if config.transport == "websocket":
            if not config.websocket_url:
                raise RailConfigError("websocket_url is required for the websocket transport")
            return WebSocketLineTransport(
                config.websocket_url,
                encoding=config.encoding,
                max_line_length=config.max_line_length,
            )
        if config.transport == "mqtt":
            settings = MqttSettings(
                broker_host=config.host,
                broker_port=config.port,
                topic=config.mqtt_topic,
                username=config.mqtt_username,
                password=config.mqtt_password,
                tls=config.mqtt_tls,
                keepalive=config.mqtt_keepalive,
            )
            return MqttLineTransport(
                settings,
                encoding=config.encoding,
                queue_size=config.mqtt_queue_size,
                max_line_length=config.max_line_length,
                logger=_logger,
            )
        raise RailConfigError(f"Unknown transport {config.transport!r}")

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def process_line(self, line: str) -> StateChange | None:
        """Decode, apply and publish a single status line.

        Bad lines never raise: they are dropped and reported as a
        :class:`Diagnostic`.  Returns the committed change, if any.
        The publisher is started on first use, so changes are delivered
        even outside ``async with`` or :meth:`run`.
        """
        self._publisher.start()
        self._stats.on_line()
        try:
            event, change = apply_line_to_store(self._store.apply, line, mode=self._config.parse_mode)
        except RailDecodeError as exc:
            self._emit_diagnostic(Diagnostic.from_decode_error(exc))
            return None

        if isinstance(event, UnrecognizedEvent):
            self._emit_diagnostic(
                Diagnostic(
                    kind=DiagnosticKind.UNCLASSIFIED_LINE,
                    message="line matches no status pattern",
                    line=event.raw_line,
                    reason="unclassified",
                )
            )
            return None

        self._stats.events_applied += 1
        if change is None:
            return None
        if await self._publisher.publish(change):
            self._stats.changes_published += 1
        return change

    async def run(self, transport: LineTransport) -> None:
        """Consume *transport* until it ends, :meth:`request_stop` is called, or it fails.

        Raises
        ------
        RailTransportError
            The transport failed.  State applied so far stays valid; the
            owner may reconnect by calling :meth:`run` with a new transport.
        """
        if self._running:
            raise RailError("Engine is already running")
        self._publisher.start()
        self._stop_event.clear()
        self._transport = transport
        self._running = True
        self._idle.clear()
        self.last_error = None
        _logger.debug("Ingestion loop started")

        lines = transport.lines()
        try:
            while not self._stop_event.is_set():
                line = await self._next_line(lines)
                if line is None:
                    break
                await self.process_line(line)
        except RailTransportError as exc:
            self.last_error = exc
            _logger.error("Ingestion loop stopped by transport failure: %s", exc)
            raise
        except (OSError, EOFError) as exc:
            error = RailTransportError(f"Transport failed: {exc}", endpoint=getattr(transport, "endpoint", ""))
            self.last_error = error
            _logger.error("Ingestion loop stopped by transport failure: %s", exc)
            raise error from exc
        finally:
            self._running = False
            self._transport = None
            await self._close_lines(lines)
            await transport.close()
            self._idle.set()
            _logger.debug("Ingestion loop finished lines=%s", self._stats.lines_received)

    async def _next_line(self, lines: AsyncIterator[str]) -> str | None:
        """Next line, or ``None`` on end of stream or stop request."""
        next_task = asyncio.ensure_future(anext(lines))
        stop_task = asyncio.ensure_future(self._stop_event.wait())
        try:
            done, _ = await asyncio.wait({next_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            next_task.cancel()
            raise
        finally:
            stop_task.cancel()
        if next_task in done:
            try:
                return next_task.result()
            except StopAsyncIteration:
                return None
        next_task.cancel()
        with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
            await next_task
        return None

    @staticmethod
    async def _close_lines(lines: AsyncIterator[str]) -> None:
        aclose = getattr(lines, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except RuntimeError:
            # Generator still running inside a cancelled anext(); it is torn down by cancellation.
            _logger.debug("Line iterator close deferred", exc_info=True)

    def request_stop(self) -> None:
        """Ask the ingestion loop to stop after the line in progress."""
        self._stop_event.set()

    async def stop(self) -> None:
        """Stop ingestion and flush committed but unpublished changes."""
        self.request_stop()
        transport = self._transport
        if transport is not None:
            await transport.close()
        await self._idle.wait()
        await self._publisher.stop(flush=True)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def _on_publish_dropped(self, change: StateChange) -> None:
        self._emit_diagnostic(
            Diagnostic(
                kind=DiagnosticKind.PUBLISH_DROPPED,
                message=f"renderer did not accept {change.entity_kind} {change.entity_id}={change.new_value}",
                reason="renderer_timeout",
            )
        )

    def _emit_diagnostic(self, diagnostic: Diagnostic) -> None:
        self._stats.record(diagnostic.kind)
        _logger.log(
            DIAGNOSTIC_LEVELS[diagnostic.kind],
            "Dropped %s: %s line=%s",
            diagnostic.kind,
            diagnostic.message,
            line_for_log(diagnostic.line),
        )
        if self._on_diagnostic is None:
            return
        try:
            self._on_diagnostic(diagnostic)
        except Exception:
            _logger.error("Diagnostic callback failed", exc_info=True)
