#!/usr/bin/env python3
"""Status-line probe for a layout field controller.

Connects with the configured transport (``RAIL_*`` environment variables)
or replays a capture file, prints every committed state change and every
diagnostic, and prints a summary on exit.

Use this to check what a controller actually sends before wiring up a
display.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
import time
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pyrailsense import (  # noqa: E402
    Diagnostic,
    IngestionStats,
    RailConfig,
    RailError,
    RailSenseEngine,
    ReplayLineTransport,
    StateChange,
)

_LOG = logging.getLogger("line_probe")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Print block/train state changes from a layout status stream.",
    )
    parser.add_argument(
        "--replay",
        type=Path,
        default=None,
        help="Replay status lines from a capture file instead of connecting.",
    )
    parser.add_argument(
        "--replay-delay",
        type=float,
        default=0.0,
        help="Seconds between replayed lines.",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C or end of stream).",
    )
    parser.add_argument(
        "--parse-mode",
        choices=["strict", "legacy"],
        default=None,
        help="Override RAIL_PARSE_MODE.",
    )
    parser.add_argument(
        "--track-mapping",
        choices=["per_track", "two_track"],
        default=None,
        help="Override RAIL_TRACK_MAPPING.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _print_change(change: StateChange) -> None:
    previous = change.previous_value if change.previous_value is not None else "-"
    print(f"[probe] {change.entity_kind:<12} {change.entity_id:>4} : {previous} -> {change.new_value}")


def _print_diagnostic(diagnostic: Diagnostic) -> None:
    print(f"[probe] dropped {diagnostic.kind}: {diagnostic.message}")


def _print_summary(stats: IngestionStats, engine: RailSenseEngine) -> None:
    runtime = time.time() - stats.started_at
    print("[probe] Summary")
    print(f"[probe]   runtime_s         : {runtime:.1f}")
    print(f"[probe]   lines_received    : {stats.lines_received}")
    print(f"[probe]   events_applied    : {stats.events_applied}")
    print(f"[probe]   changes_published : {stats.changes_published}")
    for kind, count in sorted(stats.diagnostics.items()):
        print(f"[probe]   {kind:<17} : {count}")
    for block_id, state in sorted(engine.store.blocks_snapshot().items()):
        print(f"[probe]   block {block_id:>4}        : {state}")
    for track_id, direction in sorted(engine.store.tracks_snapshot().items()):
        print(f"[probe]   track {track_id:>4}        : {direction}")


async def _probe(args: argparse.Namespace, config: RailConfig) -> int:
    async with RailSenseEngine(config, on_change=_print_change, on_diagnostic=_print_diagnostic) as engine:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, engine.request_stop)
        if args.duration > 0:
            loop.call_later(args.duration, engine.request_stop)

        if args.replay is not None:
            transport = ReplayLineTransport.from_file(
                args.replay,
                encoding=config.encoding,
                delay=args.replay_delay,
                max_line_length=config.max_line_length,
            )
        else:
            transport = engine.open_transport()

        exit_code = 0
        try:
            await engine.run(transport)
        except RailError as exc:
            print(f"[probe] Stream failed: {exc}", file=sys.stderr)
            exit_code = 2
    _print_summary(engine.stats, engine)
    return exit_code


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    overrides: dict[str, str] = {}
    if args.parse_mode:
        overrides["parse_mode"] = args.parse_mode
    if args.track_mapping:
        overrides["track_mapping"] = args.track_mapping
    try:
        config = RailConfig.from_env(**overrides)
    except RailError as exc:
        print(f"[probe] Invalid configuration: {exc}", file=sys.stderr)
        return 2

    return asyncio.run(_probe(args, config))


if __name__ == "__main__":
    raise SystemExit(_main())
