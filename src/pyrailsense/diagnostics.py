"""Diagnostics emitted for dropped lines and dropped publishes."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import StrEnum

from pyrailsense.exceptions import RailDecodeError, UnrecognizedKeywordError


class DiagnosticKind(StrEnum):
    MALFORMED_LINE = "malformed_line"
    UNRECOGNIZED_KEYWORD = "unrecognized_keyword"
    UNCLASSIFIED_LINE = "unclassified_line"
    PUBLISH_DROPPED = "publish_dropped"


#: Log level used for each diagnostic kind.
DIAGNOSTIC_LEVELS: dict[DiagnosticKind, int] = {
    DiagnosticKind.MALFORMED_LINE: logging.WARNING,
    DiagnosticKind.UNRECOGNIZED_KEYWORD: logging.WARNING,
    DiagnosticKind.UNCLASSIFIED_LINE: logging.DEBUG,
    DiagnosticKind.PUBLISH_DROPPED: logging.WARNING,
}


@dataclass(frozen=True)
class Diagnostic:
    """A dropped line or dropped change, surfaced to the observability side."""

    kind: DiagnosticKind
    message: str
    line: str = ""
    reason: str = ""

    @classmethod
    def from_decode_error(cls, exc: RailDecodeError) -> Diagnostic:
        # Any other decode failure is a malformed line as well.
        kind = DiagnosticKind.MALFORMED_LINE
        if isinstance(exc, UnrecognizedKeywordError):
            kind = DiagnosticKind.UNRECOGNIZED_KEYWORD
        return cls(kind=kind, message=str(exc), line=exc.line, reason=exc.reason)


@dataclass
class IngestionStats:
    """Running counters for one engine."""

    started_at: float = field(default_factory=time.time)
    lines_received: int = 0
    events_applied: int = 0
    changes_published: int = 0
    first_line_at: float | None = None
    last_line_at: float | None = None
    diagnostics: dict[DiagnosticKind, int] = field(default_factory=dict)

    def on_line(self, now: float | None = None) -> None:
        now = time.time() if now is None else now
        self.lines_received += 1
        if self.first_line_at is None:
            self.first_line_at = now
        self.last_line_at = now

    def record(self, kind: DiagnosticKind) -> None:
        self.diagnostics[kind] = self.diagnostics.get(kind, 0) + 1

    def count(self, kind: DiagnosticKind) -> int:
        return self.diagnostics.get(kind, 0)
