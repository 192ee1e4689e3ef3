"""Custom exception hierarchy for pyrailsense."""

from __future__ import annotations


class RailError(Exception):
    """Base exception for all pyrailsense errors."""


class RailConfigError(RailError):
    """Invalid or missing configuration."""


class RailTransportError(RailError):
    """The line transport failed (connect error, read error, unexpected close).

    Fatal to the ingestion loop. State already applied to the store stays
    valid and queryable.
    """

    def __init__(
        self,
        message: str,
        *,
        endpoint: str = "",
    ) -> None:
        self.endpoint = endpoint
        super().__init__(message)


class RailDecodeError(RailError):
    """A status line could not be turned into a typed event."""

    def __init__(
        self,
        message: str,
        *,
        line: str = "",
        reason: str = "",
    ) -> None:
        self.line = line
        self.reason = reason
        super().__init__(message)


class MalformedLineError(RailDecodeError):
    """Wrong token count, or a non-integer/negative id where one is required."""


class UnrecognizedKeywordError(RailDecodeError):
    """The line was classified but its state keyword matches no known literal.

    Only raised for block lines, whose state token must resolve to one of
    ``OFF``, ``STANDING`` or ``RUNNING``.
    """
