"""Whitespace tokenizer for status lines."""

from __future__ import annotations


def tokenize(line: str) -> list[str]:
    """Split *line* on runs of whitespace.

    Leading/trailing whitespace and any line terminator are ignored. Never
    fails; an empty or blank line yields an empty list.
    """
    return line.split()
