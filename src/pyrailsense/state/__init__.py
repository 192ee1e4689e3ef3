"""State/store layer.

This package is the single source of truth for what state every track
block and every track's train status is currently in.  Decoded status
events are merged here and nowhere else.
"""
