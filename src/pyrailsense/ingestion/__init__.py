"""Ingestion layer.

This package turns raw status lines from the field controller into typed
events: tokenize, classify, decode.  Nothing here touches the state store
except :mod:`pyrailsense.ingestion.apply`.
"""

__all__: list[str] = []
