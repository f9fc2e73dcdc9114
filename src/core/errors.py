# core/errors.py
from __future__ import annotations

class PlayerError(Exception):
    """Base class for everything the player core raises internally."""

class ConnectivityError(PlayerError):
    """DNS/connect/timeout failure or a non-2xx answer from Lavalink."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

class ParseError(PlayerError):
    """A single item of a Lavalink response is missing a field or has the wrong type."""
