"""Error taxonomy for the concurrence limiter."""
from __future__ import annotations

from typing import Optional


class LimiterError(RuntimeError):
    """Base class for every error raised by the limiter."""

    def __init__(self, reason: str, *, log_message: Optional[str] = None) -> None:
        super().__init__(log_message or reason)
        self.reason = reason


class TransportError(LimiterError):
    """Network failure or timeout while talking to the authority."""


class ParseError(LimiterError):
    """The authority answered with an empty or malformed body."""


class DeniedError(LimiterError):
    """The authority explicitly refused authorization."""


class ConfigError(LimiterError):
    """Startup configuration is missing or invalid."""


__all__ = ["LimiterError", "TransportError", "ParseError", "DeniedError", "ConfigError"]
