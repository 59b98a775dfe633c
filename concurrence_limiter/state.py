"""Shared state definitions for the concurrence limiter."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import DeniedError, LimiterError, ParseError, TransportError


class WatchdogPhase(str, enum.Enum):
    """
    Watchdog phases in chronological order:

    1. IDLE        - Constructed, no update issued yet
    2. STARTING    - Hooks installed, first update issued
    3. RUNNING     - Cadence timer active
    4. TERMINATED  - Timer cancelled, release sent (terminal)
    """
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    TERMINATED = "terminated"


class FailureKind(str, enum.Enum):
    TRANSPORT = "transport"
    PARSE = "parse"
    DENIED = "denied"


class EventType(str, enum.Enum):
    PLAYBACK_AUTHORIZED = "playback_authorized"
    PLAYBACK_BLOCKED = "playback_blocked"
    HEARTBEAT = "heartbeat"
    SESSION_TERMINATED = "session_terminated"


DENIED_REASON = "authorization denied"


@dataclass(frozen=True)
class AuthorizationResult:
    """Outcome of one call to the authority: either success or failure, never both."""

    success: bool
    token: Optional[str] = None
    position: Optional[int] = None
    player: Optional[str] = None
    reason: Optional[str] = None
    kind: Optional[FailureKind] = None
    body: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, body: Dict[str, Any]) -> "AuthorizationResult":
        position = body.get("position")
        if isinstance(position, bool) or not isinstance(position, (int, float)):
            position = None
        return cls(
            success=True,
            token=body.get("token") or None,
            position=int(position) if position is not None else None,
            player=body.get("player") or None,
            body=body,
        )

    @classmethod
    def failure(cls, kind: FailureKind, reason: str, body: Optional[Dict[str, Any]] = None) -> "AuthorizationResult":
        return cls(success=False, kind=kind, reason=reason, body=body or {})

    @property
    def denied(self) -> bool:
        return not self.success and self.kind is FailureKind.DENIED

    def to_error(self) -> Optional[LimiterError]:
        """Map a failure onto the matching exception; ``None`` for successes."""
        if self.success:
            return None
        error_cls = {
            FailureKind.TRANSPORT: TransportError,
            FailureKind.PARSE: ParseError,
            FailureKind.DENIED: DeniedError,
        }[self.kind or FailureKind.DENIED]
        return error_cls(self.reason or DENIED_REASON)


@dataclass
class SessionState:
    """Mutable heartbeat state, owned by a single SessionWatchdog."""

    player: str
    position: int = 0
    token: Optional[str] = None
    failures: int = 0
    in_flight: bool = False
    metadata_loaded: bool = False
    warmed_up: bool = False


@dataclass
class LimiterEvent:
    """Event payload distributed to observers (UI, logs, websocket clients)."""

    type: EventType
    data: Dict[str, Any]
    phase: Optional[WatchdogPhase] = None
    error: Optional[str] = None

    def as_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type.value, "data": self.data}
        if self.phase is not None:
            payload["phase"] = self.phase.value
        if self.error:
            payload["error"] = self.error
        return payload


__all__ = [
    "WatchdogPhase",
    "FailureKind",
    "EventType",
    "DENIED_REASON",
    "AuthorizationResult",
    "SessionState",
    "LimiterEvent",
]
