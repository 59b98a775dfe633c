"""Client-side play-session concurrency guard for media players."""
__version__ = "0.2.0"

from .backend.http_client import AuthorizationClient
from .config import SessionConfig, Settings, get_settings, resolve_session_config
from .errors import ConfigError, DeniedError, LimiterError, ParseError, TransportError
from .host import EventedPlayer, PlayerHandle, ShutdownSignal
from .identity import IdentitySource, JsonFileStore, MemoryStore, StorageIdentityProvider
from .session_manager import SessionController
from .state import AuthorizationResult, EventType, LimiterEvent, WatchdogPhase
from .watchdog import SessionWatchdog

__all__ = [
    "__version__",
    "AuthorizationClient",
    "AuthorizationResult",
    "ConfigError",
    "DeniedError",
    "EventType",
    "EventedPlayer",
    "IdentitySource",
    "JsonFileStore",
    "LimiterError",
    "LimiterEvent",
    "MemoryStore",
    "ParseError",
    "PlayerHandle",
    "SessionConfig",
    "SessionController",
    "SessionWatchdog",
    "Settings",
    "ShutdownSignal",
    "StorageIdentityProvider",
    "TransportError",
    "WatchdogPhase",
    "get_settings",
    "resolve_session_config",
]
