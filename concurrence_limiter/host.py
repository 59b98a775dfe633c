"""Host player protocol and the shutdown signal the limiter subscribes to."""
from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Dict, List, Protocol

logger = logging.getLogger(__name__)

LOADED_METADATA = "loadedmetadata"
TIME_UPDATE = "timeupdate"
DISPOSE = "dispose"

HostCallback = Callable[[], Awaitable[None]]


class PlayerHandle(Protocol):
    """What the limiter needs from a media player."""

    metadata_loaded: bool

    def paused(self) -> bool: ...

    def current_time(self) -> float: ...

    def set_current_time(self, seconds: float) -> None: ...

    def on(self, event: str, callback: HostCallback) -> None: ...

    def off(self, event: str, callback: HostCallback) -> None: ...

    def once(self, event: str, callback: HostCallback) -> None: ...

    async def pause(self) -> None: ...

    async def dispose(self) -> None: ...


class EventedPlayer:
    """Base player with callback registration and the notifications the limiter listens to.

    Integrations subclass it and call ``notify_loaded_metadata`` /
    ``notify_time_update`` from their own media callbacks. Without overrides
    it behaves as a headless player that only tracks position and paused state.
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[HostCallback]] = defaultdict(list)
        self._paused = True
        self._position = 0.0
        self.metadata_loaded = False
        self.disposed = False

    def on(self, event: str, callback: HostCallback) -> None:
        self._listeners[event].append(callback)

    def off(self, event: str, callback: HostCallback) -> None:
        listeners = self._listeners.get(event)
        if listeners and callback in listeners:
            listeners.remove(callback)

    def once(self, event: str, callback: HostCallback) -> None:
        async def _wrapper() -> None:
            self.off(event, _wrapper)
            await callback()

        self.on(event, _wrapper)

    async def emit(self, event: str) -> None:
        for callback in list(self._listeners.get(event, ())):
            try:
                await callback()
            except Exception:
                logger.exception("Player %s callback failed", event)

    async def notify_loaded_metadata(self) -> None:
        self.metadata_loaded = True
        await self.emit(LOADED_METADATA)

    async def notify_time_update(self) -> None:
        await self.emit(TIME_UPDATE)

    def paused(self) -> bool:
        return self._paused

    def current_time(self) -> float:
        return self._position

    def set_current_time(self, seconds: float) -> None:
        self._position = float(seconds)

    async def play(self) -> None:
        self._paused = False

    async def pause(self) -> None:
        self._paused = True

    async def dispose(self) -> None:
        if self.disposed:
            return
        self.disposed = True
        self._paused = True
        await self.emit(DISPOSE)
        self._listeners.clear()


class ShutdownSignal:
    """Single host-wide "about to unload" hook; fires its subscribers once."""

    def __init__(self) -> None:
        self._callbacks: List[HostCallback] = []
        self._fired = False

    @property
    def fired(self) -> bool:
        return self._fired

    def subscribe(self, callback: HostCallback) -> None:
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unsubscribe(self, callback: HostCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def fire(self) -> None:
        if self._fired:
            return
        self._fired = True
        logger.info("Shutdown signal fired (%d subscribers)", len(self._callbacks))
        for callback in list(self._callbacks):
            try:
                await callback()
            except Exception:
                logger.exception("Shutdown subscriber failed")


__all__ = [
    "LOADED_METADATA",
    "TIME_UPDATE",
    "DISPOSE",
    "HostCallback",
    "PlayerHandle",
    "EventedPlayer",
    "ShutdownSignal",
]
