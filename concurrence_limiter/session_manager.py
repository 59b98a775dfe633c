"""Session orchestration: validate, recover position, start the watchdog."""
from __future__ import annotations

import asyncio
import functools
import logging
from asyncio import QueueEmpty
from typing import Any, Dict, List, Mapping, Optional

from .backend.http_client import AuthorizationClient
from .config import SessionConfig, Settings, get_settings, resolve_session_config
from .errors import ConfigError
from .host import DISPOSE, LOADED_METADATA, PlayerHandle, ShutdownSignal
from .identity import IdentitySource, JsonFileStore, KeyValueStore, MemoryStore, StorageIdentityProvider
from .state import AuthorizationResult, EventType, LimiterEvent
from .watchdog import SessionWatchdog, whole_seconds

logger = logging.getLogger(__name__)

CANNOT_PLAY_REASON = "cannot play"
DEFAULT_BLOCK_REASON = "You have reached the maximum number of active players."


class SessionController:
    """Starts guarded play sessions and fans their events out to observers."""

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        client: Optional[AuthorizationClient] = None,
        identity_source: Optional[IdentitySource] = None,
        shutdown_signal: Optional[ShutdownSignal] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client or AuthorizationClient()
        self._identity = identity_source or StorageIdentityProvider(self._default_store())
        self.shutdown_signal = shutdown_signal or ShutdownSignal()
        self.shutdown_signal.subscribe(self._on_shutdown)
        self._observers: List[asyncio.Queue[LimiterEvent]] = []
        self._sessions: List[SessionWatchdog] = []

    def _default_store(self) -> KeyValueStore:
        path = self.settings.identity_store_path
        if path:
            return JsonFileStore(path)
        return MemoryStore()

    @property
    def sessions(self) -> List[SessionWatchdog]:
        return [watchdog for watchdog in self._sessions if not watchdog.terminated]

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def register_observer(self, maxsize: Optional[int] = None) -> asyncio.Queue[LimiterEvent]:
        size = self.settings.observer_queue_size if maxsize is None else maxsize
        queue: asyncio.Queue[LimiterEvent] = asyncio.Queue(maxsize=size)
        self._observers.append(queue)
        return queue

    def unregister_observer(self, queue: asyncio.Queue[LimiterEvent]) -> None:
        if queue in self._observers:
            self._observers.remove(queue)

    def publish(self, event: LimiterEvent) -> None:
        """Broadcast to every observer, dropping the oldest event of a full queue."""
        for queue in list(self._observers):
            try:
                if queue.full():
                    try:
                        queue.get_nowait()
                    except QueueEmpty:
                        pass
                queue.put_nowait(event)
            except Exception as e:
                logger.warning("Failed to publish event to observer: %s", e)

    # ------------------------------------------------------------------
    # Session flow
    # ------------------------------------------------------------------

    async def start(self, options: Optional[Mapping[str, Any]], player: PlayerHandle) -> Optional[SessionWatchdog]:
        """
        Guard one player.

        Flow:
        1. Resolve options (invalid -> nothing happens, no network)
        2. Resolve the player identity
        3. Validate with the authority (any failure blocks the player; a
           dispose or shutdown meanwhile releases the granted slot)
        4. Re-apply a previously reported position once metadata loads
        5. Start the heartbeat watchdog
        """
        try:
            config = resolve_session_config(options, defaults=self.settings.session_defaults())
        except ConfigError as exc:
            logger.error("Refusing to start session: %s", exc)
            return None

        identity = self._identity.generate(config)
        logger.info("Validating player %s against %s", identity, config.access_url)

        disposed = asyncio.Event()

        async def _on_dispose() -> None:
            disposed.set()

        player.on(DISPOSE, _on_dispose)
        try:
            result = await self._client.validate(config.access_url, identity, timeout=config.request_timeout)
        finally:
            player.off(DISPOSE, _on_dispose)

        if not result.success:
            logger.warning("Player %s cannot play: %s", identity, result.reason)
            await self.block_player(player, "cantplay", CANNOT_PLAY_REASON, {"msg": result.reason})
            return None

        if disposed.is_set() or self.shutdown_signal.fired:
            reason = "disposed" if disposed.is_set() else "shutdown"
            logger.info("Player %s went away during validate (%s); releasing slot", identity, reason)
            await self._release_granted(config, identity, result)
            return None

        self.publish(LimiterEvent(type=EventType.PLAYBACK_AUTHORIZED, data={"code": 1, "player": identity}))
        self._recover_position(player, result)

        watchdog = SessionWatchdog(
            config=config,
            client=self._client,
            player=player,
            identity=identity,
            token=result.token,
            block=functools.partial(self.block_player, player),
            publish=self.publish,
        )
        self._sessions = [existing for existing in self._sessions if not existing.terminated]
        self._sessions.append(watchdog)
        await watchdog.start()
        return watchdog

    async def _release_granted(self, config: SessionConfig, identity: str, result: AuthorizationResult) -> None:
        try:
            await self._client.release(
                config.dispose_url,
                player=identity,
                token=result.token,
                position=whole_seconds(config.start_position),
                timeout=config.request_timeout,
            )
        except Exception as e:
            logger.warning("Release call for %s failed: %s", identity, e)

    def _recover_position(self, player: PlayerHandle, result: AuthorizationResult) -> None:
        position = result.position
        if not position:
            return

        async def _apply() -> None:
            player.set_current_time(position)
            logger.info("Recovered playback position %ss", position)

        if player.metadata_loaded:
            player.set_current_time(position)
            logger.info("Recovered playback position %ss", position)
        else:
            player.once(LOADED_METADATA, _apply)

    async def block_player(
        self,
        player: PlayerHandle,
        code: str = "error",
        reason: Optional[str] = None,
        error: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Stop playback and release the player, telling observers why."""
        reason = reason or DEFAULT_BLOCK_REASON
        logger.warning("Stopping player (%s): %s", code, reason)

        self.publish(
            LimiterEvent(
                type=EventType.PLAYBACK_BLOCKED,
                data={"code": code, "reason": reason, "error": error},
                error=reason,
            )
        )
        try:
            await player.pause()
        except Exception as e:
            logger.warning("Error pausing player: %s", e)
        try:
            await player.dispose()
        except Exception as e:
            logger.warning("Error disposing player: %s", e)

    async def _on_shutdown(self) -> None:
        for watchdog in self.sessions:
            await watchdog.terminate(reason="shutdown")

    async def stop(self) -> None:
        logger.info("Stopping session controller")
        self.shutdown_signal.unsubscribe(self._on_shutdown)
        await self._on_shutdown()
        for watchdog in self._sessions:
            await watchdog.drain()
        self._sessions.clear()
        await self._client.aclose()
        logger.info("Session controller stopped")


__all__ = ["SessionController", "CANNOT_PLAY_REASON", "DEFAULT_BLOCK_REASON"]
