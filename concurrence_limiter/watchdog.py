"""Heartbeat watchdog that keeps a play session authorized."""
from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from typing import Any, Dict, Optional, Set

from .backend.http_client import AuthorizationClient
from .config import SessionConfig
from .host import DISPOSE, LOADED_METADATA, TIME_UPDATE, PlayerHandle
from .state import (
    DENIED_REASON,
    AuthorizationResult,
    EventType,
    LimiterEvent,
    SessionState,
    WatchdogPhase,
)

logger = logging.getLogger(__name__)

UPDATE_FAILED_REASON = "authorization update failed"

BlockAction = Callable[[str, str, Optional[Dict[str, Any]]], Awaitable[None]]
EventSink = Callable[[LimiterEvent], None]


def whole_seconds(value: Optional[float]) -> int:
    """Round half up to whole seconds; ``None`` counts as zero."""
    return int(math.floor((value or 0) + 0.5))


class SessionWatchdog:
    """Periodically re-authorizes a play session and tears it down when that fails.

    The watchdog owns the session state. Every ``interval`` seconds it calls the
    update endpoint with the current token, position and play status. At most
    one update is in flight; ticks arriving while one is outstanding are
    dropped. Consecutive transport/parse failures are tolerated while the
    counter stays at or below ``max_update_fails``; an explicit denial ends the
    session at once.

    ``terminate`` is the single exit path for every trigger (denial, too many
    failures, player dispose, host shutdown). Its body runs once: the cadence
    timer is cancelled, a release call is sent, and for authorization failures
    the ``block`` action is invoked to stop the player.
    """

    def __init__(
        self,
        *,
        config: SessionConfig,
        client: AuthorizationClient,
        player: PlayerHandle,
        identity: str,
        token: Optional[str] = None,
        block: Optional[BlockAction] = None,
        publish: Optional[EventSink] = None,
    ) -> None:
        self.config = config
        self.client = client
        self.player = player
        self.state = SessionState(
            player=identity,
            token=token,
            position=whole_seconds(config.start_position),
        )
        self._block = block
        self._publish = publish or (lambda event: None)
        self._phase = WatchdogPhase.IDLE
        self._timer: Optional[asyncio.Task[None]] = None
        self._timers_created = 0
        self._pending: Set[asyncio.Task[None]] = set()
        self._release_task: Optional[asyncio.Task[None]] = None
        self._terminating = False
        self.termination_reason: Optional[str] = None

    @property
    def phase(self) -> WatchdogPhase:
        return self._phase

    @property
    def terminated(self) -> bool:
        return self._terminating

    @property
    def timer_active(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def timers_created(self) -> int:
        return self._timers_created

    def snapshot(self) -> Dict[str, Any]:
        return {
            "phase": self._phase.value,
            "player": self.state.player,
            "position": self.state.position,
            "has_token": self.state.token is not None,
            "failures": self.state.failures,
            "in_flight": self.state.in_flight,
            "termination_reason": self.termination_reason,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._phase is not WatchdogPhase.IDLE:
            logger.debug("Watchdog for %s already started (%s)", self.state.player, self._phase.value)
            return

        self._phase = WatchdogPhase.STARTING
        self.state.metadata_loaded = bool(getattr(self.player, "metadata_loaded", False))
        self.player.on(LOADED_METADATA, self._on_loaded_metadata)
        self.player.on(TIME_UPDATE, self._on_time_update)
        self.player.on(DISPOSE, self._on_dispose)

        self._timer = asyncio.create_task(self._cadence_loop(), name=f"limiter-watchdog-{self.state.player}")
        self._timers_created += 1
        logger.info(
            "Watchdog started for %s (interval=%ss, max_update_fails=%d)",
            self.state.player,
            self.config.interval,
            self.config.max_update_fails,
        )

        # first heartbeat goes out now, not one interval later
        self.tick()
        if self._phase is WatchdogPhase.STARTING:
            self._phase = WatchdogPhase.RUNNING

    async def terminate(
        self,
        *,
        code: Optional[str] = None,
        reason: Optional[str] = None,
        error: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Run the teardown once. Returns False when it already ran.

        Without ``code`` the shutdown is graceful (player dispose, host
        unload) and the block action is skipped.
        """
        if self._terminating:
            return False
        self._terminating = True
        graceful = code is None
        self.termination_reason = reason or "disposed"
        self._phase = WatchdogPhase.TERMINATED

        self._cancel_timer()
        self._detach_player_hooks()

        logger.info(
            "Terminating session %s (%s) at position %ss",
            self.state.player,
            self.termination_reason,
            self.state.position,
        )
        self._release_task = asyncio.create_task(self._release(), name=f"limiter-release-{self.state.player}")
        # release request reaches the transport before the player is stopped
        await asyncio.sleep(0)

        self._publish(
            LimiterEvent(
                type=EventType.SESSION_TERMINATED,
                phase=self._phase,
                data={"player": self.state.player, "reason": self.termination_reason, "graceful": graceful},
            )
        )

        if not graceful and self._block is not None:
            try:
                await self._block(code, self.termination_reason, error)
            except Exception:
                logger.exception("Block action failed for %s", self.state.player)

        await self._release_task
        return True

    async def drain(self) -> None:
        """Wait for outstanding update calls and the release call to settle."""
        tasks = list(self._pending)
        if self._release_task is not None:
            tasks.append(self._release_task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def tick(self) -> Optional[asyncio.Task[None]]:
        """Issue one update call unless one is already outstanding."""
        if self._phase not in (WatchdogPhase.STARTING, WatchdogPhase.RUNNING):
            return None

        self._publish(LimiterEvent(type=EventType.HEARTBEAT, phase=self._phase, data={"player": self.state.player}))

        if self.state.in_flight:
            logger.debug("Heartbeat for %s skipped: update still in flight", self.state.player)
            return None
        self.state.in_flight = True

        task = asyncio.create_task(
            self._run_update(
                player=self.state.player,
                token=self.state.token,
                position=self.state.position,
                paused=self.player.paused(),
            ),
            name=f"limiter-update-{self.state.player}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _cadence_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.config.interval)
                try:
                    self.tick()
                except Exception as exc:
                    logger.exception("Heartbeat tick error: %s", exc)
        except asyncio.CancelledError:
            logger.debug("Cadence timer for %s cancelled", self.state.player)
            raise

    async def _run_update(self, *, player: str, token: Optional[str], position: int, paused: bool) -> None:
        try:
            result = await self.client.update(
                self.config.update_url,
                player=player,
                token=token,
                position=position,
                paused=paused,
                timeout=self.config.request_timeout,
            )
        finally:
            self.state.in_flight = False

        if self._terminating:
            logger.debug("Discarding update result for terminated session %s", player)
            return
        await self._handle_update(result)

    async def _handle_update(self, result: AuthorizationResult) -> None:
        if result.success:
            self.state.failures = 0
            if result.player and result.player != self.state.player:
                logger.info("Authority rotated player identity %s -> %s", self.state.player, result.player)
                self.state.player = result.player
            if result.token:
                self.state.token = result.token
            if result.position is not None:
                self.state.position = result.position
            return

        if result.denied:
            logger.warning("Update denied for %s: %s", self.state.player, result.body)
            await self.terminate(code="noauth", reason=DENIED_REASON, error=result.body)
            return

        self.state.failures += 1
        logger.warning(
            "Update failed for %s (%d/%d tolerated): %s",
            self.state.player,
            self.state.failures,
            self.config.max_update_fails,
            result.reason,
        )
        if self.state.failures > self.config.max_update_fails:
            await self.terminate(code="authapifail", reason=UPDATE_FAILED_REASON, error={"msg": result.reason})

    async def _release(self) -> None:
        try:
            result = await self.client.release(
                self.config.dispose_url,
                player=self.state.player,
                token=self.state.token,
                position=self.state.position,
                timeout=self.config.request_timeout,
            )
        except Exception as exc:
            logger.warning("Release call for %s failed: %s", self.state.player, exc)
            return
        if not result.success:
            logger.debug("Release for %s not acknowledged: %s", self.state.player, result.reason)

    # ------------------------------------------------------------------
    # Player hooks
    # ------------------------------------------------------------------

    async def _on_loaded_metadata(self) -> None:
        self.state.metadata_loaded = True

    async def _on_time_update(self) -> None:
        if not self.state.metadata_loaded:
            return
        # first progress report after metadata is warm-up only; it tends to read 0
        if not self.state.warmed_up:
            self.state.warmed_up = True
            return
        self.state.position = whole_seconds(self.player.current_time())

    async def _on_dispose(self) -> None:
        await self.terminate()

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    def _detach_player_hooks(self) -> None:
        for event, callback in (
            (LOADED_METADATA, self._on_loaded_metadata),
            (TIME_UPDATE, self._on_time_update),
            (DISPOSE, self._on_dispose),
        ):
            try:
                self.player.off(event, callback)
            except Exception:
                logger.debug("Could not detach %s hook", event, exc_info=True)


__all__ = ["SessionWatchdog", "BlockAction", "EventSink", "UPDATE_FAILED_REASON", "whole_seconds"]
