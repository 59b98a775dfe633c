from __future__ import annotations

import asyncio
import json
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest

from concurrence_limiter.backend.http_client import AuthorizationClient
from concurrence_limiter.config import SessionConfig, Settings, resolve_session_config
from concurrence_limiter.host import EventedPlayer

BASE_URL = "http://authority.test"
OPTIONS: Dict[str, Any] = {
    "accessurl": f"{BASE_URL}/access",
    "updateurl": f"{BASE_URL}/update",
    "disposeurl": f"{BASE_URL}/dispose",
}

NETWORK_DOWN = object()
TIMED_OUT = object()


class Authority:
    """Scripted remote authority served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: List[Tuple[str, Dict[str, Any], httpx.Request]] = []
        self.scripted: Dict[str, List[Any]] = defaultdict(list)
        self.defaults: Dict[str, Any] = {
            "/access": {"success": True, "token": "T0"},
            "/update": {"success": True},
            "/dispose": {"success": True},
        }
        self.gates: Dict[str, asyncio.Event] = {}
        self.hook: Optional[Callable[[str, Dict[str, Any]], None]] = None

    def script(self, path: str, *responses: Any) -> None:
        self.scripted[path].extend(responses)

    def calls(self, path: str) -> List[Dict[str, Any]]:
        return [body for request_path, body, _ in self.requests if request_path == path]

    def hold(self, path: str) -> asyncio.Event:
        self.gates[path] = asyncio.Event()
        return self.gates[path]

    def hold_updates(self) -> asyncio.Event:
        return self.hold("/update")

    async def wait_for(self, path: str, count: int = 1) -> None:
        for _ in range(1000):
            if len(self.calls(path)) >= count:
                return
            await asyncio.sleep(0)
        raise AssertionError(f"expected {count} request(s) to {path}")

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content or b"{}")
        self.requests.append((path, body, request))
        if self.hook is not None:
            self.hook(path, body)

        gate = self.gates.get(path)
        if gate is not None:
            await gate.wait()

        queued = self.scripted.get(path)
        response = queued.pop(0) if queued else self.defaults.get(path, {"success": True})
        if response is NETWORK_DOWN:
            raise httpx.ConnectError("connection refused", request=request)
        if response is TIMED_OUT:
            raise httpx.ReadTimeout("timed out", request=request)
        if isinstance(response, str):
            return httpx.Response(200, text=response)
        return httpx.Response(200, json=response)

    def client(self) -> AuthorizationClient:
        return AuthorizationClient(transport=httpx.MockTransport(self.handler))


class FakePlayer(EventedPlayer):
    def __init__(self) -> None:
        super().__init__()
        self.pause_calls = 0
        self.dispose_calls = 0

    async def pause(self) -> None:
        self.pause_calls += 1
        await super().pause()

    async def dispose(self) -> None:
        self.dispose_calls += 1
        await super().dispose()


class FixedIdentity:
    def __init__(self, identity: str = "viewer-1") -> None:
        self.identity = identity

    def generate(self, config: SessionConfig) -> str:
        return config.player_id or self.identity


def session_config(**overrides: Any) -> SessionConfig:
    return resolve_session_config({**OPTIONS, **overrides})


def drain_queue(queue: "asyncio.Queue[Any]") -> List[Any]:
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


@pytest.fixture
def authority() -> Authority:
    return Authority()


@pytest.fixture
def player() -> FakePlayer:
    return FakePlayer()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        log_directory=tmp_path / "logs",
        observer_queue_size=64,
    )
