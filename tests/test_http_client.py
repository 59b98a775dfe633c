from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from concurrence_limiter.backend.http_client import AuthorizationClient
from concurrence_limiter.errors import DeniedError, ParseError, TransportError
from concurrence_limiter.state import DENIED_REASON, FailureKind

from .conftest import BASE_URL, NETWORK_DOWN, TIMED_OUT, Authority


def _call(authority: Authority, path: str, payload=None):
    async def run():
        client = authority.client()
        try:
            return await client.call(f"{BASE_URL}{path}", payload)
        finally:
            await client.aclose()

    return asyncio.run(run())


def test_posts_json_with_content_type(authority: Authority) -> None:
    _call(authority, "/access", {"player": "viewer-1"})

    path, body, request = authority.requests[0]
    assert request.method == "POST"
    assert request.headers["content-type"] == "application/json"
    assert path == "/access"
    assert body == {"player": "viewer-1"}


def test_missing_payload_sends_empty_object(authority: Authority) -> None:
    _call(authority, "/access")
    assert authority.requests[0][2].content == b"{}"


def test_success_carries_token_and_position(authority: Authority) -> None:
    authority.script("/access", {"success": True, "token": "abc", "position": 45})

    result = _call(authority, "/access", {"player": "viewer-1"})

    assert result.success is True
    assert result.token == "abc"
    assert result.position == 45
    assert result.reason is None
    assert result.to_error() is None


def test_success_without_optional_fields(authority: Authority) -> None:
    authority.script("/update", {"success": 1})

    result = _call(authority, "/update")

    assert result.success is True
    assert result.token is None
    assert result.position is None
    assert result.player is None


def test_well_formed_refusal_is_denied(authority: Authority) -> None:
    authority.script("/access", {"success": False, "message": "too many screens"})

    result = _call(authority, "/access")

    assert result.success is False
    assert result.kind is FailureKind.DENIED
    assert result.denied is True
    assert result.reason == DENIED_REASON
    assert result.body["message"] == "too many screens"
    assert isinstance(result.to_error(), DeniedError)


def test_non_object_body_is_denied(authority: Authority) -> None:
    authority.script("/access", "[1, 2, 3]")
    assert _call(authority, "/access").kind is FailureKind.DENIED


@pytest.mark.parametrize("body", ["", "   ", "<html>oops</html>"])
def test_unparsable_body_is_a_parse_failure(authority: Authority, body: str) -> None:
    authority.script("/update", body)

    result = _call(authority, "/update")

    assert result.success is False
    assert result.kind is FailureKind.PARSE
    assert "HTTP 200" in result.reason
    assert isinstance(result.to_error(), ParseError)


@pytest.mark.parametrize("failure", [NETWORK_DOWN, TIMED_OUT])
def test_transport_failures_are_not_raised(authority: Authority, failure: object) -> None:
    authority.script("/update", failure)

    result = _call(authority, "/update")

    assert result.success is False
    assert result.kind is FailureKind.TRANSPORT
    assert result.reason
    assert isinstance(result.to_error(), TransportError)
    assert len(authority.calls("/update")) == 1


def test_http_status_does_not_decide_outcome() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"success": True, "token": "still-ok"})

    async def run():
        client = AuthorizationClient(transport=httpx.MockTransport(handler))
        try:
            return await client.call(f"{BASE_URL}/update", {"player": "p"})
        finally:
            await client.aclose()

    assert asyncio.run(run()).token == "still-ok"


def test_update_and_release_payload_shapes(authority: Authority) -> None:
    async def run():
        client = authority.client()
        try:
            await client.update(f"{BASE_URL}/update", player="p", token="t", position=12, paused=False)
            await client.update(f"{BASE_URL}/update", player="p", token=None, position=0, paused=True)
            await client.release(f"{BASE_URL}/dispose", player="p", token="t", position=30)
        finally:
            await client.aclose()

    asyncio.run(run())

    assert authority.calls("/update") == [
        {"player": "p", "token": "t", "position": 12, "status": "playing"},
        {"player": "p", "token": None, "position": 0, "status": "paused"},
    ]
    assert authority.calls("/dispose") == [{"player": "p", "position": 30, "token": "t", "status": "paused"}]


def test_timeout_is_forwarded_per_request() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.extensions["timeout"])
        return httpx.Response(200, text=json.dumps({"success": True}))

    async def run():
        client = AuthorizationClient(transport=httpx.MockTransport(handler))
        try:
            await client.call(f"{BASE_URL}/access", {"player": "p"}, timeout=2.5)
        finally:
            await client.aclose()

    asyncio.run(run())

    assert seen["read"] == pytest.approx(2.5)
