"""HTTP client for the authorization authority (validate / update / release)."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

from ..state import DENIED_REASON, AuthorizationResult, FailureKind

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Content-Type": "application/json"}
DEFAULT_TIMEOUT_SECONDS = 15.0


class AuthorizationClient:
    """Fire-and-handle-response POST calls; every outcome becomes an AuthorizationResult."""

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def call(
        self,
        url: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> AuthorizationResult:
        """POST ``payload`` as JSON to ``url``. Never raises, never retries."""
        body = json.dumps(payload) if payload else "{}"
        try:
            response = await self._client.post(
                url,
                content=body,
                headers=JSON_HEADERS,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.debug("authority.call: timeout for %s - %s", url, e)
            return AuthorizationResult.failure(FailureKind.TRANSPORT, str(e) or "request timeout")
        except httpx.TransportError as e:
            logger.debug("authority.call: network error for %s - %s", url, e)
            return AuthorizationResult.failure(FailureKind.TRANSPORT, str(e) or type(e).__name__)
        except Exception as e:
            logger.exception("authority.call: unexpected error for %s - %s", url, e)
            return AuthorizationResult.failure(FailureKind.TRANSPORT, str(e) or type(e).__name__)

        return self._interpret(response)

    @staticmethod
    def _interpret(response: httpx.Response) -> AuthorizationResult:
        text = response.text
        if not text.strip():
            return AuthorizationResult.failure(
                FailureKind.PARSE, f"empty response body (HTTP {response.status_code})"
            )
        try:
            data = json.loads(text)
        except ValueError:
            return AuthorizationResult.failure(
                FailureKind.PARSE, f"invalid JSON body (HTTP {response.status_code})"
            )

        if isinstance(data, dict) and data.get("success"):
            return AuthorizationResult.ok(data)
        return AuthorizationResult.failure(
            FailureKind.DENIED, DENIED_REASON, data if isinstance(data, dict) else {"body": data}
        )

    async def validate(self, url: str, player: str, *, timeout: Optional[float] = None) -> AuthorizationResult:
        return await self.call(url, {"player": player}, timeout=timeout)

    async def update(
        self,
        url: str,
        *,
        player: str,
        token: Optional[str],
        position: int,
        paused: bool,
        timeout: Optional[float] = None,
    ) -> AuthorizationResult:
        payload = {
            "player": player,
            "token": token,
            "position": position,
            "status": "paused" if paused else "playing",
        }
        return await self.call(url, payload, timeout=timeout)

    async def release(
        self,
        url: str,
        *,
        player: str,
        token: Optional[str],
        position: int,
        timeout: Optional[float] = None,
    ) -> AuthorizationResult:
        payload = {
            "player": player,
            "position": position,
            "token": token,
            "status": "paused",
        }
        return await self.call(url, payload, timeout=timeout)

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing HTTP client: %s", e)


__all__ = ["AuthorizationClient", "JSON_HEADERS"]
