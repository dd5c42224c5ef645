"""HTTP client for a running relay.

Speaks the same protocol as the browser dialog: publishes messages,
answers requests with the ``rpc-response`` convention, reads the key
registry and follows the event stream.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from dialogrelay.domain.models import RPC_RESPONSE_TOPIC, RelayMessage
from dialogrelay.relay.app import KEYS_PATH

logger = logging.getLogger(__name__)


class RelayClientError(Exception):
    """Raised when a request to the relay fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RelayClient:
    """Talks to a relay endpoint over HTTP.

    Example usage::

        async with RelayClient(relay_url) as client:
            keys = await client.list_keys()
            await client.respond(7, {"accounts": [...]})
    """

    def __init__(self, base_url: str, timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Create the HTTP client and verify the relay is reachable."""
        self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
        try:
            resp = await self._client.get("/health")
            resp.raise_for_status()
            logger.info("Connected to relay at %s", self._base_url)
        except Exception as e:
            await self._client.aclose()
            self._client = None
            raise RelayClientError(f"Failed to connect to relay: {e}") from e

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Disconnected from relay")

    async def publish(self, topic: str, payload: Any, id: str | None = None) -> None:
        """POST a message to the relay for broadcast."""
        body: dict[str, Any] = {"topic": topic, "payload": payload}
        if id is not None:
            body["id"] = id
        await self._request("POST", "/", json=body)
        logger.debug("Published %s message", topic)

    async def respond(self, request_id: int, result: Any) -> None:
        """Answer request ``request_id`` with ``result``."""
        await self.publish(RPC_RESPONSE_TOPIC, {"id": request_id, "result": result})

    async def list_keys(self) -> list[str]:
        resp = await self._request("GET", KEYS_PATH)
        return list(resp.json().get("keys", []))

    async def stream(self) -> AsyncIterator[RelayMessage]:
        """Follow the relay's event stream, yielding each message.

        Ends when the relay closes the stream.
        """
        client = self._require_client()
        try:
            async with client.stream("GET", "/", timeout=httpx.Timeout(self._timeout, read=None)) as resp:
                resp.raise_for_status()
                async for line in resp.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    yield RelayMessage.model_validate(json.loads(line[5:].strip()))
        except httpx.HTTPError as e:
            raise RelayClientError(f"Event stream failed: {e}") from e

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        client = self._require_client()
        try:
            resp = await client.request(method, path, **kwargs)
            resp.raise_for_status()
            return resp
        except httpx.HTTPStatusError as e:
            raise RelayClientError(
                f"{method} {path} returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise RelayClientError(f"{method} {path} failed: {e}") from e

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RelayClientError("Not connected to relay")
        return self._client

    async def __aenter__(self) -> RelayClient:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.disconnect()
