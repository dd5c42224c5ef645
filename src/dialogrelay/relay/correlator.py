"""Correlation of RPC responses with the requests waiting on them.

Each in-flight request id owns one Pending Wait: an ``asyncio.Future``
that is fulfilled at most once. A wait can be resolved directly (the
HTTP endpoint saw a response for it) or by observing a response on the
broadcast bus. The entry is removed from the map before the future is
fulfilled, so whichever path gets there second finds nothing and does
nothing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from dialogrelay.domain.models import RelayMessage, parse_rpc_response
from dialogrelay.relay.errors import DuplicateWaitError

logger = logging.getLogger(__name__)


class ResponseCorrelator:
    """Map of request id to its pending one-shot response slot."""

    def __init__(self) -> None:
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def pending_ids(self) -> set[int]:
        return set(self._pending)

    async def register(self, request_id: int) -> asyncio.Future[Any]:
        """Create the Pending Wait for ``request_id`` and return its future.

        Raises:
            DuplicateWaitError: If a wait for this id is already pending.
                The existing wait is left untouched.
        """
        async with self._lock:
            if request_id in self._pending:
                raise DuplicateWaitError(
                    f"Request {request_id} is already being waited on",
                    request_id=request_id,
                )
            future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
            self._pending[request_id] = future
        logger.debug("Waiting for response to request %d", request_id)
        return future

    async def resolve(self, request_id: int, value: Any) -> bool:
        """Fulfil the wait for ``request_id``.

        Returns True if a wait was pending and received ``value``. Unknown,
        already-resolved and abandoned ids return False.
        """
        async with self._lock:
            future = self._pending.pop(request_id, None)
        if future is None:
            logger.debug("Ignoring response for request %d, nothing pending", request_id)
            return False
        if future.done():
            return False
        future.set_result(value)
        logger.debug("Resolved request %d", request_id)
        return True

    async def observe(self, message: RelayMessage, request_id: int | None = None) -> bool:
        """Resolve a wait from a broadcast message, if it is a response.

        When ``request_id`` is given, only a response for that id is
        considered.
        """
        response = parse_rpc_response(message.topic, message.payload)
        if response is None:
            return False
        if request_id is not None and response.request_id != request_id:
            return False
        return await self.resolve(response.request_id, response.result)

    async def discard(self, request_id: int, future: asyncio.Future[Any] | None = None) -> bool:
        """Abandon the wait for ``request_id`` and cancel its future.

        When ``future`` is given the entry is only removed if it is still
        that future, so a caller cannot drop somebody else's wait.
        """
        async with self._lock:
            current = self._pending.get(request_id)
            if current is None or (future is not None and current is not future):
                return False
            del self._pending[request_id]
        current.cancel()
        logger.debug("Abandoned wait for request %d", request_id)
        return True

    async def await_response(self, request_id: int) -> Any:
        """Register a wait and block until it is resolved. No timeout."""
        future = await self.register(request_id)
        try:
            return await future
        except asyncio.CancelledError:
            await self.discard(request_id, future)
            raise
