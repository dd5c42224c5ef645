"""Multi-subscriber broadcast bus.

Every published message is fanned out to all subscribers attached at
the time of the publish. Nothing is retained for subscribers that
attach later, and publishing with no subscribers simply drops the
message: the dialog may not be listening yet and that is not a failure.

Each subscriber has a bounded backlog (``capacity`` messages). A
subscriber that falls further behind than that loses the oldest
entries. The loss is counted on ``Subscription.missed`` and logged, but
is otherwise silent.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import AsyncIterator

from dialogrelay.domain.models import RelayMessage
from dialogrelay.relay.errors import RelayClosedError

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100


class Subscription:
    """A receive-only view onto the bus, starting from the moment it was created.

    Iterate it with ``async for``. Iteration ends once the subscription
    is closed (by the subscriber or by the bus shutting down) and any
    backlog has been drained.
    """

    def __init__(self, bus: BroadcastBus, capacity: int) -> None:
        self._bus = bus
        self._backlog: deque[RelayMessage] = deque(maxlen=capacity)
        self._ready = asyncio.Event()
        self._closed = False
        self.missed = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Messages delivered to this subscriber but not yet read."""
        return len(self._backlog)

    def _push(self, message: RelayMessage) -> None:
        if len(self._backlog) == self._backlog.maxlen:
            # deque drops the oldest entry on append
            self.missed += 1
            logger.debug(
                "Subscriber lagging, overwrote message %s (%d missed so far)",
                self._backlog[0].id,
                self.missed,
            )
        self._backlog.append(message)
        self._ready.set()

    def _finish(self) -> None:
        self._closed = True
        self._ready.set()

    def close(self) -> None:
        """Detach from the bus. Other subscribers are unaffected."""
        if self._closed:
            return
        self._bus._detach(self)
        self._finish()

    def __aiter__(self) -> AsyncIterator[RelayMessage]:
        return self

    async def __anext__(self) -> RelayMessage:
        while not self._backlog:
            if self._closed:
                raise StopAsyncIteration
            self._ready.clear()
            await self._ready.wait()
        return self._backlog.popleft()

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()


class BroadcastBus:
    """Fan-out of ``RelayMessage`` objects to every live subscriber.

    Delivery order per subscriber is publish order. Publishing never
    waits for subscribers to read.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"Bus capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._subscribers: list[Subscription] = []
        self._closed = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, message: RelayMessage) -> str:
        """Deliver ``message`` to every current subscriber and return its id.

        Raises:
            RelayClosedError: If the bus has been closed.
        """
        if self._closed:
            raise RelayClosedError("Cannot publish on a closed bus")
        if not self._subscribers:
            logger.debug("No subscribers, dropped message %s (%s)", message.id, message.topic)
            return message.id
        for subscriber in list(self._subscribers):
            subscriber._push(message)
        logger.debug(
            "Broadcast message %s (%s) to %d subscriber(s)",
            message.id,
            message.topic,
            len(self._subscribers),
        )
        return message.id

    def subscribe(self) -> Subscription:
        """Attach a new subscriber that sees only future messages.

        Subscribing to a closed bus yields a subscription that is
        already finished.
        """
        subscription = Subscription(self, self._capacity)
        if self._closed:
            subscription._finish()
            return subscription
        self._subscribers.append(subscription)
        logger.debug("Subscriber attached (%d total)", len(self._subscribers))
        return subscription

    def close(self) -> None:
        """Shut the bus down and end every subscription."""
        if self._closed:
            return
        self._closed = True
        subscribers, self._subscribers = self._subscribers, []
        for subscriber in subscribers:
            subscriber._finish()
        logger.info("Broadcast bus closed (%d subscriber(s) released)", len(subscribers))

    def _detach(self, subscription: Subscription) -> None:
        try:
            self._subscribers.remove(subscription)
        except ValueError:
            return
        logger.debug("Subscriber detached (%d remaining)", len(self._subscribers))
