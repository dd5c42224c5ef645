"""Bounded wait for a correlated response.

``wait_for_response`` races three things and returns whichever happens
first as a ``WaitOutcome``:

    1. the correlator resolving the request id (directly, or because the
       watcher saw the response on the bus)
    2. the bus subscription ending, meaning the relay shut down
    3. the timeout elapsing

The Pending Wait is removed on every outcome, so an abandoned wait
never leaks.
"""

from __future__ import annotations

import asyncio
import logging

from dialogrelay.domain.models import WaitOutcome
from dialogrelay.relay.bus import BroadcastBus, Subscription
from dialogrelay.relay.correlator import ResponseCorrelator

logger = logging.getLogger(__name__)

# Long enough for a human to finish the browser interaction
DEFAULT_WAIT_TIMEOUT = 300.0


async def wait_for_response(
    bus: BroadcastBus,
    correlator: ResponseCorrelator,
    request_id: int,
    timeout: float | None = DEFAULT_WAIT_TIMEOUT,
) -> WaitOutcome:
    """Block until ``request_id`` is answered, the bus closes, or time runs out.

    Args:
        bus: Bus to watch for broadcast responses.
        correlator: Holds the Pending Wait for ``request_id``.
        request_id: Caller-chosen id of the outstanding request.
        timeout: Seconds to wait. None waits until resolved or closed.

    Returns:
        A resolved, timed-out or channel-closed ``WaitOutcome``.

    Raises:
        DuplicateWaitError: If ``request_id`` is already being waited on.
    """
    loop = asyncio.get_running_loop()
    started = loop.time()

    # Subscribe before registering so a response broadcast right after
    # registration cannot slip past the watcher.
    subscription = bus.subscribe()
    try:
        future = await correlator.register(request_id)
    except BaseException:
        subscription.close()
        raise

    watcher = asyncio.create_task(
        _watch(subscription, correlator, request_id),
        name=f"relay-watch-{request_id}",
    )
    try:
        done, _ = await asyncio.wait(
            {future, watcher},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
    except asyncio.CancelledError:
        watcher.cancel()
        subscription.close()
        await correlator.discard(request_id, future)
        raise

    watcher.cancel()
    subscription.close()
    await asyncio.gather(watcher, return_exceptions=True)
    elapsed = loop.time() - started

    if future.done() and not future.cancelled():
        logger.info("Request %d resolved after %.2fs", request_id, elapsed)
        return WaitOutcome.resolved(request_id, future.result(), elapsed)

    await correlator.discard(request_id, future)
    if watcher in done:
        logger.error("Relay closed while waiting for request %d", request_id)
        return WaitOutcome.channel_closed(request_id, elapsed)

    logger.warning("Request %d timed out after %.2fs", request_id, elapsed)
    return WaitOutcome.timed_out(request_id, elapsed)


async def _watch(subscription: Subscription, correlator: ResponseCorrelator, request_id: int) -> None:
    """Scan broadcasts for the response to ``request_id`` until the bus closes."""
    async for message in subscription:
        await correlator.observe(message, request_id=request_id)
    if subscription.missed:
        logger.debug("Watcher for request %d missed %d message(s)", request_id, subscription.missed)
