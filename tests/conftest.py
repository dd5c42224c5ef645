"""Shared test fixtures for the dialogrelay test suite.

Provides the relay building blocks in isolation (bus, registry,
correlator, shared state) and a real uvicorn-backed relay for the
end-to-end tests.
"""

from __future__ import annotations

from typing import AsyncIterator

import pytest
import pytest_asyncio

from dialogrelay.domain.models import RPC_RESPONSE_TOPIC, RelayMessage
from dialogrelay.relay.app import RelayState
from dialogrelay.relay.bus import BroadcastBus
from dialogrelay.relay.correlator import ResponseCorrelator
from dialogrelay.relay.registry import KeyRegistry
from dialogrelay.relay.server import RelayServer


# ---------------------------------------------------------------------------
# Message Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_message() -> RelayMessage:
    """An ordinary, non-response message."""
    return RelayMessage(id="msg-1", topic="dialog-ready", payload={"ready": True})


@pytest.fixture
def accounts_result() -> dict:
    """The result a connect dialog sends back."""
    return {"accounts": [{"address": "0xABC"}]}


@pytest.fixture
def response_message(accounts_result: dict) -> RelayMessage:
    """An rpc-response answering request 1."""
    return RelayMessage(
        id="msg-response-1",
        topic=RPC_RESPONSE_TOPIC,
        payload={"id": 1, "result": accounts_result},
    )


# ---------------------------------------------------------------------------
# Relay Component Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def bus() -> BroadcastBus:
    return BroadcastBus()


@pytest.fixture
def registry() -> KeyRegistry:
    return KeyRegistry()


@pytest.fixture
def correlator() -> ResponseCorrelator:
    return ResponseCorrelator()


@pytest.fixture
def relay_state(bus: BroadcastBus, registry: KeyRegistry, correlator: ResponseCorrelator) -> RelayState:
    return RelayState(bus=bus, registry=registry, correlator=correlator)


@pytest_asyncio.fixture
async def relay() -> AsyncIterator[RelayServer]:
    """A real relay on an ephemeral loopback port, closed after the test."""
    server = await RelayServer.start(wait_timeout=5.0, graceful_shutdown=0.5)
    try:
        yield server
    finally:
        await server.close()
