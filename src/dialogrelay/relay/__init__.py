"""Relay core for dialogrelay.

An in-memory publish/subscribe hub with request/response correlation,
exposed over a loopback HTTP endpoint.

Public API:
    KeyRegistry -- set of registered public keys
    BroadcastBus -- multi-subscriber event fan-out
    ResponseCorrelator -- request id to one-shot response slot
    wait_for_response -- bounded wait racing response, close and timeout
    RelayServer -- one running relay instance (uvicorn-backed)
    RelayClient -- HTTP client for a running relay
"""

from dialogrelay.relay.errors import (
    DuplicateWaitError,
    RelayBindError,
    RelayClosedError,
    RelayError,
    RelayTimeoutError,
)

__all__ = [
    "BroadcastBus",
    "DuplicateWaitError",
    "KeyRegistry",
    "RelayBindError",
    "RelayClient",
    "RelayClosedError",
    "RelayError",
    "RelayServer",
    "RelayTimeoutError",
    "ResponseCorrelator",
    "wait_for_response",
]


def __getattr__(name: str) -> object:
    """Lazy import for the components that pull in the web stack."""
    if name == "KeyRegistry":
        from dialogrelay.relay.registry import KeyRegistry
        return KeyRegistry
    if name == "BroadcastBus":
        from dialogrelay.relay.bus import BroadcastBus
        return BroadcastBus
    if name == "ResponseCorrelator":
        from dialogrelay.relay.correlator import ResponseCorrelator
        return ResponseCorrelator
    if name == "wait_for_response":
        from dialogrelay.relay.waiter import wait_for_response
        return wait_for_response
    if name == "RelayServer":
        from dialogrelay.relay.server import RelayServer
        return RelayServer
    if name == "RelayClient":
        from dialogrelay.relay.client import RelayClient
        return RelayClient
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
