"""Domain models for dialogrelay.

Messages carried by the relay, the reserved RPC response convention,
and the tagged outcome of a bounded wait. All models use Pydantic v2.
"""

from dialogrelay.domain.models import (
    RPC_RESPONSE_TOPIC,
    RelayMessage,
    RpcResponse,
    WaitOutcome,
    WaitStatus,
    parse_rpc_response,
)

__all__ = [
    "RPC_RESPONSE_TOPIC",
    "RelayMessage",
    "RpcResponse",
    "WaitOutcome",
    "WaitStatus",
    "parse_rpc_response",
]
