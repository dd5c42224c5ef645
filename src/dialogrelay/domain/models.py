"""Core domain models for the relay.

A ``RelayMessage`` is what flows over the broadcast bus and out of the
event stream. Its payload is opaque to the relay except when the topic
is the reserved ``rpc-response`` marker, in which case ``payload.id``
and ``payload.result`` are used to correlate the answer with a waiting
request.
"""

from __future__ import annotations

import enum
import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from dialogrelay.relay.errors import RelayClosedError, RelayTimeoutError

RPC_RESPONSE_TOPIC = "rpc-response"


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class RelayMessage(BaseModel):
    """A single event broadcast through the relay."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Opaque message id, relay- or caller-assigned")
    topic: str = Field(description="Free-form routing tag")
    payload: Any = Field(description="Arbitrary JSON value")

    @classmethod
    def create(cls, topic: str, payload: Any, id: str | None = None) -> RelayMessage:
        """Build a message, generating a uuid4 id when none is given."""
        return cls(id=id if id is not None else str(uuid.uuid4()), topic=topic, payload=payload)


class RpcResponse(BaseModel):
    """The correlation fields of an ``rpc-response`` payload."""

    model_config = ConfigDict(frozen=True)

    request_id: int = Field(ge=0)
    result: Any = None


def parse_rpc_response(topic: str, payload: Any) -> RpcResponse | None:
    """Extract the request id and result from a response payload.

    Returns None unless the topic is the response marker, the payload is
    an object, ``id`` is a non-negative integer and ``result`` is present.
    A ``null`` result is still a result.
    """
    if topic != RPC_RESPONSE_TOPIC or not isinstance(payload, dict):
        return None
    request_id = payload.get("id")
    # bool is a subclass of int
    if isinstance(request_id, bool) or not isinstance(request_id, int) or request_id < 0:
        return None
    if "result" not in payload:
        return None
    return RpcResponse(request_id=request_id, result=payload["result"])


# ---------------------------------------------------------------------------
# Wait outcome
# ---------------------------------------------------------------------------


class WaitStatus(str, enum.Enum):
    """How a bounded wait finished."""

    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    CHANNEL_CLOSED = "channel_closed"


class WaitOutcome(BaseModel):
    """Tagged result of ``wait_for_response``.

    Exactly one of the three race branches produces the outcome. Callers
    either branch on ``status`` or call ``unwrap()`` to get the result and
    let the other two cases raise.
    """

    model_config = ConfigDict(frozen=True)

    request_id: int
    status: WaitStatus
    result: Any = None
    elapsed: float = Field(default=0.0, ge=0, description="Seconds spent waiting")

    @classmethod
    def resolved(cls, request_id: int, result: Any, elapsed: float = 0.0) -> WaitOutcome:
        return cls(request_id=request_id, status=WaitStatus.RESOLVED, result=result, elapsed=elapsed)

    @classmethod
    def timed_out(cls, request_id: int, elapsed: float = 0.0) -> WaitOutcome:
        return cls(request_id=request_id, status=WaitStatus.TIMED_OUT, elapsed=elapsed)

    @classmethod
    def channel_closed(cls, request_id: int, elapsed: float = 0.0) -> WaitOutcome:
        return cls(request_id=request_id, status=WaitStatus.CHANNEL_CLOSED, elapsed=elapsed)

    @property
    def is_resolved(self) -> bool:
        return self.status is WaitStatus.RESOLVED

    def unwrap(self) -> Any:
        """Return the result, raising for the timeout and closed cases."""
        if self.status is WaitStatus.TIMED_OUT:
            raise RelayTimeoutError(
                f"Request {self.request_id} timed out after {self.elapsed:.1f}s",
                request_id=self.request_id,
            )
        if self.status is WaitStatus.CHANNEL_CLOSED:
            raise RelayClosedError(
                f"Relay closed while waiting for request {self.request_id}",
                request_id=self.request_id,
            )
        return self.result
