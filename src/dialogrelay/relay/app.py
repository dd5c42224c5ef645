"""FastAPI application exposing the relay over HTTP.

Endpoints:

    GET  /                  -> text/event-stream of {"id", "topic", "payload"}
    POST /                  <- {"topic": "...", "payload": ..., "id": "..."?}
    GET  /.well-known/keys  -> {"keys": [...]}
    GET  /health            -> {"status": "ok", ...}

A response to request ``N`` is published as ``POST /`` with
``{"topic": "rpc-response", "payload": {"id": N, "result": ...}}``. The
browser dialog is served from another origin, so CORS is wide open.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, StrictStr, ValidationError, field_validator

from dialogrelay import __version__
from dialogrelay.domain.models import RelayMessage, parse_rpc_response
from dialogrelay.relay.bus import DEFAULT_CAPACITY, BroadcastBus
from dialogrelay.relay.correlator import ResponseCorrelator
from dialogrelay.relay.errors import RelayClosedError
from dialogrelay.relay.registry import KeyRegistry

logger = logging.getLogger(__name__)

KEYS_PATH = "/.well-known/keys"


# ---------------------------------------------------------------------------
# Shared state
# ---------------------------------------------------------------------------

class RelayState:
    """The bus, key registry and pending-wait map of one relay instance.

    Every request handler works on the same instance through
    ``app.state.relay``.
    """

    def __init__(
        self,
        bus: BroadcastBus | None = None,
        registry: KeyRegistry | None = None,
        correlator: ResponseCorrelator | None = None,
        capacity: int = DEFAULT_CAPACITY,
    ) -> None:
        self.bus = bus if bus is not None else BroadcastBus(capacity=capacity)
        self.registry = registry if registry is not None else KeyRegistry()
        self.correlator = correlator if correlator is not None else ResponseCorrelator()


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class PublishRequest(BaseModel):
    topic: StrictStr = Field(description="Routing tag, e.g. 'rpc-response'")
    payload: Any = Field(description="Arbitrary JSON value")
    id: str | None = Field(default=None, description="Message id, generated when absent")

    @field_validator("id", mode="before")
    @classmethod
    def _ignore_non_string_id(cls, value: Any) -> str | None:
        return value if isinstance(value, str) else None


class KeysResponse(BaseModel):
    keys: list[str]


class HealthResponse(BaseModel):
    status: str = "ok"
    subscribers: int = 0
    pending: int = 0
    keys: int = 0


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(state: RelayState | None = None, capacity: int = DEFAULT_CAPACITY) -> FastAPI:
    """Create the relay application.

    Args:
        state: Pre-built shared state (the relay server passes its own).
        capacity: Per-subscriber backlog when ``state`` is not given.
    """
    relay = state if state is not None else RelayState(capacity=capacity)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Relay endpoint started")
        yield
        app.state.relay.bus.close()
        logger.info("Relay endpoint stopped")

    app = FastAPI(
        title="dialogrelay",
        description="Local event relay between a CLI and a browser dialog",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        allow_private_network=True,
    )
    app.state.relay = relay

    @app.get("/")
    async def stream_events() -> StreamingResponse:
        s: RelayState = app.state.relay
        return StreamingResponse(
            _event_stream(s.bus),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.post("/")
    async def publish_message(request: Request) -> Response:
        s: RelayState = app.state.relay
        try:
            body = await request.json()
        except ValueError as e:
            raise HTTPException(status_code=400, detail="Body is not valid JSON") from e
        try:
            publish = PublishRequest.model_validate(body)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail="Body requires 'topic' and 'payload'") from e

        response = parse_rpc_response(publish.topic, publish.payload)
        if response is not None:
            await s.correlator.resolve(response.request_id, response.result)

        message = RelayMessage.create(publish.topic, publish.payload, id=publish.id)
        try:
            s.bus.publish(message)
        except RelayClosedError as e:
            raise HTTPException(status_code=503, detail=str(e)) from e
        return Response(status_code=200)

    @app.get(KEYS_PATH)
    async def list_keys() -> KeysResponse:
        s: RelayState = app.state.relay
        return KeysResponse(keys=sorted(await s.registry.list_keys()))

    @app.get("/health")
    async def health_check() -> HealthResponse:
        s: RelayState = app.state.relay
        return HealthResponse(
            status="closed" if s.bus.closed else "ok",
            subscribers=s.bus.subscriber_count,
            pending=len(s.correlator),
            keys=len(s.registry),
        )

    return app


async def _event_stream(bus: BroadcastBus) -> AsyncIterator[str]:
    """Serialize bus deliveries as server-sent events.

    The subscription is taken on first iteration, so a stream that is
    never started never attaches. It is released when the client
    disconnects or the bus closes.
    """
    subscription = bus.subscribe()
    logger.info("Event stream opened (%d subscriber(s))", bus.subscriber_count)
    async with subscription:
        yield ": connected\n\n"
        async for message in subscription:
            yield f"data: {message.model_dump_json()}\n\n"
    if subscription.missed:
        logger.debug("Event stream closed after missing %d message(s)", subscription.missed)
    logger.info("Event stream closed")
