"""A running relay instance.

``RelayServer`` binds a loopback socket on an ephemeral port, serves the
relay application with uvicorn in a background task, and gives the
owning CLI invocation direct access to the shared state: register keys,
broadcast messages, and wait for correlated responses.

One instance per invocation. Nothing is process-global, so several
relays (e.g. in tests) do not interfere with each other.

Example usage::

    async with await RelayServer.start() as relay:
        await relay.register_public_key(public_key)
        open_dialog(relay.url, request_id=7)
        result = (await relay.wait_for_response(7)).unwrap()
"""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Any

import uvicorn

from dialogrelay.domain.models import RelayMessage, WaitOutcome
from dialogrelay.relay.app import RelayState, create_app
from dialogrelay.relay.bus import DEFAULT_CAPACITY
from dialogrelay.relay.errors import RelayBindError
from dialogrelay.relay.waiter import DEFAULT_WAIT_TIMEOUT, wait_for_response

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
STARTUP_TIMEOUT = 5.0


class RelayServer:
    """Owns the relay state, the listening socket and the uvicorn task.

    Use ``await RelayServer.start()`` rather than the constructor.
    """

    def __init__(
        self,
        state: RelayState,
        server: uvicorn.Server,
        task: asyncio.Task[None],
        host: str,
        port: int,
        wait_timeout: float = DEFAULT_WAIT_TIMEOUT,
    ) -> None:
        self._state = state
        self._server = server
        self._task = task
        self._host = host
        self._port = port
        self._wait_timeout = wait_timeout
        self._closed = False

    @classmethod
    async def start(
        cls,
        host: str = DEFAULT_HOST,
        port: int = 0,
        capacity: int = DEFAULT_CAPACITY,
        wait_timeout: float = DEFAULT_WAIT_TIMEOUT,
        graceful_shutdown: float = 1.0,
    ) -> RelayServer:
        """Bind the endpoint and start serving.

        Args:
            host: Interface to bind; loopback by default.
            port: Port to bind; 0 picks a free ephemeral port.
            capacity: Per-subscriber backlog of the broadcast bus.
            wait_timeout: Default timeout for ``wait_for_response``.
            graceful_shutdown: Seconds uvicorn waits for open connections
                on shutdown.

        Raises:
            RelayBindError: If the socket cannot be bound or the server
                does not come up.
        """
        sock = _bind_socket(host, port)
        bound_port = sock.getsockname()[1]

        state = RelayState(capacity=capacity)
        config = uvicorn.Config(
            create_app(state),
            log_config=None,
            log_level="warning",
            timeout_graceful_shutdown=graceful_shutdown,
        )
        server = uvicorn.Server(config)
        task = asyncio.create_task(server.serve(sockets=[sock]), name=f"relay-{bound_port}")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + STARTUP_TIMEOUT
        while not server.started:
            if task.done() or loop.time() > deadline:
                server.should_exit = True
                if not task.done():
                    task.cancel()
                (result,) = await asyncio.gather(task, return_exceptions=True)
                sock.close()
                state.bus.close()
                error = result if isinstance(result, Exception) else None
                raise RelayBindError(f"Relay failed to start on {host}:{bound_port}") from error
            await asyncio.sleep(0.01)

        relay = cls(state, server, task, host, bound_port, wait_timeout=wait_timeout)
        logger.info("Relay listening at %s", relay.url)
        return relay

    @property
    def url(self) -> str:
        """Base URL handed to the dialog."""
        host = "localhost" if self._host in ("127.0.0.1", "localhost") else self._host
        return f"http://{host}:{self._port}"

    @property
    def port(self) -> int:
        return self._port

    @property
    def state(self) -> RelayState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    async def register_public_key(self, public_key: str) -> None:
        await self._state.registry.register(public_key)

    async def list_keys(self) -> set[str]:
        return await self._state.registry.list_keys()

    async def send_message(self, topic: str, payload: Any) -> str:
        """Broadcast a relay-originated message and return its id.

        Raises:
            RelayClosedError: If the relay has been closed.
        """
        message = RelayMessage.create(topic, payload)
        return self._state.bus.publish(message)

    async def wait_for_response(self, request_id: int, timeout: float | None = None) -> WaitOutcome:
        """Wait for the response to ``request_id``.

        Uses the configured default timeout when ``timeout`` is None.
        """
        return await wait_for_response(
            self._state.bus,
            self._state.correlator,
            request_id,
            timeout=self._wait_timeout if timeout is None else timeout,
        )

    async def wait_closed(self) -> None:
        """Block until the uvicorn task exits (e.g. on Ctrl+C)."""
        await asyncio.shield(self._task)

    async def close(self) -> None:
        """Close the bus, stop uvicorn and wait for it to exit.

        Waits still in flight finish with a channel-closed outcome.
        """
        if self._closed:
            return
        self._closed = True
        self._state.bus.close()
        self._server.should_exit = True
        try:
            await self._task
        except Exception as e:
            logger.warning("Relay server exited with error: %s", e)
        logger.info("Relay at %s stopped", self.url)

    async def __aenter__(self) -> RelayServer:
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.close()


def _bind_socket(host: str, port: int) -> socket.socket:
    """Bind a TCP socket for uvicorn to serve on."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        raise RelayBindError(f"Failed to bind listener on {host}:{port}: {e}") from e
    return sock
