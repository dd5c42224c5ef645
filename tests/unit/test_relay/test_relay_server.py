"""End-to-end tests against a real relay on a loopback port."""

from __future__ import annotations

import asyncio

import pytest
import uvicorn

from dialogrelay.domain.models import RelayMessage, WaitStatus
from dialogrelay.relay import server as server_module
from dialogrelay.relay.client import RelayClient
from dialogrelay.relay.errors import RelayBindError
from dialogrelay.relay.server import RelayServer


def _base_url(relay: RelayServer) -> str:
    return f"http://127.0.0.1:{relay.port}"


async def _until(predicate, timeout: float = 2.0) -> None:  # type: ignore[no-untyped-def]
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


async def _collect(client: RelayClient, into: asyncio.Queue) -> None:
    async for message in client.stream():
        await into.put(message)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_binds_ephemeral_loopback_port(self, relay: RelayServer) -> None:
        assert relay.port > 0
        assert relay.url == f"http://localhost:{relay.port}"
        assert not relay.closed

    @pytest.mark.asyncio
    async def test_bind_failure_is_reported(self, relay: RelayServer) -> None:
        with pytest.raises(RelayBindError):
            await RelayServer.start(port=relay.port)

    @pytest.mark.asyncio
    async def test_startup_timeout_stops_server_task(self, monkeypatch: pytest.MonkeyPatch) -> None:
        cancelled = asyncio.Event()

        async def never_starts(self: uvicorn.Server, sockets: object = None) -> None:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.set()
                raise

        monkeypatch.setattr(uvicorn.Server, "serve", never_starts)
        monkeypatch.setattr(server_module, "STARTUP_TIMEOUT", 0.05)
        with pytest.raises(RelayBindError, match="failed to start"):
            await RelayServer.start()
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_startup_error_is_chained(self, monkeypatch: pytest.MonkeyPatch) -> None:
        async def broken(self: uvicorn.Server, sockets: object = None) -> None:
            raise OSError("listener exploded")

        monkeypatch.setattr(uvicorn.Server, "serve", broken)
        with pytest.raises(RelayBindError) as exc_info:
            await RelayServer.start()
        assert isinstance(exc_info.value.__cause__, OSError)

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        server = await RelayServer.start(graceful_shutdown=0.5)
        await server.close()
        await server.close()
        assert server.closed

    @pytest.mark.asyncio
    async def test_instances_do_not_share_state(self, relay: RelayServer) -> None:
        async with await RelayServer.start(graceful_shutdown=0.5) as other:
            await relay.register_public_key("only-here")
            assert await relay.list_keys() == {"only-here"}
            assert await other.list_keys() == set()
            assert other.port != relay.port


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_dialog_round_trip(self, relay: RelayServer, accounts_result: dict) -> None:
        received: asyncio.Queue[RelayMessage] = asyncio.Queue()
        async with RelayClient(_base_url(relay)) as dialog:
            stream_task = asyncio.create_task(_collect(dialog, received))
            await _until(lambda: relay.state.bus.subscriber_count == 1)

            await relay.register_public_key("0xPUB")
            assert await dialog.list_keys() == ["0xPUB"]

            wait_task = asyncio.create_task(relay.wait_for_response(1))
            await _until(lambda: 1 in relay.state.correlator)

            await dialog.publish("rpc-response", {"id": 1, "result": accounts_result})

            outcome = await asyncio.wait_for(wait_task, timeout=2.0)
            assert outcome.status is WaitStatus.RESOLVED
            assert outcome.result == accounts_result

            observed = await asyncio.wait_for(received.get(), timeout=2.0)
            assert observed.topic == "rpc-response"
            assert observed.payload == {"id": 1, "result": accounts_result}

            await relay.close()
            await asyncio.wait_for(stream_task, timeout=2.0)

    @pytest.mark.asyncio
    async def test_wait_times_out(self, relay: RelayServer) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        outcome = await relay.wait_for_response(2, timeout=0.1)
        took = loop.time() - started
        assert outcome.status is WaitStatus.TIMED_OUT
        assert 0.09 <= took < 1.0
        assert 2 not in relay.state.correlator

    @pytest.mark.asyncio
    async def test_close_ends_pending_wait(self, relay: RelayServer) -> None:
        wait_task = asyncio.create_task(relay.wait_for_response(5, timeout=10.0))
        await _until(lambda: 5 in relay.state.correlator)
        await relay.close()
        outcome = await asyncio.wait_for(wait_task, timeout=2.0)
        assert outcome.status is WaitStatus.CHANNEL_CLOSED

    @pytest.mark.asyncio
    async def test_relay_messages_reach_every_stream(self, relay: RelayServer) -> None:
        first_q: asyncio.Queue[RelayMessage] = asyncio.Queue()
        second_q: asyncio.Queue[RelayMessage] = asyncio.Queue()
        async with RelayClient(_base_url(relay)) as first, RelayClient(_base_url(relay)) as second:
            tasks = [
                asyncio.create_task(_collect(first, first_q)),
                asyncio.create_task(_collect(second, second_q)),
            ]
            await _until(lambda: relay.state.bus.subscriber_count == 2)

            ids = [await relay.send_message("admin", {"n": n}) for n in range(3)]

            for queue in (first_q, second_q):
                got = [await asyncio.wait_for(queue.get(), timeout=2.0) for _ in ids]
                assert [m.id for m in got] == ids
                assert [m.payload["n"] for m in got] == [0, 1, 2]

            await relay.close()
            await asyncio.wait_for(asyncio.gather(*tasks), timeout=2.0)

    @pytest.mark.asyncio
    async def test_disconnecting_stream_leaves_others(self, relay: RelayServer) -> None:
        queue: asyncio.Queue[RelayMessage] = asyncio.Queue()
        async with RelayClient(_base_url(relay)) as leaving, RelayClient(_base_url(relay)) as staying:
            leaving_task = asyncio.create_task(_collect(leaving, asyncio.Queue()))
            staying_task = asyncio.create_task(_collect(staying, queue))
            await _until(lambda: relay.state.bus.subscriber_count == 2)

            leaving_task.cancel()
            await asyncio.gather(leaving_task, return_exceptions=True)
            await leaving.disconnect()

            await relay.send_message("still-here", {})
            message = await asyncio.wait_for(queue.get(), timeout=2.0)
            assert message.topic == "still-here"
            # The server notices the dropped stream no later than its next write
            await _until(lambda: relay.state.bus.subscriber_count == 1)

            await relay.close()
            await asyncio.wait_for(staying_task, timeout=2.0)
