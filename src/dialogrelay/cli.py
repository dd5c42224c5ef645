"""Command-line interface for dialogrelay.

Runs a relay for a browser dialog to talk to, or acts as the dialog
side against a relay that is already running.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_TIMED_OUT = 2
EXIT_CHANNEL_CLOSED = 3


def _json_value(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid JSON: {e}") from e


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="dialogrelay",
        description="Local event relay between a CLI and a browser dialog",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/dialogrelay.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run a relay until interrupted")
    serve_parser.add_argument(
        "--key", dest="keys", action="append", default=[],
        help="Public key to register (repeatable)",
    )

    wait_parser = subparsers.add_parser("wait", help="Run a relay and wait for one response")
    wait_parser.add_argument(
        "--request-id", type=int, required=True,
        help="Id of the request to wait for",
    )
    wait_parser.add_argument(
        "--timeout", type=float, default=None,
        help="Seconds to wait (default: relay.wait_timeout from config)",
    )
    wait_parser.add_argument(
        "--key", dest="keys", action="append", default=[],
        help="Public key to register (repeatable)",
    )

    publish_parser = subparsers.add_parser("publish", help="Publish a message to a running relay")
    publish_parser.add_argument("--url", required=True, help="Relay base URL")
    publish_parser.add_argument("--topic", required=True, help="Message topic")
    publish_parser.add_argument(
        "--payload", type=_json_value, default=None,
        help="Message payload as JSON (default: null)",
    )
    publish_parser.add_argument("--id", default=None, help="Message id (generated if omitted)")

    respond_parser = subparsers.add_parser("respond", help="Answer a request on a running relay")
    respond_parser.add_argument("--url", required=True, help="Relay base URL")
    respond_parser.add_argument("--request-id", type=int, required=True, help="Request id to answer")
    respond_parser.add_argument(
        "--result", type=_json_value, default=None,
        help="Result as JSON (default: null)",
    )

    keys_parser = subparsers.add_parser("keys", help="List keys registered on a running relay")
    keys_parser.add_argument("--url", required=True, help="Relay base URL")

    return parser.parse_args(argv)


async def _start_relay(settings, keys: list[str]):  # type: ignore[no-untyped-def]
    from dialogrelay.relay.server import RelayServer

    rc = settings.relay
    relay = await RelayServer.start(
        host=rc.host,
        port=rc.port,
        capacity=rc.capacity,
        wait_timeout=rc.wait_timeout,
        graceful_shutdown=rc.graceful_shutdown,
    )
    for key in keys:
        await relay.register_public_key(key)
    print(f"Relay listening at {relay.url}", flush=True)
    return relay


async def _serve(settings, args) -> int:
    """Run a relay until the server exits (Ctrl+C)."""
    relay = await _start_relay(settings, args.keys)
    async with relay:
        await relay.wait_closed()
    return EXIT_OK


async def _wait(settings, args) -> int:
    """Run a relay, wait for one response and print its result."""
    from dialogrelay.domain.models import WaitStatus

    relay = await _start_relay(settings, args.keys)
    async with relay:
        print(f"Waiting for response to request {args.request_id}...", flush=True)
        outcome = await relay.wait_for_response(args.request_id, timeout=args.timeout)

    if outcome.status is WaitStatus.TIMED_OUT:
        print(f"Request {args.request_id} timed out after {outcome.elapsed:.0f}s", file=sys.stderr)
        return EXIT_TIMED_OUT
    if outcome.status is WaitStatus.CHANNEL_CLOSED:
        print("Relay closed before a response arrived", file=sys.stderr)
        return EXIT_CHANNEL_CLOSED
    print(json.dumps(outcome.result, indent=2))
    return EXIT_OK


async def _publish(settings, args) -> int:
    from dialogrelay.relay.client import RelayClient

    async with RelayClient(args.url, timeout=settings.client.timeout) as client:
        await client.publish(args.topic, args.payload, id=args.id)
    print(f"Published {args.topic} to {args.url}")
    return EXIT_OK


async def _respond(settings, args) -> int:
    from dialogrelay.relay.client import RelayClient

    async with RelayClient(args.url, timeout=settings.client.timeout) as client:
        await client.respond(args.request_id, args.result)
    print(f"Answered request {args.request_id}")
    return EXIT_OK


async def _keys(settings, args) -> int:
    from dialogrelay.relay.client import RelayClient

    async with RelayClient(args.url, timeout=settings.client.timeout) as client:
        keys = await client.list_keys()
    for key in keys:
        print(key)
    return EXIT_OK


COMMANDS = {
    "serve": _serve,
    "wait": _wait,
    "publish": _publish,
    "respond": _respond,
    "keys": _keys,
}


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the dialogrelay CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from dialogrelay.config.settings import load_settings
    from dialogrelay.relay.client import RelayClientError
    from dialogrelay.relay.errors import RelayError
    from dialogrelay.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)
    logger.debug("Running command %s", args.command)

    try:
        code = asyncio.run(COMMANDS[args.command](settings, args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        code = EXIT_OK
    except (RelayError, RelayClientError) as e:
        logger.error("%s", e)
        code = EXIT_ERROR
    sys.exit(code)


if __name__ == "__main__":
    main()
