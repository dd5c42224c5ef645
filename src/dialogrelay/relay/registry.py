"""In-memory registry of public keys published for the dialog."""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


class KeyRegistry:
    """A set of opaque key strings that lives as long as the relay.

    Registration is idempotent and there is no removal.
    """

    def __init__(self) -> None:
        self._keys: set[str] = set()
        self._lock = asyncio.Lock()

    async def register(self, key: str) -> None:
        async with self._lock:
            if key in self._keys:
                return
            self._keys.add(key)
        logger.info("Registered key %s", _shorten(key))

    async def list_keys(self) -> set[str]:
        """Return a snapshot copy of the registered keys."""
        async with self._lock:
            return set(self._keys)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)


def _shorten(key: str, keep: int = 10) -> str:
    return key if len(key) <= keep * 2 else f"{key[:keep]}...{key[-4:]}"
