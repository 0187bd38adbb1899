"""In-memory state storage.

Used for single-process runs (local CLI invocations, tests). State does not
survive the process, so cross-run locking requires the Redis backend.
"""

from __future__ import annotations

import asyncio
import fnmatch
import json
import time
from typing import Any, override

from pydantic import BaseModel, ValidationError

from src.app.core.services.storage.base import ApplicationStorage, T


def _expired(entry: dict[str, Any], now: float) -> bool:
    return entry["expires_at"] is not None and now > entry["expires_at"]


class InMemoryStorage(ApplicationStorage):
    """In-memory storage with TTL support."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    def _live_entry(self, key: str) -> dict[str, Any] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if _expired(entry, time.time()):
            del self._data[key]
            return None
        return entry

    @override
    async def set(self, key: str, value: BaseModel, ttl_seconds: int | None) -> None:
        """Store record in memory with expiration."""
        self._data[key] = {
            "data": json.loads(value.model_dump_json()),
            "expires_at": None if ttl_seconds is None else time.time() + ttl_seconds,
        }

    @override
    async def set_if_absent(
        self, key: str, value: BaseModel, ttl_seconds: int
    ) -> bool:
        """Store record only if no live entry exists for the key."""
        async with self._lock:
            if self._live_entry(key) is not None:
                return False
            await self.set(key, value, ttl_seconds)
            return True

    async def get(self, key: str, model_class: type[T] | None) -> T | Any | None:
        """Retrieve record from memory if not expired."""
        entry = self._live_entry(key)
        if entry is None:
            return None

        if model_class is None:
            return entry["data"]
        try:
            return model_class.model_validate(entry["data"])
        except ValidationError:
            # Clean up corrupted data
            del self._data[key]
            return None

    @override
    async def delete(self, key: str) -> None:
        """Delete record from memory."""
        self._data.pop(key, None)

    @override
    async def exists(self, key: str) -> bool:
        """Check if record exists and is not expired."""
        return self._live_entry(key) is not None

    @override
    async def cleanup_expired(self) -> int:
        """Remove expired records from memory."""
        now = time.time()
        expired_keys = [
            key for key, entry in self._data.items() if _expired(entry, now)
        ]

        for key in expired_keys:
            del self._data[key]

        return len(expired_keys)

    @override
    async def list_keys(self, pattern: str) -> list[str]:
        """List live keys matching a pattern using fnmatch."""
        return [
            key
            for key in list(self._data.keys())
            if fnmatch.fnmatchcase(key, pattern) and self._live_entry(key) is not None
        ]

    @override
    def is_available(self) -> bool:
        """In-memory storage is always available."""
        return True
