"""State storage interface.

Provides a unified interface for persisting pipeline state (locks, slot
pointers, approvals, canary state, audit events) with a Redis-first
approach and an in-memory fallback.
"""

from abc import ABC, abstractmethod
from typing import Any, TypeVar, overload

from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)


class ApplicationStorage(ABC):
    """Abstract interface for state storage backends."""

    @abstractmethod
    async def set(self, key: str, value: BaseModel, ttl_seconds: int | None) -> None:
        """Store a record with TTL.

        Args:
            key: Record identifier
            value: Record data (Pydantic model)
            ttl_seconds: Time to live in seconds, or None to keep the record
                until it is overwritten or deleted
        """
        pass

    @abstractmethod
    async def set_if_absent(
        self, key: str, value: BaseModel, ttl_seconds: int
    ) -> bool:
        """Atomically store a record only if the key does not exist.

        This is the primitive behind the per-environment deployment lock.

        Args:
            key: Record identifier
            value: Record data (Pydantic model)
            ttl_seconds: Time to live in seconds

        Returns:
            True if the record was stored, False if the key already existed
        """
        pass

    @overload
    async def get(self, key: str, model_class: None) -> Any | None: ...

    @overload
    async def get(self, key: str, model_class: type[T]) -> T | None: ...

    @abstractmethod
    async def get(self, key: str, model_class: type[T] | None) -> T | Any | None:
        """Retrieve a record.

        Args:
            key: Record identifier
            model_class: Pydantic model class to deserialize to

        Returns:
            Record data or None if not found/expired
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a record.

        Args:
            key: Record identifier
        """
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if a record exists.

        Args:
            key: Record identifier

        Returns:
            True if the record exists and has not expired
        """
        pass

    @abstractmethod
    async def cleanup_expired(self) -> int:
        """Clean up expired records.

        Returns:
            Number of records cleaned up
        """
        pass

    @abstractmethod
    async def list_keys(self, pattern: str) -> list[str]:
        """List keys matching a pattern.

        Args:
            pattern: Key pattern (e.g., "slot:orders:prod:*")

        Returns:
            List of matching keys
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if storage backend is available.

        Returns:
            True if storage is healthy and available
        """
        pass
