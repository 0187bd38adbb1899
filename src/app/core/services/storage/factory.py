"""Factory for obtaining the appropriate state storage backend."""

from loguru import logger

from src.app.core.services.storage.base import ApplicationStorage
from src.app.core.services.storage.memory import InMemoryStorage
from src.app.core.services.storage.state import PromotionStateStore


def get_storage(redis_url: str | None) -> ApplicationStorage:
    """Redis storage when a URL is configured, in-memory storage otherwise."""

    if redis_url:
        from redis.asyncio import Redis

        from src.app.core.services.storage.redis import RedisStorage

        client = Redis.from_url(redis_url, decode_responses=True)
        return RedisStorage(client)

    logger.warning(
        "No redis_url configured; using in-memory state (locks do not span runs)"
    )
    return InMemoryStorage()


def get_state_store(redis_url: str | None, ttl_seconds: int | None = None) -> PromotionStateStore:
    """Get the configured promotion state store."""

    storage = get_storage(redis_url)
    if ttl_seconds is None:
        return PromotionStateStore(storage)
    return PromotionStateStore(storage, ttl_seconds=ttl_seconds)
