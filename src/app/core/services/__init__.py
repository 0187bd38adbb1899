"""Core services exports."""

from src.app.core.services.storage import (
    ApplicationStorage,
    InMemoryStorage,
    PromotionStateStore,
    RedisStorage,
    get_state_store,
)

__all__ = [
    "ApplicationStorage",
    "InMemoryStorage",
    "PromotionStateStore",
    "RedisStorage",
    "get_state_store",
]
