"""State storage abstractions for promotion records."""

from .base import ApplicationStorage
from .factory import get_state_store, get_storage
from .memory import InMemoryStorage
from .redis import RedisStorage
from .state import PromotionStateStore

__all__ = [
    "ApplicationStorage",
    "get_state_store",
    "get_storage",
    "InMemoryStorage",
    "RedisStorage",
    "PromotionStateStore",
]
