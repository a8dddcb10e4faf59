"""Storage backends and typed stores for durable overlay data."""

from tabspaces.overlay.store.assignments import AssignmentStore
from tabspaces.overlay.store.base import (
    KeyValueStorage,
    StorageChange,
    StorageError,
    StorageReadError,
    StorageWriteError,
)
from tabspaces.overlay.store.local import LocalJsonStorage
from tabspaces.overlay.store.memory import MemoryStorage
from tabspaces.overlay.store.preferences import load_preferences, save_preferences
from tabspaces.overlay.store.redis import RedisStorage

__all__ = [
    "AssignmentStore",
    "KeyValueStorage",
    "LocalJsonStorage",
    "MemoryStorage",
    "RedisStorage",
    "StorageChange",
    "StorageError",
    "StorageReadError",
    "StorageWriteError",
    "load_preferences",
    "save_preferences",
]
