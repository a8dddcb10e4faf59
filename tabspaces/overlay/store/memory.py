"""In-process storage backend.

Values are deep-copied on the way in and out so callers can never mutate
stored state without going through ``set``.
"""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any

from tabspaces.overlay.store.base import ChangeNotifier, StorageChange

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping


class MemoryStorage:
    """Dict-backed implementation of the KeyValueStorage protocol."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(dict(initial or {}))
        self._notifier = ChangeNotifier()

    async def get(self, keys: Iterable[str], defaults: Mapping[str, Any] | None = None) -> dict[str, Any]:
        defaults = defaults or {}
        result: dict[str, Any] = {}
        for key in keys:
            if key in self._data:
                result[key] = copy.deepcopy(self._data[key])
            elif key in defaults:
                result[key] = copy.deepcopy(defaults[key])
        return result

    async def set(self, record: Mapping[str, Any]) -> None:
        changes: dict[str, StorageChange] = {}
        for key, value in record.items():
            new_value = copy.deepcopy(value)
            changes[key] = StorageChange(old_value=self._data.get(key), new_value=copy.deepcopy(new_value))
            self._data[key] = new_value
        self._notifier.notify(changes)

    def subscribe(self, listener: Callable[[dict[str, StorageChange]], None]) -> Callable[[], None]:
        return self._notifier.subscribe(listener)

    def snapshot(self) -> dict[str, Any]:
        """Deep copy of everything stored, for inspection."""
        return copy.deepcopy(self._data)
