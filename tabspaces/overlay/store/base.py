"""Key-value storage interface for durable overlay data.

The overlay persists a handful of JSON records (workspace list, assignments,
active workspace map, preferences) under fixed keys.  Backends only need to
store JSON-compatible values and report changes; record shapes are owned by
the stores built on top (see ``assignments.py``).

Every ``set`` reports ``{key: StorageChange}`` to subscribed listeners, which
is how other views of the same data learn about writes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from loguru import logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

# -- Keys ----------------------------------------------------------------------

WORKSPACES_KEY = "workspaces"
ASSIGNMENTS_KEY = "workspaceAssignments"
ACTIVE_WORKSPACES_KEY = "activeWorkspacePerWindow"
LAST_ACTIVE_TABS_KEY = "lastActiveTabPerWorkspace"
GENERAL_NAME_KEY = "generalWorkspaceName"
GENERAL_ICON_KEY = "generalWorkspaceIcon"


class StorageError(RuntimeError):
    """Base class for storage backend failures."""


class StorageReadError(StorageError):
    """Raised when a stored value cannot be read or decoded."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        super().__init__(f"Failed to read '{key}': {reason}")


class StorageWriteError(StorageError):
    """Raised when a value cannot be persisted.  Prior state is left intact."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        super().__init__(f"Failed to write '{key}': {reason}")


@dataclass(frozen=True)
class StorageChange:
    old_value: Any = None
    new_value: Any = None


@runtime_checkable
class KeyValueStorage(Protocol):
    """Async protocol for the overlay's durable key-value records."""

    async def get(self, keys: Iterable[str], defaults: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Read ``keys``.  Missing keys take their default, or are omitted."""
        ...

    async def set(self, record: Mapping[str, Any]) -> None:
        """Write every key in ``record``.  Raises ``StorageWriteError`` on failure."""
        ...

    def subscribe(self, listener: Callable[[dict[str, StorageChange]], None]) -> Callable[[], None]:
        """Register a change listener.  Returns a function that unsubscribes it."""
        ...


class ChangeNotifier:
    """Listener bookkeeping shared by the storage backends."""

    def __init__(self) -> None:
        self._listeners: list[Callable[[dict[str, StorageChange]], None]] = []

    def subscribe(self, listener: Callable[[dict[str, StorageChange]], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def notify(self, changes: dict[str, StorageChange]) -> None:
        if not changes:
            return
        for listener in list(self._listeners):
            try:
                listener(changes)
            except Exception:
                logger.exception("Storage change listener failed")
