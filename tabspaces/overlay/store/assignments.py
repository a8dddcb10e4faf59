"""Assignment store -- owns every read and write of the assignment records.

Three records live here, each stored whole under its own key:

- ``workspaceAssignments``: window id -> workspace id -> {groups, tabs}
- ``activeWorkspacePerWindow``: window id -> workspace id
- ``lastActiveTabPerWorkspace``: window id -> workspace id -> {tabId, url}

Writes always persist the full record.  Read-modify-write sections go through
``edit`` / ``edit_all``, ``edit_active_workspaces`` and
``edit_last_active_tabs``; each holds an in-process ``asyncio.Lock`` for its
record so two coroutines cannot interleave a torn update.  When both are
needed, the assignments lock is taken before the active workspace lock.
Across processes the storage is last-write-wins.

Host calls never happen inside an edit section.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

from pydantic import ValidationError

from tabspaces.overlay.models.workspace import (
    ACTIVE_WORKSPACES_ADAPTER,
    GENERAL_WORKSPACE_ID,
    LAST_ACTIVE_TABS_ADAPTER,
    WINDOW_ASSIGNMENTS_ADAPTER,
    to_storage,
)
from tabspaces.overlay.store.base import (
    ACTIVE_WORKSPACES_KEY,
    ASSIGNMENTS_KEY,
    LAST_ACTIVE_TABS_KEY,
    StorageReadError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from pydantic import TypeAdapter

    from tabspaces.overlay.models.workspace import (
        LastActiveTabs,
        WindowWorkspaceAssignments,
        WorkspaceAssignments,
    )
    from tabspaces.overlay.store.base import KeyValueStorage


class AssignmentStore:
    """Typed access to the persisted assignment records."""

    def __init__(self, storage: KeyValueStorage) -> None:
        self._storage = storage
        self._lock = asyncio.Lock()
        self._active_lock = asyncio.Lock()
        self._last_active_lock = asyncio.Lock()

    @property
    def storage(self) -> KeyValueStorage:
        return self._storage

    async def _read(self, key: str, adapter: TypeAdapter):
        data = await self._storage.get([key], {key: {}})
        try:
            return adapter.validate_python(data.get(key) or {})
        except ValidationError as exc:
            raise StorageReadError(key, f"invalid record ({exc.error_count()} errors)") from exc

    # -- Workspace assignments -------------------------------------------------

    async def load_all(self) -> WindowWorkspaceAssignments:
        return await self._read(ASSIGNMENTS_KEY, WINDOW_ASSIGNMENTS_ADAPTER)

    async def save_all(self, assignments: WindowWorkspaceAssignments) -> None:
        async with self._lock:
            await self._write_assignments(assignments)

    async def load(self, window_id: int) -> WorkspaceAssignments:
        """Assignments of one window.  Empty when the window has none."""
        return self.get_window_assignments(await self.load_all(), window_id)

    async def save(self, window_id: int, assignments: WorkspaceAssignments) -> None:
        """Replace one window's assignments, keeping the other windows."""
        async with self.edit_all() as all_assignments:
            all_assignments[window_id] = assignments

    @staticmethod
    def get_window_assignments(all_assignments: WindowWorkspaceAssignments, window_id: int) -> WorkspaceAssignments:
        """Look up a window's record, tolerating string window keys."""
        found = all_assignments.get(window_id)
        if found is None:
            found = all_assignments.get(str(window_id))  # type: ignore[call-overload]
        return found or {}

    @contextlib.asynccontextmanager
    async def edit_all(self) -> AsyncIterator[WindowWorkspaceAssignments]:
        """Read every window's assignments, yield them for mutation, write back.

        Nothing is written when the body raises or leaves the record unchanged.
        """
        async with self._lock:
            current = await self.load_all()
            before = to_storage(WINDOW_ASSIGNMENTS_ADAPTER, current)
            yield current
            if to_storage(WINDOW_ASSIGNMENTS_ADAPTER, current) != before:
                await self._write_assignments(current)

    @contextlib.asynccontextmanager
    async def edit(self, window_id: int) -> AsyncIterator[WorkspaceAssignments]:
        """Like ``edit_all`` but scoped to a single window's record."""
        async with self.edit_all() as all_assignments:
            window = self.get_window_assignments(all_assignments, window_id)
            all_assignments.pop(str(window_id), None)  # type: ignore[call-overload]
            all_assignments[window_id] = window
            yield window
            if not window:
                del all_assignments[window_id]

    async def drop_workspace(self, workspace_id: str) -> list[int]:
        """Delete a workspace's assignments in every window.

        Returns the ids of the windows that had an entry for it.
        """
        affected: list[int] = []
        async with self.edit_all() as all_assignments:
            for window_id, window in all_assignments.items():
                if window.pop(workspace_id, None) is not None:
                    affected.append(window_id)
        return affected

    async def _write_assignments(self, assignments: WindowWorkspaceAssignments) -> None:
        await self._storage.set({ASSIGNMENTS_KEY: to_storage(WINDOW_ASSIGNMENTS_ADAPTER, assignments)})

    # -- Active workspace per window -------------------------------------------

    async def load_active_workspaces(self) -> dict[int, str]:
        return await self._read(ACTIVE_WORKSPACES_KEY, ACTIVE_WORKSPACES_ADAPTER)

    async def save_active_workspaces(self, active: dict[int, str]) -> None:
        await self._storage.set({ACTIVE_WORKSPACES_KEY: to_storage(ACTIVE_WORKSPACES_ADAPTER, active)})

    @contextlib.asynccontextmanager
    async def edit_active_workspaces(self) -> AsyncIterator[dict[int, str]]:
        """Read-modify-write section over the active workspace map."""
        async with self._active_lock:
            active = await self.load_active_workspaces()
            before = dict(active)
            yield active
            if active != before:
                await self.save_active_workspaces(active)

    async def get_active_workspace_id(self, window_id: int) -> str:
        active = await self.load_active_workspaces()
        return active.get(window_id, GENERAL_WORKSPACE_ID)

    async def set_active_workspace_id(self, window_id: int, workspace_id: str) -> None:
        async with self.edit_active_workspaces() as active:
            active[window_id] = workspace_id

    # -- Last active tab per workspace -----------------------------------------

    async def load_last_active_tabs(self) -> LastActiveTabs:
        return await self._read(LAST_ACTIVE_TABS_KEY, LAST_ACTIVE_TABS_ADAPTER)

    async def save_last_active_tabs(self, data: LastActiveTabs) -> None:
        await self._storage.set({LAST_ACTIVE_TABS_KEY: to_storage(LAST_ACTIVE_TABS_ADAPTER, data)})

    @contextlib.asynccontextmanager
    async def edit_last_active_tabs(self) -> AsyncIterator[LastActiveTabs]:
        """Read-modify-write section over the remembered active tabs."""
        async with self._last_active_lock:
            data = await self.load_last_active_tabs()
            before = to_storage(LAST_ACTIVE_TABS_ADAPTER, data)
            yield data
            if to_storage(LAST_ACTIVE_TABS_ADAPTER, data) != before:
                await self.save_last_active_tabs(data)
