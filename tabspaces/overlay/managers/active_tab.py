"""Active tab tracking per workspace and the workspace switch flow.

With ``separateActiveTabPerWorkspace`` on, each (window, workspace) remembers
the tab that was focused when the user left it, and switching back focuses
that tab again.  Records hold the tab id plus its URL; the URL is the
fallback once the id goes stale after a browser restart.

Window ids change on restart too, so before reading a window's record the
tracker adopts data left under window ids that no longer exist.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from loguru import logger

from tabspaces.overlay.filtering import find_workspace_for_active_tab
from tabspaces.overlay.host.base import HostLookupError, HostOperationError
from tabspaces.overlay.identity import extract_original_url, urls_match
from tabspaces.overlay.models.workspace import GENERAL_WORKSPACE_ID, LastActiveTab
from tabspaces.overlay.store.base import StorageError

if TYPE_CHECKING:
    from tabspaces.overlay.host.base import TabHost
    from tabspaces.overlay.managers.workspaces import WorkspaceRegistry
    from tabspaces.overlay.models.preferences import OverlayPreferences
    from tabspaces.overlay.store.assignments import AssignmentStore

_FAILURES = (HostLookupError, HostOperationError, StorageError)


class ActiveTabTracker:
    """Remembers and restores the focused tab of each workspace."""

    def __init__(
        self,
        host: TabHost,
        store: AssignmentStore,
        registry: WorkspaceRegistry,
        *,
        switch_settle_delay: float = 0.1,
        startup_activation_delay: float = 0.5,
    ) -> None:
        self._host = host
        self._store = store
        self._registry = registry
        self._switch_settle_delay = switch_settle_delay
        self._startup_activation_delay = startup_activation_delay

    # -- Remember / restore ----------------------------------------------------

    async def save_last_active_tab_for_workspace(self, window_id: int, workspace_id: str, tab_id: int) -> None:
        try:
            tab = await self._host.get_tab(tab_id)
            if not tab.url:
                return
            async with self._store.edit_last_active_tabs() as data:
                data.setdefault(window_id, {})[workspace_id] = LastActiveTab(
                    tab_id=tab_id, url=extract_original_url(tab.url)
                )
        except _FAILURES as exc:
            logger.error("Failed to remember active tab {} for workspace {}: {}", tab_id, workspace_id, exc)
            return
        logger.debug("Tab {} remembered as last active in workspace {}", tab_id, workspace_id)

    async def activate_last_active_tab_for_workspace(self, window_id: int, workspace_id: str) -> bool:
        """Focus the remembered tab of a workspace.  Returns ``True`` if a tab was focused.

        The stored tab id is tried first (it must still live in this window);
        failing that, the first tab in the window with the stored URL is
        focused and its id recorded.
        """
        try:
            remembered = (await self._migrate_window_data(window_id)).get(workspace_id)
            if remembered is None:
                return False

            try:
                tab = await self._host.get_tab(remembered.tab_id)
            except HostLookupError:
                tab = None
            if tab is not None and tab.window_id == window_id:
                await self._host.update_tab(tab.id, active=True)
                return True

            tabs = await self._host.query_tabs(window_id)
            match = next((t for t in tabs if t.url and urls_match(t.url, remembered.url)), None)
            if match is None:
                logger.debug("No tab left for workspace {} in window {}", workspace_id, window_id)
                return False
            await self._host.update_tab(match.id, active=True)
            async with self._store.edit_last_active_tabs() as data:
                record = data.get(window_id, {}).get(workspace_id)
                if record is not None:
                    record.tab_id = match.id
        except _FAILURES as exc:
            logger.error("Failed to restore active tab of workspace {}: {}", workspace_id, exc)
            return False
        return True

    async def _migrate_window_data(self, window_id: int) -> dict[str, LastActiveTab]:
        """Adopt records stored under window ids that no longer exist.

        The highest stale id is taken as the most recent window; its
        workspaces are merged in without overwriting existing entries.  All
        stale ids are then deleted.  Returns the window's records.
        """
        current = set(await self._host.list_windows())
        async with self._store.edit_last_active_tabs() as data:
            stale = [wid for wid in data if wid not in current and wid != window_id]
            if not stale:
                return dict(data.get(window_id, {}))

            target = data.setdefault(window_id, {})
            source = max(stale)
            merged = 0
            for workspace_id, record in data[source].items():
                if workspace_id not in target:
                    target[workspace_id] = record
                    merged += 1
            for wid in stale:
                del data[wid]
        logger.info("Adopted {} remembered tabs from closed window {} into {}", merged, source, window_id)
        return dict(target)

    async def cleanup_closed_window_data(self, window_id: int) -> None:
        """Forget a closed window's records, unless the whole browser is closing."""
        try:
            if not await self._host.list_windows():
                logger.debug("No windows left, keeping remembered tabs of window {}", window_id)
                return
            async with self._store.edit_last_active_tabs() as data:
                data.pop(window_id, None)
        except _FAILURES as exc:
            logger.error("Failed to clean up remembered tabs of window {}: {}", window_id, exc)

    async def get_current_tab_workspace(self, tab_id: int, window_id: int) -> str | None:
        """Workspace id that owns ``tab_id``; ``None`` if the tab cannot be read."""
        try:
            tab = await self._host.get_tab(tab_id)
            if not tab.url:
                return None
            assignments = await self._store.load(window_id)
            workspaces = await self._registry.load_workspaces()
            owner = await find_workspace_for_active_tab(self._host, tab, assignments, workspaces)
        except _FAILURES as exc:
            logger.error("Failed to resolve workspace of tab {}: {}", tab_id, exc)
            return None
        return owner.id if owner is not None else GENERAL_WORKSPACE_ID

    # -- Switching -------------------------------------------------------------

    async def switch_workspace(self, window_id: int, workspace_id: str, preferences: OverlayPreferences) -> bool:
        """Make ``workspace_id`` the window's active workspace.

        With separate active tabs on, the outgoing workspace's focused tab is
        remembered and, after a short settle delay, the incoming one's is
        focused again.
        """
        try:
            previous = await self._store.get_active_workspace_id(window_id)
            separate = preferences.separate_active_tab_per_workspace and previous != workspace_id
            if separate:
                active = await self._host.query_tabs(window_id, active=True)
                if active:
                    await self.save_last_active_tab_for_workspace(window_id, previous, active[0].id)
            await self._store.set_active_workspace_id(window_id, workspace_id)
        except _FAILURES as exc:
            logger.error("Failed to switch window {} to workspace {}: {}", window_id, workspace_id, exc)
            return False

        logger.info("Window {}: workspace {} -> {}", window_id, previous, workspace_id)
        if separate:
            await asyncio.sleep(self._switch_settle_delay)
            await self.activate_last_active_tab_for_workspace(window_id, workspace_id)
        return True

    async def switch_to_workspace_number(
        self,
        window_id: int,
        number: int,
        preferences: OverlayPreferences,
    ) -> bool:
        """Hotkey switch: activate the workspace at 1-based position ``number``."""
        try:
            workspace = await self._registry.get_workspace_at(number)
        except StorageError as exc:
            logger.error("Failed to read workspaces for hotkey switch: {}", exc)
            return False
        if workspace is None:
            logger.debug("No workspace at position {}", number)
            return False
        return await self.switch_workspace(window_id, workspace.id, preferences)

    async def restore_on_startup(self, window_id: int, preferences: OverlayPreferences) -> str:
        """Return the window's active workspace, refocusing its remembered tab if enabled."""
        try:
            workspace_id = await self._store.get_active_workspace_id(window_id)
        except StorageError as exc:
            logger.error("Failed to read active workspace of window {}: {}", window_id, exc)
            return GENERAL_WORKSPACE_ID
        if preferences.separate_active_tab_per_workspace:
            await asyncio.sleep(self._startup_activation_delay)
            await self.activate_last_active_tab_for_workspace(window_id, workspace_id)
        return workspace_id
