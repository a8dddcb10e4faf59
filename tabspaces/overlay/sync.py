"""Workspace sync -- keep stored assignments in step with the live tab strip.

Host events feed the synchronizer.  Bookkeeping that must not wait (a new
tab joining the active workspace, a renamed group keeping its workspace) is
applied immediately through the ``AssignmentMutator``.  Everything else is
left to a debounced per-window ``sync_window`` pass that refreshes indices,
titles, group member URLs and tab ids, and drops entries whose tab or group
is gone.

Sync is suspended while window-id migration runs (window ids in storage are
stale until it finishes) and skipped while session restore is still loading
tabs, which shows up as many placeholder URLs.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Any

from loguru import logger

from tabspaces.overlay.host.base import HostLookupError, HostOperationError
from tabspaces.overlay.identity import extract_original_url, is_new_tab_url, make_group_fingerprint, urls_match
from tabspaces.overlay.models.host import TAB_GROUP_ID_NONE
from tabspaces.overlay.models.workspace import GENERAL_WORKSPACE_ID, GroupAssignment, TabAssignment
from tabspaces.overlay.store.base import StorageError
from tabspaces.overlay.store.preferences import load_preferences

if TYPE_CHECKING:
    from collections.abc import Coroutine

    from tabspaces.overlay.host.base import TabHost
    from tabspaces.overlay.managers.assignments import AssignmentMutator
    from tabspaces.overlay.models.host import NativeGroup, NativeTab
    from tabspaces.overlay.models.workspace import WorkspaceAssignment
    from tabspaces.overlay.store.assignments import AssignmentStore

PLACEHOLDER_RATIO_LIMIT = 0.3
PLACEHOLDER_MIN_TABS = 3

_FAILURES = (HostLookupError, HostOperationError, StorageError)


def restore_in_progress(tabs: list[NativeTab]) -> bool:
    """True while too many tabs still show placeholder URLs."""
    if len(tabs) <= PLACEHOLDER_MIN_TABS:
        return False
    placeholders = sum(1 for t in tabs if is_new_tab_url(t.url))
    return placeholders / len(tabs) > PLACEHOLDER_RATIO_LIMIT


class WorkspaceSynchronizer:
    """Reconciles a window's assignment record with its live tabs and groups."""

    def __init__(
        self,
        host: TabHost,
        store: AssignmentStore,
        mutator: AssignmentMutator,
        *,
        debounce: float = 1.0,
        group_assign_delay: float = 0.15,
    ) -> None:
        self._host = host
        self._store = store
        self._mutator = mutator
        self._debounce = debounce
        self._group_assign_delay = group_assign_delay
        self._pending: dict[int, asyncio.Task[None]] = {}
        self._background: set[asyncio.Task] = set()
        self._migration_in_progress = False

    # -- Migration lock --------------------------------------------------------

    @property
    def migration_in_progress(self) -> bool:
        return self._migration_in_progress

    def set_migration_in_progress(self, in_progress: bool) -> None:
        self._migration_in_progress = in_progress
        logger.debug("Sync: migration in progress = {}", in_progress)

    # -- Scheduling ------------------------------------------------------------

    def schedule_sync(self, window_id: int) -> None:
        """Sync ``window_id`` once no further event arrives for the debounce period."""
        previous = self._pending.pop(window_id, None)
        if previous is not None and not previous.done():
            previous.cancel()
        self._pending[window_id] = asyncio.get_running_loop().create_task(self._debounced_sync(window_id))

    async def _debounced_sync(self, window_id: int) -> None:
        await asyncio.sleep(self._debounce)
        self._pending.pop(window_id, None)
        self._spawn(self.sync_window(window_id))

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for every scheduled sync and delayed assignment to finish."""
        while self._pending or self._background:
            await asyncio.gather(*self._pending.values(), *self._background, return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel everything still scheduled."""
        tasks = [*self._pending.values(), *self._background]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._pending.clear()
        self._background.clear()

    # -- Sync pass -------------------------------------------------------------

    async def sync_window(self, window_id: int) -> bool:
        """Refresh the stored assignments of one window from the live snapshot.

        Returns ``True`` when a pass ran, ``False`` when it was skipped or failed.
        """
        if self._migration_in_progress:
            logger.debug("Sync: window {} skipped, migration in progress", window_id)
            return False
        try:
            preferences = await load_preferences(self._store.storage)
            if not preferences.enable_workspaces:
                return False
            tabs = await self._host.query_tabs(window_id)
            groups = await self._host.query_groups(window_id)
            if restore_in_progress(tabs):
                logger.debug("Sync: window {} skipped, session restore in progress", window_id)
                return False
            async with self._store.edit(window_id) as window:
                window.pop(GENERAL_WORKSPACE_ID, None)
                for assignment in window.values():
                    _refresh_groups(assignment, tabs, groups)
                    _refresh_tabs(assignment, tabs)
        except _FAILURES as exc:
            logger.error("Sync: window {} failed: {}", window_id, exc)
            return False
        logger.debug("Sync: window {} synced ({} tabs, {} groups)", window_id, len(tabs), len(groups))
        return True

    # -- Tab events ------------------------------------------------------------

    async def on_tab_created(self, tab: NativeTab) -> None:
        if await self._enabled():
            active_workspace = await self._active_workspace(tab.window_id)
            if active_workspace is not None:
                await self._mutator.assign_created_tab(tab, active_workspace)
        self.schedule_sync(tab.window_id)

    async def on_tab_updated(self, tab: NativeTab, *, url: str | None = None, group_id: int | None = None) -> None:
        """Handle a tab's URL change and/or group change."""
        if not await self._enabled():
            return
        if url:
            active_workspace = await self._active_workspace(tab.window_id)
            if active_workspace is not None:
                await self._mutator.record_tab_url_change(tab, url, active_workspace)
            self.schedule_sync(tab.window_id)
        if group_id == TAB_GROUP_ID_NONE:
            owner = await self._mutator.keep_ungrouped_tab(tab)
            if owner is not None:
                logger.info("Sync: ungrouped tab {} kept in workspace {}", tab.id, owner)

    async def on_tab_removed(self, tab_id: int, window_id: int, *, is_window_closing: bool = False) -> None:
        if is_window_closing:
            return
        await self._mutator.forget_closed_tab(tab_id, window_id)
        self.schedule_sync(window_id)

    def on_tab_moved(self, window_id: int) -> None:
        self.schedule_sync(window_id)

    # -- Group events ----------------------------------------------------------

    def on_group_created(self, group: NativeGroup) -> None:
        """Auto-assign a new group to the active workspace once its tabs have moved in."""
        self._spawn(self._auto_assign_group(group))

    async def _auto_assign_group(self, group: NativeGroup) -> None:
        await asyncio.sleep(self._group_assign_delay)
        try:
            if self._migration_in_progress or not await self._enabled():
                return
            members = await self._host.query_tabs(group_id=group.id)
            if not members:
                logger.debug("Sync: group {} has no tabs yet, not assigning", group.id)
                return
            active_workspace = await self._store.get_active_workspace_id(group.window_id)
        except _FAILURES as exc:
            logger.error("Sync: auto-assign of group {} failed: {}", group.id, exc)
            return
        if active_workspace != GENERAL_WORKSPACE_ID:
            if await self._mutator.add_group_to_workspace(group.id, active_workspace, group.window_id):
                logger.info("Sync: group {} auto-assigned to workspace {}", group.id, active_workspace)
        self.schedule_sync(group.window_id)

    async def on_group_updated(self, group: NativeGroup) -> None:
        if await self._enabled():
            await self._mutator.record_group_update(group)
        self.schedule_sync(group.window_id)

    def on_group_removed(self, group: NativeGroup) -> None:
        self.schedule_sync(group.window_id)

    # -- Helpers ---------------------------------------------------------------

    async def _enabled(self) -> bool:
        try:
            return (await load_preferences(self._store.storage)).enable_workspaces
        except StorageError as exc:
            logger.error("Sync: cannot read preferences: {}", exc)
            return False

    async def _active_workspace(self, window_id: int) -> str | None:
        try:
            return await self._store.get_active_workspace_id(window_id)
        except StorageError as exc:
            logger.error("Sync: cannot read active workspace of window {}: {}", window_id, exc)
            return None


def _refresh_groups(assignment: WorkspaceAssignment, tabs: list[NativeTab], groups: list[NativeGroup]) -> None:
    """Match stored groups by member URL set, then by fingerprint.  Drop vanished ones."""
    members: dict[int, list[NativeTab]] = {g.id: [t for t in tabs if t.group_id == g.id] for g in groups}
    refreshed: list[GroupAssignment] = []
    for stored in assignment.groups:
        wanted = sorted(stored.tab_urls)
        live = next(
            (g for g in groups if sorted(extract_original_url(t.url) for t in members[g.id]) == wanted),
            None,
        )
        if live is None:
            live = next((g for g in groups if make_group_fingerprint(g.title, g.color) == stored.fingerprint), None)
        if live is None:
            continue
        group_tabs = members[live.id]
        refreshed.append(
            GroupAssignment(
                title=live.title,
                color=live.color,
                index=group_tabs[0].index if group_tabs else 0,
                tab_urls=[extract_original_url(t.url) for t in group_tabs],
            )
        )
    assignment.groups = refreshed


def _refresh_tabs(assignment: WorkspaceAssignment, tabs: list[NativeTab]) -> None:
    """Match stored tabs by tab id, then URL.  Drop closed ones."""
    refreshed: list[TabAssignment] = []
    for stored in assignment.tabs:
        live = None
        if stored.tab_id is not None:
            live = next((t for t in tabs if t.id == stored.tab_id), None)
        if live is None:
            live = next((t for t in tabs if urls_match(t.url, stored.url)), None)
        if live is None:
            continue
        refreshed.append(
            TabAssignment(
                url=extract_original_url(live.url),
                title=live.title,
                index=live.index,
                tab_id=live.id,
                group_fingerprint=stored.group_fingerprint,
            )
        )
    assignment.tabs = refreshed
