"""Assignment mutator -- moves tabs and groups between workspaces.

Every operation reads the host for the live tab/group, edits the window's
assignment record in memory and writes it back once through
``AssignmentStore.edit``.  A custom workspace never shares a tab or group
with another custom workspace: adding to one removes from the others.
``general`` is never written; moving something there means deleting its
custom entries.

Public methods return ``True`` when the record is in the requested state
afterwards and ``False`` when the request was refused or failed.  Host and
storage errors are logged here and never reach the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from tabspaces.overlay.host.base import HostLookupError, HostOperationError
from tabspaces.overlay.identity import extract_original_url, group_fingerprint, is_new_tab_url, urls_match
from tabspaces.overlay.models.workspace import (
    GENERAL_WORKSPACE_ID,
    GroupAssignment,
    TabAssignment,
    WorkspaceAssignment,
)
from tabspaces.overlay.store.base import StorageError

if TYPE_CHECKING:
    from tabspaces.overlay.host.base import TabHost
    from tabspaces.overlay.models.host import NativeGroup, NativeTab
    from tabspaces.overlay.models.workspace import WorkspaceAssignments
    from tabspaces.overlay.store.assignments import AssignmentStore

_FAILURES = (HostLookupError, HostOperationError, StorageError)


# -- Record helpers ------------------------------------------------------------


def next_workspace_index(assignment: WorkspaceAssignment) -> int:
    """Index that places a new entry after every tab and group of the workspace."""
    highest = -1
    for tab in assignment.tabs:
        highest = max(highest, tab.index)
    for group in assignment.groups:
        highest = max(highest, group.index + len(group.tab_urls))
    return highest + 1


def _is_same_tab(entry: TabAssignment, tab_id: int, url: str | None, *, any_url: bool) -> bool:
    """Whether ``entry`` records the given tab.

    Matches by tab id.  Falls back to URL for entries without a tab id, or
    for any entry when ``any_url`` is set.
    """
    if entry.tab_id is not None and entry.tab_id == tab_id:
        return True
    if url is None or (entry.tab_id is not None and not any_url):
        return False
    return urls_match(entry.url, url)


def _drop_tab(assignment: WorkspaceAssignment, tab_id: int, url: str | None, *, any_url: bool = False) -> None:
    assignment.tabs = [t for t in assignment.tabs if not _is_same_tab(t, tab_id, url, any_url=any_url)]


def _drop_group(assignment: WorkspaceAssignment, fingerprint: str) -> None:
    assignment.groups = [g for g in assignment.groups if g.fingerprint != fingerprint]


class AssignmentMutator:
    """Applies membership changes to the persisted assignment record."""

    def __init__(self, host: TabHost, store: AssignmentStore) -> None:
        self._host = host
        self._store = store

    # -- Tabs ------------------------------------------------------------------

    async def add_tab_to_workspace(
        self,
        tab_id: int,
        workspace_id: str,
        window_id: int,
        *,
        skip_url_deduplication: bool = False,
    ) -> bool:
        """Assign a tab to a custom workspace, removing it from every other one.

        Other entries with the same URL are treated as the same tab unless
        ``skip_url_deduplication`` is set (used when several tabs share a URL).
        """
        if workspace_id == GENERAL_WORKSPACE_ID:
            return False
        try:
            tab = await self._host.get_tab(tab_id)
            url = extract_original_url(tab.effective_url)
            if not url:
                return False
            dedupe_url = None if skip_url_deduplication else url
            async with self._store.edit(window_id) as window:
                for ws_id, assignment in window.items():
                    if ws_id != workspace_id:
                        _drop_tab(assignment, tab_id, dedupe_url, any_url=True)
                target = window.setdefault(workspace_id, WorkspaceAssignment())
                existing = next(
                    (t for t in target.tabs if _is_same_tab(t, tab_id, dedupe_url, any_url=True)),
                    None,
                )
                if existing is not None:
                    existing.url = url
                    existing.title = tab.title
                    existing.tab_id = tab_id
                else:
                    target.tabs.append(
                        TabAssignment(url=url, title=tab.title, index=next_workspace_index(target), tab_id=tab_id)
                    )
        except _FAILURES as exc:
            logger.error("Failed to add tab {} to workspace {}: {}", tab_id, workspace_id, exc)
            return False
        logger.debug("Tab {} assigned to workspace {} (window {})", tab_id, workspace_id, window_id)
        return True

    async def remove_tab_from_all_workspaces(self, tab_id: int, window_id: int) -> bool:
        """Return a tab to ``general``.

        Deletes its entries (by id, and by URL for entries without an id) and
        strips its URL from every group snapshot.  A tab the host no longer
        knows is removed by id only.
        """
        try:
            url: str | None
            try:
                tab = await self._host.get_tab(tab_id)
                url = extract_original_url(tab.effective_url) or None
            except HostLookupError:
                url = None
            async with self._store.edit(window_id) as window:
                for assignment in window.values():
                    _drop_tab(assignment, tab_id, url)
                    if url is not None:
                        for group in assignment.groups:
                            group.tab_urls = [u for u in group.tab_urls if not urls_match(u, url)]
        except _FAILURES as exc:
            logger.error("Failed to remove tab {} from workspaces: {}", tab_id, exc)
            return False
        return True

    async def move_tab_to_workspace_end(self, tab_id: int, workspace_id: str, window_id: int) -> bool:
        """Reassign a tab so it sorts after everything else in ``workspace_id``."""
        if workspace_id == GENERAL_WORKSPACE_ID:
            return await self.remove_tab_from_all_workspaces(tab_id, window_id)
        try:
            tab = await self._host.get_tab(tab_id)
            url = extract_original_url(tab.effective_url)
            if not url:
                return False
            async with self._store.edit(window_id) as window:
                for assignment in window.values():
                    _drop_tab(assignment, tab_id, url)
                target = window.setdefault(workspace_id, WorkspaceAssignment())
                target.tabs.append(
                    TabAssignment(url=url, title=tab.title, index=next_workspace_index(target), tab_id=tab_id)
                )
        except _FAILURES as exc:
            logger.error("Failed to move tab {} to end of workspace {}: {}", tab_id, workspace_id, exc)
            return False
        return True

    # -- Groups ----------------------------------------------------------------

    async def add_group_to_workspace(self, group_id: int, workspace_id: str, window_id: int) -> bool:
        """Assign a group, and each of its member tabs, to a custom workspace.

        Member tabs are recorded individually too so they stay in the
        workspace after being ungrouped.
        """
        if workspace_id == GENERAL_WORKSPACE_ID:
            return False
        try:
            group = await self._host.get_group(group_id)
            members = await self._host.query_tabs(group_id=group_id)
            fingerprint = group_fingerprint(group)
            member_urls = [extract_original_url(t.effective_url) for t in members]
            async with self._store.edit(window_id) as window:
                for ws_id, assignment in window.items():
                    if ws_id != workspace_id:
                        _drop_group(assignment, fingerprint)
                target = window.setdefault(workspace_id, WorkspaceAssignment())
                existing = next((g for g in target.groups if g.fingerprint == fingerprint), None)
                if existing is None:
                    target.groups.append(
                        GroupAssignment(
                            title=group.title,
                            color=group.color,
                            index=next_workspace_index(target),
                            tab_urls=member_urls,
                        )
                    )
                else:
                    existing.tab_urls = member_urls
                self._add_members(window, workspace_id, members, fingerprint)
        except _FAILURES as exc:
            logger.error("Failed to add group {} to workspace {}: {}", group_id, workspace_id, exc)
            return False
        logger.debug("Group {} ({}) assigned to workspace {}", group_id, fingerprint, workspace_id)
        return True

    @staticmethod
    def _add_members(
        window: WorkspaceAssignments,
        workspace_id: str,
        members: list[NativeTab],
        fingerprint: str,
    ) -> None:
        target = window[workspace_id]
        for tab in members:
            url = extract_original_url(tab.effective_url)
            if not url:
                continue
            for ws_id, assignment in window.items():
                if ws_id != workspace_id:
                    _drop_tab(assignment, tab.id, url)
            if any(_is_same_tab(t, tab.id, url, any_url=False) for t in target.tabs):
                continue
            target.tabs.append(
                TabAssignment(
                    url=url,
                    title=tab.title,
                    index=next_workspace_index(target),
                    tab_id=tab.id,
                    group_fingerprint=fingerprint,
                )
            )

    async def remove_group_from_all_workspaces(self, group_id: int, window_id: int) -> bool:
        """Return a group and its member tabs to ``general``."""
        try:
            group = await self._host.get_group(group_id)
            members = await self._host.query_tabs(group_id=group_id)
            fingerprint = group_fingerprint(group)
            async with self._store.edit(window_id) as window:
                for assignment in window.values():
                    _drop_group(assignment, fingerprint)
                    for tab in members:
                        url = extract_original_url(tab.effective_url) or None
                        _drop_tab(assignment, tab.id, url, any_url=True)
        except _FAILURES as exc:
            logger.error("Failed to remove group {} from workspaces: {}", group_id, exc)
            return False
        return True

    # -- Event bookkeeping -----------------------------------------------------

    async def assign_created_tab(self, tab: NativeTab, active_workspace_id: str) -> bool:
        """Record a freshly opened new-tab page in the window's active custom workspace.

        The entry carries the tab id, so the placeholder URL is replaced when
        the tab navigates (see ``record_tab_url_change``).
        """
        if active_workspace_id == GENERAL_WORKSPACE_ID or not is_new_tab_url(tab.url):
            return False
        try:
            async with self._store.edit(tab.window_id) as window:
                target = window.setdefault(active_workspace_id, WorkspaceAssignment())
                if not any(t.tab_id == tab.id for t in target.tabs):
                    target.tabs.append(
                        TabAssignment(url=tab.url or "about:blank", title=tab.title, index=tab.index, tab_id=tab.id)
                    )
        except StorageError as exc:
            logger.error("Failed to assign new tab {} to workspace {}: {}", tab.id, active_workspace_id, exc)
            return False
        logger.info("New tab {} assigned to workspace {}", tab.id, active_workspace_id)
        return True

    async def record_tab_url_change(self, tab: NativeTab, url: str, active_workspace_id: str) -> str | None:
        """Follow a tab's navigation in the assignment record.

        The entry recorded for this tab id is updated first; failing that, an
        entry with the same URL and no conflicting tab id is claimed.  An
        untracked tab joins the active custom workspace.  Returns the
        workspace the tab ends up in, or ``None`` when it stays in general.
        """
        owner: str | None = None
        try:
            async with self._store.edit(tab.window_id) as window:
                entry = self._find_entry(window, tab.id, url)
                if entry is not None:
                    owner, record = entry
                    record.url = url
                    record.title = tab.title
                    record.index = tab.index
                    record.tab_id = tab.id
                elif active_workspace_id != GENERAL_WORKSPACE_ID:
                    owner = active_workspace_id
                    target = window.setdefault(owner, WorkspaceAssignment())
                    target.tabs.append(TabAssignment(url=url, title=tab.title, index=tab.index, tab_id=tab.id))
        except StorageError as exc:
            logger.error("Failed to record URL change of tab {}: {}", tab.id, exc)
            return None
        return owner

    @staticmethod
    def _find_entry(window: WorkspaceAssignments, tab_id: int, url: str) -> tuple[str, TabAssignment] | None:
        for ws_id, assignment in window.items():
            for record in assignment.tabs:
                if record.tab_id is not None and record.tab_id == tab_id:
                    return ws_id, record
        for ws_id, assignment in window.items():
            for record in assignment.tabs:
                if record.tab_id is not None and record.tab_id != tab_id:
                    continue
                if record.url == url:
                    return ws_id, record
        return None

    async def keep_ungrouped_tab(self, tab: NativeTab) -> str | None:
        """Keep a tab that just left a workspace's group in that workspace.

        Returns the workspace id if the tab was found in a stored group snapshot.
        """
        url = extract_original_url(tab.effective_url)
        if not url:
            return None
        owner: str | None = None
        try:
            async with self._store.edit(tab.window_id) as window:
                owner = next(
                    (
                        ws_id
                        for ws_id, assignment in window.items()
                        if any(urls_match(u, url) for g in assignment.groups for u in g.tab_urls)
                    ),
                    None,
                )
                if owner is not None:
                    target = window[owner]
                    if not any(_is_same_tab(t, tab.id, url, any_url=False) for t in target.tabs):
                        target.tabs.append(TabAssignment(url=url, title=tab.title, index=tab.index, tab_id=tab.id))
        except StorageError as exc:
            logger.error("Failed to keep ungrouped tab {}: {}", tab.id, exc)
            return None
        return owner

    async def record_group_update(self, group: NativeGroup) -> bool:
        """Carry a renamed or recolored group's membership over to its new fingerprint.

        The stored group is recognised by its member URL set.
        """
        try:
            members = await self._host.query_tabs(group_id=group.id)
            member_urls = [extract_original_url(t.effective_url) for t in members]
            if not member_urls:
                return False
            wanted = sorted(member_urls)
            async with self._store.edit(group.window_id) as window:
                for assignment in window.values():
                    for i, stored in enumerate(assignment.groups):
                        if sorted(stored.tab_urls) == wanted:
                            assignment.groups[i] = GroupAssignment(
                                title=group.title,
                                color=group.color,
                                index=members[0].index if members else stored.index,
                                tab_urls=member_urls,
                            )
                            return True
        except _FAILURES as exc:
            logger.error("Failed to record update of group {}: {}", group.id, exc)
        return False

    async def forget_closed_tab(self, tab_id: int, window_id: int) -> bool:
        """Drop entries recorded for a closed tab id."""
        try:
            async with self._store.edit(window_id) as window:
                for assignment in window.values():
                    _drop_tab(assignment, tab_id, None)
        except StorageError as exc:
            logger.error("Failed to forget closed tab {}: {}", tab_id, exc)
            return False
        return True
