"""Session restore -- rebuild a window's assignments after the browser restores it.

Restored tabs get new ids, so saved entries are matched against the live
window by content: groups by ``title|color``, ungrouped tabs by URL (restore
wrapper URLs unwrapped).  Tab ids are left out of the rebuilt record; the
next sync pass fills them in.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from tabspaces.overlay.host.base import HostLookupError, HostOperationError
from tabspaces.overlay.identity import extract_original_url, make_group_fingerprint, urls_match
from tabspaces.overlay.models.workspace import (
    GENERAL_WORKSPACE_ID,
    GroupAssignment,
    TabAssignment,
    WorkspaceAssignment,
)
from tabspaces.overlay.store.base import StorageError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tabspaces.overlay.host.base import TabHost
    from tabspaces.overlay.models.host import NativeGroup, NativeTab
    from tabspaces.overlay.models.workspace import WorkspaceAssignments
    from tabspaces.overlay.store.assignments import AssignmentStore


def has_assignments(assignments: WorkspaceAssignments | None) -> bool:
    """True when any workspace in ``assignments`` holds a tab or a group."""
    if not assignments:
        return False
    return any(not a.is_empty() for a in assignments.values())


def match_restored_items_to_workspaces(
    tabs: Sequence[NativeTab],
    groups: Sequence[NativeGroup],
    saved: WorkspaceAssignments,
) -> WorkspaceAssignments:
    """Map saved assignments onto restored tabs and groups.

    Saved entries with no live counterpart are dropped.  Every custom
    workspace in ``saved`` appears in the result, possibly empty.
    """
    ordered = sorted(tabs, key=lambda t: t.index)
    result: WorkspaceAssignments = {}
    for workspace_id, assignment in saved.items():
        if workspace_id == GENERAL_WORKSPACE_ID:
            continue
        rebuilt = WorkspaceAssignment()

        for stored in assignment.groups:
            live = next((g for g in groups if make_group_fingerprint(g.title, g.color) == stored.fingerprint), None)
            if live is None:
                continue
            members = [t for t in ordered if t.group_id == live.id]
            rebuilt.groups.append(
                GroupAssignment(
                    title=stored.title,
                    color=stored.color,
                    index=members[0].index if members else stored.index,
                    tab_urls=[extract_original_url(t.url) for t in members],
                )
            )

        for stored in assignment.tabs:
            live_tab = next((t for t in ordered if not t.grouped and urls_match(t.url, stored.url)), None)
            if live_tab is None:
                logger.debug("Restore: no restored tab for {} in workspace {}", stored.url, workspace_id)
                continue
            rebuilt.tabs.append(
                TabAssignment(
                    url=extract_original_url(live_tab.url),
                    title=live_tab.title or stored.title,
                    index=live_tab.index,
                )
            )

        result[workspace_id] = rebuilt
    return result


class SessionRestorer:
    """Applies saved assignments to a window the browser has just restored."""

    def __init__(self, host: TabHost, store: AssignmentStore) -> None:
        self._host = host
        self._store = store

    async def rebuild_workspace_assignments(self, window_id: int, saved: WorkspaceAssignments) -> WorkspaceAssignments:
        """Match ``saved`` against the window's live tabs.  Empty on host failure."""
        try:
            tabs = await self._host.query_tabs(window_id)
            groups = await self._host.query_groups(window_id)
        except (HostLookupError, HostOperationError) as exc:
            logger.error("Restore: cannot read window {}: {}", window_id, exc)
            return {}
        return match_restored_items_to_workspaces(tabs, groups, saved)

    async def restore_workspace_assignments(self, window_id: int, saved: WorkspaceAssignments) -> bool:
        """Replace the window's record with ``saved`` matched to the live tabs.

        Refuses an empty ``saved`` and refuses to replace real saved data
        with a match that found nothing.  Returns ``True`` when written.
        """
        if not saved:
            logger.warning("Restore: nothing saved for window {}, keeping existing assignments", window_id)
            return False

        rebuilt = await self.rebuild_workspace_assignments(window_id, saved)
        if has_assignments(saved) and not has_assignments(rebuilt):
            logger.warning(
                "Restore: nothing matched in window {} (saved workspaces: {}), keeping existing assignments",
                window_id,
                ", ".join(saved),
            )
            return False

        try:
            await self._store.save(window_id, rebuilt)
        except StorageError as exc:
            logger.error("Restore: failed to save window {}: {}", window_id, exc)
            return False
        logger.info("Restore: window {} restored ({} workspaces)", window_id, len(rebuilt))
        return True

    async def restore_active_workspace(self, window_id: int, workspace_id: str) -> bool:
        try:
            await self._store.set_active_workspace_id(window_id, workspace_id)
        except StorageError as exc:
            logger.error("Restore: failed to set active workspace of window {}: {}", window_id, exc)
            return False
        logger.info("Restore: window {} active workspace set to {}", window_id, workspace_id)
        return True
