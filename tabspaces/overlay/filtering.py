"""Filter engine -- which tabs and groups a workspace shows.

Membership rules:

- ``general`` is the complement of every custom workspace and is never
  stored.  An item is in general iff no custom workspace claims it.
- A custom workspace claims a group by fingerprint (``title|color``) and a
  tab by recorded tab id, falling back to URL only for entries that carry no
  tab id.
- A tab inside a group follows its group.  Individual tab entries never
  override the group's membership.
- With pinned-tab sharing on, pinned tabs are visible in every workspace.

Everything here is pure except ``find_workspace_for_active_tab`` and
``build_group_fingerprint_map``, which read group details from the host.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from tabspaces.overlay.host.base import HostLookupError
from tabspaces.overlay.identity import extract_original_url, group_fingerprint, urls_match
from tabspaces.overlay.models.enums import ItemType
from tabspaces.overlay.models.workspace import GENERAL_WORKSPACE_ID

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from tabspaces.overlay.host.base import TabHost
    from tabspaces.overlay.models.host import CombinedItem, NativeGroup, NativeTab
    from tabspaces.overlay.models.workspace import WorkspaceAssignments, WorkspaceDefinition


def _custom_workspaces(all_workspaces: Iterable[WorkspaceDefinition]) -> list[WorkspaceDefinition]:
    return [w for w in all_workspaces if not w.is_default]


def _general(all_workspaces: Iterable[WorkspaceDefinition]) -> WorkspaceDefinition | None:
    return next((w for w in all_workspaces if w.is_default), None)


# -- Membership ----------------------------------------------------------------


def get_assigned_identifiers(
    assignments: WorkspaceAssignments,
    all_workspaces: Iterable[WorkspaceDefinition],
) -> set[str]:
    """Union of group fingerprints and normalized tab URLs claimed by custom workspaces."""
    assigned: set[str] = set()
    for workspace in _custom_workspaces(all_workspaces):
        assignment = assignments.get(workspace.id)
        if assignment is None:
            continue
        assigned.update(extract_original_url(t.url) for t in assignment.tabs)
        assigned.update(g.fingerprint for g in assignment.groups)
    return assigned


def is_tab_in_workspace(tab: NativeTab, workspace_id: str, assignments: WorkspaceAssignments) -> bool:
    assignment = assignments.get(workspace_id)
    if assignment is None:
        return False
    if any(t.tab_id is not None and t.tab_id == tab.id for t in assignment.tabs):
        return True
    return any(t.tab_id is None and urls_match(t.url, tab.url) for t in assignment.tabs)


def is_group_in_workspace(group: NativeGroup, workspace_id: str, assignments: WorkspaceAssignments) -> bool:
    assignment = assignments.get(workspace_id)
    if assignment is None:
        return False
    fingerprint = group_fingerprint(group)
    return any(g.fingerprint == fingerprint for g in assignment.groups)


# -- Filtering -----------------------------------------------------------------


def filter_items_by_workspace(
    items: Sequence[CombinedItem],
    active_workspace: WorkspaceDefinition | None,
    assignments: WorkspaceAssignments,
    all_workspaces: Sequence[WorkspaceDefinition],
    share_pinned_tabs: bool = False,
    fallback_assigned_identifiers: set[str] | None = None,
) -> list[CombinedItem]:
    """Return the items visible in ``active_workspace``, preserving order.

    ``fallback_assigned_identifiers`` stands in for the assigned set when the
    current assignments claim nothing at all (e.g. while a restore is still
    rebuilding them), so general does not briefly show everything.
    """
    if active_workspace is None:
        return list(items)

    if active_workspace.is_default:
        assigned = get_assigned_identifiers(assignments, all_workspaces)
        if not assigned and fallback_assigned_identifiers is not None:
            assigned = fallback_assigned_identifiers
        return [item for item in items if _visible_in_general(item, assigned, share_pinned_tabs)]

    if active_workspace.id not in assignments:
        if not share_pinned_tabs:
            return []
        return [item for item in items if item.type == ItemType.PINNED]

    return [item for item in items if _visible_in_custom(item, active_workspace.id, assignments, share_pinned_tabs)]


def _visible_in_general(item: CombinedItem, assigned: set[str], share_pinned_tabs: bool) -> bool:
    if item.type == ItemType.PINNED and share_pinned_tabs:
        return True
    if item.type == ItemType.GROUP:
        return group_fingerprint(item.group) not in assigned
    return extract_original_url(item.tab.url) not in assigned


def _visible_in_custom(
    item: CombinedItem,
    workspace_id: str,
    assignments: WorkspaceAssignments,
    share_pinned_tabs: bool,
) -> bool:
    if item.type == ItemType.PINNED and share_pinned_tabs:
        return True
    if item.type == ItemType.GROUP:
        return is_group_in_workspace(item.group, workspace_id, assignments)
    return is_tab_in_workspace(item.tab, workspace_id, assignments)


# -- Lookup ------------------------------------------------------------------


def find_workspace_containing_tab(
    tab_url: str,
    assignments: WorkspaceAssignments,
    all_workspaces: Sequence[WorkspaceDefinition],
) -> WorkspaceDefinition | None:
    """First custom workspace recording ``tab_url`` (as a tab or a group member), else general."""
    for workspace in _custom_workspaces(all_workspaces):
        assignment = assignments.get(workspace.id)
        if assignment is None:
            continue
        if any(urls_match(t.url, tab_url) for t in assignment.tabs):
            return workspace
        if any(urls_match(url, tab_url) for g in assignment.groups for url in g.tab_urls):
            return workspace
    return _general(all_workspaces)


def find_workspace_containing_tab_id(
    tab_id: int,
    assignments: WorkspaceAssignments,
    all_workspaces: Sequence[WorkspaceDefinition],
) -> WorkspaceDefinition | None:
    for workspace in _custom_workspaces(all_workspaces):
        assignment = assignments.get(workspace.id)
        if assignment is not None and any(t.tab_id is not None and t.tab_id == tab_id for t in assignment.tabs):
            return workspace
    return None


def find_workspace_for_tab(
    tab: NativeTab,
    group: NativeGroup | None,
    assignments: WorkspaceAssignments,
    all_workspaces: Sequence[WorkspaceDefinition],
) -> WorkspaceDefinition | None:
    """Workspace owning ``tab``: its group's workspace, then tab id, then URL, else general."""
    if group is not None:
        for workspace in _custom_workspaces(all_workspaces):
            if is_group_in_workspace(group, workspace.id, assignments):
                return workspace

    if not tab.url:
        return _general(all_workspaces)
    by_id = find_workspace_containing_tab_id(tab.id, assignments, all_workspaces)
    if by_id is not None:
        return by_id
    return find_workspace_containing_tab(tab.url, assignments, all_workspaces)


async def find_workspace_for_active_tab(
    host: TabHost,
    tab: NativeTab,
    assignments: WorkspaceAssignments,
    all_workspaces: Sequence[WorkspaceDefinition],
) -> WorkspaceDefinition | None:
    """Like ``find_workspace_for_tab`` but resolves the tab's group through the host.

    A group that cannot be read degrades to tab-only matching.
    """
    group: NativeGroup | None = None
    if tab.grouped:
        try:
            group = await host.get_group(tab.group_id)
        except HostLookupError as exc:
            logger.warning("Group lookup for active tab {} failed: {}", tab.id, exc)
    return find_workspace_for_tab(tab, group, assignments, all_workspaces)


# -- Scope ---------------------------------------------------------------------


async def build_group_fingerprint_map(host: TabHost, window_id: int) -> dict[int, str]:
    """Group id -> fingerprint for a window.  Empty when groups cannot be read."""
    try:
        groups = await host.query_groups(window_id)
    except HostLookupError:
        return {}
    return {g.id: group_fingerprint(g) for g in groups}


def get_tabs_in_workspace_scope(
    tabs: Iterable[NativeTab],
    workspace_id: str | None,
    assignments: WorkspaceAssignments,
    group_fingerprints: dict[int, str],
    share_pinned_tabs: bool = False,
) -> list[NativeTab]:
    """Tabs of a window visible in ``workspace_id``.

    Every custom workspace recorded in ``assignments`` counts when computing
    the general complement.  A grouped tab whose group fingerprint is unknown
    counts as general.
    """
    claimed_groups: set[str] = set()
    claimed_urls: set[str] = set()
    for ws_id, assignment in assignments.items():
        if ws_id == GENERAL_WORKSPACE_ID:
            continue
        claimed_groups.update(g.fingerprint for g in assignment.groups)
        claimed_urls.update(extract_original_url(t.url) for t in assignment.tabs)

    in_general = not workspace_id or workspace_id == GENERAL_WORKSPACE_ID
    own = assignments.get(workspace_id or GENERAL_WORKSPACE_ID)
    own_groups = {g.fingerprint for g in own.groups} if own is not None else set()

    scope: list[NativeTab] = []
    for tab in tabs:
        if share_pinned_tabs and tab.pinned:
            scope.append(tab)
            continue
        fingerprint = group_fingerprints.get(tab.group_id) if tab.grouped else None
        if in_general:
            if fingerprint is not None:
                visible = fingerprint not in claimed_groups
            elif tab.grouped:
                visible = True
            else:
                visible = not tab.url or extract_original_url(tab.url) not in claimed_urls
        elif tab.grouped:
            visible = fingerprint is not None and fingerprint in own_groups
        else:
            visible = is_tab_in_workspace(tab, workspace_id, assignments)
        if visible:
            scope.append(tab)
    return scope
