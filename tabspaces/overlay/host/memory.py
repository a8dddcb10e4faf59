"""In-memory host: a complete, deterministic tab model.

Used by the CLI's offline mode and throughout the tests.  Behaves like the
browser where it matters to the overlay:

- indices are positions in the window's tab strip
- exactly one tab per window is active while the window has tabs
- the active tab cannot be discarded
- activating a discarded tab reloads it
- a group disappears when its last tab leaves it
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from tabspaces.overlay.host.base import HostLookupError, HostOperationError
from tabspaces.overlay.models.host import TAB_GROUP_ID_NONE, NativeGroup, NativeTab

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

DEFAULT_NEW_TAB_URL = "chrome://newtab/"


@dataclass
class _Tab:
    id: int
    window_id: int
    url: str
    title: str
    pinned: bool = False
    discarded: bool = False
    group_id: int = TAB_GROUP_ID_NONE


class InMemoryTabHost:
    """In-memory implementation of the TabHost protocol."""

    def __init__(self) -> None:
        self._windows: dict[int, list[int]] = {}
        self._active: dict[int, int | None] = {}
        self._tabs: dict[int, _Tab] = {}
        self._groups: dict[int, NativeGroup] = {}
        self._current_window: int | None = None
        self._window_ids = itertools.count(1)
        self._tab_ids = itertools.count(1)
        self._group_ids = itertools.count(1)
        self.fail_discard: set[int] = set()
        """Tab ids whose discard is refused, for exercising failure paths."""
        self.discard_calls: list[int] = []

    # -- Setup helpers ---------------------------------------------------------

    def add_window(self, window_id: int | None = None, *, focused: bool = True) -> int:
        window_id = window_id if window_id is not None else next(self._window_ids)
        self._windows[window_id] = []
        self._active[window_id] = None
        if focused or self._current_window is None:
            self._current_window = window_id
        return window_id

    def close_window(self, window_id: int) -> None:
        for tab_id in self._windows.pop(window_id, []):
            self._tabs.pop(tab_id, None)
        self._active.pop(window_id, None)
        self._groups = {gid: g for gid, g in self._groups.items() if g.window_id != window_id}
        if self._current_window == window_id:
            self._current_window = next(iter(self._windows), None)

    def add_tab(
        self,
        window_id: int,
        url: str,
        *,
        title: str = "",
        tab_id: int | None = None,
        pinned: bool = False,
        active: bool = False,
        discarded: bool = False,
        group_id: int = TAB_GROUP_ID_NONE,
    ) -> NativeTab:
        self._require_window(window_id)
        tab_id = tab_id if tab_id is not None else next(self._tab_ids)
        self._tabs[tab_id] = _Tab(tab_id, window_id, url, title, pinned, discarded, group_id)
        self._windows[window_id].append(tab_id)
        if active or self._active[window_id] is None:
            self._set_active(window_id, tab_id)
        return self._snapshot(tab_id)

    def add_group(self, window_id: int, tab_ids: Iterable[int], title: str = "", color: str = "grey") -> NativeGroup:
        group = NativeGroup(id=next(self._group_ids), window_id=window_id, title=title, color=color)
        self._groups[group.id] = group
        for tab_id in tab_ids:
            self._require_tab(tab_id).group_id = group.id
        return group

    def active_tab_id(self, window_id: int) -> int | None:
        return self._active.get(window_id)

    # -- Queries ---------------------------------------------------------------

    async def query_tabs(
        self,
        window_id: int | None = None,
        *,
        group_id: int | None = None,
        active: bool | None = None,
    ) -> list[NativeTab]:
        if window_id is not None:
            self._require_window(window_id)
        window_ids = [window_id] if window_id is not None else list(self._windows)
        result: list[NativeTab] = []
        for wid in window_ids:
            for tab_id in self._windows[wid]:
                tab = self._snapshot(tab_id)
                if group_id is not None and tab.group_id != group_id:
                    continue
                if active is not None and tab.active != active:
                    continue
                result.append(tab)
        return result

    async def query_groups(self, window_id: int | None = None) -> list[NativeGroup]:
        if window_id is not None:
            self._require_window(window_id)
        return [g for g in self._groups.values() if window_id is None or g.window_id == window_id]

    async def get_tab(self, tab_id: int) -> NativeTab:
        self._require_tab(tab_id)
        return self._snapshot(tab_id)

    async def get_group(self, group_id: int) -> NativeGroup:
        group = self._groups.get(group_id)
        if group is None:
            raise HostLookupError("group", group_id)
        return group

    async def get_current_window(self) -> int:
        if self._current_window is None:
            raise HostLookupError("window", None)
        return self._current_window

    async def list_windows(self) -> list[int]:
        return list(self._windows)

    # -- Tabs ------------------------------------------------------------------

    async def create_tab(
        self,
        window_id: int,
        url: str | None = None,
        *,
        active: bool = False,
        index: int | None = None,
    ) -> NativeTab:
        self._require_window(window_id)
        tab = self.add_tab(window_id, url or DEFAULT_NEW_TAB_URL, title="New Tab", active=active)
        if index is not None:
            return await self.move_tab(tab.id, index)
        return tab

    async def update_tab(self, tab_id: int, *, active: bool | None = None, url: str | None = None) -> NativeTab:
        tab = self._require_tab(tab_id)
        if url is not None:
            tab.url = url
            tab.discarded = False
        if active:
            self._set_active(tab.window_id, tab_id)
        return self._snapshot(tab_id)

    async def move_tab(self, tab_id: int, index: int, window_id: int | None = None) -> NativeTab:
        tab = self._require_tab(tab_id)
        target_window = window_id if window_id is not None else tab.window_id
        self._require_window(target_window)

        keep_focus = target_window == tab.window_id and self._active.get(tab.window_id) == tab_id
        self._detach(tab)
        order = self._windows[target_window]
        position = len(order) if index < 0 or index > len(order) else index
        order.insert(position, tab_id)
        tab.window_id = target_window
        if keep_focus or self._active[target_window] is None:
            self._set_active(target_window, tab_id)
        return self._snapshot(tab_id)

    async def remove_tab(self, tab_id: int) -> None:
        tab = self._require_tab(tab_id)
        self._detach(tab)
        del self._tabs[tab_id]
        self._prune_group(tab.group_id)

    async def discard(self, tab_id: int) -> None:
        tab = self._require_tab(tab_id)
        self.discard_calls.append(tab_id)
        if tab_id in self.fail_discard:
            msg = f"Discard of tab {tab_id} refused"
            raise HostOperationError(msg)
        if self._active.get(tab.window_id) == tab_id:
            msg = f"Cannot discard active tab {tab_id}"
            raise HostOperationError(msg)
        tab.discarded = True

    # -- Groups ----------------------------------------------------------------

    async def group_tabs(self, tab_ids: Sequence[int], group_id: int | None = None, window_id: int | None = None) -> int:
        tabs = [self._require_tab(tid) for tid in tab_ids]
        if not tabs:
            msg = "Cannot group an empty tab list"
            raise HostOperationError(msg)
        if group_id is None:
            group = self.add_group(window_id or tabs[0].window_id, [])
            group_id = group.id
        elif group_id not in self._groups:
            raise HostLookupError("group", group_id)
        previous = {t.group_id for t in tabs}
        for tab in tabs:
            tab.group_id = group_id
        for old in previous:
            self._prune_group(old)
        return group_id

    async def ungroup(self, tab_ids: Sequence[int]) -> None:
        previous: set[int] = set()
        for tab_id in tab_ids:
            tab = self._require_tab(tab_id)
            previous.add(tab.group_id)
            tab.group_id = TAB_GROUP_ID_NONE
        for old in previous:
            self._prune_group(old)

    async def update_group(self, group_id: int, *, title: str | None = None, color: str | None = None) -> NativeGroup:
        group = await self.get_group(group_id)
        updated = replace(
            group,
            title=group.title if title is None else title,
            color=group.color if color is None else color,
        )
        self._groups[group_id] = updated
        return updated

    async def move_group(self, group_id: int, index: int) -> NativeGroup:
        group = await self.get_group(group_id)
        members = [tid for tid in self._windows[group.window_id] if self._tabs[tid].group_id == group_id]
        order = [tid for tid in self._windows[group.window_id] if tid not in members]
        position = len(order) if index < 0 or index > len(order) else index
        self._windows[group.window_id] = order[:position] + members + order[position:]
        return group

    # -- Internals -------------------------------------------------------------

    def _require_window(self, window_id: int) -> None:
        if window_id not in self._windows:
            raise HostLookupError("window", window_id)

    def _require_tab(self, tab_id: int) -> _Tab:
        tab = self._tabs.get(tab_id)
        if tab is None:
            raise HostLookupError("tab", tab_id)
        return tab

    def _snapshot(self, tab_id: int) -> NativeTab:
        tab = self._tabs[tab_id]
        return NativeTab(
            id=tab.id,
            window_id=tab.window_id,
            index=self._windows[tab.window_id].index(tab_id),
            url=tab.url,
            title=tab.title,
            pinned=tab.pinned,
            active=self._active.get(tab.window_id) == tab_id,
            discarded=tab.discarded,
            group_id=tab.group_id,
        )

    def _set_active(self, window_id: int, tab_id: int) -> None:
        self._active[window_id] = tab_id
        self._tabs[tab_id].discarded = False

    def _detach(self, tab: _Tab) -> None:
        """Take a tab out of its window's strip, handing focus to a neighbour."""
        order = self._windows[tab.window_id]
        position = order.index(tab.id)
        order.remove(tab.id)
        if self._active[tab.window_id] == tab.id:
            self._active[tab.window_id] = None
            if order:
                self._set_active(tab.window_id, order[min(position, len(order) - 1)])

    def _prune_group(self, group_id: int) -> None:
        if group_id == TAB_GROUP_ID_NONE:
            return
        if not any(t.group_id == group_id for t in self._tabs.values()):
            self._groups.pop(group_id, None)
