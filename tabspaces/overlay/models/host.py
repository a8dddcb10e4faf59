"""Transient snapshot of the host browser's tab strip.

These objects are rebuilt from the host on every query and never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from tabspaces.overlay.models.enums import ItemType

if TYPE_CHECKING:
    from collections.abc import Iterable

TAB_GROUP_ID_NONE = -1


@dataclass(frozen=True)
class NativeTab:
    id: int
    window_id: int
    index: int
    url: str = ""
    title: str = ""
    pinned: bool = False
    active: bool = False
    discarded: bool = False
    group_id: int = TAB_GROUP_ID_NONE
    pending_url: str | None = None

    @property
    def grouped(self) -> bool:
        return self.group_id != TAB_GROUP_ID_NONE

    @property
    def effective_url(self) -> str:
        """The committed URL, or the pending one while a navigation is in flight."""
        return self.url or self.pending_url or ""


@dataclass(frozen=True)
class NativeGroup:
    id: int
    window_id: int
    title: str = ""
    color: str = "grey"
    collapsed: bool = False


# -- Combined items ------------------------------------------------------------


@dataclass(frozen=True)
class PinnedTabItem:
    tab: NativeTab
    type: ItemType = field(default=ItemType.PINNED, init=False)


@dataclass(frozen=True)
class RegularTabItem:
    tab: NativeTab
    type: ItemType = field(default=ItemType.REGULAR, init=False)


@dataclass(frozen=True)
class GroupItem:
    group: NativeGroup
    tabs: tuple[NativeTab, ...] = ()
    type: ItemType = field(default=ItemType.GROUP, init=False)


CombinedItem = PinnedTabItem | RegularTabItem | GroupItem


def build_combined_items(tabs: Iterable[NativeTab], groups: Iterable[NativeGroup]) -> list[CombinedItem]:
    """Fold a window's tabs and groups into the list the tab strip shows.

    Pinned tabs come first, then regular tabs and groups in native index
    order.  A group is placed where its first member sits.  Tabs whose group
    is unknown are treated as regular tabs.
    """
    ordered = sorted(tabs, key=lambda t: t.index)
    groups_by_id = {g.id: g for g in groups}

    members: dict[int, list[NativeTab]] = {}
    for tab in ordered:
        if not tab.pinned and tab.group_id in groups_by_id:
            members.setdefault(tab.group_id, []).append(tab)

    pinned: list[CombinedItem] = [PinnedTabItem(tab) for tab in ordered if tab.pinned]
    rest: list[CombinedItem] = []
    emitted: set[int] = set()
    for tab in ordered:
        if tab.pinned:
            continue
        if tab.group_id in members:
            if tab.group_id not in emitted:
                emitted.add(tab.group_id)
                rest.append(GroupItem(groups_by_id[tab.group_id], tuple(members[tab.group_id])))
            continue
        rest.append(RegularTabItem(tab))
    return pinned + rest
