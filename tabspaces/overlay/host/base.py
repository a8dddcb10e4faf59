"""Host tab-model interface.

The host is the browser: it owns the live tabs, groups and windows and hands
out native ids that are only valid for the current session.  The overlay
never caches host objects across awaits; it re-queries instead.

Lookups of ids that no longer exist raise ``HostLookupError``; mutations the
host refuses raise ``HostOperationError``.  Callers catch both at the call
site and degrade.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tabspaces.overlay.models.host import NativeGroup, NativeTab


class HostLookupError(LookupError):
    """Raised when a tab, group or window id is unknown to the host."""

    def __init__(self, kind: str, ident: int | None) -> None:
        self.kind = kind
        self.ident = ident
        super().__init__(f"No {kind} with id {ident}")


class HostOperationError(RuntimeError):
    """Raised when the host refuses a mutation."""


@runtime_checkable
class TabHost(Protocol):
    """Async protocol over the browser's tabs, groups and windows."""

    # -- Queries ---------------------------------------------------------------

    async def query_tabs(
        self,
        window_id: int | None = None,
        *,
        group_id: int | None = None,
        active: bool | None = None,
    ) -> list[NativeTab]:
        """Tabs matching every given filter, in native index order.

        Raises ``HostLookupError`` when ``window_id`` names no open window.
        """
        ...

    async def query_groups(self, window_id: int | None = None) -> list[NativeGroup]: ...

    async def get_tab(self, tab_id: int) -> NativeTab: ...

    async def get_group(self, group_id: int) -> NativeGroup: ...

    async def get_current_window(self) -> int: ...

    async def list_windows(self) -> list[int]: ...

    # -- Tabs ------------------------------------------------------------------

    async def create_tab(
        self,
        window_id: int,
        url: str | None = None,
        *,
        active: bool = False,
        index: int | None = None,
    ) -> NativeTab:
        """Open a tab.  ``url=None`` opens the browser's default new-tab page."""
        ...

    async def update_tab(self, tab_id: int, *, active: bool | None = None, url: str | None = None) -> NativeTab: ...

    async def move_tab(self, tab_id: int, index: int, window_id: int | None = None) -> NativeTab:
        """Move a tab.  ``index=-1`` moves it to the end of the window."""
        ...

    async def remove_tab(self, tab_id: int) -> None: ...

    async def discard(self, tab_id: int) -> None:
        """Unload a tab from memory, keeping it in the tab strip."""
        ...

    # -- Groups ----------------------------------------------------------------

    async def group_tabs(self, tab_ids: Sequence[int], group_id: int | None = None, window_id: int | None = None) -> int:
        """Add tabs to ``group_id`` (or a new group).  Returns the group id."""
        ...

    async def ungroup(self, tab_ids: Sequence[int]) -> None: ...

    async def update_group(self, group_id: int, *, title: str | None = None, color: str | None = None) -> NativeGroup: ...

    async def move_group(self, group_id: int, index: int) -> NativeGroup: ...
