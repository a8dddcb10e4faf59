"""Safe bulk discard -- unload tabs without leaving the window unfocused.

The host refuses to discard the focused tab, and discarding the tab the user
is looking at would leave them on a blank page.  Before discarding a batch
that contains the active tab, the coordinator moves focus to a landing tab
inside the active workspace:

1. the next tab by index in the workspace's scope, or
2. an existing new-tab page, moved to the end of the scope, or
3. a freshly created tab (the user's ``newTabLink`` if set), likewise moved.

A landing tab taken from the batch is kept.  The previously active tab stays
in the batch and is discarded once focus has moved.  Every remaining tab is
then discarded independently: one failure never stops the rest.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from tabspaces.overlay.filtering import build_group_fingerprint_map, get_tabs_in_workspace_scope
from tabspaces.overlay.host.base import HostLookupError, HostOperationError
from tabspaces.overlay.identity import is_new_tab, is_new_tab_candidate
from tabspaces.overlay.models.enums import DiscardOutcome
from tabspaces.overlay.models.preferences import OverlayPreferences
from tabspaces.overlay.models.workspace import GENERAL_WORKSPACE_ID
from tabspaces.overlay.store.base import StorageError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from tabspaces.overlay.host.base import TabHost
    from tabspaces.overlay.managers.assignments import AssignmentMutator
    from tabspaces.overlay.models.host import NativeTab
    from tabspaces.overlay.store.assignments import AssignmentStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class AbortedBatch(RuntimeError):
    """Raised when the batch cannot start (window or tab snapshot unavailable)."""


class BatchItemError(RuntimeError):
    """Raised when a single tab of the batch could not be discarded."""

    def __init__(self, tab_id: int, reason: str) -> None:
        self.tab_id = tab_id
        super().__init__(f"Tab {tab_id}: {reason}")


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass
class DiscardItemResult:
    tab_id: int
    outcome: DiscardOutcome
    error: str | None = None


@dataclass
class DiscardBatchResult:
    """Outcome of one ``discard_tabs`` call."""

    window_id: int | None
    items: list[DiscardItemResult] = field(default_factory=list)
    landing_tab_id: int | None = None
    """Tab that received focus when the active tab was part of the batch."""

    aborted: bool = False
    abort_reason: str | None = None

    def ids_with(self, outcome: DiscardOutcome) -> list[int]:
        return [item.tab_id for item in self.items if item.outcome == outcome]

    @property
    def discarded(self) -> list[int]:
        return self.ids_with(DiscardOutcome.DISCARDED)

    @property
    def failed(self) -> list[int]:
        return self.ids_with(DiscardOutcome.FAILED)


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class SafeDiscardCoordinator:
    """Discards batches of tabs while keeping a focused tab in the active workspace."""

    def __init__(self, host: TabHost, store: AssignmentStore, mutator: AssignmentMutator) -> None:
        self._host = host
        self._store = store
        self._mutator = mutator

    async def discard_tabs(
        self,
        tab_ids: Iterable[int],
        window_id: int | None = None,
        switch_tab: bool = True,
        preferences: OverlayPreferences | None = None,
    ) -> DiscardBatchResult:
        """Discard ``tab_ids``, relocating focus first if the active tab is among them.

        Never raises.  Duplicate and non-positive ids are ignored, new-tab
        pages are skipped.  When the window or its tabs cannot be read the
        batch is aborted before any side effect.
        """
        preferences = preferences or OverlayPreferences()
        unique = list(dict.fromkeys(tid for tid in tab_ids if tid > 0))
        result = DiscardBatchResult(window_id=window_id)
        if not unique:
            return result

        try:
            window_id = await self._resolve_window(unique[0], window_id)
            all_tabs = await self._snapshot(window_id)
        except AbortedBatch as exc:
            logger.warning("Discard batch aborted: %s", exc)
            result.aborted = True
            result.abort_reason = str(exc)
            return result
        result.window_id = window_id

        by_id = {t.id: t for t in all_tabs}
        pending: list[int] = []
        for tab_id in unique:
            tab = by_id.get(tab_id)
            if tab is not None and is_new_tab(tab):
                result.items.append(DiscardItemResult(tab_id, DiscardOutcome.SKIPPED_NEW_TAB))
            else:
                pending.append(tab_id)
        if not pending:
            return result

        to_discard = dict.fromkeys(pending)
        active = next((t for t in all_tabs if t.active), None)
        if switch_tab and active is not None and active.id in to_discard:
            try:
                result.landing_tab_id = await self._relocate_focus(window_id, to_discard, all_tabs, active, preferences)
            except (HostLookupError, HostOperationError, StorageError) as exc:
                logger.warning("Could not move focus away from active tab %s: %s", active.id, exc)

        for tab_id in pending:
            if tab_id not in to_discard:
                result.items.append(DiscardItemResult(tab_id, DiscardOutcome.KEPT_AS_LANDING))
                continue
            try:
                await self._discard_one(tab_id)
            except BatchItemError as exc:
                logger.debug("%s", exc)
                result.items.append(DiscardItemResult(tab_id, DiscardOutcome.FAILED, str(exc)))
            else:
                result.items.append(DiscardItemResult(tab_id, DiscardOutcome.DISCARDED))

        logger.info(
            "Discarded %d/%d tabs in window %s (landing tab: %s)",
            len(result.discarded),
            len(unique),
            window_id,
            result.landing_tab_id,
        )
        return result

    # -- Setup -----------------------------------------------------------------

    async def _resolve_window(self, first_tab_id: int, window_id: int | None) -> int:
        if window_id is not None:
            return window_id
        try:
            tab = await self._host.get_tab(first_tab_id)
        except HostLookupError as exc:
            msg = f"cannot resolve window of tab {first_tab_id} ({exc})"
            raise AbortedBatch(msg) from exc
        return tab.window_id

    async def _snapshot(self, window_id: int) -> list[NativeTab]:
        try:
            return await self._host.query_tabs(window_id)
        except (HostLookupError, HostOperationError) as exc:
            msg = f"cannot list tabs of window {window_id} ({exc})"
            raise AbortedBatch(msg) from exc

    # -- Focus relocation ------------------------------------------------------

    async def _relocate_focus(
        self,
        window_id: int,
        to_discard: dict[int, None],
        all_tabs: list[NativeTab],
        active: NativeTab,
        preferences: OverlayPreferences,
    ) -> int:
        """Focus a landing tab and take it out of ``to_discard``.  Returns its id."""
        workspace_id: str | None = None
        scope = all_tabs
        if preferences.enable_workspaces:
            workspace_id = await self._store.get_active_workspace_id(window_id)
            assignments = await self._store.load(window_id)
            fingerprints = await build_group_fingerprint_map(self._host, window_id)
            scope = get_tabs_in_workspace_scope(
                all_tabs,
                workspace_id,
                assignments,
                fingerprints,
                preferences.share_pinned_tabs_between_workspaces,
            )
            if not any(t.id == active.id for t in scope):
                scope = all_tabs
        scope = sorted(scope, key=lambda t: t.index)

        next_tab = next((t for t in scope if t.index > active.index), None)
        if next_tab is not None:
            to_discard.pop(next_tab.id, None)
            await self._host.update_tab(next_tab.id, active=True)
            return next_tab.id

        scope_max = max((t.index for t in scope), default=active.index)
        link = preferences.new_tab_link.strip()
        candidates = [
            t for t in all_tabs if t.id != active.id and not t.discarded and is_new_tab_candidate(t, link)
        ]
        existing = next((t for t in candidates if not t.pinned), None) or next(iter(candidates), None)
        if existing is not None:
            to_discard.pop(existing.id, None)
            await self._claim_landing(existing.id, window_id, workspace_id)
            move_index = -1 if scope_max + 1 >= len(all_tabs) else scope_max + 1
            await self._host.move_tab(existing.id, move_index)
            await self._host.update_tab(existing.id, active=True)
            return existing.id

        created = await self._host.create_tab(window_id, link or None, active=False)
        await self._claim_landing(created.id, window_id, workspace_id)
        move_index = -1 if scope_max + 1 >= len(all_tabs) + 1 else scope_max + 1
        await self._host.move_tab(created.id, move_index)
        await self._host.update_tab(created.id, active=True)
        return created.id

    async def _claim_landing(self, tab_id: int, window_id: int, workspace_id: str | None) -> None:
        """Put the landing tab into the active workspace."""
        if workspace_id is None:
            return
        if workspace_id == GENERAL_WORKSPACE_ID:
            await self._mutator.remove_tab_from_all_workspaces(tab_id, window_id)
        else:
            await self._mutator.move_tab_to_workspace_end(tab_id, workspace_id, window_id)

    # -- Discard ---------------------------------------------------------------

    async def _discard_one(self, tab_id: int) -> None:
        try:
            await self._host.discard(tab_id)
        except (HostLookupError, HostOperationError) as exc:
            raise BatchItemError(tab_id, str(exc)) from exc
