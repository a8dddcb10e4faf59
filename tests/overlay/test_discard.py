"""Unit tests for SafeDiscardCoordinator."""

from __future__ import annotations

import logging

import pytest

from tabspaces.overlay.discard import SafeDiscardCoordinator
from tabspaces.overlay.host.base import HostOperationError
from tabspaces.overlay.host.memory import InMemoryTabHost
from tabspaces.overlay.managers.assignments import AssignmentMutator
from tabspaces.overlay.models.enums import DiscardOutcome
from tabspaces.overlay.models.preferences import OverlayPreferences
from tabspaces.overlay.models.host import NativeTab
from tabspaces.overlay.store.assignments import AssignmentStore
from tabspaces.overlay.store.memory import MemoryStorage


async def _discarded(host: InMemoryTabHost, window: int) -> set[int]:
    return {t.id for t in await host.query_tabs(window) if t.discarded}


class _NoFocusHost(InMemoryTabHost):
    """Refuses every attempt to focus a tab."""

    async def update_tab(self, tab_id: int, *, active: bool | None = None, url: str | None = None) -> NativeTab:
        if active:
            msg = f"Cannot focus tab {tab_id}"
            raise HostOperationError(msg)
        return await super().update_tab(tab_id, url=url)


async def test_focus_moves_to_next_tab_in_scope(host: InMemoryTabHost, coordinator: SafeDiscardCoordinator) -> None:
    window = host.add_window()
    for tab_id in (10, 11, 13, 12):
        host.add_tab(window, f"https://t{tab_id}.com", tab_id=tab_id, active=tab_id == 11)

    result = await coordinator.discard_tabs([10, 11, 12])

    assert result.window_id == window
    assert result.landing_tab_id == 13
    assert host.active_tab_id(window) == 13
    assert 13 not in host.discard_calls
    assert set(result.discarded) == {10, 11, 12}
    assert await _discarded(host, window) == {10, 11, 12}


async def test_landing_tab_taken_from_batch_is_kept(host: InMemoryTabHost, coordinator: SafeDiscardCoordinator) -> None:
    window = host.add_window()
    a = host.add_tab(window, "https://a.com", active=True)
    b = host.add_tab(window, "https://b.com")

    result = await coordinator.discard_tabs([a.id, b.id], window)

    assert result.landing_tab_id == b.id
    assert result.ids_with(DiscardOutcome.KEPT_AS_LANDING) == [b.id]
    assert result.discarded == [a.id]
    assert host.active_tab_id(window) == b.id


async def test_next_tab_is_searched_within_the_active_workspace(
    host: InMemoryTabHost,
    coordinator: SafeDiscardCoordinator,
    mutator: AssignmentMutator,
    store: AssignmentStore,
) -> None:
    window = host.add_window()
    w1 = host.add_tab(window, "https://w1.com", active=True)
    free = host.add_tab(window, "https://free.com")
    w2 = host.add_tab(window, "https://w2.com")
    await mutator.add_tab_to_workspace(w1.id, "work", window)
    await mutator.add_tab_to_workspace(w2.id, "work", window)
    await store.set_active_workspace_id(window, "work")

    result = await coordinator.discard_tabs([w1.id], window)

    assert result.landing_tab_id == w2.id
    assert host.active_tab_id(window) == w2.id
    assert free.id not in host.discard_calls


async def test_creates_landing_tab_in_active_workspace(
    host: InMemoryTabHost,
    coordinator: SafeDiscardCoordinator,
    mutator: AssignmentMutator,
    store: AssignmentStore,
) -> None:
    window = host.add_window()
    host.add_tab(window, "https://free.com")
    a = host.add_tab(window, "https://a.com")
    b = host.add_tab(window, "https://b.com", active=True)
    await mutator.add_tab_to_workspace(a.id, "work", window)
    await mutator.add_tab_to_workspace(b.id, "work", window)
    await store.set_active_workspace_id(window, "work")

    result = await coordinator.discard_tabs([a.id, b.id], window)

    landing = result.landing_tab_id
    assert landing is not None and landing not in (a.id, b.id)
    assert host.active_tab_id(window) == landing
    assert set(result.discarded) == {a.id, b.id}
    created = await host.get_tab(landing)
    assert created.url == "chrome://newtab/"
    assert created.index == 3
    work = (await store.load(window))["work"]
    assert work.tabs[-1].tab_id == landing


async def test_created_landing_tab_uses_new_tab_link(host: InMemoryTabHost, coordinator: SafeDiscardCoordinator) -> None:
    window = host.add_window()
    only = host.add_tab(window, "https://a.com")

    result = await coordinator.discard_tabs(
        [only.id],
        window,
        preferences=OverlayPreferences(new_tab_link="https://start.me"),
    )

    assert (await host.get_tab(result.landing_tab_id)).url == "https://start.me"
    assert result.discarded == [only.id]


async def test_reuses_existing_new_tab_page(
    host: InMemoryTabHost,
    coordinator: SafeDiscardCoordinator,
    mutator: AssignmentMutator,
    store: AssignmentStore,
) -> None:
    window = host.add_window()
    blank = host.add_tab(window, "chrome://newtab/")
    work_tab = host.add_tab(window, "https://a.com", active=True)
    await mutator.add_tab_to_workspace(work_tab.id, "work", window)
    await store.set_active_workspace_id(window, "work")

    result = await coordinator.discard_tabs([work_tab.id], window)

    assert result.landing_tab_id == blank.id
    assert host.active_tab_id(window) == blank.id
    assert (await host.get_tab(blank.id)).index == 1
    assert [t.tab_id for t in (await store.load(window))["work"].tabs] == [work_tab.id, blank.id]
    assert result.discarded == [work_tab.id]


async def test_landing_in_general_detaches_reused_tab(
    host: InMemoryTabHost,
    coordinator: SafeDiscardCoordinator,
    mutator: AssignmentMutator,
    store: AssignmentStore,
) -> None:
    window = host.add_window()
    free = host.add_tab(window, "https://free.com", active=True)
    blank = host.add_tab(window, "chrome://newtab/")
    await mutator.add_tab_to_workspace(blank.id, "work", window)

    result = await coordinator.discard_tabs([free.id], window)

    assert result.landing_tab_id == blank.id
    assert (await store.load(window))["work"].tabs == []


async def test_new_tab_pages_are_skipped(host: InMemoryTabHost, coordinator: SafeDiscardCoordinator) -> None:
    window = host.add_window()
    host.add_tab(window, "https://keep-focus.com")
    blank = host.add_tab(window, "about:blank")
    page = host.add_tab(window, "https://a.com")

    result = await coordinator.discard_tabs([blank.id, page.id])

    assert result.ids_with(DiscardOutcome.SKIPPED_NEW_TAB) == [blank.id]
    assert result.discarded == [page.id]
    assert blank.id not in host.discard_calls


async def test_failures_do_not_stop_the_batch(host: InMemoryTabHost, coordinator: SafeDiscardCoordinator) -> None:
    window = host.add_window()
    host.add_tab(window, "https://keep-focus.com")
    a = host.add_tab(window, "https://a.com")
    b = host.add_tab(window, "https://b.com")
    c = host.add_tab(window, "https://c.com")
    host.fail_discard.add(b.id)

    result = await coordinator.discard_tabs([a.id, b.id, c.id])

    assert result.discarded == [a.id, c.id]
    assert result.failed == [b.id]
    assert result.items[1].error is not None


async def test_unknown_first_tab_aborts_the_batch(host: InMemoryTabHost, coordinator: SafeDiscardCoordinator) -> None:
    window = host.add_window()
    a = host.add_tab(window, "https://a.com")

    result = await coordinator.discard_tabs([999, a.id])

    assert result.aborted
    assert "999" in result.abort_reason
    assert result.items == []
    assert host.discard_calls == []


async def test_unknown_window_aborts_the_batch(host: InMemoryTabHost, coordinator: SafeDiscardCoordinator) -> None:
    result = await coordinator.discard_tabs([1], window_id=77)

    assert result.aborted
    assert host.discard_calls == []


async def test_without_switch_tab_the_active_tab_is_not_discarded(
    host: InMemoryTabHost,
    coordinator: SafeDiscardCoordinator,
) -> None:
    window = host.add_window()
    a = host.add_tab(window, "https://a.com", active=True)
    b = host.add_tab(window, "https://b.com")

    result = await coordinator.discard_tabs([a.id, b.id], switch_tab=False)

    assert result.landing_tab_id is None
    assert host.active_tab_id(window) == a.id
    assert result.failed == [a.id]
    assert result.discarded == [b.id]


async def test_duplicate_and_invalid_ids_are_ignored(host: InMemoryTabHost, coordinator: SafeDiscardCoordinator) -> None:
    window = host.add_window()
    host.add_tab(window, "https://keep-focus.com")
    a = host.add_tab(window, "https://a.com")

    result = await coordinator.discard_tabs([a.id, a.id, 0, -3])

    assert [item.tab_id for item in result.items] == [a.id]
    assert host.discard_calls == [a.id]


async def test_empty_batch(coordinator: SafeDiscardCoordinator) -> None:
    result = await coordinator.discard_tabs([])
    assert result.items == []
    assert not result.aborted


# ---------------------------------------------------------------------------
# Landing tab selection
# ---------------------------------------------------------------------------


async def test_discarded_new_tab_page_is_not_reused(host: InMemoryTabHost, coordinator: SafeDiscardCoordinator) -> None:
    window = host.add_window()
    a = host.add_tab(window, "https://a.com", active=True)
    blank = host.add_tab(window, "chrome://newtab/", discarded=True)
    await host.move_tab(blank.id, 0)

    result = await coordinator.discard_tabs([a.id], window)

    landing = result.landing_tab_id
    assert landing is not None and landing not in (a.id, blank.id)
    assert (await host.get_tab(landing)).url == "chrome://newtab/"
    assert host.active_tab_id(window) == landing
    assert (await host.get_tab(blank.id)).discarded
    assert result.discarded == [a.id]


async def test_unpinned_new_tab_page_is_preferred(host: InMemoryTabHost, coordinator: SafeDiscardCoordinator) -> None:
    window = host.add_window()
    host.add_tab(window, "chrome://newtab/", pinned=True)
    unpinned = host.add_tab(window, "chrome://newtab/")
    a = host.add_tab(window, "https://a.com", active=True)

    result = await coordinator.discard_tabs([a.id], window)

    assert result.landing_tab_id == unpinned.id
    assert host.active_tab_id(window) == unpinned.id


@pytest.mark.parametrize("share_pinned", [True, False])
async def test_shared_pinned_tab_can_be_the_landing_tab(
    host: InMemoryTabHost,
    coordinator: SafeDiscardCoordinator,
    mutator: AssignmentMutator,
    store: AssignmentStore,
    share_pinned: bool,
) -> None:
    window = host.add_window()
    w1 = host.add_tab(window, "https://w1.com", active=True)
    pinned = host.add_tab(window, "https://pinned.com", pinned=True)
    host.add_tab(window, "https://free.com")
    await mutator.add_tab_to_workspace(w1.id, "work", window)
    await store.set_active_workspace_id(window, "work")

    result = await coordinator.discard_tabs(
        [w1.id],
        window,
        preferences=OverlayPreferences(share_pinned_tabs_between_workspaces=share_pinned),
    )

    assert (result.landing_tab_id == pinned.id) is share_pinned
    assert host.active_tab_id(window) == result.landing_tab_id


async def test_active_tab_outside_the_workspace_uses_the_whole_window(
    host: InMemoryTabHost,
    coordinator: SafeDiscardCoordinator,
    mutator: AssignmentMutator,
    store: AssignmentStore,
) -> None:
    window = host.add_window()
    w = host.add_tab(window, "https://w.com")
    free = host.add_tab(window, "https://free.com", active=True)
    after = host.add_tab(window, "https://after.com")
    await mutator.add_tab_to_workspace(w.id, "work", window)
    await store.set_active_workspace_id(window, "work")

    result = await coordinator.discard_tabs([free.id], window)

    assert result.landing_tab_id == after.id
    assert host.active_tab_id(window) == after.id
    assert result.discarded == [free.id]


async def test_focus_move_failure_keeps_active_tab_and_discards_the_rest(caplog: pytest.LogCaptureFixture) -> None:
    host = _NoFocusHost()
    store = AssignmentStore(MemoryStorage())
    coordinator = SafeDiscardCoordinator(host, store, AssignmentMutator(host, store))
    window = host.add_window()
    a = host.add_tab(window, "https://a.com", active=True)
    host.add_tab(window, "https://b.com")
    c = host.add_tab(window, "https://c.com")

    with caplog.at_level(logging.WARNING, logger="tabspaces.overlay.discard"):
        result = await coordinator.discard_tabs([a.id, c.id], window)

    assert result.landing_tab_id is None
    assert result.failed == [a.id]
    assert result.discarded == [c.id]
    assert host.active_tab_id(window) == a.id
    assert not (await host.get_tab(a.id)).discarded
    assert "Could not move focus" in caplog.text
