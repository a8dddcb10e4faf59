"""Unit tests for ActiveTabTracker and the workspace switch flow."""

from __future__ import annotations

from tabspaces.overlay.host.memory import InMemoryTabHost
from tabspaces.overlay.managers.active_tab import ActiveTabTracker
from tabspaces.overlay.managers.assignments import AssignmentMutator
from tabspaces.overlay.models.preferences import OverlayPreferences
from tabspaces.overlay.models.workspace import LastActiveTab, WorkspaceDefinition
from tabspaces.overlay.store.assignments import AssignmentStore

SEPARATE = OverlayPreferences(separate_active_tab_per_workspace=True)
SHARED = OverlayPreferences()


async def test_save_and_activate_by_tab_id(host: InMemoryTabHost, tracker: ActiveTabTracker) -> None:
    window = host.add_window()
    host.add_tab(window, "https://first.com")
    remembered = host.add_tab(window, "https://work.com")

    await tracker.save_last_active_tab_for_workspace(window, "work", remembered.id)

    assert host.active_tab_id(window) != remembered.id
    assert await tracker.activate_last_active_tab_for_workspace(window, "work")
    assert host.active_tab_id(window) == remembered.id


async def test_activate_falls_back_to_url_and_records_new_id(
    host: InMemoryTabHost,
    tracker: ActiveTabTracker,
    store: AssignmentStore,
) -> None:
    window = host.add_window()
    host.add_tab(window, "https://first.com")
    restored = host.add_tab(window, "https://work.com")
    await store.save_last_active_tabs({window: {"work": LastActiveTab(tab_id=999, url="https://work.com")}})

    assert await tracker.activate_last_active_tab_for_workspace(window, "work")

    assert host.active_tab_id(window) == restored.id
    assert (await store.load_last_active_tabs())[window]["work"].tab_id == restored.id


async def test_activate_without_record_or_match_is_a_no_op(
    host: InMemoryTabHost,
    tracker: ActiveTabTracker,
    store: AssignmentStore,
) -> None:
    window = host.add_window()
    first = host.add_tab(window, "https://first.com")

    assert not await tracker.activate_last_active_tab_for_workspace(window, "work")

    await store.save_last_active_tabs({window: {"work": LastActiveTab(tab_id=999, url="https://gone.com")}})
    assert not await tracker.activate_last_active_tab_for_workspace(window, "work")
    assert host.active_tab_id(window) == first.id


async def test_remembered_tab_in_another_window_is_not_used(
    host: InMemoryTabHost,
    tracker: ActiveTabTracker,
    store: AssignmentStore,
) -> None:
    window = host.add_window()
    other = host.add_window()
    first = host.add_tab(window, "https://first.com")
    elsewhere = host.add_tab(other, "https://elsewhere.com")
    await store.save_last_active_tabs({window: {"work": LastActiveTab(tab_id=elsewhere.id, url="https://elsewhere.com")}})

    assert not await tracker.activate_last_active_tab_for_workspace(window, "work")
    assert host.active_tab_id(window) == first.id


async def test_records_of_closed_windows_are_adopted(
    host: InMemoryTabHost,
    tracker: ActiveTabTracker,
    store: AssignmentStore,
) -> None:
    window = host.add_window(100)
    host.add_tab(window, "https://first.com")
    restored = host.add_tab(window, "https://work.com")
    await store.save_last_active_tabs({
        7: {"work": LastActiveTab(tab_id=1, url="https://old.com")},
        9: {"work": LastActiveTab(tab_id=2, url="https://work.com")},
    })

    assert await tracker.activate_last_active_tab_for_workspace(window, "work")

    assert host.active_tab_id(window) == restored.id
    data = await store.load_last_active_tabs()
    assert set(data) == {window}


async def test_cleanup_keeps_records_when_browser_is_closing(
    host: InMemoryTabHost,
    tracker: ActiveTabTracker,
    store: AssignmentStore,
) -> None:
    window = host.add_window()
    other = host.add_window()
    await store.save_last_active_tabs({
        window: {"work": LastActiveTab(tab_id=1)},
        other: {"work": LastActiveTab(tab_id=2)},
    })

    host.close_window(window)
    await tracker.cleanup_closed_window_data(window)
    assert set(await store.load_last_active_tabs()) == {other}

    host.close_window(other)
    await tracker.cleanup_closed_window_data(other)
    assert set(await store.load_last_active_tabs()) == {other}


async def test_current_tab_workspace(
    host: InMemoryTabHost,
    tracker: ActiveTabTracker,
    mutator: AssignmentMutator,
    work: WorkspaceDefinition,
) -> None:
    window = host.add_window()
    free = host.add_tab(window, "https://free.com")
    tab = host.add_tab(window, "https://work.com")
    await mutator.add_tab_to_workspace(tab.id, "work", window)

    assert await tracker.get_current_tab_workspace(tab.id, window) == "work"
    assert await tracker.get_current_tab_workspace(free.id, window) == "general"
    assert await tracker.get_current_tab_workspace(404, window) is None


async def test_switch_with_separate_active_tabs(
    host: InMemoryTabHost,
    tracker: ActiveTabTracker,
    store: AssignmentStore,
    work: WorkspaceDefinition,
) -> None:
    window = host.add_window()
    general_tab = host.add_tab(window, "https://free.com")
    work_tab = host.add_tab(window, "https://work.com")

    # Enter Work and focus its tab, then go back to general.
    assert await tracker.switch_workspace(window, "work", SEPARATE)
    await host.update_tab(work_tab.id, active=True)
    assert await tracker.switch_workspace(window, "general", SEPARATE)
    await host.update_tab(general_tab.id, active=True)

    # Re-entering Work refocuses its remembered tab.
    assert await tracker.switch_workspace(window, "work", SEPARATE)

    assert await store.get_active_workspace_id(window) == "work"
    assert host.active_tab_id(window) == work_tab.id
    remembered = await store.load_last_active_tabs()
    assert remembered[window]["general"].tab_id == general_tab.id


async def test_switch_without_separate_active_tabs_leaves_focus(
    host: InMemoryTabHost,
    tracker: ActiveTabTracker,
    store: AssignmentStore,
    work: WorkspaceDefinition,
) -> None:
    window = host.add_window()
    first = host.add_tab(window, "https://free.com")
    host.add_tab(window, "https://work.com")

    assert await tracker.switch_workspace(window, "work", SHARED)

    assert host.active_tab_id(window) == first.id
    assert await store.load_last_active_tabs() == {}


async def test_switch_to_workspace_number(
    host: InMemoryTabHost,
    tracker: ActiveTabTracker,
    store: AssignmentStore,
    work: WorkspaceDefinition,
) -> None:
    window = host.add_window()

    assert await tracker.switch_to_workspace_number(window, 2, SHARED)
    assert await store.get_active_workspace_id(window) == "work"
    assert not await tracker.switch_to_workspace_number(window, 9, SHARED)
    assert await store.get_active_workspace_id(window) == "work"


async def test_restore_on_startup(
    host: InMemoryTabHost,
    tracker: ActiveTabTracker,
    store: AssignmentStore,
) -> None:
    window = host.add_window()
    host.add_tab(window, "https://first.com")
    work_tab = host.add_tab(window, "https://work.com")
    await store.set_active_workspace_id(window, "work")
    await store.save_last_active_tabs({window: {"work": LastActiveTab(tab_id=work_tab.id, url="https://work.com")}})

    assert await tracker.restore_on_startup(window, SHARED) == "work"
    assert host.active_tab_id(window) != work_tab.id

    assert await tracker.restore_on_startup(window, SEPARATE) == "work"
    assert host.active_tab_id(window) == work_tab.id
