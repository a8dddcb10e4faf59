"""Unit tests for AssignmentStore."""

from __future__ import annotations

import asyncio

import pytest

from tabspaces.overlay.models.workspace import LastActiveTab, TabAssignment, WorkspaceAssignment
from tabspaces.overlay.store.assignments import AssignmentStore
from tabspaces.overlay.store.base import ASSIGNMENTS_KEY, StorageReadError
from tabspaces.overlay.store.local import LocalJsonStorage
from tabspaces.overlay.store.memory import MemoryStorage


def _work(*urls: str) -> WorkspaceAssignment:
    return WorkspaceAssignment(tabs=[TabAssignment(url=u, index=i) for i, u in enumerate(urls)])


async def test_missing_window_is_empty(store: AssignmentStore) -> None:
    assert await store.load(42) == {}
    assert await store.load_all() == {}


async def test_save_keeps_other_windows(store: AssignmentStore) -> None:
    await store.save(1, {"work": _work("https://a.com")})
    await store.save(2, {"work": _work("https://b.com")})

    all_assignments = await store.load_all()
    assert set(all_assignments) == {1, 2}
    assert all_assignments[1]["work"].tabs[0].url == "https://a.com"


async def test_records_are_stored_with_camel_case_keys(storage: MemoryStorage, store: AssignmentStore) -> None:
    await store.save(
        7,
        {"work": WorkspaceAssignment(tabs=[TabAssignment(url="https://a.com", tab_id=3, group_fingerprint="G|red")])},
    )

    raw = storage.snapshot()[ASSIGNMENTS_KEY]
    assert raw == {
        "7": {
            "work": {
                "groups": [],
                "tabs": [{"url": "https://a.com", "title": "", "index": 0, "tabId": 3, "groupFingerprint": "G|red"}],
            }
        }
    }


async def test_reads_camel_case_records_written_elsewhere() -> None:
    storage = MemoryStorage({
        ASSIGNMENTS_KEY: {
            "3": {
                "work": {
                    "groups": [{"title": "Docs", "color": "blue", "index": 2, "tabUrls": ["https://a.com"]}],
                    "tabs": [{"url": "https://b.com", "title": "B", "index": 4}],
                }
            }
        }
    })
    window = await AssignmentStore(storage).load(3)

    assert window["work"].groups[0].fingerprint == "Docs|blue"
    assert window["work"].groups[0].tab_urls == ["https://a.com"]
    assert window["work"].tabs[0].tab_id is None


async def test_malformed_record_raises_read_error() -> None:
    storage = MemoryStorage({ASSIGNMENTS_KEY: {"1": {"work": {"tabs": "nope"}}}})
    with pytest.raises(StorageReadError):
        await AssignmentStore(storage).load(1)


async def test_edit_writes_once_and_only_on_change(storage: MemoryStorage, store: AssignmentStore) -> None:
    writes: list[object] = []
    storage.subscribe(writes.append)

    async with store.edit(1) as window:
        window["work"] = _work("https://a.com")
    async with store.edit(1) as window:
        pass

    assert len(writes) == 1


async def test_edit_discards_changes_when_body_raises(store: AssignmentStore) -> None:
    with pytest.raises(RuntimeError):
        async with store.edit(1) as window:
            window["work"] = _work("https://a.com")
            raise RuntimeError("abort")

    assert await store.load(1) == {}


async def test_edit_drops_window_left_empty(store: AssignmentStore) -> None:
    await store.save(1, {"work": _work("https://a.com")})

    async with store.edit(1) as window:
        window.clear()

    assert 1 not in await store.load_all()


async def test_drop_workspace_reports_affected_windows(store: AssignmentStore) -> None:
    await store.save(1, {"work": _work("https://a.com"), "home": _work("https://h.com")})
    await store.save(2, {"home": _work("https://h.com")})

    assert await store.drop_workspace("work") == [1]
    assert set((await store.load(1)).keys()) == {"home"}


async def test_active_workspace_defaults_to_general(store: AssignmentStore) -> None:
    assert await store.get_active_workspace_id(9) == "general"

    await store.set_active_workspace_id(9, "work")
    assert await store.get_active_workspace_id(9) == "work"
    assert await store.load_active_workspaces() == {9: "work"}


async def test_last_active_tabs_round_trip(store: AssignmentStore) -> None:
    await store.save_last_active_tabs({1: {"work": LastActiveTab(tab_id=5, url="https://a.com")}})

    data = await store.load_last_active_tabs()
    assert data[1]["work"].tab_id == 5
    assert data[1]["work"].url == "https://a.com"


# ---------------------------------------------------------------------------
# Concurrent edits (the local backend yields on every read and write)
# ---------------------------------------------------------------------------


async def test_concurrent_active_workspace_updates_are_all_kept(tmp_path) -> None:
    store = AssignmentStore(LocalJsonStorage(tmp_path))

    await asyncio.gather(*(store.set_active_workspace_id(w, f"ws{w}") for w in range(1, 6)))

    assert await store.load_active_workspaces() == {w: f"ws{w}" for w in range(1, 6)}


async def test_concurrent_last_active_tab_edits_are_all_kept(tmp_path) -> None:
    store = AssignmentStore(LocalJsonStorage(tmp_path))

    async def _remember(window_id: int) -> None:
        async with store.edit_last_active_tabs() as data:
            data.setdefault(window_id, {})["work"] = LastActiveTab(tab_id=window_id, url=f"https://{window_id}.com")

    await asyncio.gather(*(_remember(w) for w in range(1, 6)))

    data = await store.load_last_active_tabs()
    assert {w: r["work"].tab_id for w, r in data.items()} == {w: w for w in range(1, 6)}


async def test_concurrent_window_edits_are_all_kept(tmp_path) -> None:
    store = AssignmentStore(LocalJsonStorage(tmp_path))

    async def _assign(window_id: int) -> None:
        async with store.edit(window_id) as window:
            window["work"] = _work(f"https://{window_id}.com")

    await asyncio.gather(*(_assign(w) for w in range(1, 6)))

    assert set(await store.load_all()) == set(range(1, 6))
