"""Fixtures for overlay tests: in-memory host and storage, wired components.

Every delay is zero so scheduled work can be awaited with ``drain()``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from tabspaces.overlay.discard import SafeDiscardCoordinator
from tabspaces.overlay.host.memory import InMemoryTabHost
from tabspaces.overlay.managers.active_tab import ActiveTabTracker
from tabspaces.overlay.managers.assignments import AssignmentMutator
from tabspaces.overlay.managers.workspaces import WorkspaceRegistry
from tabspaces.overlay.models.workspace import WorkspaceDefinition
from tabspaces.overlay.store.assignments import AssignmentStore
from tabspaces.overlay.store.memory import MemoryStorage
from tabspaces.overlay.sync import WorkspaceSynchronizer


@pytest.fixture
def host() -> InMemoryTabHost:
    return InMemoryTabHost()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def store(storage: MemoryStorage) -> AssignmentStore:
    return AssignmentStore(storage)


@pytest.fixture
def registry(storage: MemoryStorage, store: AssignmentStore) -> WorkspaceRegistry:
    return WorkspaceRegistry(storage, store)


@pytest.fixture
def mutator(host: InMemoryTabHost, store: AssignmentStore) -> AssignmentMutator:
    return AssignmentMutator(host, store)


@pytest.fixture
def tracker(host: InMemoryTabHost, store: AssignmentStore, registry: WorkspaceRegistry) -> ActiveTabTracker:
    return ActiveTabTracker(host, store, registry, switch_settle_delay=0, startup_activation_delay=0)


@pytest.fixture
def coordinator(host: InMemoryTabHost, store: AssignmentStore, mutator: AssignmentMutator) -> SafeDiscardCoordinator:
    return SafeDiscardCoordinator(host, store, mutator)


@pytest.fixture
async def synchronizer(
    host: InMemoryTabHost,
    store: AssignmentStore,
    mutator: AssignmentMutator,
) -> AsyncIterator[WorkspaceSynchronizer]:
    sync = WorkspaceSynchronizer(host, store, mutator, debounce=0, group_assign_delay=0)
    yield sync
    await sync.aclose()


@pytest.fixture
async def work(registry: WorkspaceRegistry) -> WorkspaceDefinition:
    """A custom workspace named Work."""
    workspace = WorkspaceDefinition(id="work", name="Work", icon="Briefcase")
    assert await registry.add_workspace(workspace)
    return workspace


@pytest.fixture
async def personal(registry: WorkspaceRegistry) -> WorkspaceDefinition:
    """A custom workspace named Personal."""
    workspace = WorkspaceDefinition(id="personal", name="Personal")
    assert await registry.add_workspace(workspace)
    return workspace
