"""Overlay context -- the wired set of components serving one browser profile.

Components never reach for globals: settings, storage and the host adapter
are passed in here and handed down through constructors.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from tabspaces.overlay.discard import SafeDiscardCoordinator
from tabspaces.overlay.managers.active_tab import ActiveTabTracker
from tabspaces.overlay.managers.assignments import AssignmentMutator
from tabspaces.overlay.managers.workspaces import WorkspaceRegistry
from tabspaces.overlay.migration import WindowMigrator
from tabspaces.overlay.models.enums import StorageBackend
from tabspaces.overlay.restore import SessionRestorer
from tabspaces.overlay.settings import TabspacesSettings, get_settings
from tabspaces.overlay.store.assignments import AssignmentStore
from tabspaces.overlay.store.local import LocalJsonStorage
from tabspaces.overlay.store.memory import MemoryStorage
from tabspaces.overlay.store.redis import RedisStorage
from tabspaces.overlay.sync import WorkspaceSynchronizer

if TYPE_CHECKING:
    from tabspaces.overlay.host.base import TabHost
    from tabspaces.overlay.store.base import KeyValueStorage


def create_storage(settings: TabspacesSettings) -> KeyValueStorage:
    """Create the storage backend selected by configuration."""
    if settings.storage_backend == StorageBackend.MEMORY:
        return MemoryStorage()
    if settings.storage_backend == StorageBackend.REDIS:
        if not settings.redis_url:
            msg = "TABSPACES_REDIS_URL is required for the redis storage backend"
            raise ValueError(msg)
        import redis.asyncio as aioredis

        client = aioredis.from_url(
            settings.redis_url,
            decode_responses=False,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )
        return RedisStorage(client, namespace=settings.redis_namespace)
    return LocalJsonStorage(settings.data_root, prefix=settings.data_prefix)


@dataclass
class OverlayContext:
    """Every overlay component, sharing one storage and one host."""

    settings: TabspacesSettings
    storage: KeyValueStorage
    host: TabHost
    store: AssignmentStore
    registry: WorkspaceRegistry
    mutator: AssignmentMutator
    tracker: ActiveTabTracker
    coordinator: SafeDiscardCoordinator
    synchronizer: WorkspaceSynchronizer
    restorer: SessionRestorer
    migrator: WindowMigrator

    async def aclose(self) -> None:
        """Cancel pending sync work and release the storage connection."""
        await self.synchronizer.aclose()
        if isinstance(self.storage, RedisStorage):
            await self.storage.aclose()
            logger.info("Redis storage: closed")


def build_overlay(
    host: TabHost,
    storage: KeyValueStorage | None = None,
    settings: TabspacesSettings | None = None,
) -> OverlayContext:
    """Wire the overlay components.  Storage defaults to the configured backend."""
    settings = settings or get_settings()
    if storage is None:
        storage = create_storage(settings)
        logger.info("Storage: {} backend", settings.storage_backend.value)

    store = AssignmentStore(storage)
    registry = WorkspaceRegistry(storage, store)
    mutator = AssignmentMutator(host, store)
    synchronizer = WorkspaceSynchronizer(
        host,
        store,
        mutator,
        debounce=settings.sync_debounce,
        group_assign_delay=settings.group_assign_delay,
    )
    return OverlayContext(
        settings=settings,
        storage=storage,
        host=host,
        store=store,
        registry=registry,
        mutator=mutator,
        tracker=ActiveTabTracker(
            host,
            store,
            registry,
            switch_settle_delay=settings.switch_settle_delay,
            startup_activation_delay=settings.startup_activation_delay,
        ),
        coordinator=SafeDiscardCoordinator(host, store, mutator),
        synchronizer=synchronizer,
        restorer=SessionRestorer(host, store),
        migrator=WindowMigrator(
            host,
            store,
            synchronizer,
            max_wait=settings.migration_max_wait,
            poll_interval=settings.migration_poll_interval,
        ),
    )
