"""Process configuration loaded from TABSPACES_* environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

from tabspaces.overlay.models.enums import StorageBackend


class TabspacesSettings(BaseSettings):
    """Workspace overlay settings.

    All fields are read from environment variables with the ``TABSPACES_``
    prefix.  For example, ``TABSPACES_LOG_LEVEL=DEBUG`` maps to ``log_level``.

    User preferences (pinned-tab sharing, separate active tab, new-tab link)
    are **not** managed here -- they live in the key-value storage next to the
    assignments and are read with ``load_preferences``.
    """

    model_config = SettingsConfigDict(
        env_prefix="TABSPACES_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"

    # -- Storage ---------------------------------------------------------------
    storage_backend: StorageBackend = StorageBackend.LOCAL

    data_root: str = "./data"
    """Root directory of the local JSON storage."""

    data_prefix: str | None = None
    """Optional namespace inserted into local paths: ``{data_root}/{data_prefix}/...``."""

    redis_url: str | None = None
    """Redis connection string.  Required when ``storage_backend`` is ``redis``."""

    redis_namespace: str = "tabspaces"

    # -- Timing (seconds) ------------------------------------------------------
    switch_settle_delay: float = 0.1
    """Pause between a workspace switch and refocusing its remembered tab."""

    startup_activation_delay: float = 0.5
    sync_debounce: float = 1.0
    group_assign_delay: float = 0.15
    """Wait before auto-assigning a new group, so its tabs have moved in."""

    migration_max_wait: float = 10.0
    migration_poll_interval: float = 1.0


def get_settings() -> TabspacesSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to
    force a re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> TabspacesSettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return TabspacesSettings()


from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)
