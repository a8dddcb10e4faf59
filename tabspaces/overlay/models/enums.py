"""Shared enumerations used across the workspace overlay."""

from __future__ import annotations

from enum import StrEnum

# -- Native snapshot ---------------------------------------------------------


class ItemType(StrEnum):
    """Discriminator for combined tab-strip items."""

    PINNED = "pinned"
    REGULAR = "regular"
    GROUP = "group"


# -- Discard -----------------------------------------------------------------


class DiscardOutcome(StrEnum):
    """Per-tab outcome of a bulk discard."""

    DISCARDED = "discarded"
    FAILED = "failed"
    SKIPPED_NEW_TAB = "skipped_new_tab"
    KEPT_AS_LANDING = "kept_as_landing"


# -- Storage -----------------------------------------------------------------


class StorageBackend(StrEnum):
    MEMORY = "memory"
    LOCAL = "local"
    REDIS = "redis"
