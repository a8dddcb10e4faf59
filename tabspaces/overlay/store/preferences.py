"""Read and write the user's overlay preferences."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from tabspaces.overlay.models.preferences import OverlayPreferences
from tabspaces.overlay.store.base import StorageReadError

if TYPE_CHECKING:
    from tabspaces.overlay.store.base import KeyValueStorage


async def load_preferences(storage: KeyValueStorage) -> OverlayPreferences:
    """Snapshot the preferences.  Unset keys take their defaults."""
    data = await storage.get(OverlayPreferences.storage_keys())
    try:
        return OverlayPreferences.model_validate(data)
    except ValidationError as exc:
        raise StorageReadError(",".join(sorted(data)), f"invalid preferences ({exc.error_count()} errors)") from exc


async def save_preferences(storage: KeyValueStorage, **changes: Any) -> OverlayPreferences:
    """Persist the given fields (snake_case names) and return the new snapshot.

    Raises ``ValueError`` for unknown fields or invalid values.
    """
    unknown = set(changes) - set(OverlayPreferences.model_fields)
    if unknown:
        msg = f"Unknown preference(s): {', '.join(sorted(unknown))}"
        raise ValueError(msg)
    current = await load_preferences(storage)
    updated = OverlayPreferences.model_validate({**current.model_dump(), **changes})
    await storage.set({to_camel(name): getattr(updated, name) for name in changes})
    return updated
