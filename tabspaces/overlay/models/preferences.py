"""User preferences that shape overlay behaviour.

Preferences live in the key-value storage next to the workspace data (the
user toggles them at runtime), unlike process settings which come from the
environment.  See ``tabspaces.overlay.settings``.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from tabspaces.overlay.models.workspace import DEFAULT_GENERAL_ICON, DEFAULT_GENERAL_NAME


class OverlayPreferences(BaseModel):
    """Snapshot of the user's overlay toggles.

    Field aliases equal the storage keys, so ``model_validate(storage_record)``
    reads them directly.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    enable_workspaces: bool = True
    share_pinned_tabs_between_workspaces: bool = False
    separate_active_tab_per_workspace: bool = False
    new_tab_link: str = ""
    general_workspace_name: str = DEFAULT_GENERAL_NAME
    general_workspace_icon: str = DEFAULT_GENERAL_ICON

    @classmethod
    def storage_keys(cls) -> list[str]:
        return [to_camel(name) for name in cls.model_fields]
