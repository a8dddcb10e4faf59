"""Durable workspace records.

Everything in this module is persisted through the key-value storage and
survives browser restarts.  Stored JSON uses camelCase keys, so models are
dumped with ``by_alias=True``; Python code uses the snake_case attribute
names.

Native ids (tab ids) appear here only as a fast-path cache next to the URL.
They are reassigned every browser session and must never be trusted alone.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

GENERAL_WORKSPACE_ID = "general"
DEFAULT_GENERAL_NAME = "General"
DEFAULT_GENERAL_ICON = "Home"


class _StoredModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -- Definitions ---------------------------------------------------------------


class WorkspaceDefinition(_StoredModel):
    """A named, iconed bucket of tabs and groups."""

    id: str
    name: str
    icon: str = ""
    is_default: bool = False

    @property
    def is_general(self) -> bool:
        return self.id == GENERAL_WORKSPACE_ID


def general_workspace(name: str = DEFAULT_GENERAL_NAME, icon: str = DEFAULT_GENERAL_ICON) -> WorkspaceDefinition:
    return WorkspaceDefinition(id=GENERAL_WORKSPACE_ID, name=name, icon=icon, is_default=True)


class WorkspaceUpdate(_StoredModel):
    """Partial update for a workspace definition.  ``None`` means unchanged."""

    name: str | None = None
    icon: str | None = None
    is_default: bool | None = None


# -- Assignments ---------------------------------------------------------------


class GroupAssignment(_StoredModel):
    """A native tab group recorded as belonging to a workspace.

    Identified by ``title|color``; ``tab_urls`` is a snapshot of the member
    URLs used to recognise the group after a rename or recolor.
    """

    title: str = ""
    color: str = "grey"
    index: int = 0
    tab_urls: list[str] = Field(default_factory=list)

    @property
    def fingerprint(self) -> str:
        return f"{self.title}|{self.color}"


class TabAssignment(_StoredModel):
    """An individual tab recorded as belonging to a workspace."""

    url: str
    title: str = ""
    index: int = 0
    tab_id: int | None = None
    group_fingerprint: str | None = None


class WorkspaceAssignment(_StoredModel):
    groups: list[GroupAssignment] = Field(default_factory=list)
    tabs: list[TabAssignment] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.groups and not self.tabs


WorkspaceAssignments = dict[str, WorkspaceAssignment]
"""Workspace id -> assignment, for one window."""

WindowWorkspaceAssignments = dict[int, WorkspaceAssignments]
"""Window id -> workspace assignments."""


class LastActiveTab(_StoredModel):
    """Remembered active tab of a workspace; ``url`` covers stale tab ids."""

    tab_id: int
    url: str = ""


LastActiveTabs = dict[int, dict[str, LastActiveTab]]


# -- Serialization -------------------------------------------------------------

WORKSPACES_ADAPTER: TypeAdapter[list[WorkspaceDefinition]] = TypeAdapter(list[WorkspaceDefinition])
WINDOW_ASSIGNMENTS_ADAPTER: TypeAdapter[WindowWorkspaceAssignments] = TypeAdapter(WindowWorkspaceAssignments)
ACTIVE_WORKSPACES_ADAPTER: TypeAdapter[dict[int, str]] = TypeAdapter(dict[int, str])
LAST_ACTIVE_TABS_ADAPTER: TypeAdapter[LastActiveTabs] = TypeAdapter(LastActiveTabs)


def to_storage(adapter: TypeAdapter, value: object) -> object:
    """Dump a record into the JSON-compatible shape the storage keeps."""
    return adapter.dump_python(value, mode="json", by_alias=True, exclude_none=True)
