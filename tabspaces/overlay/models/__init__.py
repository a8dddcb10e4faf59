"""Data models for the workspace overlay."""

from tabspaces.overlay.models.enums import DiscardOutcome, ItemType, StorageBackend
from tabspaces.overlay.models.host import (
    TAB_GROUP_ID_NONE,
    CombinedItem,
    GroupItem,
    NativeGroup,
    NativeTab,
    PinnedTabItem,
    RegularTabItem,
    build_combined_items,
)
from tabspaces.overlay.models.preferences import OverlayPreferences
from tabspaces.overlay.models.workspace import (
    GENERAL_WORKSPACE_ID,
    GroupAssignment,
    LastActiveTab,
    LastActiveTabs,
    TabAssignment,
    WindowWorkspaceAssignments,
    WorkspaceAssignment,
    WorkspaceAssignments,
    WorkspaceDefinition,
    WorkspaceUpdate,
    general_workspace,
)

__all__ = [
    "GENERAL_WORKSPACE_ID",
    "TAB_GROUP_ID_NONE",
    "CombinedItem",
    "DiscardOutcome",
    "GroupAssignment",
    "GroupItem",
    "ItemType",
    "LastActiveTab",
    "LastActiveTabs",
    "NativeGroup",
    "NativeTab",
    "OverlayPreferences",
    "PinnedTabItem",
    "RegularTabItem",
    "StorageBackend",
    "TabAssignment",
    "WindowWorkspaceAssignments",
    "WorkspaceAssignment",
    "WorkspaceAssignments",
    "WorkspaceDefinition",
    "WorkspaceUpdate",
    "build_combined_items",
    "general_workspace",
]
