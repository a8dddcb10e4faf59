"""Workspace registry -- the ordered list of workspace definitions.

The list is stored whole under ``workspaces``.  ``general`` always exists at
load time; its display name and icon are user-customisable but live under
their own keys (``generalWorkspaceName`` / ``generalWorkspaceIcon``) so the
record in the list can be rebuilt from them on every load.

Mutating methods return ``True`` on success and ``False`` when the change is
refused or fails; failures are logged, never raised.
"""

from __future__ import annotations

import random
import string
import time
from typing import TYPE_CHECKING

from loguru import logger
from pydantic import ValidationError

from tabspaces.overlay.models.workspace import (
    DEFAULT_GENERAL_ICON,
    DEFAULT_GENERAL_NAME,
    GENERAL_WORKSPACE_ID,
    WORKSPACES_ADAPTER,
    WorkspaceDefinition,
    WorkspaceUpdate,
    general_workspace,
    to_storage,
)
from tabspaces.overlay.store.base import (
    GENERAL_ICON_KEY,
    GENERAL_NAME_KEY,
    WORKSPACES_KEY,
    StorageError,
    StorageReadError,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tabspaces.overlay.store.assignments import AssignmentStore
    from tabspaces.overlay.store.base import KeyValueStorage


class WorkspaceNotFoundError(LookupError):
    """Raised when a workspace id is not in the registry."""


def generate_workspace_id() -> str:
    """``workspace_<epoch ms>_<9 random base36 chars>``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))  # noqa: S311
    return f"workspace_{int(time.time() * 1000)}_{suffix}"


class WorkspaceRegistry:
    """Ordered workspace definitions backed by the key-value storage."""

    def __init__(self, storage: KeyValueStorage, assignments: AssignmentStore) -> None:
        self._storage = storage
        self._assignments = assignments

    # -- Read ------------------------------------------------------------------

    async def load_workspaces(self) -> list[WorkspaceDefinition]:
        """Return the ordered workspaces, inserting ``general`` first if missing.

        Raises ``StorageReadError`` if the stored list is malformed.
        """
        data = await self._storage.get([WORKSPACES_KEY, GENERAL_NAME_KEY, GENERAL_ICON_KEY], {WORKSPACES_KEY: []})
        try:
            workspaces = WORKSPACES_ADAPTER.validate_python(data.get(WORKSPACES_KEY) or [])
        except ValidationError as exc:
            raise StorageReadError(WORKSPACES_KEY, f"invalid record ({exc.error_count()} errors)") from exc

        general = general_workspace(
            name=data.get(GENERAL_NAME_KEY) or DEFAULT_GENERAL_NAME,
            icon=data.get(GENERAL_ICON_KEY) or DEFAULT_GENERAL_ICON,
        )
        position = next((i for i, w in enumerate(workspaces) if w.id == GENERAL_WORKSPACE_ID), None)
        if position is None:
            workspaces.insert(0, general)
            await self._save(workspaces)
            logger.info("Registry: created the general workspace")
        else:
            workspaces[position] = general
        return workspaces

    async def get_workspace(self, workspace_id: str) -> WorkspaceDefinition:
        """Raises ``WorkspaceNotFoundError`` if missing."""
        for workspace in await self.load_workspaces():
            if workspace.id == workspace_id:
                return workspace
        raise WorkspaceNotFoundError(workspace_id)

    async def get_workspace_at(self, position: int) -> WorkspaceDefinition | None:
        """Workspace at 1-based ``position`` in the ordered list, if any."""
        workspaces = await self.load_workspaces()
        if 1 <= position <= len(workspaces):
            return workspaces[position - 1]
        return None

    # -- Write -----------------------------------------------------------------

    async def _save(self, workspaces: Sequence[WorkspaceDefinition]) -> None:
        await self._storage.set({WORKSPACES_KEY: to_storage(WORKSPACES_ADAPTER, list(workspaces))})

    async def create_workspace(self, name: str, icon: str = "") -> WorkspaceDefinition | None:
        """Create and append a custom workspace.  Returns ``None`` on failure."""
        workspace = WorkspaceDefinition(id=generate_workspace_id(), name=name, icon=icon, is_default=False)
        if not await self.add_workspace(workspace):
            return None
        return workspace

    async def add_workspace(self, workspace: WorkspaceDefinition) -> bool:
        if workspace.is_default or workspace.id == GENERAL_WORKSPACE_ID:
            logger.warning("Registry: refusing to add a second default workspace ({})", workspace.id)
            return False
        try:
            workspaces = await self.load_workspaces()
            if any(w.id == workspace.id for w in workspaces):
                logger.warning("Registry: workspace {} already exists", workspace.id)
                return False
            workspaces.append(workspace)
            await self._save(workspaces)
        except StorageError as exc:
            logger.error("Registry: failed to add workspace {}: {}", workspace.id, exc)
            return False
        logger.info("Registry: added workspace {} ({})", workspace.id, workspace.name)
        return True

    async def remove_workspace(self, workspace_id: str) -> bool:
        """Delete a custom workspace and everything that refers to it.

        Its assignments are dropped in every window and any window that had
        it active falls back to ``general``.
        """
        if workspace_id == GENERAL_WORKSPACE_ID:
            return False
        try:
            workspaces = await self.load_workspaces()
            remaining = [w for w in workspaces if w.id != workspace_id]
            if len(remaining) == len(workspaces):
                return False
            await self._save(remaining)

            windows = await self._assignments.drop_workspace(workspace_id)

            async with self._assignments.edit_active_workspaces() as active:
                reset = [wid for wid, ws in active.items() if ws == workspace_id]
                for wid in reset:
                    active[wid] = GENERAL_WORKSPACE_ID
        except StorageError as exc:
            logger.error("Registry: failed to remove workspace {}: {}", workspace_id, exc)
            return False

        logger.info(
            "Registry: removed workspace {} (assignments in {} windows, {} windows reset to general)",
            workspace_id,
            len(windows),
            len(reset),
        )
        return True

    async def update_workspace(self, workspace_id: str, update: WorkspaceUpdate) -> bool:
        """Apply a partial update.

        ``general`` keeps its name and default flag through this call (use
        ``rename_workspace`` for its display name); an icon change for it is
        stored under ``generalWorkspaceIcon``.  Custom workspaces can never
        become the default.
        """
        if workspace_id == GENERAL_WORKSPACE_ID:
            if update.name or update.is_default:
                return False
            if update.icon is None:
                return True
            return await self._set_general(GENERAL_ICON_KEY, update.icon)

        if update.is_default:
            return False
        try:
            workspaces = await self.load_workspaces()
            for i, workspace in enumerate(workspaces):
                if workspace.id == workspace_id:
                    changes = update.model_dump(exclude_none=True, exclude={"is_default"})
                    workspaces[i] = workspace.model_copy(update=changes)
                    break
            else:
                return False
            await self._save(workspaces)
        except StorageError as exc:
            logger.error("Registry: failed to update workspace {}: {}", workspace_id, exc)
            return False
        return True

    async def rename_workspace(self, workspace_id: str, name: str) -> bool:
        if workspace_id == GENERAL_WORKSPACE_ID:
            return await self._set_general(GENERAL_NAME_KEY, name)
        return await self.update_workspace(workspace_id, WorkspaceUpdate(name=name))

    async def change_workspace_icon(self, workspace_id: str, icon: str) -> bool:
        return await self.update_workspace(workspace_id, WorkspaceUpdate(icon=icon))

    async def reorder_workspaces(self, workspace_ids: Sequence[str]) -> bool:
        """Persist a new order.  ``workspace_ids`` must list every workspace exactly once."""
        try:
            workspaces = await self.load_workspaces()
            by_id = {w.id: w for w in workspaces}
            if sorted(workspace_ids) != sorted(by_id):
                logger.warning("Registry: reorder ignored, ids do not match the registry")
                return False
            await self._save([by_id[wid] for wid in workspace_ids])
        except StorageError as exc:
            logger.error("Registry: failed to reorder workspaces: {}", exc)
            return False
        return True

    async def _set_general(self, key: str, value: str) -> bool:
        try:
            await self._storage.set({key: value})
        except StorageError as exc:
            logger.error("Registry: failed to update the general workspace: {}", exc)
            return False
        return True
