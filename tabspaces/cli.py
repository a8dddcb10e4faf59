import asyncio
import json

import click


def _run(action):
    """Run ``action(storage)`` against the configured storage backend."""
    from tabspaces.overlay.context import create_storage
    from tabspaces.overlay.log import setup_logging
    from tabspaces.overlay.settings import get_settings
    from tabspaces.overlay.store.redis import RedisStorage

    settings = get_settings()
    setup_logging(settings.log_level)

    async def _main():
        storage = create_storage(settings)
        try:
            return await action(storage)
        finally:
            if isinstance(storage, RedisStorage):
                await storage.aclose()

    return asyncio.run(_main())


def _registry(storage):
    from tabspaces.overlay.managers.workspaces import WorkspaceRegistry
    from tabspaces.overlay.store.assignments import AssignmentStore

    return WorkspaceRegistry(storage, AssignmentStore(storage))


def _require(ok: bool, message: str) -> None:
    if not ok:
        raise click.ClickException(message)


@click.group()
def main() -> None:
    """Tabspaces - persistent workspaces over browser tabs and tab groups."""


# ---------------------------------------------------------------------------
# Workspaces
# ---------------------------------------------------------------------------


@main.group()
def workspaces() -> None:
    """Manage workspace definitions."""


@workspaces.command("list")
def list_workspaces() -> None:
    """List workspaces in display order."""

    async def action(storage):
        return await _registry(storage).load_workspaces()

    for position, workspace in enumerate(_run(action), start=1):
        marker = " (default)" if workspace.is_default else ""
        click.echo(f"{position}. {workspace.id}\t{workspace.name}\t{workspace.icon}{marker}")


@workspaces.command("add")
@click.argument("name")
@click.option("--icon", default="", help="Icon name shown next to the workspace.")
def add_workspace(name: str, icon: str) -> None:
    """Create a workspace and print its id."""

    async def action(storage):
        return await _registry(storage).create_workspace(name, icon)

    workspace = _run(action)
    _require(workspace is not None, f"Could not create workspace {name!r}")
    click.echo(workspace.id)


@workspaces.command("remove")
@click.argument("workspace_id")
def remove_workspace(workspace_id: str) -> None:
    """Delete a workspace and its assignments in every window."""

    async def action(storage):
        return await _registry(storage).remove_workspace(workspace_id)

    _require(_run(action), f"Could not remove workspace {workspace_id!r}")
    click.echo(f"Workspace {workspace_id} removed.")


@workspaces.command("rename")
@click.argument("workspace_id")
@click.argument("name")
def rename_workspace(workspace_id: str, name: str) -> None:
    """Rename a workspace (``general`` included)."""

    async def action(storage):
        return await _registry(storage).rename_workspace(workspace_id, name)

    _require(_run(action), f"Could not rename workspace {workspace_id!r}")
    click.echo(f"Workspace {workspace_id} renamed to {name}.")


@workspaces.command("icon")
@click.argument("workspace_id")
@click.argument("icon")
def change_icon(workspace_id: str, icon: str) -> None:
    """Change a workspace's icon."""

    async def action(storage):
        return await _registry(storage).change_workspace_icon(workspace_id, icon)

    _require(_run(action), f"Could not change the icon of workspace {workspace_id!r}")
    click.echo(f"Workspace {workspace_id} icon set to {icon}.")


@workspaces.command("reorder")
@click.argument("workspace_ids", nargs=-1, required=True)
def reorder_workspaces(workspace_ids: tuple[str, ...]) -> None:
    """Set the display order.  Every workspace id must be listed once."""

    async def action(storage):
        return await _registry(storage).reorder_workspaces(list(workspace_ids))

    _require(_run(action), "Workspace ids must list every existing workspace exactly once")
    click.echo("Workspaces reordered.")


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


@main.group()
def assignments() -> None:
    """Inspect stored tab and group assignments."""


@assignments.command("show")
@click.option("--window", "window_id", type=int, default=None, help="Only show this window.")
def show_assignments(window_id: int | None) -> None:
    """Print assignments as JSON (window id -> workspace id -> groups/tabs)."""
    from tabspaces.overlay.models.workspace import WINDOW_ASSIGNMENTS_ADAPTER, to_storage
    from tabspaces.overlay.store.assignments import AssignmentStore

    async def action(storage):
        store = AssignmentStore(storage)
        if window_id is None:
            return await store.load_all()
        return {window_id: await store.load(window_id)}

    click.echo(json.dumps(to_storage(WINDOW_ASSIGNMENTS_ADAPTER, _run(action)), indent=2, sort_keys=True))


# ---------------------------------------------------------------------------
# Active workspace
# ---------------------------------------------------------------------------


@main.group()
def active() -> None:
    """Inspect or set the active workspace per window."""


@active.command("show")
@click.option("--window", "window_id", type=int, default=None, help="Only show this window.")
def show_active(window_id: int | None) -> None:
    """Print ``window -> workspace`` for each window."""
    from tabspaces.overlay.store.assignments import AssignmentStore

    async def action(storage):
        store = AssignmentStore(storage)
        if window_id is None:
            return await store.load_active_workspaces()
        return {window_id: await store.get_active_workspace_id(window_id)}

    for wid, workspace_id in sorted(_run(action).items()):
        click.echo(f"{wid}\t{workspace_id}")


@active.command("set")
@click.argument("window_id", type=int)
@click.argument("workspace_id")
def set_active(window_id: int, workspace_id: str) -> None:
    """Make a workspace the active one of a window."""
    from tabspaces.overlay.managers.workspaces import WorkspaceNotFoundError
    from tabspaces.overlay.store.assignments import AssignmentStore

    async def action(storage):
        await _registry(storage).get_workspace(workspace_id)
        await AssignmentStore(storage).set_active_workspace_id(window_id, workspace_id)

    try:
        _run(action)
    except WorkspaceNotFoundError:
        raise click.ClickException(f"No workspace with id {workspace_id!r}") from None
    click.echo(f"Window {window_id}: active workspace {workspace_id}.")


if __name__ == "__main__":
    main()
