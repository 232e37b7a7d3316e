"""
tutorspace CLI main entry point.

Usage:
    tutorspace serve                 # Start the HTTP API + change watcher
    tutorspace exec "npm test"       # Run one allow-listed command
    tutorspace tree                  # Show the workspace file tree
    tutorspace status                # Show project status and settings
    tutorspace init                  # Scaffold the learner project
    tutorspace progress              # Show learner progress and recent commits
"""

import asyncio
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from tutorspace import __version__
from tutorspace.config.schema import TutorspaceSettings
from tutorspace.config.xdg import get_config_file_path
from tutorspace.errors import StorageError, WorkspaceError
from tutorspace.logging_config import setup_logging
from tutorspace.progress import ProgressStore
from tutorspace.runtime import Runtime
from tutorspace.workspace.file_store import FileTreeNode

app = typer.Typer(
    name="tutorspace",
    help="Sandboxed workspace, terminal and dev server for an interactive coding tutor",
    add_completion=False,
)

console = Console()

WorkspaceOption = Annotated[str, typer.Option("--workspace", "-w", help="Workspace root (overrides config)")]


def load_config(workspace: str = "") -> TutorspaceSettings:
    """
    Load tutorspace configuration from YAML + env vars.

    Args:
        workspace: Optional workspace root overriding the configured one

    Returns:
        TutorspaceSettings instance
    """
    try:
        settings = TutorspaceSettings()
    except (ValueError, OSError) as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        console.print(f"Check {get_config_file_path()} and TUTORSPACE_* environment variables.\n")
        raise typer.Exit(2) from e

    if workspace:
        settings.workspace = settings.workspace.model_copy(update={"root": Path(workspace)})

    setup_logging(settings.general.log_level)

    return settings


def _add_nodes(branch: Tree, nodes: list[FileTreeNode]) -> None:
    for node in nodes:
        if node.type == "directory":
            child = branch.add(f"[bold cyan]{node.name}/[/bold cyan]")
            _add_nodes(child, node.children or [])
        else:
            branch.add(f"{node.name} [dim]({node.size} bytes)[/dim]")


@app.command()
def serve(
    host: Annotated[str, typer.Option(help="Bind address (overrides config)")] = "",
    port: Annotated[int, typer.Option(help="Bind port (overrides config)")] = 0,
    workspace: WorkspaceOption = "",
) -> None:
    """Start the tutorspace API server."""
    from tutorspace.api.server import start_server

    settings = load_config(workspace)
    if host or port:
        settings.api = settings.api.model_copy(
            update={"host": host or settings.api.host, "port": port or settings.api.port}
        )

    console.print("[cyan]Starting tutorspace API server...[/cyan]")
    console.print(f"Workspace: {settings.workspace_root}")
    console.print(f"Listening on http://{settings.api.host}:{settings.api.port}\n")

    start_server(settings)


@app.command("exec")
def exec_command(
    command: Annotated[str, typer.Argument(help="Command line, e.g. \"npm test\"")],
    cwd: Annotated[str, typer.Option("--cwd", help="Working directory relative to the workspace")] = "",
    workspace: WorkspaceOption = "",
) -> None:
    """Run one allow-listed command inside the workspace."""
    runtime = Runtime(load_config(workspace))

    try:
        result = asyncio.run(runtime.runner.execute(command, cwd))
    except WorkspaceError as e:
        console.print(f"[red]{type(e).__name__}:[/red] {e.message}")
        raise typer.Exit(1) from e

    if result.stdout:
        console.print(result.stdout, markup=False, highlight=False)
    if result.stderr:
        console.print(f"[dim]{result.stderr}[/dim]", highlight=False)

    if not result.success:
        console.print(f"[yellow]Exit code {result.exit_code}[/yellow]")
        raise typer.Exit(result.exit_code)


@app.command()
def tree(workspace: WorkspaceOption = "") -> None:
    """Show the workspace file tree (ignored entries hidden)."""
    runtime = Runtime(load_config(workspace))

    root = Tree(f"[bold]{runtime.workspace_root}[/bold]")
    _add_nodes(root, runtime.file_store.get_file_tree())

    console.print(root)


@app.command()
def status(workspace: WorkspaceOption = "") -> None:
    """Show project status and effective settings."""
    settings = load_config(workspace)
    runtime = Runtime(settings)
    project: dict[str, Any] = runtime.projects.get_project_status()

    table = Table(title="tutorspace status", show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")

    package_json = project["package_json"] or {}

    table.add_row("Workspace", str(runtime.workspace_root))
    table.add_row("Project exists", "yes" if project["exists"] else "no")
    table.add_row("package.json", package_json.get("name", "-") if package_json else "missing")
    table.add_row("Git repository", "yes" if project["has_git"] else "no")
    table.add_row("node_modules", "installed" if project["has_node_modules"] else "missing")
    table.add_row("Dev server", f"{' '.join(settings.dev_server.command)} (port {settings.dev_server.port})")
    table.add_row("Allowed commands", ", ".join(settings.commands.allowed))
    table.add_row("Command timeout", f"{settings.commands.timeout_seconds:g}s")
    table.add_row("API", f"http://{settings.api.host}:{settings.api.port}")

    config_file = get_config_file_path()
    table.add_row("Config file", str(config_file) if config_file.exists() else f"{config_file} [dim](not found)[/dim]")

    console.print(table)


@app.command()
def init(workspace: WorkspaceOption = "") -> None:
    """Scaffold the learner project (Vite + React + TypeScript)."""
    runtime = Runtime(load_config(workspace))

    console.print(f"[cyan]Initializing project in {runtime.workspace_root}...[/cyan]")

    result = asyncio.run(runtime.projects.initialize_project())

    if not result["success"]:
        console.print(f"[red]✗[/red] {result['message']}\n")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] {result['message']}\n")


@app.command()
def progress(limit: Annotated[int, typer.Option(help="Recent commits to show")] = 10) -> None:
    """Show learner progress and recent commits."""
    settings = load_config()

    try:
        store = ProgressStore(settings.progress.db_path)
        current = store.get_current()
        stats = store.get_stats(limit)
    except StorageError as e:
        console.print(f"[red]StorageError:[/red] {e.message}")
        raise typer.Exit(1) from e

    counts = stats["progress"]
    step = current["current_progress"]

    console.print(
        f"Steps: {counts['completed_steps']}/{counts['total_steps']} completed, "
        f"{counts['in_progress_steps']} in progress, {counts['modules_started']} modules started"
    )
    if step:
        console.print(f"Current step: [cyan]{step['module_id']}/{step['step_id']}[/cyan] ({step['status']})")

    if not stats["recent_commits"]:
        console.print("[dim]No commits recorded[/dim]")
        return

    table = Table(title="Recent commits")
    table.add_column("Commit", style="cyan")
    table.add_column("Message")
    table.add_column("Step")
    table.add_column("Files", justify="right")

    for commit in stats["recent_commits"]:
        table.add_row(
            commit["commit_hash"][:8],
            commit["commit_message"],
            commit["step_context"] or "-",
            str(len(commit["files_changed"])),
        )

    console.print(table)


@app.command()
def version() -> None:
    """Show tutorspace version."""
    console.print(f"tutorspace {__version__}")


if __name__ == "__main__":
    app()
