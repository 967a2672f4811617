"""ckpt CLI - local workspace checkpoints."""

import json
import logging
import os
import sys
import webbrowser
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ckpt import __version__
from ckpt.config import CkptConfig, coerce_config_value, detect_workspace_root, reset_config
from ckpt.errors import RENDERER_UNAVAILABLE, format_error
from ckpt.graph import describe
from ckpt.render import render_store
from ckpt.revert import revert as revert_workspace
from ckpt.store import SnapshotStore

console = Console()
err_console = Console(stderr=True)


def _configure_logging(verbose: bool) -> None:
    level_name = os.environ.get("CKPT_LOG_LEVEL")
    if level_name:
        level = logging.getLevelName(level_name.upper())
        if not isinstance(level, int):
            level = logging.WARNING
    else:
        level = logging.DEBUG if verbose else logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _fail(error) -> None:
    console.print(f"[red]{format_error(error)}[/red]")
    sys.exit(1)


def _store(ctx: click.Context) -> SnapshotStore:
    obj = ctx.obj
    return SnapshotStore(obj["workspace"])


def _after_mutation(ctx: click.Context, store: SnapshotStore) -> None:
    """Render the graph if enabled. Failures are reported, never fatal."""
    if not ctx.obj["render"] or not store.config.render:
        return
    result = render_store(store)
    if result.is_ok():
        console.print("[dim]✔ Diagram updated.[/dim]")
        return
    error = result.unwrap_err()
    if error.code == RENDERER_UNAVAILABLE:
        console.print("[dim]Diagram not rendered (mmdc not found). History saved.[/dim]")
    else:
        console.print(f"[yellow]![/yellow] Diagram not rendered: {error.message}")


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--workspace",
    "-C",
    type=click.Path(file_okay=False, path_type=Path),
    help="Workspace root (default: nearest directory with .ckpt, else cwd)",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.option("--no-render", is_flag=True, help="Skip diagram rendering after changes")
@click.pass_context
def main(ctx, workspace, verbose, no_render):
    """ckpt: local checkpoints for a workspace directory."""
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    if workspace is None:
        workspace = detect_workspace_root() or Path.cwd()
    ctx.obj["workspace"] = Path(workspace).resolve()
    ctx.obj["render"] = not no_render


@main.command()
@click.option(
    "--gitignore/--no-gitignore",
    default=True,
    help="Add .ckpt to the workspace .gitignore",
)
@click.pass_context
def init(ctx, gitignore):
    """Create .ckpt, the store and the root snapshot "$"."""
    store = _store(ctx)
    result = store.init(register_gitignore=gitignore)
    if result.is_err():
        _fail(result.unwrap_err())

    outcome = result.unwrap()
    if not outcome.created:
        console.print("[yellow].ckpt already exists - nothing to do.[/yellow]")
        return

    console.print(
        f'[green]✓[/green] Initialized ckpt repository with root snapshot "$" '
        f"({len(outcome.root.files)} files)."
    )
    if outcome.gitignore_updated:
        console.print("  [dim]Added .ckpt to .gitignore[/dim]")
    _after_mutation(ctx, store)


@main.command()
@click.option("--tag", "-t", help="Optional tag")
@click.pass_context
def snap(ctx, tag):
    """Take a snapshot of the current workspace."""
    store = _store(ctx)
    result = store.create(tag=tag)
    if result.is_err():
        _fail(result.unwrap_err())

    snapshot = result.unwrap()
    console.print(
        f"[green]✓[/green] Snapshot {snapshot.short_id} created (parent {snapshot.parent})."
    )
    _after_mutation(ctx, store)


@main.command()
@click.argument("snapshot_id", required=False)
@click.pass_context
def revert(ctx, snapshot_id):
    """Revert the workspace to SNAPSHOT_ID (default: parent of active).

    SNAPSHOT_ID may be a unique prefix. The current workspace is saved as a
    new snapshot first, so nothing is lost.
    """
    store = _store(ctx)

    target_id = None
    if snapshot_id is not None:
        resolved = store.resolve(snapshot_id)
        if resolved.is_err():
            _fail(resolved.unwrap_err())
        target_id = resolved.unwrap().id

    result = revert_workspace(store, target_id)
    if result.is_err():
        _fail(result.unwrap_err())

    outcome = result.unwrap()
    console.print(
        f"[green]✓[/green] Workspace reverted to {outcome.target_id} "
        f"(previous state saved as {outcome.safety_id[:8]})."
    )
    _after_mutation(ctx, store)


@main.command("log")
@click.option("--json", "as_json", is_flag=True, help="Output JSON (without file contents)")
@click.pass_context
def log_cmd(ctx, as_json):
    """List snapshots in creation order."""
    store = _store(ctx)
    loaded = store.load()
    if loaded.is_err():
        _fail(loaded.unwrap_err())
    state = loaded.unwrap()

    if as_json:
        records = [
            {
                "id": s.id,
                "ts": s.timestamp.isoformat(),
                "parent": s.parent,
                "tag": s.tag,
                "files": len(s.files),
                "active": s.id == state.active_id,
            }
            for s in state.in_order()
        ]
        click.echo(json.dumps(records, indent=2))
        return

    table = Table()
    table.add_column("")
    table.add_column("ID")
    table.add_column("TIME")
    table.add_column("PARENT")
    table.add_column("TAG")
    table.add_column("FILES", justify="right")

    for s in state.in_order():
        parent = state.get(s.parent).short_id if s.parent else "-"
        table.add_row(
            "*" if s.id == state.active_id else "",
            s.short_id,
            s.timestamp.astimezone().strftime("%Y-%m-%d %H:%M:%S"),
            parent,
            s.tag or "-",
            str(len(s.files)),
        )

    console.print(table)


@main.command("describe")
@click.pass_context
def describe_cmd(ctx):
    """Print the Mermaid description of the snapshot graph."""
    store = _store(ctx)
    loaded = store.load()
    if loaded.is_err():
        _fail(loaded.unwrap_err())
    click.echo(describe(loaded.unwrap()))


@main.command()
@click.option("--no-open", is_flag=True, help="Render only, do not open the diagram")
@click.pass_context
def show(ctx, no_open):
    """Rebuild the diagram and open it."""
    store = _store(ctx)
    result = render_store(store)
    if result.is_err():
        _fail(result.unwrap_err())

    svg = store.paths.svg_file
    if not svg.exists():
        console.print(f"[red]✗ {svg.name} was not created.[/red]")
        sys.exit(1)

    console.print(f"📄 Diagram: {svg}")
    if not no_open:
        webbrowser.open(svg.resolve().as_uri())


@main.group()
def config():
    """Manage workspace configuration (.ckpt/config.yaml)."""
    pass


@config.command("list")
@click.pass_context
def config_list(ctx):
    """Show current configuration."""
    store = _store(ctx)
    effective = store.config
    defaults = CkptConfig()

    console.print(f"[bold]Configuration[/bold] [dim]({store.paths.config_file})[/dim]")
    console.print()
    for key, value in effective.to_dict().items():
        default = getattr(defaults, key)
        if value != default:
            console.print(f"  {key}: [cyan]{value}[/cyan] [dim](default: {default})[/dim]")
        else:
            console.print(f"  {key}: {value}")


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx, key: str, value: str):
    """Set a configuration value.

    Examples:
        ckpt config set read_workers 4
        ckpt config set extra_ignore "*.log,build/"
        ckpt config set render false
    """
    store = _store(ctx)
    if not store.is_initialized():
        console.print("[red]No .ckpt directory here. Run 'ckpt init' first.[/red]")
        sys.exit(1)

    key = key.replace("-", "_")
    try:
        coerced = coerce_config_value(key, value)
    except KeyError:
        console.print(f"[red]Unknown config key: {key}[/red]")
        sys.exit(1)
    except ValueError as e:
        console.print(f"[red]Invalid value: {e}[/red]")
        sys.exit(1)

    cfg = CkptConfig.load_file(store.paths.ckpt_dir)
    setattr(cfg, key, coerced)
    result = cfg.save(store.paths.ckpt_dir)
    if result.is_err():
        _fail(result.unwrap_err())
    console.print(f"[green]✓[/green] Set {key} = {coerced}")


@config.command("reset")
@click.pass_context
def config_reset(ctx):
    """Reset configuration to defaults."""
    store = _store(ctx)
    result = reset_config(store.paths.ckpt_dir)
    if result.is_err():
        _fail(result.unwrap_err())
    if result.unwrap():
        console.print("[green]✓[/green] Configuration reset to defaults")
    else:
        console.print("[dim]Already using defaults[/dim]")


if __name__ == "__main__":
    main()
