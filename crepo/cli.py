import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.prompt import Confirm
from rich.table import Table
from rich.traceback import install

from .config import get_config_path, load_config, update_config
from .db.session import DB_FILENAME
from .decorators import handle_repository_errors
from .items import Node
from .types import DEFAULT_PRIMARY_TYPE, PropertyType

# Initialize Rich Traceback for better error messages
install()

# Initialize Rich Console
console = Console()

# Configure logging to use Rich's RichHandler
logging.basicConfig(
    level=logging.WARNING,  # DEBUG with --verbose
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True)]
)
logger = logging.getLogger(__name__)

# Main app
app = typer.Typer()

# Command groups
workspace_app = typer.Typer(help="Create, list and delete workspaces")
ns_app = typer.Typer(help="Manage namespace prefixes")
config_app = typer.Typer(help="View or edit crepo configuration")

# Register command groups
app.add_typer(workspace_app, name="workspace")
app.add_typer(ns_app, name="ns")
app.add_typer(config_app, name="config")


@app.callback()
def main(
    ctx: typer.Context,
    workspace: Optional[str] = typer.Option(None, "--workspace", "-w", help="Workspace to log into"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose mode"),
):
    """
    crepo - a hierarchical, typed content repository on SQLAlchemy + SQLite.

    Nodes live at slash-separated paths inside isolated workspaces; each node
    carries typed properties, and binary values are kept in a blob store.
    """
    config = load_config()
    ctx.obj = {"workspace": workspace, "config": config}
    console.no_color = not config.cli.color
    if verbose or config.cli.verbose:
        logging.getLogger("crepo").setLevel(logging.DEBUG)
        if verbose:
            console.print("[bold green]Verbose mode enabled.[/bold green]")


@contextmanager
def open_repository(ctx: typer.Context, repo_path: Path, login: bool = True):
    """Open an existing repository, logged into the selected workspace."""
    from .repository import Repository

    repo_path = Path(repo_path)
    if not (repo_path / DB_FILENAME).exists():
        console.print(f"[red]Error: Repository not found at {repo_path}[/red]")
        console.print("Use 'crepo init' to create a new repository.")
        raise typer.Exit(code=1)

    obj = ctx.obj or {}
    config = obj.get("config") or load_config()
    repo = Repository.open(repo_path, config=config)
    try:
        if login:
            repo.login(workspace_name=obj.get("workspace"))
        yield repo
    finally:
        repo.close()


def _format_value(value) -> str:
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return str(value)


@app.command()
def about():
    """Display information about crepo."""
    from . import __version__

    console.print(f"[bold cyan]crepo {__version__} - Content Repository[/bold cyan]")
    console.print("")
    console.print("A hierarchical, typed node tree stored in SQLite:")
    console.print("  • Nodes addressed by path, with stable identifiers")
    console.print("  • Typed, single- or multi-valued properties")
    console.print("  • Content-addressed blob store for binary values")
    console.print("  • Strong and weak references with delete protection")
    console.print("  • Isolated workspaces and a namespace registry")
    console.print("")
    console.print("[bold]Core Commands:[/bold]")
    console.print("  crepo init <repo>                      Initialize new repository")
    console.print("  crepo ls <repo> <path>                 List child nodes")
    console.print("  crepo show <repo> <path>               Show node properties")
    console.print("  crepo mkdir <repo> <path>              Create a node")
    console.print("  crepo set <repo> <path> <name> <val>   Set a property")
    console.print("  crepo cp|mv <repo> <src> <dst>         Copy or move a subtree")
    console.print("  crepo rm <repo> <path>                 Delete a subtree or property")
    console.print("  crepo types                            List node types")
    console.print("")
    console.print("[bold]Command Groups:[/bold]")
    console.print("  crepo workspace <subcommand>           Manage workspaces")
    console.print("  crepo ns <subcommand>                  Manage namespaces")
    console.print("  crepo config <subcommand>              View or edit configuration")


# ============================================================================
# Repository Commands
# ============================================================================

@app.command()
@handle_repository_errors
def init(
    ctx: typer.Context,
    repo_path: Optional[Path] = typer.Argument(None, help="Path to create the repository (default from config)"),
    echo_sql: bool = typer.Option(False, "--echo-sql", help="Echo SQL statements for debugging"),
):
    """
    Initialize a new repository with its default workspace.

    Example:
        crepo init ~/my-repo
    """
    from .repository import Repository

    config = (ctx.obj or {}).get("config") or load_config()
    if repo_path is None:
        if not config.storage.default_path:
            console.print("[red]Error: No repository path given and no default configured[/red]")
            raise typer.Exit(code=1)
        repo_path = Path(config.storage.default_path).expanduser()

    repo = Repository.open(repo_path, echo=echo_sql, config=config)
    try:
        workspace = repo.login(workspace_name=(ctx.obj or {}).get("workspace"))
    finally:
        repo.close()
    console.print(f"[green]✓ Repository initialized at {repo_path}[/green]")
    console.print(f"  Database: {Path(repo_path) / DB_FILENAME}")
    console.print(f"  Workspace: {workspace}")


@app.command()
@handle_repository_errors
def info(
    ctx: typer.Context,
    repo_path: Path = typer.Argument(..., help="Path to the repository"),
):
    """Show the repository descriptors."""
    with open_repository(ctx, repo_path, login=False) as repo:
        table = Table(title="Repository Descriptors", show_header=True, header_style="bold magenta")
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="white")
        for key, value in sorted(repo.get_repository_descriptors().items()):
            table.add_row(key, str(value))
        console.print(table)


@app.command()
def types():
    """List the built-in node types and what they inherit."""
    from .nodetypes import NodeTypeManager

    manager = NodeTypeManager()
    table = Table(title="Node Types", show_header=True, header_style="bold magenta")
    table.add_column("Name", style="cyan")
    table.add_column("Mixin", style="green")
    table.add_column("Supertypes", style="white")
    for definition in sorted(manager.all_node_types(), key=lambda d: d.name):
        table.add_row(
            definition.name,
            "yes" if definition.is_mixin else "",
            ", ".join(sorted(manager.supertypes(definition.name))),
        )
    console.print(table)


@app.command(name="ls")
@handle_repository_errors
def list_children(
    ctx: typer.Context,
    repo_path: Path = typer.Argument(..., help="Path to the repository"),
    path: str = typer.Argument("/", help="Node path"),
):
    """
    List the child nodes of a node.

    Example:
        crepo ls ~/my-repo /content
    """
    with open_repository(ctx, repo_path) as repo:
        node = repo.get_node(path)
        if not node.child_names:
            console.print(f"[yellow]{path} has no child nodes[/yellow]")
            return

        children = repo.get_nodes(f"{path.rstrip('/')}/{name}" for name in node.child_names)
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Name", style="cyan")
        table.add_column("Type", style="green")
        for child in children.values():
            table.add_row(child.name, child.primary_type)
        console.print(table)


@app.command()
@handle_repository_errors
def show(
    ctx: typer.Context,
    repo_path: Path = typer.Argument(..., help="Path to the repository"),
    path: str = typer.Argument(..., help="Node path"),
    as_json: bool = typer.Option(False, "--json", help="Print properties as JSON"),
):
    """Show a node's type, identifier and properties."""
    with open_repository(ctx, repo_path) as repo:
        node = repo.get_node(path)
        if as_json:
            typer.echo(json.dumps(node.to_dict(), indent=2, default=str))
            return
        console.print(f"[bold cyan]{node.path}[/bold cyan]  [green]{node.primary_type}[/green]")
        console.print(f"  Identifier: {node.identifier}")

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Name", style="cyan")
        table.add_column("Type", style="green")
        table.add_column("Value", style="white")
        for record in node.properties:
            name = f"{record.name}[]" if record.multi else record.name
            table.add_row(name, record.type.value, _format_value(record.value))
        console.print(table)


@app.command(name="set")
@handle_repository_errors
def set_property(
    ctx: typer.Context,
    repo_path: Path = typer.Argument(..., help="Path to the repository"),
    path: str = typer.Argument(..., help="Node path"),
    name: str = typer.Argument(..., help="Property name"),
    values: List[str] = typer.Argument(..., help="Value (several with --multi)"),
    type_name: str = typer.Option("String", "--type", "-t", help="Property type (String, Long, Date, Reference, ...)"),
    multi: bool = typer.Option(False, "--multi", "-m", help="Store a multi-valued property"),
):
    """
    Set a property on an existing node.

    Examples:
        crepo set ~/my-repo /page title "Hello"
        crepo set ~/my-repo /page tags a b c --multi
        crepo set ~/my-repo /page published 2024-01-01T00:00:00+00:00 --type Date
    """
    prop_type = PropertyType.from_name(type_name)
    if len(values) > 1 and not multi:
        console.print("[red]Error: Several values given; use --multi for a multi-valued property[/red]")
        raise typer.Exit(code=1)

    with open_repository(ctx, repo_path) as repo:
        node = Node.from_stored(repo.get_node(path), repo.node_types)
        prop = node.set_property(name, values if multi else values[0], prop_type, multi)
        repo.store_property(prop)
        console.print(f"[green]✓ Set {prop.path} ({prop_type.value})[/green]")


@app.command()
@handle_repository_errors
def mkdir(
    ctx: typer.Context,
    repo_path: Path = typer.Argument(..., help="Path to the repository"),
    path: str = typer.Argument(..., help="Path of the new node"),
    primary_type: str = typer.Option(DEFAULT_PRIMARY_TYPE, "--type", "-t", help="Primary node type"),
    mixins: Optional[List[str]] = typer.Option(None, "--mixin", help="Mixin type (repeatable)"),
):
    """
    Create a node. Its parent must exist.

    Example:
        crepo mkdir ~/my-repo /content/page --mixin mix:referenceable
    """
    with open_repository(ctx, repo_path) as repo:
        node = Node(path, primary_type, node_types=repo.node_types)
        for mixin in mixins or []:
            node.add_mixin(mixin)
        repo.store_node(node)
        console.print(f"[green]✓ Created {path} ({primary_type})[/green]")
        console.print(f"  Identifier: {node.identifier}")


@app.command()
@handle_repository_errors
def cp(
    ctx: typer.Context,
    repo_path: Path = typer.Argument(..., help="Path to the repository"),
    source: str = typer.Argument(..., help="Source path"),
    dest: str = typer.Argument(..., help="Destination path"),
    from_workspace: Optional[str] = typer.Option(None, "--from", help="Workspace to copy from"),
):
    """Copy a subtree; the copy gets new identifiers."""
    with open_repository(ctx, repo_path) as repo:
        count = repo.copy_node(source, dest, from_workspace)
        console.print(f"[green]✓ Copied {count} node(s) to {dest}[/green]")


@app.command()
@handle_repository_errors
def mv(
    ctx: typer.Context,
    repo_path: Path = typer.Argument(..., help="Path to the repository"),
    source: str = typer.Argument(..., help="Source path"),
    dest: str = typer.Argument(..., help="Destination path"),
):
    """Move a subtree; identifiers are kept."""
    with open_repository(ctx, repo_path) as repo:
        count = repo.move_node(source, dest)
        console.print(f"[green]✓ Moved {count} node(s) to {dest}[/green]")


@app.command()
@handle_repository_errors
def rm(
    ctx: typer.Context,
    repo_path: Path = typer.Argument(..., help="Path to the repository"),
    path: str = typer.Argument(..., help="Node or property path"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation prompt"),
):
    """
    Delete a node with its subtree, or a single property.

    Refused while a strong reference points into the subtree.
    """
    with open_repository(ctx, repo_path) as repo:
        if not force and not Confirm.ask(f"Delete {path} and everything below it?"):
            console.print("[cyan]Cancelled[/cyan]")
            raise typer.Exit(code=0)
        repo.delete_node(path)
        console.print(f"[green]✓ Deleted {path}[/green]")


@app.command()
@handle_repository_errors
def refs(
    ctx: typer.Context,
    repo_path: Path = typer.Argument(..., help="Path to the repository"),
    path: str = typer.Argument(..., help="Referenced node path"),
    weak: bool = typer.Option(False, "--weak", help="List weak references instead"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Only properties with this name"),
):
    """List the properties that reference a node."""
    with open_repository(ctx, repo_path) as repo:
        if weak:
            found = repo.get_weak_references(path, name)
        else:
            found = repo.get_references(path, name)

        kind = "weak references" if weak else "references"
        if not found:
            console.print(f"[yellow]No {kind} to {path}[/yellow]")
            return
        for prop_path in found:
            console.print(prop_path)
        console.print(f"\n[cyan]Total:[/cyan] {len(found)} {kind}")


@app.command()
@handle_repository_errors
def cat(
    ctx: typer.Context,
    repo_path: Path = typer.Argument(..., help="Path to the repository"),
    path: str = typer.Argument(..., help="Binary property path"),
    index: int = typer.Option(0, "--index", "-i", help="Value index of a multi-valued binary"),
):
    """Write a binary property's payload to stdout."""
    with open_repository(ctx, repo_path) as repo:
        stream = repo.get_binary_stream(path, index)
        typer.echo(stream.read(), nl=False)


@app.command()
@handle_repository_errors
def put(
    ctx: typer.Context,
    repo_path: Path = typer.Argument(..., help="Path to the repository"),
    path: str = typer.Argument(..., help="Node path"),
    name: str = typer.Argument(..., help="Property name"),
    file_path: Path = typer.Argument(..., help="File to store", exists=True, dir_okay=False),
):
    """Store a file as a binary property."""
    with open_repository(ctx, repo_path) as repo:
        node = Node.from_stored(repo.get_node(path), repo.node_types)
        prop = node.set_property(name, file_path.read_bytes(), PropertyType.BINARY, False)
        repo.store_property(prop)
        console.print(f"[green]✓ Stored {file_path.stat().st_size} bytes at {prop.path}[/green]")


# ============================================================================
# Workspace Commands
# ============================================================================

@workspace_app.command(name="list")
@handle_repository_errors
def workspace_list(
    ctx: typer.Context,
    repo_path: Path = typer.Argument(..., help="Path to the repository"),
):
    """List workspaces."""
    with open_repository(ctx, repo_path, login=False) as repo:
        names = repo.get_accessible_workspace_names()
        if not names:
            console.print("[yellow]No workspaces yet[/yellow]")
            return
        for name in names:
            console.print(name)


@workspace_app.command(name="create")
@handle_repository_errors
def workspace_create(
    ctx: typer.Context,
    repo_path: Path = typer.Argument(..., help="Path to the repository"),
    name: str = typer.Argument(..., help="Workspace name"),
):
    """Create an empty workspace."""
    with open_repository(ctx, repo_path, login=False) as repo:
        repo.create_workspace(name)
        console.print(f"[green]✓ Created workspace '{name}'[/green]")


@workspace_app.command(name="delete")
@handle_repository_errors
def workspace_delete(
    ctx: typer.Context,
    repo_path: Path = typer.Argument(..., help="Path to the repository"),
    name: str = typer.Argument(..., help="Workspace name"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation prompt"),
):
    """Delete a workspace and all its nodes."""
    with open_repository(ctx, repo_path, login=False) as repo:
        if not force and not Confirm.ask(f"Delete workspace '{name}' and all its content?"):
            console.print("[cyan]Cancelled[/cyan]")
            raise typer.Exit(code=0)
        repo.delete_workspace(name)
        console.print(f"[green]✓ Deleted workspace '{name}'[/green]")


# ============================================================================
# Namespace Commands
# ============================================================================

@ns_app.command(name="list")
@handle_repository_errors
def ns_list(
    ctx: typer.Context,
    repo_path: Path = typer.Argument(..., help="Path to the repository"),
):
    """List namespace prefixes and their URIs."""
    with open_repository(ctx, repo_path, login=False) as repo:
        table = Table(title="Namespaces", show_header=True, header_style="bold magenta")
        table.add_column("Prefix", style="cyan")
        table.add_column("URI", style="white")
        for prefix, uri in sorted(repo.get_namespaces().items()):
            table.add_row(prefix or "(empty)", uri)
        console.print(table)


@ns_app.command(name="register")
@handle_repository_errors
def ns_register(
    ctx: typer.Context,
    repo_path: Path = typer.Argument(..., help="Path to the repository"),
    prefix: str = typer.Argument(..., help="Namespace prefix"),
    uri: str = typer.Argument(..., help="Namespace URI"),
):
    """Register a namespace prefix, or point it at a new URI."""
    with open_repository(ctx, repo_path, login=False) as repo:
        repo.register_namespace(prefix, uri)
        console.print(f"[green]✓ Registered {prefix} -> {uri}[/green]")


@ns_app.command(name="unregister")
@handle_repository_errors
def ns_unregister(
    ctx: typer.Context,
    repo_path: Path = typer.Argument(..., help="Path to the repository"),
    prefix: str = typer.Argument(..., help="Namespace prefix"),
):
    """Remove a registered namespace prefix."""
    with open_repository(ctx, repo_path, login=False) as repo:
        repo.unregister_namespace(prefix)
        console.print(f"[green]✓ Unregistered {prefix}[/green]")


# ============================================================================
# Configuration Commands
# ============================================================================

@config_app.command(name="show")
def config_show():
    """Show the current configuration."""
    config = load_config()
    console.print(f"[bold]Configuration[/bold] ({get_config_path()})")
    for section, values in config.to_dict().items():
        console.print(f"\n[cyan]{section}[/cyan]")
        for key, value in values.items():
            console.print(f"  {key}: {value}")


@config_app.command(name="set")
def config_set(
    storage_path: Optional[str] = typer.Option(None, "--storage-path", help="Default repository path"),
    echo_sql: Optional[bool] = typer.Option(None, "--echo-sql/--no-echo-sql", help="Echo SQL statements"),
    default_workspace: Optional[str] = typer.Option(None, "--default-workspace", help="Workspace used at login"),
    transactions: Optional[bool] = typer.Option(None, "--transactions/--no-transactions",
                                                help="Hold writes until a save finishes"),
    cli_verbose: Optional[bool] = typer.Option(None, "--cli-verbose/--no-cli-verbose",
                                               help="Enable verbose output by default"),
    cli_color: Optional[bool] = typer.Option(None, "--cli-color/--no-cli-color",
                                             help="Enable colored output by default"),
):
    """
    Update configuration values.

    Only the given options change; everything else is kept.

    Example:
        crepo config set --storage-path ~/my-repo --no-transactions
    """
    update_config(
        storage_default_path=storage_path,
        storage_echo_sql=echo_sql,
        session_default_workspace=default_workspace,
        session_transactions=transactions,
        cli_verbose=cli_verbose,
        cli_color=cli_color,
    )
    console.print(f"[green]✓ Configuration saved to {get_config_path()}[/green]")


if __name__ == "__main__":
    app()
