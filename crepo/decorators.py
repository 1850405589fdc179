"""Decorators for crepo CLI commands."""

import functools
import logging
from typing import Any, Callable

import typer
from rich.console import Console

from .exceptions import (
    ItemExistsError, ItemNotFoundError, NamespaceError, NoSuchWorkspaceError,
    NotImplementedCapability, PathNotFoundError, ReferentialIntegrityError, RepositoryError,
)

logger = logging.getLogger(__name__)
console = Console()


def handle_repository_errors(func: Callable) -> Callable:
    """
    Decorator to handle common repository operation errors.

    Repository errors become a red message and exit code 1; a few get a
    hint on what to do next. Anything unexpected is logged with its
    traceback first.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Any:
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except (ItemNotFoundError, PathNotFoundError) as e:
            console.print(f"[bold red]Error:[/bold red] Not found: {e}")
            raise typer.Exit(code=1)
        except ItemExistsError as e:
            console.print(f"[bold red]Error:[/bold red] Already exists: {e}")
            raise typer.Exit(code=1)
        except ReferentialIntegrityError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            console.print("[yellow]Tip: Remove the referencing properties first (see 'crepo refs')[/yellow]")
            raise typer.Exit(code=1)
        except NoSuchWorkspaceError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            console.print("[yellow]Tip: 'crepo workspace list' shows the existing workspaces[/yellow]")
            raise typer.Exit(code=1)
        except NamespaceError as e:
            console.print(f"[bold red]Error:[/bold red] Namespace: {e}")
            raise typer.Exit(code=1)
        except NotImplementedCapability as e:
            console.print(f"[bold red]Not supported:[/bold red] {e}")
            raise typer.Exit(code=1)
        except RepositoryError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(code=1)
        except (ValueError, OSError) as e:
            console.print(f"[bold red]Error:[/bold red] Invalid input: {e}")
            raise typer.Exit(code=1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user[/yellow]")
            raise typer.Exit(code=130)
        except Exception as e:
            logger.error(f"Unexpected error in {func.__name__}: {e}", exc_info=True)
            console.print(f"[bold red]Unexpected error:[/bold red] {e}")
            raise typer.Exit(code=1)

    return wrapper
