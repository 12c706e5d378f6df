"""Command line access to game save data."""

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from devpersist.config import PersistenceConfig, load_config, on_devcade
from devpersist.ipc.server import run_backend
from devpersist.persistence import Persistence, select_storage_type
from devpersist.response import Response

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="devpersist - inspect and edit devcade save data.",
)


# ============================================================================
# Shared Setup
# ============================================================================

def _load_config(path: Optional[Path]) -> PersistenceConfig:
    try:
        config = load_config()
    except ValueError as e:
        typer.echo(f"Error loading configuration: {e}", err=True)
        raise typer.Exit(1)
    if path is not None:
        config.local_path = path
    return config


def _open(remote: Optional[bool], path: Optional[Path], wait: float) -> Persistence:
    """
    Create and initialize a Persistence session. Exits on error.

    --remote/--local override the automatic choice; remote sessions wait
    up to ``wait`` seconds for the backend.
    """
    store = Persistence(_load_config(path))
    if remote is None:
        store.init()
    elif remote:
        store.init_remote()
    else:
        store.init_local()

    if not store.wait_until_initialized(timeout=wait):
        typer.echo(
            f"Error: backend at {store.config.socket_path} not reachable "
            f"(state: {store.state.value if store.state else 'unknown'})",
            err=True,
        )
        store.close()
        raise typer.Exit(1)
    return store


def _fail_on_error(response: Response) -> None:
    if response.is_err():
        kind = response.error_kind.value if response.error_kind else "Err"
        typer.echo(f"{kind}: {response.error}", err=True)
        raise typer.Exit(1)


# ============================================================================
# Commands
# ============================================================================

RemoteOption = typer.Option(None, "--remote/--local", help="Force remote or local storage")
PathOption = typer.Option(None, "--path", "-p", help="Local storage directory")
WaitOption = typer.Option(5.0, "--wait", help="Seconds to wait for the backend")


@app.command()
def save(
    group: str = typer.Argument(..., help="Group, e.g. 'scores' or 'levels/world1'"),
    key: str = typer.Argument(..., help="Key within the group"),
    value: str = typer.Argument(..., help="Value to store"),
    as_json: bool = typer.Option(False, "--json", help="Parse VALUE as JSON"),
    remote: Optional[bool] = RemoteOption,
    path: Optional[Path] = PathOption,
    wait: float = WaitOption,
) -> None:
    """
    Save a value and flush it.

    Example: devpersist save scores player1 42 --json
    """
    if as_json:
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as e:
            typer.echo(f"Error: VALUE is not valid JSON: {e}", err=True)
            raise typer.Exit(1)
    else:
        parsed = value

    with _open(remote, path, wait) as store:
        _fail_on_error(store.save_sync(group, key, parsed))
        _fail_on_error(store.flush_sync())
    typer.echo(f"Saved {group}/{key}")


@app.command()
def load(
    group: str = typer.Argument(..., help="Group to read from"),
    key: str = typer.Argument(..., help="Key within the group"),
    remote: Optional[bool] = RemoteOption,
    path: Optional[Path] = PathOption,
    wait: float = WaitOption,
) -> None:
    """
    Print the stored (serialized) value.

    Example: devpersist load scores player1
    """
    with _open(remote, path, wait) as store:
        response = store.load_sync(group, key)
    _fail_on_error(response)
    data = response.data
    typer.echo(data if isinstance(data, str) else json.dumps(data))


@app.command()
def flush(
    remote: Optional[bool] = RemoteOption,
    path: Optional[Path] = PathOption,
    wait: float = WaitOption,
) -> None:
    """Ask the backend to flush its data to disk."""
    with _open(remote, path, wait) as store:
        _fail_on_error(store.flush_sync())
    typer.echo("Flushed")


@app.command()
def status(
    path: Optional[Path] = PathOption,
) -> None:
    """Show the resolved configuration and which storage would be used."""
    config = _load_config(path)
    mode = select_storage_type(config)

    table = Table(title="devpersist", show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("Storage", mode.value)
    table.add_row("On devcade", str(on_devcade()))
    table.add_row("Socket", str(config.socket_path))
    table.add_row("Socket present", str(config.socket_path.exists()))
    table.add_row("Local path", str(config.local_path.resolve()))
    table.add_row("Request timeout", f"{config.request_timeout:g}s")
    retries = "unlimited" if config.retry.max_retries is None else str(config.retry.max_retries)
    table.add_row("Retry", f"every {config.retry.interval:g}s x{config.retry.backoff:g}, {retries}")
    Console().print(table)


@app.command()
def serve(
    socket_path: Optional[Path] = typer.Option(None, "--socket-path", help="Unix socket to listen on"),
    root: Path = typer.Option(Path("."), "--root", help="Directory for saved groups"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """
    Run a reference backend for developing against remote storage.

    Example: devpersist serve --root ./saves
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if socket_path is None:
        socket_path = _load_config(None).socket_path
    run_backend(
        socket_path=str(socket_path),
        root=str(root),
    )


def run() -> None:
    app()
