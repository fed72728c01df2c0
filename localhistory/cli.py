"""
CLI interface for local history.

Usage:
    localhistory add notes.md
    localhistory list notes.md
    localhistory show notes.md aB3x.md
    localhistory mv notes.md archive/notes.md
"""

import asyncio
import json
import os
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Optional

import typer
from typing_extensions import Annotated

from .config import get_default_store_path, load_or_create_config
from .content_store import LocalContentStore
from .logging_config import configure_ops_log, configure_quiet_mode, enable_debug_mode, remove_ops_log
from .remote import HttpRemoteEnvironment
from .service import HistoryService
from .types import DEFAULT_SOURCE, HistoryEntry, is_equal_or_parent

# Configure quiet mode by default
# Set LOCALHISTORY_VERBOSE=1 to enable debug mode via environment
if os.environ.get("LOCALHISTORY_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"localhistory {version('localhistory')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="localhistory",
    help="Local history of edited files.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="LOCALHISTORY_STORE_PATH",
        help="Path to the store directory (default: ~/.localhistory/)",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Local history of edited files."""


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

@asynccontextmanager
async def _open_history() -> AsyncIterator[tuple[HistoryService, LocalContentStore]]:
    """Open the history service for the selected store; flushes on exit."""
    override = _get_store_override()
    store_path = override.expanduser().resolve() if override else get_default_store_path()
    config = load_or_create_config(store_path)
    ops_log_handler = configure_ops_log(store_path)

    remote = None
    if config.remote:
        remote = HttpRemoteEnvironment(config.remote.api_url, config.remote.api_key)

    content_store = LocalContentStore()
    history = HistoryService(content_store, config, remote_environment=remote)
    try:
        yield history, content_store
    finally:
        try:
            await history.close()
        finally:
            remove_ops_log(ops_log_handler)


def _resolve_path(file: Path) -> Path:
    return file.expanduser().resolve()


def _format_time(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _entry_to_dict(entry: HistoryEntry) -> dict:
    return {
        "id": entry.id,
        "resource": str(entry.resource),
        "timestamp": entry.timestamp,
        "source": entry.source,
        "label": entry.label,
        "location": str(entry.location),
    }


def _format_entry(entry: HistoryEntry) -> str:
    return f"{entry.id}  {_format_time(entry.timestamp)}  {entry.label}"


def _format_entries(entries: list[HistoryEntry]) -> str:
    if _get_json_output():
        return json.dumps([_entry_to_dict(e) for e in entries], indent=2)
    return "\n".join(_format_entry(e) for e in entries)


async def _find_entry(history: HistoryService, resource: Path, entry_id: str) -> HistoryEntry:
    for entry in await history.get_entries(resource):
        if entry.id == entry_id:
            return entry
    typer.echo(f"Error: no entry {entry_id} in the history of {resource}", err=True)
    raise typer.Exit(1)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def add(
    file: Annotated[Path, typer.Argument(help="File to snapshot")],
    source: Annotated[Optional[str], typer.Option(
        "--source",
        help="Why this entry is recorded (default: a plain save)",
    )] = None,
):
    """Record the current content of a file."""
    resource = _resolve_path(file)
    if not resource.is_file():
        typer.echo(f"Error: not a file: {file}", err=True)
        raise typer.Exit(1)

    async def run() -> Optional[HistoryEntry]:
        async with _open_history() as (history, _):
            return await history.add_entry(resource, source or DEFAULT_SOURCE)

    entry = asyncio.run(run())
    if entry is None:
        typer.echo(f"Error: unsupported resource: {file}", err=True)
        raise typer.Exit(1)

    if _get_json_output():
        typer.echo(json.dumps(_entry_to_dict(entry), indent=2))
    else:
        typer.echo(entry.id)


@app.command("list")
def list_entries(
    file: Annotated[Path, typer.Argument(help="File whose history to list")],
):
    """List the history entries of a file, oldest first."""
    resource = _resolve_path(file)

    async def run() -> list[HistoryEntry]:
        async with _open_history() as (history, _):
            return await history.get_entries(resource)

    entries = asyncio.run(run())
    if entries or _get_json_output():
        typer.echo(_format_entries(entries))


@app.command()
def show(
    file: Annotated[Path, typer.Argument(help="File the entry belongs to")],
    entry_id: Annotated[str, typer.Argument(help="Entry id (see 'list')")],
):
    """Write the content of a history entry to stdout."""
    resource = _resolve_path(file)

    async def run() -> bytes:
        async with _open_history() as (history, content_store):
            entry = await _find_entry(history, resource, entry_id)
            return await content_store.read_file(entry.location)

    typer.echo(asyncio.run(run()), nl=False)


@app.command()
def relabel(
    file: Annotated[Path, typer.Argument(help="File the entry belongs to")],
    entry_id: Annotated[str, typer.Argument(help="Entry id (see 'list')")],
    source: Annotated[str, typer.Argument(help="New source label")],
):
    """Change why an entry is said to have been recorded."""
    resource = _resolve_path(file)

    async def run() -> None:
        async with _open_history() as (history, _):
            entry = await _find_entry(history, resource, entry_id)
            await history.update_entry(entry, source)

    asyncio.run(run())


@app.command("rm")
def remove(
    file: Annotated[Path, typer.Argument(help="File the entry belongs to")],
    entry_id: Annotated[str, typer.Argument(help="Entry id (see 'list')")],
):
    """Delete one history entry."""
    resource = _resolve_path(file)

    async def run() -> bool:
        async with _open_history() as (history, _):
            entry = await _find_entry(history, resource, entry_id)
            return await history.remove_entry(entry)

    if not asyncio.run(run()):
        typer.echo(f"Error: could not remove {entry_id}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Removed: {entry_id}")


@app.command("mv")
def move(
    source: Annotated[Path, typer.Argument(help="File or folder to move")],
    target: Annotated[Path, typer.Argument(help="Destination")],
):
    """Move a file or folder; its history moves with it."""
    source_path = _resolve_path(source)
    target_path = _resolve_path(target)
    if not source_path.exists():
        typer.echo(f"Error: not found: {source}", err=True)
        raise typer.Exit(1)
    if target_path.is_dir():
        target_path = target_path / source_path.name

    async def run() -> None:
        async with _open_history() as (history, content_store):
            # Register models for the tracked resources being moved
            for resource in await history.get_all():
                if is_equal_or_parent(resource, source_path):
                    await history.get_entries(resource)
            await content_store.move(source_path, target_path)

    asyncio.run(run())
    typer.echo(f"Moved: {source_path} -> {target_path}")


@app.command()
def files():
    """List every file that has history."""
    async def run() -> list[Path]:
        async with _open_history() as (history, _):
            return await history.get_all()

    resources = sorted(asyncio.run(run()))
    if _get_json_output():
        typer.echo(json.dumps([str(r) for r in resources], indent=2))
    else:
        for resource in resources:
            typer.echo(str(resource))


@app.command()
def purge(
    yes: Annotated[bool, typer.Option(
        "--yes", "-y",
        help="Do not ask for confirmation",
    )] = False,
):
    """Delete all local history."""
    if not yes:
        typer.confirm("Delete all local history?", abort=True)

    async def run() -> None:
        async with _open_history() as (history, _):
            await history.remove_all()

    asyncio.run(run())
    typer.echo("Removed all local history")


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="localhistory CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
