"""Main CLI application for Lockstep."""

import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.tree import Tree

from lockstep import __version__
from lockstep.config.parser import ConfigError
from lockstep.core.errors import ResolutionError
from lockstep.core.lockfile import LockfileParseError
from lockstep.core.package import PackageId, PackageRecord
from lockstep.core.workspace import LockResult, Workspace
from lockstep.registry.base import IndexAccessError
from lockstep.registry.factory import UnsupportedProtocolError

# Create the main Typer app
app = typer.Typer(
    name="lockstep",
    help="Dependency resolver and lockfile generator",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)

# Set up logger for the lockstep package
logger = logging.getLogger("lockstep")

# Exit status for every failure to produce or read a lockfile
FAILURE_EXIT_CODE = 101

FAILURES = (
    ResolutionError,
    IndexAccessError,
    LockfileParseError,
    ConfigError,
    UnsupportedProtocolError,
    FileNotFoundError,
)

PathOption = Annotated[
    Path | None,
    typer.Option(
        "--path",
        "-p",
        help="Project directory (defaults to searching upwards from the current directory)",
    ),
]
OfflineOption = Annotated[
    bool,
    typer.Option(
        "--offline",
        envvar="LOCKSTEP_OFFLINE",
        help="Never access the network; fail if index data is not cached",
    ),
]
NoIndexUpdateOption = Annotated[
    bool,
    typer.Option(
        "--no-index-update",
        envvar="LOCKSTEP_NO_INDEX_UPDATE",
        help="Reuse cached index data without checking for updates",
    ),
]
CacheDirOption = Annotated[
    Path | None,
    typer.Option(
        "--cache-dir",
        envvar="LOCKSTEP_CACHE_DIR",
        help="Directory for cached remote index data",
    ),
]


def setup_logging(verbosity: int) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbosity: 0=WARNING, 1=INFO, 2=DEBUG, 3+=DEBUG with source paths
    """
    if verbosity == 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    # Configure the root lockstep logger
    logger.setLevel(level)

    # Only add handler if not already configured
    if not logger.handlers:
        handler = RichHandler(
            console=error_console,
            show_time=verbosity >= 2,
            show_path=verbosity >= 3,
            rich_tracebacks=True,
        )
        handler.setLevel(level)
        logger.addHandler(handler)
    else:
        # Update existing handler level
        for h in logger.handlers:
            h.setLevel(level)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    error_console.print(f"[red]Error:[/red] {escape(message)}", highlight=False)


def print_status(message: str) -> None:
    """Print a status line to stderr."""
    error_console.print(f"[green]{escape(message)}[/green]", highlight=False)


def print_warning(message: str) -> None:
    """Print a warning message to stderr."""
    error_console.print(f"[yellow]warning:[/yellow] {escape(message)}", highlight=False)


def load_workspace(
    path: Path | None,
    offline: bool = False,
    no_index_update: bool = False,
    cache_dir: Path | None = None,
) -> Workspace:
    """Load the workspace, exiting with the failure status if it is invalid."""
    try:
        return Workspace.load(
            path, offline=offline, no_refresh=no_index_update, cache_dir=cache_dir
        )
    except (FileNotFoundError, ConfigError) as e:
        print_error(str(e))
        raise typer.Exit(FAILURE_EXIT_CODE) from e


def report(result: LockResult) -> None:
    """Print warnings and, if the lockfile changed, the locking status line."""
    for warning in result.warnings:
        print_warning(warning)
    if result.written:
        count = result.package_count
        noun = "package" if count == 1 else "packages"
        print_status(f"Locking {count} {noun} to latest compatible versions")


@app.callback()
def callback(
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose",
            "-v",
            count=True,
            help="Increase verbosity (-v info, -vv debug, -vvv debug with paths)",
        ),
    ] = 0,
) -> None:
    """Lockstep - resolve dependency ranges into a reproducible lockfile."""
    setup_logging(verbose)


@app.command()
def version() -> None:
    """Show the Lockstep version."""
    console.print(f"lockstep {__version__}")


@app.command("generate-lockfile")
def generate_lockfile(
    offline: OfflineOption = False,
    no_index_update: NoIndexUpdateOption = False,
    cache_dir: CacheDirOption = None,
    path: PathOption = None,
) -> None:
    """Generate the lockfile for a project.

    Versions already pinned in an existing lockfile are kept while they
    still satisfy the manifest. The file is only rewritten when its content
    changes; its [metadata] block and line endings are preserved. Concurrent
    runs are serialized through a lockstep.lock.lck file kept beside it.
    """
    workspace = load_workspace(path, offline, no_index_update, cache_dir)
    try:
        result = workspace.generate_lockfile()
    except FAILURES as e:
        print_error(str(e))
        raise typer.Exit(FAILURE_EXIT_CODE) from e
    report(result)


@app.command()
def update(
    packages: Annotated[
        list[str] | None,
        typer.Argument(help="Packages to update (default: all)"),
    ] = None,
    offline: OfflineOption = False,
    no_index_update: NoIndexUpdateOption = False,
    cache_dir: CacheDirOption = None,
    path: PathOption = None,
) -> None:
    """Update dependencies to their latest compatible versions.

    Without arguments every locked version is re-selected. With package
    names, only those packages are unlocked; every other package keeps its
    locked version where possible. Creates the lockfile if it is missing.
    """
    workspace = load_workspace(path, offline, no_index_update, cache_dir)
    try:
        result = workspace.update(packages or ())
    except FAILURES as e:
        print_error(str(e))
        raise typer.Exit(FAILURE_EXIT_CODE) from e
    report(result)


@app.command()
def tree(path: PathOption = None) -> None:
    """Show the dependency tree recorded in the lockfile."""
    workspace = load_workspace(path)
    try:
        lockfile = workspace.read_lockfile()
        if lockfile is None:
            print_error(
                f"No lockfile at {workspace.lockfile_path}; run 'lockstep generate-lockfile'"
            )
            raise typer.Exit(FAILURE_EXIT_CODE)
        records = lockfile.to_records()
    except LockfileParseError as e:
        print_error(str(e))
        raise typer.Exit(FAILURE_EXIT_CODE) from e

    by_id = {record.package_id: record for record in records}
    root = by_id.get(workspace.root_package)
    if root is None:
        print_error(
            f"Lockfile does not contain package '{workspace.root_package.name}'; "
            "run 'lockstep generate-lockfile'"
        )
        raise typer.Exit(FAILURE_EXIT_CODE)

    console.print(build_tree(root, by_id))


def build_tree(root: PackageRecord, by_id: dict[PackageId, PackageRecord]) -> Tree:
    """Render a lockfile's dependency graph as a Rich tree.

    Packages already shown higher up are marked with (*) and not expanded.
    """
    tree_root = Tree(_label(root.package_id))
    seen = {root.package_id}
    # (record, parent tree node)
    pending: list[tuple[PackageRecord, Tree]] = [(root, tree_root)]
    while pending:
        record, node = pending.pop(0)
        for dependency in record.dependencies:
            if dependency in seen:
                node.add(f"{_label(dependency)} (*)")
                continue
            seen.add(dependency)
            child = node.add(_label(dependency))
            pending.append((by_id[dependency], child))
    return tree_root


def _label(package_id: PackageId) -> str:
    if package_id.source.is_path:
        return f"{package_id.name} v{package_id.version} ({package_id.source.location})"
    return f"{package_id.name} v{package_id.version}"


if __name__ == "__main__":
    app()
