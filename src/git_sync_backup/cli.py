import argparse
import logging
import os
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from . import config, device, ops
from .config import Config
from .constants import (
    APP_NAME,
    CONFIG_FILENAME,
    DEFAULT_BRANCH,
    DEFAULT_REMOTE,
    ENV_REPO,
)
from .daemon import run_sync, setup_logging
from .errors import ConfigError, GsbError, ItemsFailed
from .git_wrapper import GitRepo
from .resolver import Direction, is_ignored, resolve_source

logger = logging.getLogger(APP_NAME)
console = Console()
err_console = Console(stderr=True)

COMMAND_ALIASES = {"c": "collect", "r": "restore", "s": "sync", "d": "device", "ls": "list"}
"""dict[str, str]: Short subcommand names mapped to their full names."""


def _explicit_root(repo_arg: str | None) -> Path | None:
    """Returns the store root given by --repo or GSB_REPO, if any."""
    raw = repo_arg or os.environ.get(ENV_REPO)
    return Path(raw).expanduser().resolve() if raw else None


def resolve_repo_root(repo_arg: str | None) -> Path:
    """Locates the store root: --repo, then GSB_REPO, then the nearest ancestor."""
    return _explicit_root(repo_arg) or config.find_repo_root()


def portable_path(path: Path) -> str:
    """Renders a path with a leading '~' when it lives under the home directory."""
    try:
        rel = path.relative_to(Path.home())
    except ValueError:
        return str(path)
    return "~" if not rel.parts else f"~/{rel.as_posix()}"


def print_report(report: ops.SyncReport) -> None:
    """Prints a one-line summary of a collect or restore run."""
    changed = report.count(ops.ItemStatus.COPIED) + report.count(ops.ItemStatus.LINKED)
    console.print(
        f"[bold]{report.direction.value.capitalize()}:[/bold] "
        f"{changed} updated, "
        f"{report.count(ops.ItemStatus.UNCHANGED)} unchanged, "
        f"{report.count(ops.ItemStatus.IGNORED)} ignored, "
        f"{report.count(ops.ItemStatus.MISSING) + report.count(ops.ItemStatus.SKIPPED)}"
        " skipped, "
        f"{len(report.failures)} failed."
    )


def print_failures(error: ItemsFailed) -> None:
    """Lists every failed item so the user sees all of them, not just the first."""
    table = Table(show_header=True, header_style="bold red")
    table.add_column("Item", style="cyan")
    table.add_column("Error")
    for result in error.failures:
        table.add_row(result.path_in_repo, result.error or "unknown error")
    err_console.print(table)


def run_collect(repo_root: Path, push: bool) -> None:
    """Collects every item into the store and commits the result."""
    conf = Config.load(repo_root)
    device_id = device.get_device_id()
    try:
        report = ops.collect(conf, repo_root, device_id, push=push)
    except ItemsFailed as e:
        if e.report:
            print_report(e.report)
        raise

    print_report(report)
    if report.commit:
        console.print(f"[bold green]✔ Committed {report.commit[:8]}.[/bold green]")
    else:
        console.print("[dim]Nothing to commit.[/dim]")
    if push:
        console.print(
            f"[bold green]✔ Pushed to {conf.git.remote}/{conf.git.branch}.[/bold green]"
        )


def run_restore(repo_root: Path) -> None:
    """Restores every item from the store onto this device."""
    conf = Config.load(repo_root)
    device_id = device.get_device_id()
    try:
        report = ops.restore(conf, repo_root, device_id)
    except ItemsFailed as e:
        if e.report:
            print_report(e.report)
        raise
    print_report(report)


def show_device(repo_arg: str | None) -> None:
    """Prints the canonical device id and any aliases naming it."""
    device_id = device.get_device_id()
    console.print(device_id)

    try:
        conf = Config.load(resolve_repo_root(repo_arg))
    except GsbError as e:
        logger.debug(f"No configuration available for alias lookup: {e}")
        return
    if names := device.aliases_for(device_id, conf.aliases):
        console.print(f"[dim]Aliases: {', '.join(names)}[/dim]")


def init_store(target: Path, remote_url: str | None, branch: str) -> None:
    """Creates a store: git repository, default configuration, first commit."""
    with console.status("Initializing store...", spinner="dots"):
        repo = GitRepo.init(target, branch)
        config_path = target / CONFIG_FILENAME
        if config_path.exists():
            console.print(f"[yellow]Config already exists: {config_path}[/yellow]")
        else:
            config.write_default_config(target, DEFAULT_REMOTE, branch)
        if remote_url:
            repo.add_remote(DEFAULT_REMOTE, remote_url)
        repo.commit_all(f"Add {CONFIG_FILENAME}")
    console.print(f"[bold green]✔ Store ready:[/bold green] [cyan]{target}[/cyan]")


def add_item(
    repo_root: Path,
    path_str: str,
    name: str | None,
    hardlink: bool,
    this_device: bool,
) -> None:
    """Registers a file or directory as a new item in the configuration."""
    path = Path(path_str).expanduser().absolute()
    if hardlink and not path.is_file():
        raise ConfigError(f"Hardlinked items must be existing regular files: {path}")
    if not path.exists():
        console.print(f"[yellow]WARNING:[/yellow] {path} does not exist yet.")

    stored = portable_path(path)
    table: dict[str, object] = {"path_in_repo": name or path.name}
    if this_device:
        table["sources"] = {device.get_device_id(): stored}
    else:
        table["default_source"] = stored
    if hardlink:
        table["is_hardlink"] = True

    item = config.append_item(repo_root, table)
    console.print(
        f"✔ Added [cyan]{item.path_in_repo}[/cyan] <- {stored}", style="green"
    )


def list_items(repo_root: Path) -> None:
    """Shows every item with its path and ignore status on this device."""
    conf = Config.load(repo_root)
    device_id = device.get_device_id()

    if not conf.items:
        console.print("[yellow]No items configured. Use 'gsb add PATH'.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Item", style="cyan")
    table.add_column("Path on this device")
    table.add_column("Mode", style="dim")
    table.add_column("Collect")
    table.add_column("Restore")

    for item in conf.items:
        path = resolve_source(item, device_id, conf.aliases)
        path_text = portable_path(path) if path else "[red]<none>[/red]"
        states = [
            "[yellow]ignored[/yellow]"
            if is_ignored(item, direction, device_id, conf.aliases)
            else "[green]active[/green]"
            for direction in (Direction.COLLECT, Direction.RESTORE)
        ]
        mode = "hardlink" if item.is_hardlink else "copy"
        table.add_row(item.path_in_repo, path_text, mode, *states)

    console.print(table)


def build_parser() -> argparse.ArgumentParser:
    """Builds the argument parser for all subcommands."""
    parser = argparse.ArgumentParser(
        prog="gsb",
        description="Synchronize and back up files/folders using Git, "
        "across devices.",
    )
    parser.add_argument(
        "--repo",
        metavar="PATH",
        help=f"Store root (default: ${ENV_REPO} or nearest {CONFIG_FILENAME})",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    collect_parser = subparsers.add_parser(
        "collect", aliases=["c"], help="Collect all items into the repository"
    )
    collect_parser.add_argument(
        "--push", action="store_true", help="Push the branch after committing"
    )
    subparsers.add_parser(
        "restore", aliases=["r"], help="Restore all items from the repository"
    )
    subparsers.add_parser(
        "sync", aliases=["s"], help="Continuously pull and restore updates"
    )
    subparsers.add_parser(
        "device", aliases=["d"], help="Print the identifier of this device"
    )

    init_parser = subparsers.add_parser("init", help="Create a new store")
    init_parser.add_argument("--remote", metavar="URL", help="Remote repository URL")
    init_parser.add_argument(
        "--branch",
        default=DEFAULT_BRANCH,
        help=f"Branch to synchronize (default: {DEFAULT_BRANCH})",
    )

    add_parser = subparsers.add_parser("add", help="Add a file or folder as an item")
    add_parser.add_argument("path", help="Path of the file or folder on this device")
    add_parser.add_argument(
        "--as", dest="name", metavar="NAME", help="Path inside the repository"
    )
    add_parser.add_argument(
        "--hardlink", action="store_true", help="Hardlink instead of copying"
    )
    add_parser.add_argument(
        "--this-device",
        action="store_true",
        help="Record the path for this device only",
    )

    subparsers.add_parser("list", aliases=["ls"], help="List configured items")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the gsb CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)
    command = COMMAND_ALIASES.get(args.command, args.command)

    if command is None:
        parser.print_help()
        return

    setup_logging(daemon_mode=command == "sync", verbose=args.verbose)

    try:
        if command == "collect":
            run_collect(resolve_repo_root(args.repo), args.push)
        elif command == "restore":
            run_restore(resolve_repo_root(args.repo))
        elif command == "sync":
            repo_root = resolve_repo_root(args.repo)
            run_sync(Config.load(repo_root), repo_root, device.get_device_id())
        elif command == "device":
            show_device(args.repo)
        elif command == "init":
            init_store(_explicit_root(args.repo) or Path.cwd(), args.remote, args.branch)
        elif command == "add":
            add_item(
                resolve_repo_root(args.repo),
                args.path,
                args.name,
                args.hardlink,
                args.this_device,
            )
        elif command == "list":
            list_items(resolve_repo_root(args.repo))
    except ItemsFailed as e:
        print_failures(e)
        logger.error(f"{len(e.failures)} item(s) failed.")
        sys.exit(1)
    except GsbError as e:
        logger.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        err_console.print("[yellow]Interrupted.[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
