import datetime
import logging
import os
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .config import Config, Item
from .constants import APP_NAME, CLI_NAME
from .copier import LinkOutcome, copy_item, link_item
from .errors import ItemsFailed
from .git_wrapper import GitRepo
from .resolver import Direction, endpoints, is_ignored

logger = logging.getLogger(APP_NAME)


class ItemStatus(str, Enum):
    """Outcome of processing one item."""

    COPIED = "copied"
    LINKED = "linked"
    UNCHANGED = "unchanged"
    IGNORED = "ignored"
    MISSING = "missing"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ItemResult:
    """Result of processing one item in one direction.

    Attributes:
        path_in_repo (str): The item's key in the store.
        status (ItemStatus): What happened.
        files_written (int): Files written by copy mode.
        error (str | None): The failure message when status is FAILED.
    """

    path_in_repo: str
    status: ItemStatus
    files_written: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is not ItemStatus.FAILED


@dataclass
class SyncReport:
    """Aggregate result of a collect or restore run.

    Attributes:
        direction (Direction): The direction that was run.
        results (list[ItemResult]): One result per item, in configuration order.
        commit (str | None): The commit created by collect, if any.
    """

    direction: Direction
    results: list[ItemResult] = field(default_factory=list)
    commit: str | None = None

    @property
    def failures(self) -> list[ItemResult]:
        return [r for r in self.results if not r.ok]

    def count(self, status: ItemStatus) -> int:
        return sum(1 for r in self.results if r.status is status)


def process_item(
    item: Item,
    direction: Direction,
    repo_root: Path,
    device_id: str,
    aliases: Mapping[str, str],
) -> ItemResult:
    """Resolves, then copies or links, a single item.

    Every exception is converted into a FAILED result so that sibling items
    running in the same pool are unaffected.

    Args:
        item (Item): The item to process.
        direction (Direction): COLLECT (device -> store) or RESTORE (store -> device).
        repo_root (Path): The store root.
        device_id (str): The canonical id of this device.
        aliases (Mapping[str, str]): The alias table.

    Returns:
        ItemResult: The outcome for this item.
    """
    name = item.path_in_repo
    try:
        if is_ignored(item, direction, device_id, aliases):
            logger.info(f"Skipping {direction.value} for '{name}' on this device.")
            return ItemResult(name, ItemStatus.IGNORED)

        src, dst = endpoints(item, direction, repo_root, device_id, aliases)
        if not src.exists():
            logger.warning(f"Source path does not exist, skipping '{name}': {src}")
            return ItemResult(name, ItemStatus.MISSING)

        if item.is_hardlink:
            outcome = link_item(src, dst, is_hardlink=True)
            if outcome is LinkOutcome.SKIPPED:
                return ItemResult(name, ItemStatus.SKIPPED)
            if outcome is LinkOutcome.LINKED:
                logger.info(f"Linked '{name}': {src} -> {dst}")
                return ItemResult(name, ItemStatus.LINKED)
            return ItemResult(name, ItemStatus.UNCHANGED)

        written = copy_item(src, dst)
        if written:
            logger.info(f"Copied '{name}' ({written} file(s)): {src} -> {dst}")
            return ItemResult(name, ItemStatus.COPIED, files_written=written)
        return ItemResult(name, ItemStatus.UNCHANGED)

    except Exception as e:
        logger.error(f"ITEM ERROR '{name}': {e}")
        return ItemResult(name, ItemStatus.FAILED, error=str(e))


def run_items(
    items: Sequence[Item],
    direction: Direction,
    repo_root: Path,
    device_id: str,
    aliases: Mapping[str, str],
    max_workers: int | None = None,
) -> SyncReport:
    """Processes every item concurrently and collects all results.

    Args:
        items (Sequence[Item]): The configured items (unique by path_in_repo).
        direction (Direction): The direction to run.
        repo_root (Path): The store root.
        device_id (str): The canonical id of this device.
        aliases (Mapping[str, str]): The alias table.
        max_workers (int | None): Pool size. Defaults to the CPU count.

    Returns:
        SyncReport: Results in the same order as `items`.
    """
    workers = max_workers or os.cpu_count() or 1
    logger.info(f"Starting {direction.value} of {len(items)} item(s)...")
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [
            pool.submit(process_item, item, direction, repo_root, device_id, aliases)
            for item in items
        ]
        results = [f.result() for f in futures]

    report = SyncReport(direction=direction, results=results)
    logger.info(
        f"{direction.value.capitalize()} finished: "
        f"{len(results) - len(report.failures)} ok, {len(report.failures)} failed."
    )
    return report


def commit_message(device_id: str, now: datetime.datetime | None = None) -> str:
    """Builds the collect commit message for this device."""
    timestamp = (now or datetime.datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
    return f"{CLI_NAME} collect on {device_id} at {timestamp}"


def collect(
    config: Config, repo_root: Path, device_id: str, push: bool = False
) -> SyncReport:
    """Copies every item from this device into the store and commits.

    Items that succeeded are committed even if others failed, so no collected
    data is left uncommitted; the failures are raised afterwards.

    Args:
        config (Config): The store configuration.
        repo_root (Path): The store root.
        device_id (str): The canonical id of this device.
        push (bool): Whether to push the branch after a clean collect.

    Returns:
        SyncReport: The per-item results and the new commit, if any.

    Raises:
        StoreAccessError: If the store cannot be opened or committed.
        ItemsFailed: If at least one item failed.
    """
    repo = GitRepo(repo_root, timeout=config.git.timeout)
    report = run_items(
        config.items, Direction.COLLECT, repo_root, device_id, config.aliases
    )

    report.commit = repo.commit_all(commit_message(device_id))

    if report.failures:
        raise ItemsFailed(report.failures, report)

    if push:
        repo.push(config.git.remote, config.git.branch)
    return report


def restore(config: Config, repo_root: Path, device_id: str) -> SyncReport:
    """Copies every item from the store onto this device.

    Raises:
        ItemsFailed: If at least one item failed.
    """
    report = run_items(
        config.items, Direction.RESTORE, repo_root, device_id, config.aliases
    )
    if report.failures:
        raise ItemsFailed(report.failures, report)
    return report
