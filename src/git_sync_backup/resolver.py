"""Item path resolution and per-device ignore rules."""

import os
from collections.abc import Mapping
from enum import Enum
from pathlib import Path

from .config import Item
from .device import resolve_alias
from .errors import SourceNotFound


class Direction(str, Enum):
    """Which way an item travels."""

    COLLECT = "collect"
    RESTORE = "restore"


def normalize_path(raw: str) -> Path:
    """Normalizes separators and expands a leading home marker.

    Args:
        raw (str): A path as written in the configuration file.

    Returns:
        Path: The absolute on-device path.
    """
    if os.sep == "/":
        raw = raw.replace("\\", "/")
    # On POSIX only "~/" can remain here; Windows also accepts "~\".
    if raw == "~" or raw.startswith(("~/", f"~{os.sep}")):
        return Path.home() / raw[2:]
    return Path(raw)


def resolve_source(
    item: Item, device_id: str, aliases: Mapping[str, str]
) -> Path | None:
    """Determines the on-device path of an item for the given device.

    Args:
        item (Item): The item definition.
        device_id (str): The current device id.
        aliases (Mapping[str, str]): The alias table.

    Returns:
        Path | None: The device path, or None when neither a per-device
        mapping nor a default source exists.
    """
    raw = item.sources.get(resolve_alias(device_id, aliases), item.default_source)
    if raw is None:
        return None
    return normalize_path(raw)


def is_ignored(
    item: Item, direction: Direction, device_id: str, aliases: Mapping[str, str]
) -> bool:
    """Checks whether the device appears in the item's ignore list for `direction`.

    Every entry of the list is resolved through the alias table first, so an
    alias and the id it points at have the same effect.
    """
    ignore = (
        item.ignore_collect if direction is Direction.COLLECT else item.ignore_restore
    )
    canonical = resolve_alias(device_id, aliases)
    return canonical in {resolve_alias(entry, aliases) for entry in ignore}


def endpoints(
    item: Item,
    direction: Direction,
    repo_root: Path,
    device_id: str,
    aliases: Mapping[str, str],
) -> tuple[Path, Path]:
    """Returns the (source, destination) pair for one item and direction.

    Raises:
        SourceNotFound: If the item has no path for this device.
    """
    device_path = resolve_source(item, device_id, aliases)
    if device_path is None:
        raise SourceNotFound(item.path_in_repo, device_id)
    repo_path = repo_root / item.path_in_repo
    if direction is Direction.COLLECT:
        return device_path, repo_path
    return repo_path, device_path
