import contextlib
import logging
import os
import re
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any

import tomli_w

from .constants import (
    APP_NAME,
    CONFIG_FILENAME,
    CONFIG_VERSION,
    DEFAULT_BRANCH,
    DEFAULT_GIT_TIMEOUT,
    DEFAULT_REMOTE,
    DEFAULT_SYNC_INTERVAL,
)
from .device import resolve_alias
from .errors import ConfigError, ConfigNotFound, RepoRootNotFound

logger = logging.getLogger(APP_NAME)

_ITEM_KEYS = {
    "path_in_repo",
    "default_source",
    "sources",
    "is_hardlink",
    "ignore_collect",
    "ignore_restore",
}


def parse_time(value: int | str) -> int:
    """Converts human-readable time strings (e.g., '1hr', '30m') to seconds."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid time format '{value}'")
    if isinstance(value, int):
        return value
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(s|sec|m|min|h|hr)?s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2) or "s"
    multiplier = {"s": 1, "sec": 1, "m": 60, "min": 60, "h": 3600, "hr": 3600}
    return int(num * multiplier[unit])


def validate_repo_path(path_in_repo: str) -> str:
    """Checks that an item's repository path stays inside the store.

    Args:
        path_in_repo (str): The raw path from the configuration file.

    Returns:
        str: The path with forward slashes.

    Raises:
        ConfigError: If the path is empty, absolute, escapes the store, or
                     points into the `.git` directory.
    """
    normalized = path_in_repo.replace("\\", "/").strip()
    pure = PurePosixPath(normalized)
    if not normalized or normalized in (".", "/"):
        raise ConfigError(f"Item path_in_repo must not be empty: '{path_in_repo}'")
    if pure.is_absolute() or PureWindowsPath(path_in_repo).drive:
        raise ConfigError(f"Item path_in_repo must be relative: '{path_in_repo}'")
    if ".." in pure.parts:
        raise ConfigError(
            f"Item path_in_repo must not leave the repository: '{path_in_repo}'"
        )
    if pure.parts[0] == ".git":
        raise ConfigError(f"Item path_in_repo must not point into .git: '{path_in_repo}'")
    return pure.as_posix()


@dataclass
class GitConfig:
    """Version store settings.

    Attributes:
        remote (str): The git remote pulled from (and pushed to).
        branch (str): The branch synchronized between devices.
        timeout (int): Seconds before fetch/push is abandoned.
    """

    remote: str = DEFAULT_REMOTE
    branch: str = DEFAULT_BRANCH
    timeout: int = DEFAULT_GIT_TIMEOUT


@dataclass(frozen=True)
class Item:
    """One synchronized unit.

    Attributes:
        path_in_repo (str): Unique relative path inside the store.
        default_source (str | None): Fallback on-device path.
        sources (Mapping[str, str]): Per-device paths keyed by canonical device id.
        is_hardlink (bool): Whether the item is hardlinked instead of copied.
        ignore_collect (frozenset[str]): Devices (ids or aliases) that never collect it.
        ignore_restore (frozenset[str]): Devices (ids or aliases) that never restore it.
    """

    path_in_repo: str
    default_source: str | None = None
    sources: Mapping[str, str] = field(default_factory=dict)
    is_hardlink: bool = False
    ignore_collect: frozenset[str] = frozenset()
    ignore_restore: frozenset[str] = frozenset()


@dataclass
class Config:
    """The fully parsed store configuration.

    Attributes:
        version (str): The schema version recorded in the file.
        sync_interval (int): Seconds between sync cycles.
        git (GitConfig): Version store settings.
        aliases (dict[str, str]): Alias name to canonical device id.
        items (list[Item]): The synchronized items, unique by path_in_repo.
    """

    version: str = CONFIG_VERSION
    sync_interval: int = DEFAULT_SYNC_INTERVAL
    git: GitConfig = field(default_factory=GitConfig)
    aliases: dict[str, str] = field(default_factory=dict)
    items: list[Item] = field(default_factory=list)

    @classmethod
    def load(cls, repo_root: Path) -> "Config":
        """Loads and validates the configuration stored at the repository root.

        Args:
            repo_root (Path): The store root containing the config file.

        Returns:
            Config: The validated configuration.

        Raises:
            ConfigNotFound: If the config file does not exist.
            ConfigError: If the file cannot be parsed or fails validation.
        """
        path = repo_root / CONFIG_FILENAME
        if not path.exists():
            raise ConfigNotFound(path)
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Config syntax error in {path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Could not read {path}: {e}") from e

        return cls.from_dict(data, source=str(path))

    @classmethod
    def from_dict(cls, data: dict[str, Any], source: str = "<config>") -> "Config":
        """Builds a configuration from parsed TOML data.

        Args:
            data (dict[str, Any]): The parsed document.
            source (str): A label used in error and warning messages.

        Returns:
            Config: The validated configuration.
        """
        known = {"version", "sync_interval", "git", "aliases", "item"}
        if unknown := set(data) - known:
            logger.warning(
                f"Unknown config keys in {source}: {', '.join(sorted(unknown))}. Ignoring."
            )

        instance = cls()
        if "version" in data:
            instance.version = str(data["version"])
        if "sync_interval" in data:
            try:
                instance.sync_interval = parse_time(data["sync_interval"])
            except ValueError as e:
                raise ConfigError(f"Config error in sync_interval: {e}") from e
            if instance.sync_interval <= 0:
                raise ConfigError("Config error in sync_interval: must be positive")

        instance.git = cls._parse_git(data.get("git", {}))
        instance.aliases = cls._parse_aliases(data.get("aliases", {}))

        raw_items = data.get("item", [])
        if not isinstance(raw_items, list):
            raise ConfigError("Config error: 'item' must be an array of tables")

        seen: set[str] = set()
        for index, raw in enumerate(raw_items):
            item = parse_item(raw, instance.aliases, index)
            if item.path_in_repo in seen:
                raise ConfigError(
                    f"Duplicate path_in_repo '{item.path_in_repo}' in {source}"
                )
            seen.add(item.path_in_repo)
            instance.items.append(item)

        return instance

    @staticmethod
    def _parse_git(section: Any) -> GitConfig:
        if not isinstance(section, dict):
            raise ConfigError("Config error: [git] must be a table")
        valid_keys = GitConfig.__dataclass_fields__.keys()
        if invalid := set(section) - set(valid_keys):
            logger.warning(
                f"Unknown config keys in [git]: {', '.join(sorted(invalid))}. Ignoring."
            )
        git = GitConfig()
        for key in ("remote", "branch"):
            if key in section:
                value = section[key]
                if not isinstance(value, str) or not value:
                    raise ConfigError(f"Config error in [git].{key}: expected a name")
                setattr(git, key, value)
        if "timeout" in section:
            try:
                git.timeout = parse_time(section["timeout"])
            except ValueError as e:
                raise ConfigError(f"Config error in [git].timeout: {e}") from e
        return git

    @staticmethod
    def _parse_aliases(section: Any) -> dict[str, str]:
        if not isinstance(section, dict):
            raise ConfigError("Config error: [aliases] must be a table")
        aliases = {}
        for alias, device_id in section.items():
            if not isinstance(device_id, str):
                raise ConfigError(
                    f"Config error in [aliases].{alias}: expected a device id string"
                )
            aliases[alias] = device_id
        return aliases


def _string_list(value: Any, label: str) -> frozenset[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"Config error in {label}: expected a list of strings")
    return frozenset(value)


def parse_item(raw: Any, aliases: Mapping[str, str], index: int = 0) -> Item:
    """Validates one `[[item]]` table and builds an Item.

    Keys of the `sources` table may be aliases; they are resolved to canonical
    device ids here so that the engine only ever compares canonical ids.

    Args:
        raw (Any): The parsed table.
        aliases (Mapping[str, str]): The alias table.
        index (int): Position of the table, used in error messages.

    Returns:
        Item: The validated item.

    Raises:
        ConfigError: If a field is missing or has the wrong type.
    """
    label = f"item[{index}]"
    if not isinstance(raw, dict):
        raise ConfigError(f"Config error in {label}: expected a table")
    if invalid := set(raw) - _ITEM_KEYS:
        logger.warning(
            f"Unknown config keys in {label}: {', '.join(sorted(invalid))}. Ignoring."
        )

    path_in_repo = raw.get("path_in_repo")
    if not isinstance(path_in_repo, str):
        raise ConfigError(f"Config error in {label}: missing 'path_in_repo'")
    path_in_repo = validate_repo_path(path_in_repo)
    label = f"item '{path_in_repo}'"

    default_source = raw.get("default_source")
    if default_source is not None and not isinstance(default_source, str):
        raise ConfigError(f"Config error in {label}.default_source: expected a path")

    raw_sources = raw.get("sources", {})
    if not isinstance(raw_sources, dict):
        raise ConfigError(f"Config error in {label}.sources: expected a table")
    sources: dict[str, str] = {}
    for device, path in raw_sources.items():
        if not isinstance(path, str):
            raise ConfigError(f"Config error in {label}.sources.{device}: expected a path")
        canonical = resolve_alias(device, aliases)
        if canonical in sources:
            logger.warning(
                f"{label}: source for '{device}' overrides an earlier entry "
                f"for the same device '{canonical}'."
            )
        sources[canonical] = path

    is_hardlink = raw.get("is_hardlink", False)
    if not isinstance(is_hardlink, bool):
        raise ConfigError(f"Config error in {label}.is_hardlink: expected true/false")

    return Item(
        path_in_repo=path_in_repo,
        default_source=default_source,
        sources=sources,
        is_hardlink=is_hardlink,
        ignore_collect=_string_list(
            raw.get("ignore_collect", []), f"{label}.ignore_collect"
        ),
        ignore_restore=_string_list(
            raw.get("ignore_restore", []), f"{label}.ignore_restore"
        ),
    )


def find_repo_root(start: Path | None = None) -> Path:
    """Walks up from `start` to the first directory holding the config file.

    Args:
        start (Path | None): Directory to start from. Defaults to the cwd.

    Returns:
        Path: The store root.

    Raises:
        RepoRootNotFound: If no ancestor contains the config file.
    """
    origin = (start or Path.cwd()).resolve()
    for candidate in (origin, *origin.parents):
        if (candidate / CONFIG_FILENAME).is_file():
            return candidate
    raise RepoRootNotFound(origin)


def _write_toml(path: Path, data: dict[str, Any]) -> None:
    """Writes TOML atomically via a temporary sibling file."""
    tmp_file = path.with_suffix(".tmp")
    try:
        with open(tmp_file, "wb") as f:
            tomli_w.dump(data, f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_file, path)
    except OSError as e:
        with contextlib.suppress(OSError):
            tmp_file.unlink()
        raise ConfigError(f"Could not write {path}: {e}") from e


def write_default_config(
    repo_root: Path,
    remote: str = DEFAULT_REMOTE,
    branch: str = DEFAULT_BRANCH,
) -> Path:
    """Creates a fresh configuration file with no items.

    Args:
        repo_root (Path): The store root.
        remote (str): The remote name to record.
        branch (str): The branch name to record.

    Returns:
        Path: The path of the written file.

    Raises:
        ConfigError: If a configuration file already exists.
    """
    path = repo_root / CONFIG_FILENAME
    if path.exists():
        raise ConfigError(f"Config file already exists: {path}")
    _write_toml(
        path,
        {
            "version": CONFIG_VERSION,
            "sync_interval": DEFAULT_SYNC_INTERVAL,
            "git": {"remote": remote, "branch": branch},
            "aliases": {},
        },
    )
    return path


def append_item(repo_root: Path, table: dict[str, Any]) -> Item:
    """Validates a new item table and appends it to the configuration file.

    Args:
        repo_root (Path): The store root.
        table (dict[str, Any]): The `[[item]]` table to add.

    Returns:
        Item: The validated item as the engine will see it.

    Raises:
        ConfigNotFound: If the store has no configuration file.
        ConfigError: If the item is invalid or its path_in_repo is already used.
    """
    path = repo_root / CONFIG_FILENAME
    if not path.exists():
        raise ConfigNotFound(path)
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Config syntax error in {path}: {e}") from e

    # Validate the document as it stands, then the candidate against it.
    current = Config.from_dict(data, source=str(path))
    item = parse_item(table, current.aliases, len(current.items))
    if any(existing.path_in_repo == item.path_in_repo for existing in current.items):
        raise ConfigError(f"An item with path_in_repo '{item.path_in_repo}' exists")

    data.setdefault("item", []).append({**table, "path_in_repo": item.path_in_repo})
    _write_toml(path, data)
    return item
