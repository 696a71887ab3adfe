"""Exception types raised by git-sync-backup.

Convention:
- Per-item errors (``SourceNotFound``, ``HardlinkFailed``) never abort a batch;
  the orchestrator records them and raises ``ItemsFailed`` once every item
  has been processed.
- Store errors (``StoreAccessError`` and its subclass ``StoreMergeConflict``)
  abort the current operation. The sync loop logs them and keeps running.
- ``DeviceIdentityUnavailable`` and configuration errors are fatal for the
  whole invocation.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .ops import ItemResult, SyncReport


class GsbError(Exception):
    """Base class for every error surfaced to the command line."""


class ConfigError(GsbError):
    """Raised when the configuration file is malformed or invalid."""


class ConfigNotFound(ConfigError):
    """Raised when the store has no configuration file."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Config file not found: {path}")


class RepoRootNotFound(GsbError):
    """Raised when no ancestor of the working directory holds a config file."""

    def __init__(self, start: Path) -> None:
        self.start = start
        super().__init__(
            f"Could not determine repository root: no config file in {start} "
            "or its parent directories."
        )


class DeviceIdentityUnavailable(GsbError):
    """Raised when the current host exposes no stable device identifier."""

    def __init__(self) -> None:
        super().__init__("Could not determine current device identifier.")


class SourceNotFound(GsbError):
    """Raised when an item has no path configured for the current device."""

    def __init__(self, path_in_repo: str, device_id: str) -> None:
        self.path_in_repo = path_in_repo
        self.device_id = device_id
        super().__init__(
            f"Source path not found for item '{path_in_repo}' "
            f"on device '{device_id}'."
        )


class HardlinkFailed(GsbError):
    """Raised when a hardlink cannot be created (e.g. across filesystems)."""

    def __init__(self, src: Path, dst: Path, reason: str = "") -> None:
        self.src = src
        self.dst = dst
        detail = f" ({reason})" if reason else ""
        super().__init__(
            f"Failed to create hardlink from {src} to {dst}{detail}. "
            "This can happen on different filesystems/partitions."
        )


class StoreAccessError(GsbError):
    """Raised when the git store cannot be opened, read, committed or fetched."""


class StoreMergeConflict(StoreAccessError):
    """Raised when a pull would require merging diverged histories."""

    def __init__(self, remote: str, branch: str) -> None:
        self.remote = remote
        self.branch = branch
        super().__init__(
            f"Non-fast-forward merge required for '{remote}/{branch}'. "
            "Automatic merging is not supported; merge manually."
        )


class ItemsFailed(GsbError):
    """Aggregates every per-item failure of a collect or restore run."""

    def __init__(
        self, failures: Sequence[ItemResult], report: SyncReport | None = None
    ) -> None:
        self.failures = list(failures)
        self.report = report
        lines = [f"  {r.path_in_repo}: {r.error}" for r in self.failures]
        super().__init__(
            f"{len(self.failures)} item(s) failed:\n" + "\n".join(lines)
        )
