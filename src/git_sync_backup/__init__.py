"""git-sync-backup: synchronize files and folders across devices through git.

This package provides the command-line interface, the background sync loop,
and the synchronization engine that collects configured items from a device
into a git repository and restores them from it onto other devices.
"""

from . import (
    cli,
    config,
    constants,
    copier,
    daemon,
    device,
    errors,
    git_wrapper,
    ops,
    resolver,
)

__all__ = [
    "cli",
    "config",
    "constants",
    "copier",
    "daemon",
    "device",
    "errors",
    "git_wrapper",
    "ops",
    "resolver",
]
