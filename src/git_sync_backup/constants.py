import os
from pathlib import Path

"""Global constants and filesystem layout for git-sync-backup.

This module defines the application identifiers, the configuration file name
looked up in the store, the fixed commit identity, and the defaults used when
the configuration file is silent.
"""

# --- Identity ---
APP_NAME = "git-sync-backup"
"""str: The human-readable application name."""

CLI_NAME = "gsb"
"""str: The short name of the console script, used in commit messages."""

COMMIT_AUTHOR_NAME = "gsb"
"""str: The author and committer name for every commit created by collect."""

COMMIT_AUTHOR_EMAIL = "gsb@localhost"
"""str: The author and committer email for every commit created by collect."""

# --- Store Layout ---
CONFIG_FILENAME = ".gsb.config.toml"
"""str: The configuration file name expected at the root of the store."""

CONFIG_VERSION = "0.2.0"
"""str: The schema version written by `gsb init`."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / APP_NAME
"""Path: The directory for runtime state data (logs)."""

LOG_FILE = STATE_DIR / "gsb.log"
"""Path: The file path for the sync loop logs."""

CONFIG_DIR: Path = Path.home() / ".config" / APP_NAME
"""Path: The directory for per-user configuration files."""

DEVICE_ID_FILE: Path = CONFIG_DIR / "device_id"
"""Path: An optional file overriding the detected device identifier."""

# --- Environment ---
ENV_REPO = "GSB_REPO"
"""str: Environment variable naming the store root."""

ENV_DEVICE_ID = "GSB_DEVICE_ID"
"""str: Environment variable overriding the detected device identifier."""

ENV_LOG_LEVEL = "GSB_LOG_LEVEL"
"""str: Environment variable selecting the log level (e.g. 'DEBUG')."""

# --- Defaults ---
DEFAULT_SYNC_INTERVAL = 3600
"""int: Seconds between sync cycles."""

DEFAULT_REMOTE = "origin"
"""str: The git remote pulled from during sync."""

DEFAULT_BRANCH = "main"
"""str: The branch pulled during sync."""

DEFAULT_GIT_TIMEOUT = 300
"""int: Seconds before a network git operation (fetch, push) is abandoned."""

MAX_LOG_SIZE = 5 * 1024 * 1024
"""int: Max bytes for the log file before rotation."""

CHUNK_SIZE = 64 * 1024
"""int: Block size used when comparing file contents byte-for-byte."""
