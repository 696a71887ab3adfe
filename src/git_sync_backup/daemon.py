import logging
import os
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path

from . import ops
from .config import Config
from .constants import APP_NAME, ENV_LOG_LEVEL, LOG_FILE, MAX_LOG_SIZE
from .errors import GsbError, ItemsFailed, StoreMergeConflict
from .git_wrapper import GitRepo

logger = logging.getLogger(APP_NAME)


def setup_logging(daemon_mode: bool = False, verbose: bool = False) -> None:
    """Configures the logging subsystem.

    Args:
        daemon_mode (bool): If True, logs to stderr and to a rotating file.
                            If False, logs to stdout only.
        verbose (bool): Whether to log at DEBUG level. Otherwise the level comes
                        from GSB_LOG_LEVEL, defaulting to INFO.
    """
    level_name = "DEBUG" if verbose else os.environ.get(ENV_LOG_LEVEL, "INFO")
    level = logging.getLevelName(level_name.upper())
    logger.setLevel(level if isinstance(level, int) else logging.INFO)

    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    # Replace handlers from an earlier call instead of stacking duplicates.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    stream_handler = logging.StreamHandler(sys.stderr if daemon_mode else sys.stdout)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if daemon_mode:
        try:
            LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                LOG_FILE, maxBytes=MAX_LOG_SIZE, backupCount=5
            )
        except OSError as e:
            logger.warning(f"Could not open log file {LOG_FILE}: {e}")
        else:
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)


def run_cycle(config: Config, repo: GitRepo, device_id: str) -> bool:
    """Runs one pull-then-restore cycle, containing every failure.

    Args:
        config (Config): The store configuration.
        repo (GitRepo): The store.
        device_id (str): The canonical id of this device.

    Returns:
        bool: True if both pull and restore succeeded.
    """
    try:
        outcome = repo.pull(config.git.remote, config.git.branch)
        logger.info(f"Pull finished ({outcome.value}), now restoring files...")
    except StoreMergeConflict as e:
        logger.error(f"CONFLICT: {e}")
        return False
    except GsbError as e:
        logger.error(f"Failed to pull from remote: {e}")
        return False
    except Exception:
        logger.exception("PULL ERROR: unexpected failure")
        return False

    try:
        ops.restore(config, repo.path, device_id)
    except ItemsFailed as e:
        logger.error(f"Failed to restore after pull: {e}")
        return False
    except Exception:
        logger.exception("RESTORE ERROR: unexpected failure")
        return False

    return True


def run_sync(config: Config, repo_root: Path, device_id: str) -> None:
    """The sync loop: pull, restore, sleep, forever.

    A failed cycle is logged and retried after the configured interval; the
    loop only ends when the process is terminated.

    Args:
        config (Config): The store configuration.
        repo_root (Path): The store root.
        device_id (str): The canonical id of this device.

    Raises:
        StoreAccessError: If the store cannot be opened at startup.
    """
    repo = GitRepo(repo_root, timeout=config.git.timeout)
    interval = config.sync_interval
    logger.info(f"Starting sync process. Interval: {interval} seconds.")

    while True:
        logger.info("Running sync cycle...")
        run_cycle(config, repo, device_id)
        logger.info(f"Sync cycle finished. Sleeping for {interval}s...")
        time.sleep(interval)
