"""Smart copy engine.

Copies files or mirrors directories forward from a source to a destination,
skipping files that are already up to date. The equality test is tiered so
that the common case (nothing changed) never opens file contents:

1. Size: differing sizes mean the files differ.
2. Modification time: equal whole-second mtimes on both ends mean unchanged.
3. Bytes: when an mtime is unreadable, or sizes match but mtimes do not, both
   files are streamed and compared chunk by chunk.

Hardlinked items use `link_item` instead, which either confirms both paths
already share one inode or replaces the destination with a new hardlink.
"""

import contextlib
import logging
import os
import shutil
from enum import Enum
from pathlib import Path

from .constants import APP_NAME, CHUNK_SIZE
from .errors import HardlinkFailed

logger = logging.getLogger(APP_NAME)


class LinkOutcome(str, Enum):
    """Result of a link-mode operation."""

    LINKED = "linked"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"


def read_mtime(path: Path) -> int | None:
    """Returns the whole-second modification time, or None if unreadable."""
    try:
        return int(path.stat().st_mtime)
    except OSError as e:
        logger.debug(f"mtime unavailable for {path}: {e}")
        return None


def contents_differ(a: Path, b: Path) -> bool:
    """Compares two files byte-for-byte in fixed-size chunks."""
    with open(a, "rb") as fa, open(b, "rb") as fb:
        while True:
            chunk_a = fa.read(CHUNK_SIZE)
            chunk_b = fb.read(CHUNK_SIZE)
            if chunk_a != chunk_b:
                return True
            if not chunk_a:
                return False


def files_differ(src: Path, dst: Path) -> bool:
    """Decides whether `dst` must be rewritten to match `src`.

    Args:
        src (Path): The source file.
        dst (Path): The existing destination file.

    Returns:
        bool: True if the files differ, False if `dst` is up to date.
    """
    if src.stat().st_size != dst.stat().st_size:
        return True

    src_mtime = read_mtime(src)
    dst_mtime = read_mtime(dst)
    if src_mtime is not None and dst_mtime is not None and src_mtime == dst_mtime:
        return False

    return contents_differ(src, dst)


def is_same_file(a: Path, b: Path) -> bool:
    """Checks whether two paths refer to the same underlying file."""
    try:
        return os.path.samefile(a, b)
    except OSError:
        return False


def _copy_file(src: Path, dst: Path) -> None:
    """Copies content and metadata through a temporary sibling, then swaps it in."""
    dst.parent.mkdir(parents=True, exist_ok=True)
    tmp_file = dst.with_name(f".{dst.name}.gsb-tmp")
    try:
        shutil.copy2(src, tmp_file)
        os.replace(tmp_file, dst)
    except BaseException:
        # The sibling must not survive into the store, even on interrupt.
        with contextlib.suppress(OSError):
            tmp_file.unlink()
        raise


def copy_item(src: Path, dst: Path) -> int:
    """Copies a file, or recursively mirrors a directory forward.

    Destination entries that do not exist in `src` are left in place:
    deletions are never propagated.

    Args:
        src (Path): The file or directory to copy from.
        dst (Path): The path to copy to.

    Returns:
        int: The number of files written.
    """
    if not src.exists():
        logger.info(f"Source does not exist, nothing to copy: {src}")
        return 0

    if src.is_dir():
        if dst.is_symlink() or (dst.exists() and not dst.is_dir()):
            dst.unlink()
        dst.mkdir(parents=True, exist_ok=True)
        written = 0
        with os.scandir(src) as entries:
            for entry in entries:
                written += copy_item(Path(entry.path), dst / entry.name)
        return written

    if not src.is_file():
        logger.warning(f"Skipping special file: {src}")
        return 0

    if dst.is_dir() and not dst.is_symlink():
        shutil.rmtree(dst)
    elif dst.exists() and not files_differ(src, dst):
        logger.debug(f"Unchanged: {dst}")
        return 0

    logger.debug(f"Copying {src} -> {dst}")
    _copy_file(src, dst)
    return 1


def link_item(src: Path, dst: Path, is_hardlink: bool = True) -> LinkOutcome:
    """Makes `dst` a hardlink of `src`.

    Args:
        src (Path): The existing file to link to.
        dst (Path): The path that should share `src`'s inode.
        is_hardlink (bool): Whether the item is declared as a hardlink, which
                            requires `src` to be a regular file.

    Returns:
        LinkOutcome: LINKED when a link was created, UNCHANGED when both paths
        already share one file, SKIPPED when `src` is unusable.

    Raises:
        HardlinkFailed: If the operating system refuses to create the link.
    """
    if not src.exists():
        logger.error(f"Cannot link missing source: {src}")
        return LinkOutcome.SKIPPED
    if is_hardlink and not src.is_file():
        logger.error(f"Hardlink source is not a regular file: {src}")
        return LinkOutcome.SKIPPED

    if dst.exists() and is_same_file(src, dst):
        logger.debug(f"Already linked: {dst}")
        return LinkOutcome.UNCHANGED

    if dst.is_dir() and not dst.is_symlink():
        shutil.rmtree(dst)
    with contextlib.suppress(OSError):
        dst.unlink()
    dst.parent.mkdir(parents=True, exist_ok=True)
    try:
        os.link(src, dst)
    except OSError as e:
        raise HardlinkFailed(src, dst, e.strerror or str(e)) from e
    return LinkOutcome.LINKED
