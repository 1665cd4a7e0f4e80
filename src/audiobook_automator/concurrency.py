"""Global run lock and disk space checks."""

import shutil
import sys
from pathlib import Path

from loguru import logger

from .errors import LockError

log = logger.bind(stage="concurrency")


def acquire_global_lock(lock_dir: Path, skip: bool = False) -> object | None:
    """Acquire a global file lock so two runs never share a library.

    Returns the lock file handle (keep reference to maintain lock),
    or None if locking was skipped.
    Raises LockError if another instance holds the lock.
    """
    if skip:
        log.debug("Skipping lock acquisition")
        return None

    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_file = lock_dir / "automator.lock"

    fh = open(lock_file, "w")
    try:
        if sys.platform == "win32":
            import msvcrt

            msvcrt.locking(fh.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            import fcntl

            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        fh.close()
        log.warning(f"Failed to acquire lock at {lock_file}")
        raise LockError("Another automator instance is running")
    log.info(f"Lock acquired at {lock_file}")
    return fh


def check_disk_space(files: list[Path], work_dir: Path, multiplier: int = 3) -> bool:
    """Check that work_dir has room for multiplier * combined size of files.

    The nearest existing ancestor of work_dir is measured, so this works
    before the scratch directory is created.
    """
    source_size = sum(f.stat().st_size for f in files if f.is_file())
    required = source_size * multiplier

    existing = work_dir
    while not existing.exists() and existing != existing.parent:
        existing = existing.parent
    usage = shutil.disk_usage(existing)
    result = usage.free >= required

    log.debug(
        f"Disk space check: required={required:,} bytes, "
        f"free={usage.free:,} bytes, sufficient={result}"
    )
    return result
