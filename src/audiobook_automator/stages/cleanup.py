"""Cleanup stage -- guarded deletion of originals and scratch removal.

Originals are deleted only when the artifact holds at least half of the
combined source size. Anything smaller is treated as a truncated or
corrupt output, and every source file stays where it is.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from ..errors import OutputTooSmall
from ..ops.organize import cleanup_empty_parents

log = logger.bind(stage="cleanup")


@dataclass
class CleanupResult:
    deleted: list[Path] = field(default_factory=list)
    failed: list[Path] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def check_output_size(output: Path, originals: list[Path], min_ratio: float = 0.5) -> int:
    """Raise OutputTooSmall unless output >= min_ratio * sum(originals).

    Returns the combined size of the originals.
    """
    source_size = sum(f.stat().st_size for f in originals if f.exists())
    output_size = output.stat().st_size if output.is_file() else 0
    if not output.is_file() or output_size < source_size * min_ratio:
        raise OutputTooSmall(output, output_size, source_size)
    log.debug(f"Size check passed: {output_size:,} of {source_size:,} bytes")
    return source_size


def purge_originals(
    output: Path,
    originals: list[Path],
    min_ratio: float = 0.5,
    stop_at: Path | None = None,
) -> CleanupResult:
    """Delete source files after the size check passes.

    Raises OutputTooSmall, with no file touched, when the check fails.
    Directories emptied by the deletion are removed up to stop_at.
    """
    check_output_size(output, originals, min_ratio)

    result = CleanupResult()
    for f in originals:
        try:
            f.unlink()
            result.deleted.append(f)
        except OSError as e:
            log.warning(f"Could not delete {f}: {e}")
            result.failed.append(f)

    for parent in sorted({f.parent for f in result.deleted}, reverse=True):
        cleanup_empty_parents(parent, stop_at)

    log.info(f"Deleted {len(result.deleted)} original files ({len(result.failed)} failed)")
    return result


def remove_work_dir(work_dir: Path | None) -> None:
    """Remove a job's scratch directory; a missing directory is fine."""
    if work_dir is None or not work_dir.exists():
        return
    shutil.rmtree(work_dir, ignore_errors=True)
    log.debug(f"Removed work dir: {work_dir}")
