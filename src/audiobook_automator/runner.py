"""Batch runner -- discovers book directories and drives the orchestrator."""

from __future__ import annotations

import os
import re
import shutil
import time
from pathlib import Path

import click
from loguru import logger

from .concurrency import acquire_global_lock
from .config import PipelineConfig
from .convert_orchestrator import ConvertOrchestrator
from .errors import AlreadyProcessed, BookError, InvalidInputPath
from .models import AUDIO_EXTENSIONS, BatchResult, BookOutcome, Outcome, VisitedSet

log = logger.bind(stage="runner")

# Sub-folders that split one book across discs
_DISC_DIR_RE = re.compile(r"^(?:cd|disc|disk|part)[\s_-]*\d+$", re.IGNORECASE)


def _has_audio(filenames: list[str]) -> bool:
    return any(
        Path(f).suffix.lower() in AUDIO_EXTENSIONS and not f.startswith(".")
        for f in filenames
    )


def _find_book_directories(
    root: Path,
    recursive: bool = False,
    exclude: tuple[Path, ...] = (),
) -> list[Path]:
    """Find book root directories under root.

    A "book directory" is the first directory in a subtree that contains
    audio files. Once found, its children are pruned (not descended into).
    With recursive=True a directory whose sub-folders are all disc folders
    (CD1, Disc 2, Part 3) is itself the book and its nested audio is
    enumerated by the inventory stage.

    Symlinked directories are followed; a real directory reached twice is
    reported again (the visited set turns it into a skip) but its subtree
    is not walked twice.
    """
    excluded = {p.resolve() for p in exclude}
    walked: set[Path] = set()
    book_dirs: list[Path] = []

    for dirpath, dirnames, filenames in os.walk(root, followlinks=True):
        current = Path(dirpath)
        real = current.resolve()
        if real in excluded:
            dirnames.clear()
            continue
        dirnames.sort()
        revisit = real in walked
        walked.add(real)

        disc_set = bool(dirnames) and all(_DISC_DIR_RE.match(d) for d in dirnames)
        if _has_audio(filenames) or (recursive and disc_set):
            book_dirs.append(current)
            # Prune children so os.walk doesn't descend into subdirs
            dirnames.clear()
        elif revisit:
            dirnames.clear()

    return sorted(book_dirs)


def _purge_stale_work_dirs(work_dir: Path, max_age: float) -> int:
    """Remove scratch directories left behind by crashed runs."""
    if not work_dir.is_dir():
        return 0
    cutoff = time.time() - max_age
    removed = 0
    for d in work_dir.iterdir():
        if d.is_dir() and d.stat().st_mtime < cutoff:
            shutil.rmtree(d, ignore_errors=True)
            removed += 1
    if removed:
        log.info(f"Removed {removed} stale work dirs from {work_dir}")
    return removed


class PipelineRunner:
    """Runs the automator over every book directory under a source path."""

    def __init__(self, config: PipelineConfig, orchestrator: ConvertOrchestrator | None = None) -> None:
        self.config = config
        self.visited = orchestrator.visited if orchestrator else VisitedSet()
        self.orchestrator = orchestrator or ConvertOrchestrator(config, visited=self.visited)

    def run(self, source_path: Path, skip_lock: bool = False) -> BatchResult:
        """Process each book directory in turn; one failure never stops the batch.

        Raises InvalidInputPath if source_path is not a directory and
        LockError if another run holds the lock.
        """
        if not source_path.is_dir():
            raise InvalidInputPath(source_path)

        lock = acquire_global_lock(self.config.lock_dir, skip=skip_lock or self.config.dry_run)
        try:
            if not self.config.dry_run:
                self.config.ensure_dirs()
            _purge_stale_work_dirs(self.config.work_dir, max_age=self.config.convert_timeout * 2)
            book_dirs = _find_book_directories(
                source_path,
                recursive=self.config.recursive,
                exclude=(self.config.output_dir, self.config.work_dir),
            )
            click.echo(f"Found {len(book_dirs)} books in {source_path}")
            if self.config.dry_run:
                click.echo("[DRY-RUN] No changes will be made")

            result = BatchResult()
            for i, book_dir in enumerate(book_dirs, 1):
                click.echo(f"\n[{i}/{len(book_dirs)}] {book_dir.name}")
                outcome = self._run_single(book_dir)
                result.record(outcome)
                self._echo_outcome(outcome)
        finally:
            if lock is not None:
                lock.close()

        self._display_summary(result)
        return result

    def _run_single(self, book_dir: Path) -> BookOutcome:
        try:
            return self.orchestrator.process(book_dir)
        except AlreadyProcessed as e:
            log.info(f"Skip {book_dir.name}: {e.reason}")
            return BookOutcome(book_dir, Outcome.SKIPPED, e.reason)
        except BookError as e:
            log.error(f"{book_dir.name}: {e}")
            return BookOutcome(book_dir, Outcome.FAILED, str(e))
        except Exception as e:
            log.exception(f"Unexpected error processing {book_dir.name}")
            return BookOutcome(book_dir, Outcome.FAILED, f"{type(e).__name__}: {e}")

    @staticmethod
    def _echo_outcome(outcome: BookOutcome) -> None:
        name = outcome.source_dir.name
        if outcome.outcome == Outcome.CONVERTED:
            note = f" ({outcome.detail})" if outcome.detail else ""
            click.echo(f"  OK: {name} -> {outcome.output}{note}")
        elif outcome.outcome == Outcome.SKIPPED:
            click.echo(f"  SKIP: {name}: {outcome.detail}")
        else:
            click.echo(f"  FAIL: {name}: {outcome.detail}")

    @staticmethod
    def _display_summary(result: BatchResult) -> None:
        click.echo(
            f"\nBatch complete: {result.converted} converted, "
            f"{result.skipped} skipped, {result.failed} failed "
            f"(of {result.total})"
        )
        for category, count in sorted(result.by_category.items()):
            click.echo(f"  {category}: {count}")
