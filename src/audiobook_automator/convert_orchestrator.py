"""Per-book conversion lifecycle.

ConvertOrchestrator.process(book_dir) takes one book directory from
inventory to a filed M4B:

    visited check -> inventory -> cover + metadata -> destination checks
    -> chapters -> mux (strategy fallback) -> validate -> move -> originals

Every failure is raised as a BookError subclass. The scratch directory is
always removed and the source files are only touched after the artifact
has been moved into place and passed the size guard.
"""

from __future__ import annotations

import tempfile
from pathlib import Path

import click
from loguru import logger

from .concurrency import check_disk_space
from .config import PipelineConfig
from .errors import AlreadyProcessed, DirectoryUnwritable, MetadataInsufficient, OutputTooSmall
from .models import BookOutcome, ConversionJob, Outcome, VisitedSet
from .ops.cover import download_cover, find_cover_art
from .ops.organize import build_output_filename, build_target_dir, categorize
from .sanitize import generate_book_hash
from .stages import cleanup, concat, convert, organize, validate
from .stages.metadata import MetadataResolver
from .supervisor import ProcessSupervisor

log = logger.bind(stage="orchestrator")


class _ProgressPrinter:
    """Echo conversion progress in 10% steps from the supervisor's reader thread."""

    def __init__(self, total_ms: int) -> None:
        self.total_seconds = total_ms / 1000
        self.last_step = -1

    def __call__(self, seconds: float) -> None:
        if self.total_seconds <= 0:
            return
        step = min(int(seconds * 100 / self.total_seconds), 100) // 10 * 10
        if step > self.last_step:
            self.last_step = step
            click.echo(f"  PROGRESS: {step}%")


class ConvertOrchestrator:
    """Sequences the stages for one book at a time.

    Attributes:
        config: Automator configuration
        visited: Per-run set of canonical book paths, owned by the caller
        resolver: Metadata cascade (built from config if not given)
        supervisor: Subprocess supervisor (built from config if not given)
    """

    def __init__(
        self,
        config: PipelineConfig,
        visited: VisitedSet | None = None,
        resolver: MetadataResolver | None = None,
        supervisor: ProcessSupervisor | None = None,
    ) -> None:
        self.config = config
        self.visited = visited if visited is not None else VisitedSet()
        self.resolver = resolver or MetadataResolver.from_config(config)
        self.supervisor = supervisor or ProcessSupervisor.from_config(config)

    def process(self, book_dir: Path) -> BookOutcome:
        """Convert one book directory. Raises BookError subclasses."""
        config = self.config
        if not self.visited.add(book_dir):
            raise AlreadyProcessed(book_dir, "already visited in this run")

        audio_files = validate.run(book_dir, config)

        cover = find_cover_art(book_dir)
        resolution = self.resolver.resolve(book_dir, audio_files, has_cover=cover is not None)
        if not resolution.sufficient:
            missing = [n for n in ("author", "title") if not resolution.identity.get(n)]
            raise MetadataInsufficient(book_dir, missing)
        identity = resolution.identity

        category = categorize(identity.genre, identity.series)
        job = ConversionJob(
            source_dir=book_dir.resolve(),
            audio_files=audio_files,
            identity=identity,
            target_dir=build_target_dir(config.output_dir, identity),
            output_filename=build_output_filename(identity),
            cover_path=cover,
        )
        organize.check_destination(job, config)

        if config.dry_run:
            return self._plan_only(book_dir, job, resolution.cover_url, str(category))

        config.work_dir.mkdir(parents=True, exist_ok=True)
        if not check_disk_space(audio_files, config.work_dir, config.disk_space_multiplier):
            raise DirectoryUnwritable(config.work_dir, "not enough free space")

        job.work_dir = Path(
            tempfile.mkdtemp(prefix=f"{generate_book_hash(book_dir)}-", dir=config.work_dir)
        )
        log.debug(f"Work dir for {book_dir.name}: {job.work_dir}")
        try:
            if job.cover_path is None and resolution.cover_url:
                job.cover_path = download_cover(resolution.cover_url, job.work_dir)

            job.chapters, _, metadata_txt = concat.run(audio_files, identity, job.work_dir)
            artifact = convert.run(
                job,
                config,
                self.supervisor,
                metadata_txt,
                on_progress=_ProgressPrinter(job.chapters.total_ms),
            )
            dest = organize.run(job, artifact, config)
        finally:
            cleanup.remove_work_dir(job.work_dir)

        detail = ""
        if config.delete_originals:
            detail = self._purge_originals(dest, audio_files, job.source_dir)
        return BookOutcome(book_dir, Outcome.CONVERTED, detail, dest, str(category))

    def _plan_only(self, book_dir: Path, job: ConversionJob, cover_url: str, category: str) -> BookOutcome:
        """Dry run: report the plan without creating scratch or library files."""
        job.work_dir = self.config.work_dir / f"{generate_book_hash(job.source_dir)}-dry-run"
        if job.cover_path is None and cover_url:
            log.info(f"[DRY-RUN] Would download cover: {cover_url}")
        job.chapters, _, metadata_txt = concat.run(
            job.audio_files, job.identity, job.work_dir, dry_run=True
        )
        artifact = convert.run(job, self.config, self.supervisor, metadata_txt)
        dest = organize.run(job, artifact, self.config)
        return BookOutcome(book_dir, Outcome.CONVERTED, "dry run", dest, category)

    def _purge_originals(self, dest: Path, audio_files: list[Path], book_dir: Path) -> str:
        try:
            result = cleanup.purge_originals(
                dest,
                audio_files,
                min_ratio=self.config.min_output_ratio,
                stop_at=book_dir,
            )
        except OutputTooSmall as e:
            log.warning(f"Keeping originals for {book_dir.name}: {e}")
            click.echo(f"  KEEP: originals retained ({e})")
            return "originals kept: output too small"
        click.echo(f"  CLEANUP: removed {len(result.deleted)} original files")
        if not result.ok:
            return f"{len(result.failed)} originals could not be deleted"
        return "originals deleted"
