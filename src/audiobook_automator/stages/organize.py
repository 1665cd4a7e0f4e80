"""Organize stage -- place the finished artifact in the library taxonomy."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

import click
from loguru import logger

from ..errors import AlreadyProcessed, DirectoryUnwritable
from ..models import ConversionJob
from ..ops.organize import move_to_library, nearest_existing

if TYPE_CHECKING:
    from ..config import PipelineConfig

log = logger.bind(stage="organize")


def check_destination(job: ConversionJob, config: PipelineConfig) -> None:
    """Refuse before converting if the result exists or cannot be written.

    Raises AlreadyProcessed when the destination file exists (unless
    config.force) and DirectoryUnwritable when the nearest existing
    ancestor of the target directory is not writable.
    """
    dest = job.destination
    if dest.exists() and not config.force:
        raise AlreadyProcessed(job.source_dir, f"{dest.name} already in library")

    anchor = nearest_existing(job.target_dir)
    if not anchor.is_dir() or not os.access(anchor, os.W_OK | os.X_OK):
        raise DirectoryUnwritable(anchor)
    log.debug(f"Destination ok: {dest} (anchor {anchor})")


def run(job: ConversionJob, artifact: Path, config: PipelineConfig) -> Path:
    """Move the temporary artifact to its library destination."""
    try:
        dest = move_to_library(
            artifact,
            job.target_dir,
            dest_filename=job.output_filename,
            dry_run=config.dry_run,
        )
    except PermissionError as e:
        raise DirectoryUnwritable(job.target_dir, str(e)) from e

    prefix = "  ORGANIZE (dry-run)" if config.dry_run else "  ORGANIZE"
    click.echo(f"{prefix}: {dest}")
    return dest
