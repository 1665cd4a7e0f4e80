"""Validation stage -- inventories a book directory's audio files.

Produces the ordered AudioFileList that every later stage consumes, and
recognizes directories that already hold a finished chaptered container.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

import click
from loguru import logger

from ..errors import AlreadyProcessed, NoAudioFiles
from ..ffprobe import count_chapters
from ..models import AUDIO_EXTENSIONS, OUTPUT_EXTENSION

if TYPE_CHECKING:
    from ..config import PipelineConfig

log = logger.bind(stage="validate")


def _is_candidate(path: Path) -> bool:
    if path.name.startswith("."):  # hidden files and AppleDouble ._ forks
        return False
    if path.suffix.lower() not in AUDIO_EXTENSIONS:
        return False
    return path.is_file() and os.access(path, os.R_OK)


def find_audio_files(book_dir: Path, recursive: bool = False) -> list[Path]:
    """Absolute audio file paths in book_dir, sorted lexicographically.

    Flat listings sort by filename; recursive listings sort by the path
    relative to book_dir so CD1/01.mp3 precedes CD2/01.mp3.
    """
    book_dir = book_dir.resolve()
    if recursive:
        candidates = [p for p in book_dir.rglob("*") if _is_candidate(p)]
        candidates.sort(key=lambda p: p.relative_to(book_dir).parts)
    else:
        candidates = [p for p in book_dir.iterdir() if _is_candidate(p)]
        candidates.sort(key=lambda p: p.name)
    log.debug(f"Found {len(candidates)} audio files in {book_dir.name}")
    return candidates


def find_prebuilt_container(audio_files: list[Path]) -> Path | None:
    """First .m4b that already carries chapters, i.e. a finished book."""
    for f in audio_files:
        if f.suffix.lower() == OUTPUT_EXTENSION and count_chapters(f) > 0:
            return f
    return None


def run(book_dir: Path, config: PipelineConfig) -> list[Path]:
    """Inventory a book directory.

    Raises AlreadyProcessed when a chaptered .m4b is present (unless
    config.force) and NoAudioFiles when nothing usable is found.
    """
    audio_files = find_audio_files(book_dir, recursive=config.recursive)

    if not config.force:
        prebuilt = find_prebuilt_container(audio_files)
        if prebuilt is not None:
            raise AlreadyProcessed(book_dir, f"already contains {prebuilt.name}")

    if not audio_files:
        raise NoAudioFiles(book_dir)

    total_bytes = sum(f.stat().st_size for f in audio_files)
    click.echo(
        f"  VALIDATE: {len(audio_files)} audio files, "
        f"{total_bytes / 1_048_576:.1f} MB"
    )
    return audio_files
