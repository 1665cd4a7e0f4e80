"""Concat stage -- chapter planning and ffmpeg input files.

Writes two files into the job's scratch directory:
1. files.txt    -- ffmpeg concat demuxer list (one ``file '...'`` per input)
2. metadata.txt -- FFMETADATA1 with book tags and one [CHAPTER] per input

Chapters are contiguous: each starts where the previous one ended. A file
whose duration cannot be probed becomes a zero-length chapter instead of
failing the book.
"""

from __future__ import annotations

import re
from pathlib import Path

import click
from loguru import logger

from ..ffprobe import duration_to_timestamp, get_duration
from ..models import BookIdentity, Chapter, ChapterPlan
from ..sanitize import escape_ffmetadata, sanitize_chapter_title

log = logger.bind(stage="concat")


def chapter_title(audio_file: Path) -> str:
    """Human chapter title from a filename; '07' becomes 'Chapter 07'."""
    stem = audio_file.stem.strip()
    if stem.isdigit():
        return f"Chapter {stem}"
    return sanitize_chapter_title(stem) or stem


def probe_duration_ms(audio_file: Path) -> int:
    """Duration in milliseconds, or 0 (with a warning) if it cannot be probed."""
    try:
        return max(int(get_duration(audio_file) * 1000), 0)
    except (ValueError, OSError) as e:
        log.warning(f"Duration unknown for {audio_file.name}, using 0: {e}")
        return 0


def plan_chapters(audio_files: list[Path]) -> ChapterPlan:
    """One chapter per file, in order, with cumulative millisecond offsets."""
    chapters = []
    cumulative_ms = 0
    for audio_file in audio_files:
        duration_ms = probe_duration_ms(audio_file)
        chapters.append(
            Chapter(
                title=chapter_title(audio_file),
                start_ms=cumulative_ms,
                end_ms=cumulative_ms + duration_ms,
            )
        )
        cumulative_ms += duration_ms
    plan = ChapterPlan(chapters)
    log.debug(f"Planned {len(plan)} chapters, total {plan.total_ms} ms")
    return plan


def write_concat_list(audio_files: list[Path], path: Path) -> Path:
    """Write an ffmpeg concat demuxer file. Single quotes become '\\''."""
    lines = []
    for audio_file in audio_files:
        escaped_path = str(audio_file).replace("'", "'\\''")
        lines.append(f"file '{escaped_path}'")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    log.debug(f"Wrote {len(audio_files)} entries to {path.name}")
    return path


def write_ffmetadata(plan: ChapterPlan, identity: BookIdentity, path: Path) -> Path:
    """Write an FFMETADATA1 file with header tags and chapter markers."""
    lines = [";FFMETADATA1"]
    for key, value in (
        ("title", identity.title),
        ("artist", identity.author),
        ("album", identity.title),
    ):
        if value:
            lines.append(f"{key}={escape_ffmetadata(value)}")
    lines.append("")

    for chapter in plan.chapters:
        lines.extend(
            [
                "[CHAPTER]",
                "TIMEBASE=1/1000",
                f"START={chapter.start_ms}",
                f"END={chapter.end_ms}",
                f"title={escape_ffmetadata(chapter.title)}",
                "",
            ]
        )

    path.write_text("\n".join(lines), encoding="utf-8")
    log.debug(f"Wrote {len(plan)} chapters to {path.name}")
    return path


def run(
    audio_files: list[Path],
    identity: BookIdentity,
    work_dir: Path,
    dry_run: bool = False,
) -> tuple[ChapterPlan, Path, Path]:
    """Plan chapters and write files.txt + metadata.txt into work_dir.

    With dry_run the paths are returned but nothing is written.
    """
    plan = plan_chapters(audio_files)
    files_txt = work_dir / "files.txt"
    metadata_txt = work_dir / "metadata.txt"
    if not dry_run:
        write_concat_list(audio_files, files_txt)
        write_ffmetadata(plan, identity, metadata_txt)
    click.echo(
        f"  CONCAT: {len(plan)} chapters, "
        f"{duration_to_timestamp(plan.total_ms / 1000)} total"
    )
    return plan, files_txt, metadata_txt


_SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]")


def safe_link_name(index: int, audio_file: Path) -> str:
    """Name for a symlink that hides awkward characters from the concat demuxer."""
    suffix = _SAFE_NAME_RE.sub("", audio_file.suffix.lower()) or ".audio"
    return f"{index:04d}{suffix}"
