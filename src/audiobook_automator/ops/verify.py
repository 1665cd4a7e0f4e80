"""Post-run verification of the converted library.

Scans every .m4b under a library root for problems that a successful
ffmpeg exit does not rule out:
- empty files
- containers that are not mp4/mov
- missing chapter markers
- missing embedded cover art
- books that landed in Unsorted
"""

from __future__ import annotations

from pathlib import Path

import click
from loguru import logger

from ..ffprobe import count_chapters, get_format_name, has_attached_picture
from ..models import OUTPUT_EXTENSION
from .organize import UNSORTED

log = logger.bind(stage="verify")


def check_book(book: Path) -> list[str]:
    """Return the problems found in one converted book (empty if clean)."""
    if book.stat().st_size == 0:
        return ["empty file"]

    issues = []
    format_name = get_format_name(book)
    if "mp4" not in format_name and "mov" not in format_name:
        issues.append(f"unexpected container {format_name or 'unknown'!r}")
    if count_chapters(book) == 0:
        issues.append("no chapters")
    if not has_attached_picture(book):
        issues.append("no cover art")
    return issues


def verify_library(library_root: Path) -> dict:
    """Scan a library directory and return verification findings.

    Returns dict with keys:
        problems: list of {path, issues: [str]}
        unsorted: list of paths under Unsorted/
        summary: {total_books, issues: int}
    """
    if not library_root.is_dir():
        return {
            "problems": [],
            "unsorted": [],
            "summary": {"total_books": 0, "issues": 0},
        }

    problems = []
    unsorted_books = []
    books = sorted(p for p in library_root.rglob(f"*{OUTPUT_EXTENSION}") if p.is_file())
    for book in books:
        rel = book.relative_to(library_root)
        if rel.parts[0] == UNSORTED:
            unsorted_books.append(str(rel))
        issues = check_book(book)
        if issues:
            log.debug(f"{rel}: {', '.join(issues)}")
            problems.append({"path": str(rel), "issues": issues})

    return {
        "problems": problems,
        "unsorted": unsorted_books,
        "summary": {
            "total_books": len(books),
            "issues": len(problems) + len(unsorted_books),
        },
    }


def print_report(results: dict) -> None:
    """Print a human-readable verification report."""
    summary = results.get("summary", {})
    click.echo("\nLibrary Verification Report")
    click.echo(f"{'=' * 50}")
    click.echo(f"Books: {summary.get('total_books', '?')}")
    click.echo(f"Issues: {summary.get('issues', '?')}")

    problems = results.get("problems", [])
    if problems:
        click.echo(f"\nDamaged or Incomplete Books ({len(problems)})")
        click.echo("-" * 50)
        for p in problems:
            click.echo(f"  {p['path']}: {', '.join(p['issues'])}")

    unsorted = results.get("unsorted", [])
    if unsorted:
        click.echo(f"\nBooks in {UNSORTED} ({len(unsorted)})")
        click.echo("-" * 50)
        for path in unsorted:
            click.echo(f"  {path}")

    if not problems and not unsorted:
        click.echo("\nNo issues found.")
