"""Library taxonomy: genre/series -> category path, output naming, relocation.

Layout: <root>/<Category>[/<Subcategory>]/<Author>/<Author> - [<Series> <N> - ]<Title>.m4b
"""

from __future__ import annotations

import re
import shutil
from collections.abc import Callable
from pathlib import Path

from loguru import logger

from ..models import OUTPUT_EXTENSION, BookIdentity, Provenance
from ..sanitize import sanitize_filename

log = logger.bind(stage="organize-ops")

UNSORTED = "Unsorted"


def _has(*words: str):
    return lambda g: any(w in g for w in words)


# Ordered (predicate on lowercased genre, category path). First hit wins.
# Non-fiction is tested before generic fiction so "non-fiction" never
# lands in Fiction/General.
CATEGORY_TABLE: list[tuple[Callable[[str], bool], str]] = [
    (_has("fantasy"), "Fiction/Fantasy"),
    (_has("sci-fi", "science fiction", "scifi"), "Fiction/ScienceFiction"),
    (_has("mystery", "thriller", "crime", "detective"), "Fiction/Mystery&Thriller"),
    (lambda g: "histor" in g and "fiction" in g and not _is_nonfiction(g), "Fiction/Historical"),
    (_has("histor"), "NonFiction/History"),
    (_has("romance"), "Fiction/Romance"),
    (_has("biography", "memoir", "autobiography"), "NonFiction/Biography"),
    (_has("science"), "NonFiction/Science"),
    (_has("self-help", "self help", "personal development"), "NonFiction/SelfHelp"),
    (_has("business", "economics", "finance"), "NonFiction/Business"),
    (_has("children", "kids", "juvenile"), "Children"),
    (lambda g: _is_nonfiction(g), "NonFiction/General"),
    (_has("fiction"), "Fiction/General"),
]


def _is_nonfiction(genre: str) -> bool:
    return bool(re.search(r"non[\s-]?fiction", genre))


def categorize(genre: str, series: str = "") -> Path:
    """Map genre/series to a relative category path."""
    if series:
        return Path("Series") / sanitize_filename(series)
    g = (genre or "").lower()
    for predicate, category in CATEGORY_TABLE:
        if predicate(g):
            log.debug(f"categorize: genre={genre!r} -> {category}")
            return Path(category)
    return Path(UNSORTED)


def build_target_dir(library_root: Path, identity: BookIdentity) -> Path:
    """Category path plus an author folder when the author is known."""
    target = library_root / categorize(identity.genre, identity.series)
    if identity.author and identity.source("author") is not Provenance.DEFAULT:
        author = sanitize_filename(identity.author, fallback="")
        if author:
            target = target / _reuse_existing(target, author)
    return target


def build_output_filename(identity: BookIdentity) -> str:
    """'{author} - [{series} {part} - ]{title}.m4b', sanitized."""
    parts = [identity.author or "Unknown Author"]
    if identity.series:
        series = identity.series
        if identity.series_part:
            series = f"{series} {identity.series_part}"
        parts.append(series)
    parts.append(identity.title or "Unknown Title")
    return sanitize_filename(" - ".join(parts)) + OUTPUT_EXTENSION


def move_to_library(
    source_file: Path,
    dest_dir: Path,
    dest_filename: str | None = None,
    dry_run: bool = False,
) -> Path:
    """Move a finished artifact into the library.

    Creates the destination directory tree. Uses shutil.move so the scratch
    directory may live on another filesystem. Returns the destination path.
    """
    filename = dest_filename if dest_filename else source_file.name
    dest_file = dest_dir / filename

    if dry_run:
        log.info(f"[DRY-RUN] Would move {source_file.name} -> {dest_file}")
        return dest_file

    dest_dir.mkdir(parents=True, exist_ok=True)
    log.info(f"Move {source_file} -> {dest_file}")
    shutil.move(str(source_file), str(dest_file))
    return dest_file


def cleanup_empty_parents(directory: Path, stop_at: Path | None) -> None:
    """Remove empty directories from `directory` upwards, stopping at stop_at.

    Both paths are compared resolved; nothing outside stop_at is touched.
    """
    current = directory.resolve()
    if stop_at is not None:
        stop_at = stop_at.resolve()
        if not current.is_relative_to(stop_at):
            log.warning(f"Not pruning {current}: outside {stop_at}")
            return
    while current != stop_at and current != current.parent:
        try:
            if current.is_dir() and not any(current.iterdir()):
                log.debug(f"Removed empty dir: {current}")
                current.rmdir()
            else:
                break
        except OSError:
            break
        current = current.parent


def nearest_existing(path: Path) -> Path:
    while not path.exists() and path != path.parent:
        path = path.parent
    return path


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _normalize_for_compare(name: str) -> str:
    """Normalize a folder name for duplicate comparison.

    "Tolkien, J.R.R." and "J R R Tolkien" normalize to the same token set.
    """
    s = name.lower()
    s = re.sub(r"[^\w\s]", " ", s)
    return re.sub(r"\s+", " ", s).strip()


def _reuse_existing(parent: Path, desired: str) -> str:
    """Return an existing sibling folder whose tokens match `desired`, else desired."""
    if not parent.is_dir():
        return desired
    if (parent / desired).exists():
        return desired
    desired_tokens = set(_normalize_for_compare(desired).split())
    if len(desired_tokens) < 2:
        return desired
    for existing in sorted(parent.iterdir()):
        if existing.is_dir() and set(_normalize_for_compare(existing.name).split()) == desired_tokens:
            log.debug(f"Near-match found: '{desired}' -> '{existing.name}'")
            return existing.name
    return desired
