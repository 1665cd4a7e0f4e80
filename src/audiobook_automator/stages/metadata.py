"""Metadata stage -- resolve a book's identity through a cascade of sources.

Sources, highest priority first (see models.Provenance):
    directory name -> cover.txt sidecar -> first filename -> embedded tags
    -> parent-directory collection hint -> structural special cases
    -> prompt/defaults -> online lookup

Every write goes through BookIdentity.set, so a later, lower-priority
source can only fill gaps or replace a value from an even weaker source.
A USER_INPUT value is never replaced.
"""

from __future__ import annotations

import functools
import re
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import click
from loguru import logger

from ..api.search import OnlineRecord, lookup_book
from ..ffprobe import extract_author_from_tags, extract_year, get_tags
from ..models import (
    DEFAULT_GENRE,
    UNKNOWN_AUTHOR,
    UNKNOWN_TITLE,
    BookIdentity,
    Provenance,
)
from ..ops.patterns import (
    SERIES_SUFFIX_RE,
    complete_series_title,
    match_filename,
    match_parent_hint,
    parse_directory_name,
)
from ..ops.sidecar import read_sidecar

if TYPE_CHECKING:
    from ..config import PipelineConfig

log = logger.bind(stage="metadata")

Prompt = Callable[[str], str]
Lookup = Callable[[str, str], "OnlineRecord | None"]

# Genre tags that say nothing about the book
_GENERIC_GENRES = frozenset({"audiobook", "audiobooks", "audio book", "spoken word", "other"})

# "Author - Series" with no hyphen inside either half
_AUTHOR_SERIES_RE = re.compile(r"^([^-]+) - ([^-]+)$")

# A title that looks like it belongs to a series we have not identified
_SERIES_HINT_RE = re.compile(
    r"(Series|Cycle|Trilogy|Universe|Verse|Saga)$"
    r"|\b(?:Book|Part|Vol\.?|Volume)\s*\d+"
    r"|#\d+",
    re.IGNORECASE,
)


@dataclass
class Resolution:
    identity: BookIdentity
    sufficient: bool
    cover_url: str = ""
    lookup_attempted: bool = False


def _click_prompt(label: str) -> str:
    return click.prompt(label, default="", show_default=False).strip()


class MetadataResolver:
    """Stateless across books; one resolve() call per book directory."""

    def __init__(
        self,
        interactive: bool = False,
        prompt: Prompt | None = None,
        lookup: Lookup | None = None,
    ) -> None:
        self.interactive = interactive
        self.prompt = prompt or _click_prompt
        self.lookup = lookup

    @classmethod
    def from_config(cls, config: PipelineConfig) -> MetadataResolver:
        lookup = None
        if config.online_lookup:
            lookup = functools.partial(
                lookup_book,
                region=config.audible_region,
                threshold=config.lookup_threshold,
            )
        return cls(interactive=not config.non_interactive, lookup=lookup)

    def resolve(
        self,
        book_dir: Path,
        audio_files: list[Path],
        has_cover: bool = False,
    ) -> Resolution:
        identity = BookIdentity()
        dir_name = book_dir.name

        self._apply(identity, parse_directory_name(dir_name), Provenance.DIRECTORY_NAME)
        self._apply(identity, read_sidecar(book_dir), Provenance.SIDECAR)
        if audio_files:
            self._apply(identity, match_filename(audio_files[0].stem), Provenance.FILENAME_PATTERN)
            self._apply(identity, self._read_tags(audio_files[0]), Provenance.EMBEDDED_TAG)
        self._apply(
            identity,
            match_parent_hint(book_dir.parent.name) or {},
            Provenance.PARENT_DIRECTORY_HINT,
        )
        self._structural_cases(identity, dir_name)
        self._fallback(identity, dir_name)

        cover_url = ""
        attempted = False
        if self.lookup is not None and self._needs_lookup(identity, dir_name, has_cover):
            attempted = True
            cover_url = self._online(identity)

        missing = [name for name in ("author", "title") if not identity.get(name)]
        if missing:
            log.warning(f"{dir_name}: unresolved {', '.join(missing)}")
        else:
            log.info(
                f"Resolved {dir_name!r}: author={identity.author!r} "
                f"({identity.source('author')}), title={identity.title!r} "
                f"({identity.source('title')})"
            )
        return Resolution(identity, not missing, cover_url, attempted)

    @staticmethod
    def _apply(identity: BookIdentity, values: dict[str, str], source: Provenance) -> None:
        changed = identity.merge(values, source)
        if changed:
            log.debug(f"{source}: set {', '.join(changed)}")

    @staticmethod
    def _read_tags(first_file: Path) -> dict[str, str]:
        tags = get_tags(first_file)
        if not tags:
            return {}
        author = extract_author_from_tags(tags)
        narrator = (tags.get("composer") or "").strip()
        genre = (tags.get("genre") or "").strip()
        return {
            "author": author,
            "title": tags.get("title") or tags.get("album") or "",
            "narrator": narrator if narrator != author else "",
            "series": tags.get("show", ""),
            "series_part": tags.get("episode_id", ""),
            "year": extract_year(tags.get("date", "")),
            "genre": "" if genre.lower() in _GENERIC_GENRES else genre,
        }

    def _structural_cases(self, identity: BookIdentity, dir_name: str) -> None:
        source = Provenance.DIRECTORY_NAME

        m = _AUTHOR_SERIES_RE.match(dir_name)
        if m and not identity.title:
            series = m.group(2).strip()
            identity.set("author", m.group(1).strip(), source)
            identity.set("series", series, source)
            identity.set("title", complete_series_title(series), source)

        if identity.author and not identity.series and SERIES_SUFFIX_RE.search(dir_name):
            identity.set("series", _strip_author_prefix(dir_name, identity.author), source)

        if identity.author and not identity.title:
            rest = _strip_author_prefix(dir_name, identity.author)
            if rest != dir_name and rest:
                identity.set("title", rest, source)
            elif identity.series:
                title = (
                    f"{identity.series} {identity.series_part}"
                    if identity.series_part
                    else complete_series_title(identity.series)
                )
                identity.set("title", title, source)

    def _fallback(self, identity: BookIdentity, dir_name: str) -> None:
        for name, default in (("author", UNKNOWN_AUTHOR), ("title", UNKNOWN_TITLE)):
            if identity.get(name):
                continue
            if self.interactive:
                value = self.prompt(f"{name.capitalize()} for '{dir_name}'")
                identity.set(name, value, Provenance.USER_INPUT)
            else:
                identity.set(name, default, Provenance.DEFAULT)
                log.info(f"{dir_name}: no {name} found, using {default!r}")
        identity.set("genre", DEFAULT_GENRE, Provenance.DEFAULT)

    @staticmethod
    def _needs_lookup(identity: BookIdentity, dir_name: str, has_cover: bool) -> bool:
        if not (identity.is_known("title") and identity.is_known("author")):
            return False
        series_expected = not identity.series and bool(
            _SERIES_HINT_RE.search(identity.title) or _SERIES_HINT_RE.search(dir_name)
        )
        return series_expected or not has_cover

    def _online(self, identity: BookIdentity) -> str:
        record = self.lookup(identity.title, identity.author)
        if record is None:
            return ""
        self._apply(identity, record.identity_fields(), Provenance.ONLINE_LOOKUP)
        return record.cover_url


def _strip_author_prefix(name: str, author: str) -> str:
    """'Author - Rest' -> 'Rest'; unchanged if name does not start with author."""
    if author and name.lower().startswith(author.lower()):
        return name[len(author):].lstrip(" -_.").strip()
    return name
