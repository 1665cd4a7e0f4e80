"""Pattern matchers that turn directory and file names into partial identities.

Every matcher is a pure function ``(name) -> dict | None``. The returned
dict only carries identity field names (author, title, series, series_part,
narrator, year, genre). Matchers are tried in list order and the first hit
wins, so each shape is testable on its own.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import NamedTuple

from loguru import logger

log = logger.bind(stage="patterns")

PartialIdentity = dict[str, str]
Matcher = Callable[[str], "PartialIdentity | None"]

# Title suffixes that mark a whole series rather than one book
SERIES_INDICATOR_RE = re.compile(r"(Series|Cycle|Trilogy|Universe|Verse)$")
# Looser check used once an author is already known
SERIES_SUFFIX_RE = re.compile(r"(Series|Cycle|Trilogy|Universe|Verse|Saga)$", re.IGNORECASE)

_NUMBERED_COLLECTION_RE = re.compile(
    r"^(?P<index>\d+) - (?P<title>.+) - (?P<author>.+) - (?P<year>\d{4})$"
)

# One " - "-free segment
_SEG = r"(?:(?! - ).)+"
_PART = r"\d+(?:\.\d+)?"


def complete_series_title(series: str) -> str:
    return f"{series} Complete Series"


# ---------------------------------------------------------------------------
# Directory names
# ---------------------------------------------------------------------------


def match_numbered_collection(name: str) -> PartialIdentity | None:
    """'51 - Battlefield Earth - L Ron Hubbard - 1982'."""
    m = _NUMBERED_COLLECTION_RE.match(name.strip())
    if not m:
        return None
    return {"title": m["title"], "author": m["author"], "year": m["year"]}


def match_segmented_name(name: str) -> PartialIdentity | None:
    """'Author - Title' or 'Author - Series - Title [- more]'."""
    parts = [p.strip() for p in name.strip().split(" - ")]
    if len(parts) < 2 or not all(parts[:2]):
        return None
    if len(parts) == 2:
        result = {"author": parts[0], "title": parts[1]}
    else:
        result = {
            "author": parts[0],
            "series": parts[1],
            "title": " - ".join(parts[2:]),
        }
    if "series" not in result and SERIES_INDICATOR_RE.search(result["title"]):
        # Known false positive: a book literally titled "... Verse" lands here
        series = result["title"]
        result["series"] = series
        result["title"] = complete_series_title(series)
    return result


DIRECTORY_MATCHERS: list[Matcher] = [
    match_numbered_collection,
    match_segmented_name,
]


def parse_directory_name(name: str) -> PartialIdentity:
    for matcher in DIRECTORY_MATCHERS:
        result = matcher(name)
        if result is not None:
            log.debug(f"Directory {name!r} matched {matcher.__name__}: {result}")
            return result
    return {}


# ---------------------------------------------------------------------------
# File names
# ---------------------------------------------------------------------------


class FilenamePattern(NamedTuple):
    name: str
    regex: re.Pattern
    prefix_series: str = ""

    def __call__(self, stem: str) -> PartialIdentity | None:
        m = self.regex.match(stem.strip())
        if not m:
            return None
        result = {
            k: v.strip() for k, v in m.groupdict().items() if v and k != "index"
        }
        if self.prefix_series and "series" in result:
            result["series"] = self.prefix_series + result["series"]
        return result


FILENAME_PATTERNS: list[FilenamePattern] = [
    FilenamePattern(
        "author-title-year",
        re.compile(rf"^(?P<author>{_SEG}) - (?P<title>.+) \((?P<year>\d{{4}})\)$"),
    ),
    FilenamePattern(
        "author-series#-title",
        re.compile(
            rf"^(?P<author>{_SEG}) - (?P<series>.+?) #(?P<series_part>{_PART}) - (?P<title>.+)$"
        ),
    ),
    FilenamePattern(
        "author-series-book-title",
        re.compile(
            rf"^(?P<author>{_SEG}) - (?P<series>{_SEG}) Book (?P<series_part>{_PART}) - (?P<title>.+)$"
        ),
    ),
    # Exactly three segments; a middle segment ending in a digit belongs to
    # the title-The-series-N-author shape below.
    FilenamePattern(
        "title-author-narrator",
        re.compile(
            rf"^(?P<title>{_SEG}) - (?P<author>{_SEG}?)(?<!\d) - (?P<narrator>{_SEG})$"
        ),
    ),
    FilenamePattern(
        "title-year-author",
        re.compile(rf"^(?P<title>.+?) \((?P<year>\d{{4}})\) - (?P<author>.+)$"),
    ),
    FilenamePattern(
        "author-series-book-title-alt",
        re.compile(
            rf"^(?P<author>{_SEG}) - (?P<series>{_SEG}) - Book (?P<series_part>{_PART}) - (?P<title>.+)$"
        ),
    ),
    FilenamePattern(
        "title-the-series-n-author",
        re.compile(
            rf"^(?P<title>{_SEG}) - The (?P<series>{_SEG}) (?P<series_part>{_PART}) - (?P<author>.+)$"
        ),
        prefix_series="The ",
    ),
    FilenamePattern(
        "numbered-collection",
        re.compile(
            r"^(?P<index>\d+) - (?P<title>.+) - (?P<author>.+) - (?P<year>\d{4})$"
        ),
    ),
]


def match_filename(stem: str) -> PartialIdentity:
    """Run the filename shapes in order against a file stem; first match wins."""
    for pattern in FILENAME_PATTERNS:
        result = pattern(stem)
        if result is not None:
            log.debug(f"Filename {stem!r} matched {pattern.name}: {result}")
            return result
    return {}


# ---------------------------------------------------------------------------
# Parent directory hints
# ---------------------------------------------------------------------------

_COLLECTION_RE = re.compile(r"top|best|collection|compilation|anthology", re.IGNORECASE)

_GENRE_HINTS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"science fiction|sci-fi|scifi", re.IGNORECASE), "Science Fiction"),
    (re.compile(r"fantasy", re.IGNORECASE), "Fantasy"),
    (re.compile(r"mystery|thriller|detective", re.IGNORECASE), "Mystery & Thriller"),
    (re.compile(r"horror", re.IGNORECASE), "Horror"),
    (re.compile(r"historical|history", re.IGNORECASE), "Historical Fiction"),
]


def match_parent_hint(parent_name: str) -> PartialIdentity | None:
    """'Top 100 Science Fiction Books' -> genre hint."""
    if not _COLLECTION_RE.search(parent_name):
        return None
    for regex, genre in _GENRE_HINTS:
        if regex.search(parent_name):
            return {"genre": genre}
    return None
