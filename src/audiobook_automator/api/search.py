"""Fuzzy scoring of catalog results and the online metadata lookup.

Combines rapidfuzz string matching with Audible search results to pick a
single record for a (title, author) pair, or nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger
from rapidfuzz import fuzz

from . import audible

log = logger.bind(stage="search")

DESCRIPTION_LIMIT = 500
MAX_GENRES = 3


@dataclass
class OnlineRecord:
    title: str = ""
    author: str = ""
    narrator: str = ""
    series: str = ""
    series_part: str = ""
    year: str = ""
    description: str = ""
    cover_url: str = ""
    genres: list[str] = field(default_factory=list)

    def identity_fields(self) -> dict[str, str]:
        """Values keyed by BookIdentity field name."""
        return {
            "title": self.title,
            "author": self.author,
            "narrator": self.narrator,
            "series": self.series,
            "series_part": self.series_part,
            "year": self.year,
            "description": self.description,
            "genre": ", ".join(self.genres),
        }


def score_results(
    results: list[dict],
    title_hint: str,
    author_hint: str,
) -> list[dict]:
    """Score each result using rapidfuzz. Returns results with scores, sorted descending.

    Weights: title 70%, author 30%. Without an author hint the title
    score is used alone.
    """
    log.debug(f"Scoring {len(results)} results against title={title_hint!r}")

    scored = []
    for r in results:
        title_score = fuzz.token_sort_ratio(title_hint.lower(), r["title"].lower())
        if author_hint:
            author_score = max(
                (fuzz.token_set_ratio(author_hint.lower(), a.lower()) for a in r["authors"]),
                default=0,
            )
            total = title_score * 0.7 + author_score * 0.3
        else:
            total = title_score
        scored.append({**r, "score": round(total, 1)})

    scored.sort(key=lambda x: x["score"], reverse=True)

    if scored:
        best = scored[0]
        log.debug(f"Best match: {best['title']!r} score={best['score']:.0f}")

    return scored


def lookup_book(
    title: str,
    author: str,
    region: str = "com",
    threshold: int = 70,
) -> OnlineRecord | None:
    """Look up a book online. Returns None when nothing scores above threshold."""
    if not title:
        return None
    query = f"{title} {author}".strip()
    results = audible.search(query, region=region)
    if not results:
        log.info(f"No online results for {query!r}")
        return None

    best = score_results(results, title, author)[0]
    if best["score"] < threshold:
        log.info(f"Best online match {best['title']!r} scored {best['score']} < {threshold}")
        return None

    description = best.get("description", "")
    if len(description) > DESCRIPTION_LIMIT:
        description = description[: DESCRIPTION_LIMIT - 3].rstrip() + "..."

    record = OnlineRecord(
        title=best["title"],
        author=", ".join(a for a in best["authors"] if a),
        narrator=", ".join(n for n in best["narrators"] if n),
        series=best.get("series", ""),
        series_part=str(best.get("position", "") or ""),
        year=best.get("year", ""),
        description=description,
        cover_url=best.get("cover_url", ""),
        genres=list(best.get("genres", []))[:MAX_GENRES],
    )
    log.info(f"Online match: {record.title!r} by {record.author!r} (score={best['score']})")
    return record
