"""Parse the free-text cover.txt sidecar that some rips ship with.

Lines look like ``Title: The Final Empire``. Only known keys are kept;
``Book`` is the position within the series.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger

log = logger.bind(stage="sidecar")

SIDECAR_NAME = "cover.txt"

_KEY_MAP = {
    "title": "title",
    "author": "author",
    "narrator": "narrator",
    "series": "series",
    "book": "series_part",
    "year": "year",
    "genre": "genre",
    "description": "description",
}


def parse_sidecar_text(text: str) -> dict[str, str]:
    result: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        field = _KEY_MAP.get(key.strip().lower())
        value = value.strip()
        if field and value and field not in result:
            result[field] = value
    return result


def read_sidecar(book_dir: Path) -> dict[str, str]:
    """Return sidecar fields for a book directory, or {} when absent/unreadable."""
    path = book_dir / SIDECAR_NAME
    if not path.is_file():
        return {}
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        log.warning(f"Cannot read {path}: {e}")
        return {}
    fields = parse_sidecar_text(text)
    log.debug(f"Sidecar {path.name}: {sorted(fields)}")
    return fields
