"""Filename sanitization, metadata value escaping, and book hash generation."""

import hashlib
import re
from pathlib import Path

from loguru import logger

log = logger.bind(stage="sanitize")

_MAX_NAME_BYTES = 255


def sanitize_filename(filename: str, fallback: str = "audiobook") -> str:
    """Sanitize a filename component (not a full path).

    Strips every character outside [A-Za-z0-9 ._-], collapses whitespace,
    removes leading dots, and truncates to 255 bytes preserving the extension.
    Returns `fallback` when nothing usable is left.
    """
    log.debug(f"sanitize_filename(filename='{filename}')")

    sanitized = re.sub(r"[^A-Za-z0-9 ._-]", "", filename)
    sanitized = re.sub(r"\s+", " ", sanitized).strip()
    # No hidden files, no "..", no trailing dot
    sanitized = re.sub(r"^[.\s]+", "", sanitized)
    sanitized = re.sub(r"[.\s]+$", "", sanitized)

    if not sanitized:
        return fallback

    original_len = len(sanitized.encode("utf-8"))
    if original_len > _MAX_NAME_BYTES:
        p = Path(sanitized)
        ext = p.suffix
        stem = p.stem if ext else sanitized
        while len((stem + ext).encode("utf-8")) > _MAX_NAME_BYTES and stem:
            stem = stem[:-1]
        sanitized = stem.rstrip() + ext
        log.debug(
            f"Truncated filename from {original_len} to "
            f"{len(sanitized.encode('utf-8'))} bytes: '{sanitized}'"
        )

    return sanitized


def sanitize_chapter_title(title: str) -> str:
    """Sanitize a chapter title (more permissive -- uses spaces)."""
    sanitized = re.sub(r'[/\\:"*?<>|;]+', " ", title)
    sanitized = re.sub(r"  +", " ", sanitized)
    return sanitized.strip()


def truncate_utf8(value: str, max_bytes: int) -> str:
    """Cut a string to at most max_bytes of UTF-8 without splitting a character."""
    encoded = value.encode("utf-8")
    if len(encoded) <= max_bytes:
        return value
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


def escape_ffmetadata(value: str) -> str:
    """Escape a value for an FFMETADATA1 file (= ; # \\ and newlines)."""
    value = re.sub(r"([=;#\\])", r"\\\1", value)
    return value.replace("\n", "\\\n")


def generate_book_hash(source_path: Path) -> str:
    """Generate a 16-char hex hash identifying a book directory.

    Hashes the path plus the sorted list of files directly inside it.
    """
    h = hashlib.sha256()
    h.update(f"{source_path}\n".encode())
    if source_path.is_dir():
        for f in sorted(p.name for p in source_path.iterdir() if p.is_file()):
            h.update(f"{f}\n".encode())

    result = h.hexdigest()[:16]
    log.debug(f"Generated hash for {source_path.name}: {result}")
    return result
