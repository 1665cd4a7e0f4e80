"""Cover art discovery on disk, with an HTTP download fallback."""

from __future__ import annotations

from pathlib import Path

import httpx
from loguru import logger

from ..models import IMAGE_EXTENSIONS

log = logger.bind(stage="cover")

COVER_STEMS = ("cover", "folder", "album", "artwork", "art", "front")
COVER_SUBDIR = "cover_art"


def _images_in(directory: Path) -> list[Path]:
    try:
        entries = sorted(directory.iterdir())
    except OSError:
        return []
    return [
        p for p in entries
        if p.is_file()
        and p.suffix.lower() in IMAGE_EXTENSIONS
        and not p.name.startswith(".")
    ]


def find_cover_art(directory: Path) -> Path | None:
    """Find a cover image for a book directory.

    Search order: well-known names (cover/folder/album/artwork/art/front,
    any image extension, case-insensitive), then any image in cover_art/,
    then any image in the directory itself. First hit wins.
    """
    images = _images_in(directory)
    by_name = {p.name.lower(): p for p in images}
    for stem in COVER_STEMS:
        for ext in sorted(IMAGE_EXTENSIONS):
            hit = by_name.get(f"{stem}{ext}")
            if hit is not None:
                log.debug(f"Cover (named): {hit}")
                return hit.resolve()

    for sub in sorted(directory.iterdir()) if directory.is_dir() else []:
        if sub.is_dir() and sub.name.lower() == COVER_SUBDIR:
            sub_images = _images_in(sub)
            if sub_images:
                log.debug(f"Cover ({COVER_SUBDIR}/): {sub_images[0]}")
                return sub_images[0].resolve()

    if images:
        log.debug(f"Cover (any image): {images[0]}")
        return images[0].resolve()
    return None


def download_cover(url: str, dest_dir: Path) -> Path | None:
    """Download cover art from URL to dest_dir/cover.<ext>.

    Returns path to downloaded file, or None on failure (non-fatal).
    """
    if not url:
        return None
    try:
        resp = httpx.get(url, timeout=30.0, follow_redirects=True)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        log.warning(f"Cover download failed: {e}")
        return None

    content_type = resp.headers.get("content-type", "")
    ext = ".png" if "png" in content_type else ".jpg"
    dest_dir.mkdir(parents=True, exist_ok=True)
    cover_path = dest_dir / f"cover{ext}"
    cover_path.write_bytes(resp.content)
    log.debug(f"Downloaded cover art: {len(resp.content)} bytes -> {cover_path}")
    return cover_path
