"""FFprobe subprocess wrappers for audio file inspection.

_run_ffprobe never raises: a missing binary or a hung probe comes back as
a failed CompletedProcess with empty stdout. Numeric helpers raise
ValueError on empty output; dict/count helpers return empty values.
"""

import json
import re
import subprocess
from pathlib import Path

from loguru import logger

log = logger.bind(stage="ffprobe")

FFPROBE_TIMEOUT = 60


def _run_ffprobe(args: list[str]) -> subprocess.CompletedProcess:
    """Run ffprobe with common flags."""
    cmd = ["ffprobe", "-v", "error"] + args
    try:
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            stdin=subprocess.DEVNULL,
            timeout=FFPROBE_TIMEOUT,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        log.warning(f"ffprobe unavailable or hung: {e}")
        return subprocess.CompletedProcess(cmd, returncode=1, stdout="", stderr=str(e))


def _probe_field(file: Path, entry: str, stream: str | None = None) -> str:
    """Bare value of one -show_entries field, '' when ffprobe fails."""
    args = ["-select_streams", stream] if stream else []
    args += ["-show_entries", entry, "-of", "default=noprint_wrappers=1:nokey=1", str(file)]
    return _run_ffprobe(args).stdout.strip()


def _probe_json(file: Path, *args: str) -> dict:
    result = _run_ffprobe([*args, "-of", "json", str(file)])
    if result.returncode != 0:
        return {}
    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def get_duration(file: Path) -> float:
    """Container duration in seconds; ValueError when ffprobe reports none."""
    value = _probe_field(file, "format=duration")
    if value in ("", "N/A"):
        raise ValueError(f"ffprobe returned empty duration for {file}")
    return float(value)


def get_codec(file: Path) -> str:
    return _probe_field(file, "stream=codec_name", stream="a:0")


def get_format_name(file: Path) -> str:
    """Demuxer names, e.g. 'mov,mp4,m4a,3gp,3g2,mj2' for an m4b."""
    return _probe_field(file, "format=format_name")


def has_attached_picture(file: Path) -> bool:
    """True if the file carries a video stream flagged as attached_pic."""
    streams = _probe_json(file, "-select_streams", "v", "-show_entries", "stream_disposition=attached_pic")
    return any(
        (s.get("disposition") or {}).get("attached_pic") == 1
        for s in streams.get("streams", [])
    )


def get_tags(file: Path) -> dict:
    """Format-level tags keyed in lowercase ({} when unreadable).

    Keys seen in audiobook rips: artist, album_artist, album, title,
    composer, performer, genre, date, comment.
    """
    tags = _probe_json(file, "-show_entries", "format_tags").get("format", {}).get("tags")
    if not isinstance(tags, dict):
        return {}
    return {str(k).lower(): v for k, v in tags.items()}


# Author tag values that carry no information
_PLACEHOLDER_AUTHORS = frozenset(
    {"unknown", "unknown artist", "various", "various artists", "n/a", "none"}
)

_AUTHOR_TAG_KEYS = ("artist", "album_artist", "composer", "performer")


def extract_author_from_tags(tags: dict) -> str:
    """First non-empty, non-placeholder author candidate.

    Candidates are checked in order: artist, album_artist, composer,
    performer. Multi-artist values ("A; B") keep the first name only.
    """
    for key in _AUTHOR_TAG_KEYS:
        raw = (tags.get(key) or "").strip()
        if not raw or raw.lower() in _PLACEHOLDER_AUTHORS:
            continue
        if "; " in raw:
            raw = raw.split("; ", 1)[0].strip()
        return raw
    return ""


def extract_year(date: str) -> str:
    """Pull a 4-digit year out of a date tag ('2004-05-01', '2004')."""
    m = re.search(r"\b(\d{4})\b", date or "")
    return m.group(1) if m else ""


def count_chapters(file: Path) -> int:
    return len(_probe_json(file, "-show_chapters").get("chapters", []))


def duration_to_timestamp(seconds: float) -> str:
    """Whole seconds as HH:MM:SS."""
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
