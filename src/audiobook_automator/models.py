"""Core enums, constants, and data model for the audiobook automator.

Enums:
    Provenance       -- Where a BookIdentity field value came from. Declaration
                        order is priority order (USER_INPUT highest, DEFAULT lowest).
    FailureReason    -- Classified cause of a failed ffmpeg run (from stderr).
    Termination      -- How the watchdog stopped a timed-out process.
    SupervisorState  -- Lifecycle of one supervised subprocess.
    Outcome          -- Per-book result reported by the batch runner.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path


class Provenance(StrEnum):
    USER_INPUT = "user_input"
    DIRECTORY_NAME = "directory_name"
    SIDECAR = "sidecar"
    FILENAME_PATTERN = "filename_pattern"
    EMBEDDED_TAG = "embedded_tag"
    PARENT_DIRECTORY_HINT = "parent_directory_hint"
    ONLINE_LOOKUP = "online_lookup"
    DEFAULT = "default"

    @property
    def rank(self) -> int:
        """Position in the resolution cascade (0 = highest priority)."""
        return _PROVENANCE_ORDER.index(self)

    def outranks(self, other: Provenance) -> bool:
        """True if this source has strictly higher priority than `other`."""
        return self.rank < other.rank


_PROVENANCE_ORDER: list[Provenance] = list(Provenance)


class FailureReason(StrEnum):
    STDIN_BLOCKED = "stdin_blocked"
    INVALID_DATA = "invalid_data"
    TIMEOUT = "timeout"
    INVALID_OUTPUT = "invalid_output"
    GENERIC = "generic"


class Termination(StrEnum):
    GRACEFUL = "graceful"
    FORCED = "forced"


class SupervisorState(StrEnum):
    RUNNING = "running"
    NATURAL_EXIT = "natural_exit"
    WATCHDOG_TERMINATED = "watchdog_terminated"


class Outcome(StrEnum):
    CONVERTED = "converted"
    SKIPPED = "skipped"
    FAILED = "failed"


AUDIO_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".mp3",
        ".m4a",
        ".m4b",
        ".aac",
        ".ogg",
        ".opus",
        ".flac",
        ".wav",
        ".wma",
    }
)

IMAGE_EXTENSIONS: frozenset[str] = frozenset(
    {".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp"}
)

# Extension of the chaptered container we produce
OUTPUT_EXTENSION = ".m4b"

IDENTITY_FIELDS: tuple[str, ...] = (
    "title",
    "author",
    "narrator",
    "series",
    "series_part",
    "year",
    "genre",
    "description",
)

UNKNOWN_AUTHOR = "Unknown Author"
UNKNOWN_TITLE = "Unknown Title"
DEFAULT_GENRE = "Audiobook"


@dataclass
class FieldValue:
    value: str = ""
    source: Provenance | None = None


@dataclass
class BookIdentity:
    """Resolved identity of one book, with per-field provenance.

    All writes go through set(): a field accepts a new value only when it
    is empty or its current source has strictly lower priority than the
    writer. USER_INPUT values are therefore never replaced.
    """

    fields: dict[str, FieldValue] = field(
        default_factory=lambda: {name: FieldValue() for name in IDENTITY_FIELDS}
    )

    def set(self, name: str, value: str | None, source: Provenance) -> bool:
        if name not in self.fields:
            raise KeyError(f"Unknown identity field: {name}")
        value = (value or "").strip()
        if not value:
            return False
        current = self.fields[name]
        if current.value and current.source is not None:
            if not source.outranks(current.source):
                return False
        self.fields[name] = FieldValue(value, source)
        return True

    def merge(self, values: dict[str, str], source: Provenance) -> list[str]:
        """Apply a partial identity; returns the names of fields that changed."""
        return [
            name
            for name, value in values.items()
            if name in self.fields and self.set(name, value, source)
        ]

    def get(self, name: str) -> str:
        return self.fields[name].value

    def source(self, name: str) -> Provenance | None:
        return self.fields[name].source

    def is_known(self, name: str) -> bool:
        """Set by something better than a default placeholder."""
        fv = self.fields[name]
        return bool(fv.value) and fv.source is not Provenance.DEFAULT

    def as_dict(self) -> dict[str, str]:
        return {name: fv.value for name, fv in self.fields.items()}

    @property
    def title(self) -> str:
        return self.get("title")

    @property
    def author(self) -> str:
        return self.get("author")

    @property
    def narrator(self) -> str:
        return self.get("narrator")

    @property
    def series(self) -> str:
        return self.get("series")

    @property
    def series_part(self) -> str:
        return self.get("series_part")

    @property
    def year(self) -> str:
        return self.get("year")

    @property
    def genre(self) -> str:
        return self.get("genre")

    @property
    def description(self) -> str:
        return self.get("description")


@dataclass(frozen=True)
class Chapter:
    title: str
    start_ms: int
    end_ms: int


@dataclass
class ChapterPlan:
    chapters: list[Chapter] = field(default_factory=list)

    @property
    def total_ms(self) -> int:
        return self.chapters[-1].end_ms if self.chapters else 0

    def __len__(self) -> int:
        return len(self.chapters)


@dataclass
class ConversionJob:
    """Per-book unit of work, owned by the orchestrator for one conversion."""

    source_dir: Path
    audio_files: list[Path]
    identity: BookIdentity
    target_dir: Path
    output_filename: str
    cover_path: Path | None = None
    work_dir: Path | None = None
    chapters: ChapterPlan = field(default_factory=ChapterPlan)

    @property
    def destination(self) -> Path:
        return self.target_dir / self.output_filename


@dataclass
class ProcessRun:
    command: list[str]
    timeout: float
    log_sink: Path
    stderr_sink: Path


@dataclass
class ProcessResult:
    exit_code: int
    timed_out: bool = False
    termination: Termination | None = None
    reason: FailureReason | None = None
    pid: int | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def __iter__(self):
        # Unpacks as (exit_code, timed_out)
        yield self.exit_code
        yield self.timed_out


class VisitedSet:
    """Per-run set of book directories, keyed by symlink-resolved path."""

    def __init__(self) -> None:
        self._seen: set[Path] = set()

    @staticmethod
    def canonical(path: Path) -> Path:
        return Path(path).resolve()

    def add(self, path: Path) -> bool:
        """Record a visit. Returns False if the path was already visited."""
        key = self.canonical(path)
        if key in self._seen:
            return False
        self._seen.add(key)
        return True

    def __contains__(self, path: object) -> bool:
        return isinstance(path, (str, Path)) and self.canonical(Path(path)) in self._seen

    def __len__(self) -> int:
        return len(self._seen)


@dataclass
class BookOutcome:
    source_dir: Path
    outcome: Outcome
    detail: str = ""
    output: Path | None = None
    category: str = ""


@dataclass
class BatchResult:
    """Result summary from a batch run."""

    converted: int = 0
    skipped: int = 0
    failed: int = 0
    total: int = 0
    by_category: Counter = field(default_factory=Counter)

    def record(self, book: BookOutcome) -> None:
        self.total += 1
        if book.outcome == Outcome.CONVERTED:
            self.converted += 1
            if book.category:
                self.by_category[book.category] += 1
        elif book.outcome == Outcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
