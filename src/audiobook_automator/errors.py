"""Exception hierarchy for the audiobook automator.

BookError subclasses are book-scoped: the runner logs them and moves on to
the next directory. InvalidInputPath and LockError abort the run.
"""

from pathlib import Path

from .models import FailureReason


class PipelineError(Exception):
    """Base exception for all pipeline errors."""


class InvalidInputPath(PipelineError):
    """Input path does not exist or is not a directory."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"Input path is not a directory: {path}")
        self.path = path


class LockError(PipelineError):
    """Raised when the global run lock cannot be acquired."""


class BookError(PipelineError):
    """A single book could not be processed."""


class NoAudioFiles(BookError):
    def __init__(self, path: Path) -> None:
        super().__init__(f"No audio files found in {path}")
        self.path = path


class MetadataInsufficient(BookError):
    def __init__(self, path: Path, missing: list[str]) -> None:
        super().__init__(f"Missing {', '.join(missing)} for {path}")
        self.path = path
        self.missing = missing


class SubprocessTimeout(BookError):
    def __init__(self, timeout: float, detail: str = "") -> None:
        msg = f"ffmpeg timed out after {timeout:.0f}s"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.timeout = timeout
        self.reason = FailureReason.TIMEOUT


class SubprocessFailed(BookError):
    def __init__(self, exit_code: int, reason: FailureReason, detail: str = "") -> None:
        msg = f"ffmpeg failed ({reason}, exit {exit_code})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.exit_code = exit_code
        self.reason = reason


class OutputTooSmall(BookError):
    """Artifact is implausibly small next to its sources; blocks deleting originals."""

    def __init__(self, output: Path, output_size: int, source_size: int) -> None:
        super().__init__(
            f"{output.name} is {output_size:,} bytes, less than half of "
            f"{source_size:,} bytes of originals"
        )
        self.output = output
        self.output_size = output_size
        self.source_size = source_size


class DirectoryUnwritable(BookError):
    def __init__(self, path: Path, detail: str = "not writable") -> None:
        super().__init__(f"{path}: {detail}")
        self.path = path


class AlreadyProcessed(BookError):
    """Not a failure: the book was handled already and is skipped."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"{path.name}: {reason}")
        self.path = path
        self.reason = reason
