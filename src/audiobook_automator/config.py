"""Automator configuration via pydantic-settings (.env + env vars)."""

import sys
import tempfile
from pathlib import Path

from loguru import logger
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_STATE_DIR = Path.home() / ".local" / "state" / "audiobook-automator"


class PipelineConfig(BaseSettings):
    """All configuration with layered resolution:
    .env file < environment variables < constructor kwargs.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    # -- Directories --
    output_dir: Path = Path("processed")
    work_dir: Path = Path(tempfile.gettempdir()) / "audiobook-automator"
    log_dir: Path = _STATE_DIR / "logs"
    lock_dir: Path = _STATE_DIR / "locks"

    # -- Encoding --
    codec: str = "aac"
    bitrate: int = 64
    ffmpeg_bin: str = "ffmpeg"

    # -- Supervision --
    convert_timeout: float = 7200.0
    term_grace: float = 2.0
    poll_interval: float = 1.0
    heartbeat_interval: float = 60.0

    # -- Originals --
    delete_originals: bool = False
    min_output_ratio: float = 0.5
    disk_space_multiplier: int = 3

    # -- Behavior --
    non_interactive: bool = Field(
        default=False,
        validation_alias=AliasChoices("audiobooks_non_interactive", "non_interactive"),
    )
    recursive: bool = False
    force: bool = False
    dry_run: bool = False
    verbose: bool = False
    log_level: str = "INFO"

    # -- Metadata --
    online_lookup: bool = True
    audible_region: str = "com"
    lookup_threshold: int = 70

    def ensure_dirs(self) -> None:
        """Create all required directories if they don't exist."""
        for d in (self.output_dir, self.work_dir, self.log_dir, self.lock_dir):
            d.mkdir(parents=True, exist_ok=True)

    def setup_logging(self) -> None:
        """Configure loguru for the automator."""
        logger.remove()  # Remove default stderr handler

        log_format = (
            "{time:YYYY-MM-DDTHH:mm:ssZ} | {level:<8} | "
            "{extra[stage]:<12} | {message}"
        )

        def _default_extra(record):
            record["extra"].setdefault("stage", "")
            return True

        logger.add(
            sys.stderr,
            format=log_format,
            level=self.log_level.upper(),
            filter=_default_extra,
        )

        self.log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(self.log_dir / "audiobook-automator.log"),
            format=log_format,
            level="DEBUG",
            rotation="10 MB",
            retention="30 days",
            filter=_default_extra,
        )
