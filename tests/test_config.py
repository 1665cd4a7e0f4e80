"""Tests for config.py -- defaults, env var overrides."""

from pathlib import Path

import pytest

from audiobook_automator.config import PipelineConfig

# Env vars that pydantic-settings reads -- must be cleaned for default tests
_CONFIG_ENV_VARS = [
    "OUTPUT_DIR", "WORK_DIR", "LOG_DIR", "LOCK_DIR", "CODEC", "BITRATE",
    "FFMPEG_BIN", "CONVERT_TIMEOUT", "TERM_GRACE", "POLL_INTERVAL",
    "DELETE_ORIGINALS", "MIN_OUTPUT_RATIO", "NON_INTERACTIVE",
    "AUDIOBOOKS_NON_INTERACTIVE", "RECURSIVE", "FORCE", "DRY_RUN", "VERBOSE",
    "LOG_LEVEL", "ONLINE_LOOKUP", "AUDIBLE_REGION", "LOOKUP_THRESHOLD",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Remove automator env vars so defaults tests see actual defaults."""
    for var in _CONFIG_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


class TestDefaults:
    def test_default_values(self):
        config = PipelineConfig(_env_file=None)
        assert config.codec == "aac"
        assert config.bitrate == 64
        assert config.dry_run is False
        assert config.force is False
        assert config.recursive is False
        assert config.log_level == "INFO"
        assert config.online_lookup is True
        assert config.lookup_threshold == 70

    def test_originals_kept_by_default(self):
        config = PipelineConfig(_env_file=None)
        assert config.delete_originals is False
        assert config.min_output_ratio == 0.5

    def test_supervision_defaults(self):
        config = PipelineConfig(_env_file=None)
        assert config.convert_timeout == 7200.0
        assert config.term_grace == 2.0
        assert config.poll_interval == 1.0

    def test_default_paths(self):
        config = PipelineConfig(_env_file=None)
        assert config.output_dir == Path("processed")
        assert config.work_dir.name == "audiobook-automator"
        assert config.log_dir.parts[-2:] == ("audiobook-automator", "logs")


class TestOverrides:
    def test_constructor_override(self):
        config = PipelineConfig(_env_file=None, dry_run=True, bitrate=96)
        assert config.dry_run is True
        assert config.bitrate == 96

    def test_env_var_override(self, monkeypatch):
        monkeypatch.setenv("BITRATE", "128")
        monkeypatch.setenv("DRY_RUN", "true")
        config = PipelineConfig(_env_file=None)
        assert config.bitrate == 128
        assert config.dry_run is True

    def test_path_from_env(self, monkeypatch):
        monkeypatch.setenv("WORK_DIR", "/tmp/test-work")
        config = PipelineConfig(_env_file=None)
        assert config.work_dir == Path("/tmp/test-work")

    def test_non_interactive_env_var(self, monkeypatch):
        monkeypatch.setenv("AUDIOBOOKS_NON_INTERACTIVE", "1")
        config = PipelineConfig(_env_file=None)
        assert config.non_interactive is True

    def test_non_interactive_kwarg(self):
        config = PipelineConfig(_env_file=None, non_interactive=True)
        assert config.non_interactive is True


class TestEnsureDirs:
    def test_creates_all_dirs(self, tmp_path):
        config = PipelineConfig(
            _env_file=None,
            output_dir=tmp_path / "out",
            work_dir=tmp_path / "work",
            log_dir=tmp_path / "logs",
            lock_dir=tmp_path / "locks",
        )
        config.ensure_dirs()
        for name in ("out", "work", "logs", "locks"):
            assert (tmp_path / name).is_dir()
