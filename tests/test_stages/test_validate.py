"""Tests for the validate stage -- audio inventory and already-converted detection."""

import os
from unittest.mock import patch

import pytest

from audiobook_automator.config import PipelineConfig
from audiobook_automator.errors import AlreadyProcessed, NoAudioFiles
from audiobook_automator.stages.validate import find_audio_files, find_prebuilt_container, run


def _touch(path, data=b"audio"):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


@pytest.fixture
def config(tmp_path):
    return PipelineConfig(_env_file=None, work_dir=tmp_path / "work", output_dir=tmp_path / "out")


class TestFindAudioFiles:
    def test_sorted_by_name(self, tmp_path):
        for name in ("10.mp3", "02.mp3", "01.mp3"):
            _touch(tmp_path / name)
        assert [f.name for f in find_audio_files(tmp_path)] == ["01.mp3", "02.mp3", "10.mp3"]

    def test_filters_non_audio_and_hidden(self, tmp_path):
        _touch(tmp_path / "01.mp3")
        _touch(tmp_path / "._01.mp3")
        _touch(tmp_path / ".hidden.m4a")
        _touch(tmp_path / "cover.jpg")
        _touch(tmp_path / "notes.txt")
        assert [f.name for f in find_audio_files(tmp_path)] == ["01.mp3"]

    def test_extension_case_insensitive(self, tmp_path):
        _touch(tmp_path / "01.MP3")
        _touch(tmp_path / "02.Flac")
        assert len(find_audio_files(tmp_path)) == 2

    def test_flat_ignores_subdirs(self, tmp_path):
        _touch(tmp_path / "CD1" / "01.mp3")
        assert find_audio_files(tmp_path) == []

    def test_recursive_orders_by_relative_path(self, tmp_path):
        _touch(tmp_path / "CD2" / "01.mp3")
        _touch(tmp_path / "CD1" / "02.mp3")
        _touch(tmp_path / "CD1" / "01.mp3")
        files = find_audio_files(tmp_path, recursive=True)
        assert [f.relative_to(tmp_path.resolve()).as_posix() for f in files] == [
            "CD1/01.mp3",
            "CD1/02.mp3",
            "CD2/01.mp3",
        ]

    def test_absolute_paths(self, tmp_path):
        _touch(tmp_path / "01.mp3")
        assert find_audio_files(tmp_path)[0].is_absolute()

    @pytest.mark.skipif(os.geteuid() == 0, reason="root can read anything")
    def test_unreadable_skipped(self, tmp_path):
        locked = _touch(tmp_path / "02.mp3")
        _touch(tmp_path / "01.mp3")
        locked.chmod(0)
        try:
            assert [f.name for f in find_audio_files(tmp_path)] == ["01.mp3"]
        finally:
            locked.chmod(0o644)


class TestFindPrebuiltContainer:
    @patch("audiobook_automator.stages.validate.count_chapters", return_value=24)
    def test_chaptered_m4b(self, mock_count, tmp_path):
        m4b = _touch(tmp_path / "book.m4b")
        assert find_prebuilt_container([_touch(tmp_path / "01.mp3"), m4b]) == m4b
        mock_count.assert_called_once_with(m4b)

    @patch("audiobook_automator.stages.validate.count_chapters", return_value=0)
    def test_m4b_without_chapters_is_input(self, mock_count, tmp_path):
        assert find_prebuilt_container([_touch(tmp_path / "part1.m4b")]) is None


class TestRun:
    def test_returns_files(self, tmp_path, config):
        book = tmp_path / "book"
        _touch(book / "01.mp3")
        _touch(book / "02.mp3")
        assert len(run(book, config)) == 2

    def test_no_audio_raises(self, tmp_path, config):
        book = tmp_path / "book"
        _touch(book / "readme.txt")
        with pytest.raises(NoAudioFiles):
            run(book, config)

    @patch("audiobook_automator.stages.validate.count_chapters", return_value=5)
    def test_already_converted_skips(self, mock_count, tmp_path, config):
        book = tmp_path / "book"
        _touch(book / "book.m4b")
        with pytest.raises(AlreadyProcessed, match="already contains book.m4b"):
            run(book, config)

    @patch("audiobook_automator.stages.validate.count_chapters", return_value=5)
    def test_force_reprocesses(self, mock_count, tmp_path):
        config = PipelineConfig(_env_file=None, force=True)
        book = tmp_path / "book"
        _touch(book / "book.m4b")
        assert len(run(book, config)) == 1
        mock_count.assert_not_called()
