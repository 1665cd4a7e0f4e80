"""Tests for the convert stage -- command building, strategy fallback, output checks."""

from pathlib import Path
from unittest.mock import patch

import pytest

from audiobook_automator.config import PipelineConfig
from audiobook_automator.errors import SubprocessFailed, SubprocessTimeout
from audiobook_automator.models import (
    BookIdentity,
    Chapter,
    ChapterPlan,
    ConversionJob,
    FailureReason,
    ProcessResult,
    Provenance,
    Termination,
)
from audiobook_automator.stages.convert import (
    ConcatDemuxerStrategy,
    ReencodeThenConcatStrategy,
    SimplifiedConcatStrategy,
    build_mux_command,
    metadata_args,
    run,
    validate_output,
)

OK = ProcessResult(exit_code=0)


def _fail(reason: FailureReason) -> ProcessResult:
    if reason == FailureReason.TIMEOUT:
        return ProcessResult(124, timed_out=True, termination=Termination.GRACEFUL, reason=reason)
    return ProcessResult(1, reason=reason)


class FakeSupervisor:
    """Returns canned results in order; a successful run writes its output file."""

    def __init__(self, results):
        self.results = list(results)
        self.runs = []

    def run(self, run, on_progress=None):
        self.runs.append(run)
        result = self.results.pop(0)
        run.stderr_sink.write_text("Press [q] to stop\nlast stderr line\n")
        if result.ok:
            Path(run.command[-1]).write_bytes(b"m4b-bytes")
        return result


def _identity(**fields):
    identity = BookIdentity()
    identity.merge({"title": "Dune", "author": "Frank Herbert", "genre": "Audiobook", **fields}, Provenance.DIRECTORY_NAME)
    return identity


@pytest.fixture
def config(tmp_path):
    return PipelineConfig(_env_file=None, work_dir=tmp_path / "work", output_dir=tmp_path / "out")


@pytest.fixture
def job(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    files = []
    for name in ("01.mp3", "02.mp3"):
        f = src / name
        f.write_bytes(b"x" * 10)
        files.append(f)
    work = tmp_path / "work" / "job"
    work.mkdir(parents=True)
    return ConversionJob(
        source_dir=src,
        audio_files=files,
        identity=_identity(),
        target_dir=tmp_path / "out",
        output_filename="Frank Herbert - Dune.m4b",
        work_dir=work,
        chapters=ChapterPlan([Chapter("Chapter 01", 0, 1000), Chapter("Chapter 02", 1000, 2000)]),
    )


@pytest.fixture
def metadata_txt(job):
    path = job.work_dir / "metadata.txt"
    path.write_text(";FFMETADATA1\n")
    return path


class TestBuildMuxCommand:
    def test_core_flags(self, config, tmp_path):
        cmd = build_mux_command(config, tmp_path / "f.txt", tmp_path / "m.txt", tmp_path / "o.m4b", _identity())
        assert cmd[0] == "ffmpeg"
        assert "-nostdin" in cmd
        assert cmd[cmd.index("-f") + 1] == "concat"
        assert cmd[cmd.index("-map_chapters") + 1] == "1"
        assert cmd[cmd.index("-c:a") + 1] == "aac"
        assert cmd[cmd.index("-b:a") + 1] == "64k"
        assert cmd[cmd.index("-progress") + 1] == "pipe:1"
        assert cmd[-1] == str(tmp_path / "o.m4b")
        assert "attached_pic" not in cmd

    def test_cover_attached(self, config, tmp_path):
        cmd = build_mux_command(
            config, tmp_path / "f.txt", tmp_path / "m.txt", tmp_path / "o.m4b", _identity(),
            cover=tmp_path / "cover.jpg",
        )
        assert str(tmp_path / "cover.jpg") in cmd
        assert "2:v" in cmd
        assert "attached_pic" in cmd

    def test_copy_audio(self, config, tmp_path):
        cmd = build_mux_command(
            config, tmp_path / "f.txt", tmp_path / "m.txt", tmp_path / "o.m4b", _identity(), copy_audio=True
        )
        assert cmd[cmd.index("-c:a") + 1] == "copy"
        assert "-b:a" not in cmd


class TestMetadataArgs:
    def test_full_tag_set(self):
        args = metadata_args(
            _identity(narrator="Scott Brick", series="Dune Chronicles", series_part="1", year="1965")
        )
        pairs = [args[i + 1] for i in range(0, len(args), 2)]
        assert "title=Dune" in pairs
        assert "artist=Frank Herbert" in pairs
        assert "album_artist=Frank Herbert" in pairs
        assert "composer=Scott Brick" in pairs
        assert "show=Dune Chronicles" in pairs
        assert "episode_id=1" in pairs
        assert "date=1965" in pairs
        assert "genre=Audiobook" in pairs

    def test_description_truncated(self):
        args = metadata_args(_identity(description="é" * 400))
        desc = next(a for a in args if a.startswith("description="))
        assert len(desc.removeprefix("description=").encode("utf-8")) <= 255

    def test_empty_fields_omitted(self):
        args = metadata_args(_identity())
        assert not any(a.startswith("composer=") for a in args)
        assert not any(a.startswith("show=") for a in args)


@patch("audiobook_automator.stages.convert.validate_output")
class TestStrategyFallback:
    def test_first_strategy_success(self, mock_validate, job, config, metadata_txt):
        sup = FakeSupervisor([OK])
        output = run(job, config, sup, metadata_txt)
        assert output.read_bytes() == b"m4b-bytes"
        assert output.parent == job.work_dir / "output"
        assert len(sup.runs) == 1
        mock_validate.assert_called_once_with(output, 2)

    def test_generic_falls_back_to_simplified(self, mock_validate, job, config, metadata_txt):
        sup = FakeSupervisor([_fail(FailureReason.GENERIC), OK])
        run(job, config, sup, metadata_txt)
        assert [r.stderr_sink.name for r in sup.runs] == ["ffmpeg_concat.err", "ffmpeg_simplified.err"]
        simplified_list = job.work_dir / "files_simplified.txt"
        assert "links/0000.mp3" in simplified_list.read_text()

    def test_simplified_drops_cover(self, mock_validate, job, config, metadata_txt, tmp_path):
        job.cover_path = tmp_path / "cover.jpg"
        sup = FakeSupervisor([_fail(FailureReason.GENERIC), OK])
        run(job, config, sup, metadata_txt)
        assert str(job.cover_path) in sup.runs[0].command
        assert str(job.cover_path) not in sup.runs[1].command

    def test_reencode_after_two_generic_failures(self, mock_validate, job, config, metadata_txt):
        sup = FakeSupervisor(
            [_fail(FailureReason.GENERIC), _fail(FailureReason.GENERIC), OK, OK, OK]
        )
        run(job, config, sup, metadata_txt)
        labels = [r.stderr_sink.name for r in sup.runs]
        assert labels == [
            "ffmpeg_concat.err",
            "ffmpeg_simplified.err",
            "ffmpeg_part0000.err",
            "ffmpeg_part0001.err",
            "ffmpeg_reencode.err",
        ]
        assert sup.runs[-1].command[sup.runs[-1].command.index("-c:a") + 1] == "copy"

    @pytest.mark.parametrize(
        "reason", [FailureReason.INVALID_DATA, FailureReason.STDIN_BLOCKED]
    )
    def test_fatal_reasons_not_retried(self, mock_validate, reason, job, config, metadata_txt):
        sup = FakeSupervisor([_fail(reason)])
        with pytest.raises(SubprocessFailed) as exc_info:
            run(job, config, sup, metadata_txt)
        assert exc_info.value.reason == reason
        assert "last stderr line" in str(exc_info.value)
        assert len(sup.runs) == 1

    def test_timeout_not_retried(self, mock_validate, job, config, metadata_txt):
        sup = FakeSupervisor([_fail(FailureReason.TIMEOUT)])
        with pytest.raises(SubprocessTimeout):
            run(job, config, sup, metadata_txt)
        assert len(sup.runs) == 1

    def test_all_strategies_fail(self, mock_validate, job, config, metadata_txt):
        sup = FakeSupervisor(
            [_fail(FailureReason.GENERIC), _fail(FailureReason.GENERIC), _fail(FailureReason.GENERIC)]
        )
        with pytest.raises(SubprocessFailed) as exc_info:
            run(job, config, sup, metadata_txt)
        assert exc_info.value.reason == FailureReason.GENERIC
        mock_validate.assert_not_called()

    def test_custom_strategy_list(self, mock_validate, job, config, metadata_txt):
        sup = FakeSupervisor([_fail(FailureReason.GENERIC), OK, OK, OK])
        run(job, config, sup, metadata_txt, strategies=(ConcatDemuxerStrategy(), ReencodeThenConcatStrategy()))
        assert sup.runs[1].stderr_sink.name == "ffmpeg_part0000.err"

    def test_dry_run_runs_nothing(self, mock_validate, job, config, metadata_txt):
        config = PipelineConfig(_env_file=None, dry_run=True)
        sup = FakeSupervisor([])
        output = run(job, config, sup, metadata_txt)
        assert output.name == job.output_filename
        assert sup.runs == []
        mock_validate.assert_not_called()
        assert not (job.work_dir / "output").exists()


def test_strategy_retry_sets():
    assert ConcatDemuxerStrategy.retry_on == frozenset()
    for cls in (SimplifiedConcatStrategy, ReencodeThenConcatStrategy):
        assert cls.retry_on == frozenset({FailureReason.GENERIC})


class TestValidateOutput:
    def test_missing(self, tmp_path):
        with pytest.raises(SubprocessFailed) as exc_info:
            validate_output(tmp_path / "nope.m4b", 2)
        assert exc_info.value.reason == FailureReason.INVALID_OUTPUT

    def test_empty(self, tmp_path):
        out = tmp_path / "o.m4b"
        out.write_bytes(b"")
        with pytest.raises(SubprocessFailed, match="empty"):
            validate_output(out, 2)

    @patch("audiobook_automator.stages.convert.get_format_name", return_value="mp3")
    def test_wrong_container(self, mock_fmt, tmp_path):
        out = tmp_path / "o.m4b"
        out.write_bytes(b"x")
        with pytest.raises(SubprocessFailed, match="mov/mp4"):
            validate_output(out, 2)

    @patch("audiobook_automator.stages.convert.count_chapters", return_value=0)
    @patch("audiobook_automator.stages.convert.get_format_name", return_value="mov,mp4,m4a")
    def test_no_chapters(self, mock_fmt, mock_count, tmp_path):
        out = tmp_path / "o.m4b"
        out.write_bytes(b"x")
        with pytest.raises(SubprocessFailed, match="No chapters"):
            validate_output(out, 3)

    @patch("audiobook_automator.stages.convert.count_chapters", return_value=2)
    @patch("audiobook_automator.stages.convert.get_format_name", return_value="mov,mp4,m4a")
    def test_chapter_mismatch_is_warning(self, mock_fmt, mock_count, tmp_path):
        out = tmp_path / "o.m4b"
        out.write_bytes(b"x")
        validate_output(out, 3)

    @patch("audiobook_automator.stages.convert.count_chapters")
    @patch("audiobook_automator.stages.convert.get_format_name", return_value="mov,mp4,m4a")
    def test_single_file_skips_chapter_check(self, mock_fmt, mock_count, tmp_path):
        out = tmp_path / "o.m4b"
        out.write_bytes(b"x")
        validate_output(out, 1)
        mock_count.assert_not_called()
