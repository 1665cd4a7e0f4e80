"""Convert stage -- mux a book's audio into one chaptered M4B via ffmpeg.

Muxing is an ordered list of strategies sharing one interface. The first
always runs; each later one runs only if the previous failure's reason is
in its ``retry_on`` set. Timeouts, stdin-blocked runs, and invalid input
data are never retried.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import click
from loguru import logger

from ..errors import SubprocessFailed, SubprocessTimeout
from ..ffprobe import count_chapters, get_format_name
from ..models import BookIdentity, ConversionJob, FailureReason, ProcessResult, ProcessRun
from ..sanitize import truncate_utf8
from ..supervisor import ProcessSupervisor, ProgressCallback, tail_stderr
from .concat import safe_link_name, write_concat_list

if TYPE_CHECKING:
    from ..config import PipelineConfig

log = logger.bind(stage="convert")

DESCRIPTION_MAX_BYTES = 255


def metadata_args(identity: BookIdentity) -> list[str]:
    """-metadata key=value pairs for the container."""
    pairs: list[tuple[str, str]] = [
        ("title", identity.title),
        ("artist", identity.author),
        ("album_artist", identity.author),
        ("album", identity.title),
        ("genre", identity.genre),
    ]
    if identity.narrator:
        pairs += [("composer", identity.narrator), ("comment", f"Narrator: {identity.narrator}")]
    if identity.series:
        pairs.append(("show", identity.series))
        if identity.series_part:
            pairs.append(("episode_id", identity.series_part))
    if identity.year:
        pairs.append(("date", identity.year))
    if identity.description:
        pairs.append(("description", truncate_utf8(identity.description, DESCRIPTION_MAX_BYTES)))

    args = []
    for key, value in pairs:
        if value:
            args += ["-metadata", f"{key}={value}"]
    return args


def build_mux_command(
    config: PipelineConfig,
    files_txt: Path,
    metadata_txt: Path,
    output: Path,
    identity: BookIdentity,
    cover: Path | None = None,
    copy_audio: bool = False,
) -> list[str]:
    """ffmpeg command concatenating files_txt into one chaptered container."""
    cmd = [
        config.ffmpeg_bin,
        "-nostdin",
        "-y",
        "-hide_banner",
        "-f", "concat",
        "-safe", "0",
        "-protocol_whitelist", "file,pipe",
        "-i", str(files_txt),
        "-i", str(metadata_txt),
    ]
    if cover is not None:
        cmd += ["-i", str(cover)]
    cmd += ["-map_metadata", "1", "-map_chapters", "1", "-map", "0:a"]
    if cover is not None:
        cmd += ["-map", "2:v", "-c:v", "copy", "-disposition:v:0", "attached_pic"]
    if copy_audio:
        cmd += ["-c:a", "copy"]
    else:
        cmd += ["-c:a", config.codec, "-b:a", f"{config.bitrate}k"]
    cmd += metadata_args(identity)
    cmd += ["-movflags", "+faststart", "-progress", "pipe:1", "-nostats", str(output)]
    return cmd


def build_transcode_command(config: PipelineConfig, source: Path, output: Path) -> list[str]:
    """ffmpeg command re-encoding one file to AAC, audio only."""
    return [
        config.ffmpeg_bin,
        "-nostdin",
        "-y",
        "-hide_banner",
        "-i", str(source),
        "-vn",
        "-map", "0:a:0",
        "-c:a", config.codec,
        "-b:a", f"{config.bitrate}k",
        str(output),
    ]


@dataclass
class MuxContext:
    """Everything a strategy needs besides the job itself."""

    config: PipelineConfig
    supervisor: ProcessSupervisor
    metadata_txt: Path
    output: Path
    on_progress: ProgressCallback | None = None
    last_stderr: Path | None = None
    attempts: list[str] = field(default_factory=list)

    def run(self, command: list[str], work_dir: Path, label: str, progress: bool = True) -> ProcessResult:
        stderr_sink = work_dir / f"ffmpeg_{label}.err"
        self.last_stderr = stderr_sink
        return self.supervisor.run(
            ProcessRun(
                command=command,
                timeout=self.config.convert_timeout,
                log_sink=work_dir / f"ffmpeg_{label}.log",
                stderr_sink=stderr_sink,
            ),
            on_progress=self.on_progress if progress else None,
        )


class MuxStrategy:
    name = "base"
    retry_on: frozenset[FailureReason] = frozenset()

    def attempt(self, job: ConversionJob, ctx: MuxContext) -> ProcessResult:
        raise NotImplementedError


class ConcatDemuxerStrategy(MuxStrategy):
    """Concat demuxer over the original files, cover art attached."""

    name = "concat"

    def attempt(self, job: ConversionJob, ctx: MuxContext) -> ProcessResult:
        files_txt = write_concat_list(job.audio_files, job.work_dir / "files.txt")
        cmd = build_mux_command(
            ctx.config, files_txt, ctx.metadata_txt, ctx.output, job.identity, cover=job.cover_path
        )
        return ctx.run(cmd, job.work_dir, self.name)


class SimplifiedConcatStrategy(MuxStrategy):
    """Concat list of plain-named symlinks and no cover input.

    Sidesteps awkward characters in source paths and cover images the
    muxer cannot embed.
    """

    name = "simplified"
    retry_on = frozenset({FailureReason.GENERIC})

    def attempt(self, job: ConversionJob, ctx: MuxContext) -> ProcessResult:
        link_dir = job.work_dir / "links"
        link_dir.mkdir(exist_ok=True)
        inputs = []
        for i, audio_file in enumerate(job.audio_files):
            link = link_dir / safe_link_name(i, audio_file)
            try:
                link.unlink(missing_ok=True)
                link.symlink_to(audio_file)
                inputs.append(link)
            except OSError as e:
                log.debug(f"Cannot symlink {audio_file.name}, using original path: {e}")
                inputs.append(audio_file)
        files_txt = write_concat_list(inputs, job.work_dir / "files_simplified.txt")
        cmd = build_mux_command(ctx.config, files_txt, ctx.metadata_txt, ctx.output, job.identity)
        return ctx.run(cmd, job.work_dir, self.name)


class ReencodeThenConcatStrategy(MuxStrategy):
    """Re-encode every file to AAC on its own, then stream-copy them together."""

    name = "reencode"
    retry_on = frozenset({FailureReason.GENERIC})

    def attempt(self, job: ConversionJob, ctx: MuxContext) -> ProcessResult:
        parts_dir = job.work_dir / "parts"
        parts_dir.mkdir(exist_ok=True)
        parts = []
        total = len(job.audio_files)
        for i, audio_file in enumerate(job.audio_files):
            part = parts_dir / f"{i:04d}.m4a"
            click.echo(f"  REENCODE: {i + 1}/{total} {audio_file.name}")
            result = ctx.run(
                build_transcode_command(ctx.config, audio_file, part),
                job.work_dir,
                f"part{i:04d}",
                progress=False,
            )
            if not result.ok:
                log.error(f"Re-encode of {audio_file.name} failed ({result.reason})")
                return result
            parts.append(part)

        files_txt = write_concat_list(parts, job.work_dir / "files_parts.txt")
        cmd = build_mux_command(
            ctx.config,
            files_txt,
            ctx.metadata_txt,
            ctx.output,
            job.identity,
            cover=job.cover_path,
            copy_audio=True,
        )
        return ctx.run(cmd, job.work_dir, self.name)


DEFAULT_STRATEGIES: tuple[MuxStrategy, ...] = (
    ConcatDemuxerStrategy(),
    SimplifiedConcatStrategy(),
    ReencodeThenConcatStrategy(),
)


def mux_with_fallback(
    job: ConversionJob,
    ctx: MuxContext,
    strategies: Sequence[MuxStrategy] = DEFAULT_STRATEGIES,
) -> ProcessResult:
    """Try strategies in order until one succeeds or none is eligible."""
    result: ProcessResult | None = None
    for strategy in strategies:
        if result is not None:
            if result.reason not in strategy.retry_on:
                log.debug(f"Skipping {strategy.name}: not retried after {result.reason}")
                continue
            log.warning(f"{ctx.attempts[-1]} failed ({result.reason}), trying {strategy.name}")
        ctx.output.unlink(missing_ok=True)
        ctx.attempts.append(strategy.name)
        result = strategy.attempt(job, ctx)
        if result.ok:
            return result
    if result is None:
        raise ValueError("No mux strategies configured")
    return result


def validate_output(output: Path, expected_chapters: int) -> None:
    """Raise SubprocessFailed(INVALID_OUTPUT) if the artifact is unusable."""

    def _fail(detail: str) -> None:
        log.error(detail)
        raise SubprocessFailed(0, FailureReason.INVALID_OUTPUT, detail)

    if not output.exists():
        _fail(f"Output file not created: {output}")
    if output.stat().st_size == 0:
        _fail(f"Output file is empty: {output}")

    format_name = get_format_name(output)
    if "mov" not in format_name and "mp4" not in format_name:
        _fail(f"Expected mov/mp4 format, got {format_name!r}")

    if expected_chapters > 1:
        chapter_count = count_chapters(output)
        if chapter_count == 0:
            _fail(f"No chapters in {output.name}, expected {expected_chapters}")
        if chapter_count != expected_chapters:
            log.warning(f"Chapter count mismatch: expected {expected_chapters}, got {chapter_count}")


def run(
    job: ConversionJob,
    config: PipelineConfig,
    supervisor: ProcessSupervisor,
    metadata_txt: Path,
    on_progress: ProgressCallback | None = None,
    strategies: Sequence[MuxStrategy] = DEFAULT_STRATEGIES,
) -> Path:
    """Produce the M4B for a job inside its scratch directory.

    Returns the temporary output path. Raises SubprocessTimeout or
    SubprocessFailed; never touches the source files.
    """
    output_dir = job.work_dir / "output"
    output = output_dir / job.output_filename

    ctx = MuxContext(
        config=config,
        supervisor=supervisor,
        metadata_txt=metadata_txt,
        output=output,
        on_progress=on_progress,
    )

    if config.dry_run:
        files_txt = job.work_dir / "files.txt"
        cmd = build_mux_command(config, files_txt, metadata_txt, output, job.identity, job.cover_path)
        log.info(f"[DRY-RUN] Would convert: {job.source_dir.name}")
        log.info(f"[DRY-RUN] Command: {' '.join(cmd)}")
        return output

    output_dir.mkdir(parents=True, exist_ok=True)
    log.info(f"Converting: {job.source_dir.name} ({len(job.audio_files)} files)")
    result = mux_with_fallback(job, ctx, strategies)

    if not result.ok:
        detail = tail_stderr(ctx.last_stderr) if ctx.last_stderr else ""
        log.error(f"ffmpeg failed for {job.source_dir.name} after {ctx.attempts}: {detail[-500:]}")
        last_line = detail.splitlines()[-1] if detail else ""
        if result.timed_out:
            raise SubprocessTimeout(config.convert_timeout, last_line)
        raise SubprocessFailed(
            result.exit_code, result.reason or FailureReason.GENERIC, last_line
        )

    validate_output(output, len(job.chapters))

    click.echo(
        f"  CONVERT: {job.source_dir.name} -> {output.name} "
        f"({config.bitrate}k {config.codec}, via {ctx.attempts[-1]})"
    )
    return output
