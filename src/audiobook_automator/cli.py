"""CLI entry point for the audiobook automator."""

import os
import sys
from pathlib import Path

import click
from loguru import logger

from .config import PipelineConfig
from .errors import InvalidInputPath, LockError
from .runner import PipelineRunner

log = logger.bind(stage="cli")

EXIT_INVALID_INPUT = 1
EXIT_BOOK_FAILED = 2

_USER_CONFIG = Path.home() / ".config" / "audiobook-automator" / ".env"


def _find_config_file() -> Path | None:
    """First .env found in cwd, then the per-user config dir."""
    return next((p for p in (Path.cwd() / ".env", _USER_CONFIG) if p.is_file()), None)


def _parse_env_line(raw: str) -> tuple[str, str] | None:
    line = raw.strip()
    if not line or line[0] == "#" or "=" not in line:
        return None
    name, _, value = line.partition("=")
    name = name.removeprefix("export ").strip()
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        value = value[1:-1]
    # ${VAR:-default} expansions are left to the shell
    if "${" in value:
        return None
    return name, value


def _load_env_file(env_file: Path) -> None:
    """Copy KEY=value pairs from env_file into os.environ.

    Variables already set in the environment win over the file.
    """
    for raw in env_file.read_text().splitlines():
        pair = _parse_env_line(raw)
        if pair:
            os.environ.setdefault(*pair)


def _stdin_is_interactive() -> bool:
    try:
        return sys.stdin is not None and sys.stdin.isatty()
    except ValueError:
        return False


@click.command()
@click.argument("input_dir", type=click.Path(path_type=Path))
@click.option(
    "-o",
    "--output",
    "output_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Library root for converted books.",
)
@click.option(
    "--remove-originals/--keep-originals",
    default=None,
    help="Delete source audio after a verified conversion (default: keep).",
)
@click.option("-r", "--recursive", is_flag=True, help="Treat nested audio as part of the book.")
@click.option("-f", "--force", is_flag=True, help="Re-process even if the destination exists.")
@click.option("--dry-run", is_flag=True, help="Show what would happen without doing it.")
@click.option("--no-online", is_flag=True, help="Skip the online metadata lookup.")
@click.option("--no-lock", is_flag=True, help="Skip the global instance lock.")
@click.option("--verify", is_flag=True, help="Check the library for damaged books after the batch.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to .env file.",
)
def main(
    input_dir: Path,
    output_dir: Path | None,
    remove_originals: bool | None,
    recursive: bool,
    force: bool,
    dry_run: bool,
    no_online: bool,
    no_lock: bool,
    verify: bool,
    verbose: bool,
    config_file: str | None,
) -> None:
    """Convert folders of audiobook audio into chaptered, tagged M4B files."""
    env_file = Path(config_file) if config_file else _find_config_file()
    if env_file is not None:
        _load_env_file(env_file)

    # Flags go in as kwargs, the highest settings layer
    config_kwargs: dict[str, object] = {
        "recursive": recursive,
        "force": force,
        "dry_run": dry_run,
        "verbose": verbose,
    }
    if output_dir is not None:
        config_kwargs["output_dir"] = output_dir.resolve()
    if remove_originals is not None:
        config_kwargs["delete_originals"] = remove_originals
    if no_online:
        config_kwargs["online_lookup"] = False
    if not _stdin_is_interactive():
        config_kwargs["non_interactive"] = True
    if verbose:
        config_kwargs["log_level"] = "DEBUG"

    config = PipelineConfig(**config_kwargs)  # type: ignore[arg-type]
    config.setup_logging()
    if env_file is not None:
        log.debug(f"Settings file: {env_file}")

    source = input_dir.resolve()
    log.info(
        f"Starting automator: source={source} output={config.output_dir} "
        f"dry_run={dry_run} force={force} delete_originals={config.delete_originals}"
    )

    runner = PipelineRunner(config)
    try:
        result = runner.run(source, skip_lock=no_lock)
    except (InvalidInputPath, LockError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_INVALID_INPUT)

    if verify:
        from .ops.verify import print_report, verify_library

        print_report(verify_library(config.output_dir))

    if result.failed:
        sys.exit(EXIT_BOOK_FAILED)
