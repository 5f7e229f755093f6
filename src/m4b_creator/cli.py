"""CLI entry point for m4b-creator."""

import signal
import threading
from pathlib import Path

import click
from loguru import logger

from .config import CreatorConfig
from .discovery import AudiobookDiscoverer
from .errors import DependencyError
from .orchestrator import ConversionOrchestrator, summarize
from .transcoder import TranscoderGateway
from .ui import ClickProgressReporter, ClickUserInterface

log = logger.bind(stage="cli")


def _valid_source_dirs(paths: tuple[str, ...], ui: ClickUserInterface) -> list[Path]:
    """Keep existing directories, warning about everything else."""
    valid = []
    for raw in paths:
        path = Path(raw).resolve()
        if path.is_dir():
            valid.append(path)
        else:
            ui.display_warning(f"Skipping {raw}: not a directory")
    return valid


@click.command()
@click.argument("source_dirs", nargs=-1, required=True, type=click.Path())
@click.option(
    "-o",
    "--output-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory for the .m4b files (default: current directory).",
)
@click.option(
    "--telegram",
    is_flag=True,
    help="Encode for Telegram playback and verify extradata afterwards.",
)
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
    source_dirs: tuple[str, ...],
    output_dir: str | None,
    telegram: bool,
    verbose: bool,
    config_file: str | None,
) -> None:
    """Bind each SOURCE_DIR of MP3 files into a chaptered M4B audiobook."""
    # Pass CLI flags as kwargs; unset flags leave .env/env values alone
    config_kwargs: dict = {}
    if config_file:
        config_kwargs["_env_file"] = config_file
    if output_dir is not None:
        config_kwargs["output_dir"] = Path(output_dir)
    if telegram:
        config_kwargs["telegram_mode"] = True
    if verbose:
        config_kwargs["verbose"] = True
        config_kwargs["log_level"] = "DEBUG"

    config = CreatorConfig(**config_kwargs)
    config.setup_logging()

    ui = ClickUserInterface()
    gateway = TranscoderGateway(config)

    try:
        gateway.ensure_dependencies()
    except DependencyError as e:
        log.error(str(e))
        raise click.ClickException(str(e)) from e

    sources = _valid_source_dirs(source_dirs, ui)
    if not sources:
        raise click.ClickException("No valid source directories to convert.")

    config.ensure_dirs()

    orchestrator = ConversionOrchestrator(
        gateway=gateway,
        discoverer=AudiobookDiscoverer(gateway, max_workers=config.probe_workers),
        ui=ui,
        progress=ClickProgressReporter(),
        temp_prefix=config.temp_prefix,
    )

    cancel = threading.Event()

    def _request_cancel(signum, frame):
        if not cancel.is_set():
            ui.display_warning("\nCancelling after the current step...")
        cancel.set()

    previous_handler = signal.signal(signal.SIGINT, _request_cancel)
    try:
        log.info(
            f"Starting: {len(sources)} books -> {config.output_dir} "
            f"(telegram={config.telegram_mode})"
        )
        results = orchestrator.convert_batch(sources, config.options(), cancel)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    summary = summarize(results, total=len(sources))
    orchestrator.display_summary(summary)

    if summary.failed or summary.cancelled:
        raise SystemExit(1)
