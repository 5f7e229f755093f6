"""Sequential batch processor for MP3 -> M4B conversion.

Each source directory is one job: discover -> write control files into a
scratch dir -> transcode -> post-process. Jobs run strictly one at a time,
and any error inside a job becomes a failed ConversionResult so the rest
of the batch keeps going.
"""

import subprocess
import sys
import tempfile
import threading
from pathlib import Path

from loguru import logger

from .discovery import AudiobookDiscoverer
from .models import BatchSummary, ConversionOptions, ConversionResult
from .sanitize import output_filename
from .transcoder import TranscoderGateway
from .ui import ProgressReporter, UserInterface

log = logger.bind(stage="orchestrator")

TRANSCODE_FAILED_MESSAGE = (
    "FFmpeg conversion failed. Check the console output for details."
)
TELEGRAM_WARNING_MESSAGE = (
    "Telegram extradata verification failed (extradata_size != 2). "
    "The file may not be fully compatible with Telegram."
)


def remove_quarantine(path: Path) -> None:
    """Strip macOS's com.apple.quarantine xattr. Best effort, no-op elsewhere."""
    if sys.platform != "darwin":
        return
    try:
        subprocess.run(
            ["xattr", "-d", "com.apple.quarantine", str(path)],
            capture_output=True,
            text=True,
        )
    except OSError as e:
        log.debug(f"xattr failed for {path.name}: {e}")


def summarize(results: list[ConversionResult], total: int | None = None) -> BatchSummary:
    """Count completed and failed results.

    total is the number of jobs requested; a shortfall means the batch was
    cancelled before reaching every directory.
    """
    failed = [r for r in results if not r.success]
    requested = len(results) if total is None else total
    return BatchSummary(
        completed=len(results) - len(failed),
        failed=len(failed),
        total=requested,
        cancelled=len(results) < requested,
        failed_titles=[r.title for r in failed],
    )


class ConversionOrchestrator:
    """Drives single conversions and sequential batches.

    Attributes:
        gateway: ffmpeg/ffprobe access (probing, control files, transcode)
        discoverer: Builds AudiobookJobs from source directories
        ui: Receives status lines and per-job summaries
        progress: Displays transcode progress
    """

    def __init__(
        self,
        gateway: TranscoderGateway,
        discoverer: AudiobookDiscoverer,
        ui: UserInterface,
        progress: ProgressReporter,
        temp_prefix: str = "m4b-creator-",
    ) -> None:
        self.gateway = gateway
        self.discoverer = discoverer
        self.ui = ui
        self.progress = progress
        self.temp_prefix = temp_prefix

    def convert(
        self,
        source_dir: Path,
        options: ConversionOptions,
        cancel: threading.Event | None = None,
    ) -> ConversionResult:
        """Convert one source directory. Never raises for per-job errors."""
        try:
            return self._convert(source_dir, options, cancel)
        except Exception as e:
            log.opt(exception=e).debug(f"Conversion of {source_dir.name} raised")
            log.error(f"Error converting {source_dir.name}: {e}")
            return ConversionResult.failed(source_dir.name, f"Conversion failed: {e}")

    def _convert(
        self,
        source_dir: Path,
        options: ConversionOptions,
        cancel: threading.Event | None,
    ) -> ConversionResult:
        job = self.discoverer.discover(source_dir)
        if job is None:
            return ConversionResult.failed(
                source_dir.name, f"No MP3 files found in '{source_dir.absolute()}'"
            )

        options.output_dir.mkdir(parents=True, exist_ok=True)
        output_path = options.output_dir / output_filename(job.title, source_dir.name)

        # Scratch dir is removed on every exit path; cleanup errors are ignored
        with tempfile.TemporaryDirectory(
            prefix=self.temp_prefix, ignore_cleanup_errors=True
        ) as scratch:
            work_dir = Path(scratch)
            concat_list = self.gateway.render_concat_list(job.audio_files, work_dir)
            chapter_metadata = self.gateway.render_chapter_metadata(
                job.chapters, job.title, job.author, work_dir
            )

            encoder = self.gateway.detect_best_encoder()
            self.ui.display_info(f"Using encoder: {encoder}")
            self.ui.display_info(
                f"Source: {job.source_bitrate_kbps} kbps, "
                f"{job.source_channels} channel(s)"
            )
            self.ui.display_info(f"Chapters: {len(job.chapters)}")

            log.info(f"Converting: {job.title} -> {output_path}")
            success = self.progress.execute_with_progress(
                f"Converting {job.title}",
                lambda on_progress: self.gateway.transcode(
                    concat_list,
                    chapter_metadata,
                    output_path,
                    job,
                    options,
                    on_progress=on_progress,
                    cancel=cancel,
                ),
            )

        if not success:
            # Don't leave a truncated file under the final name
            output_path.unlink(missing_ok=True)
            return ConversionResult.failed(job.title, TRANSCODE_FAILED_MESSAGE)

        remove_quarantine(output_path)

        extradata_valid = None
        warning = None
        if options.telegram_mode:
            extradata_valid = self.gateway.verify_compatibility(output_path)
            if not extradata_valid:
                log.warning(f"Extradata check failed for {output_path.name}")
                warning = TELEGRAM_WARNING_MESSAGE

        return ConversionResult(
            success=True,
            title=job.title,
            output_file=output_path,
            duration_seconds=job.total_duration_seconds,
            file_size_bytes=output_path.stat().st_size,
            warning_message=warning,
            telegram_extradata_valid=extradata_valid,
        )

    def convert_batch(
        self,
        source_dirs: list[Path],
        options: ConversionOptions,
        cancel: threading.Event | None = None,
    ) -> list[ConversionResult]:
        """Convert directories one after another.

        Cancellation is checked before each job; results gathered so far are
        returned as-is when the batch stops early.
        """
        results: list[ConversionResult] = []
        if not source_dirs:
            log.warning("No books to process")
            return results

        log.info(f"Starting batch conversion: {len(source_dirs)} books")

        for source_dir in source_dirs:
            if cancel is not None and cancel.is_set():
                log.warning(
                    f"Cancelled, skipping {len(source_dirs) - len(results)} remaining books"
                )
                break

            self.ui.display_processing_status(f"\nProcessing: {source_dir.name}")
            result = self.convert(source_dir, options, cancel)
            results.append(result)
            self._display_result(result)

        return results

    def _display_result(self, result: ConversionResult) -> None:
        """Report one job's outcome to the user."""
        if not result.success:
            log.error(f"Failed: {result.title}")
            self.ui.display_error(f"✗ Failed: {result.title}")
            if result.error_message:
                self.ui.display_error(f"  {result.error_message}")
            return

        log.info(f"Completed: {result.title}")
        self.ui.display_success(f"✓ Completed: {result.title}")
        self.ui.display_info(f"  Duration: {result.duration_formatted}")
        self.ui.display_info(f"  Size: {result.file_size_formatted}")
        if result.output_file is not None:
            self.ui.display_info(f"  Output: {result.output_file.absolute()}")

        if result.telegram_extradata_valid is True:
            self.ui.display_success("  Telegram extradata: Valid")
        elif result.telegram_extradata_valid is False:
            self.ui.display_warning(f"  ⚠ {result.warning_message}")

    def display_summary(self, summary: BatchSummary) -> None:
        """Display final batch summary."""
        self.ui.display_processing_status(
            f"\nBatch conversion complete: "
            f"{summary.completed}/{summary.total} succeeded, {summary.failed} failed"
        )
        if summary.cancelled:
            self.ui.display_warning(
                f"Cancelled before {summary.total - summary.completed - summary.failed} books"
            )
        if summary.failed_titles:
            self.ui.display_error("\nFailed books:")
            for title in summary.failed_titles:
                self.ui.display_error(f"  - {title}")
