"""Gateway to the ffmpeg/ffprobe executables.

Writes the two control files ffmpeg consumes:
1. concat_list.txt -- concat demuxer list (one `file '<path>'` line per track)
2. chapters.txt -- FFMETADATA1 tags and chapter markers

then runs the MP3 -> M4B transcode and, in Telegram mode, checks the
extradata_size=2 post-condition on the result.
"""

from __future__ import annotations

import shutil
import subprocess
import threading
from collections import deque
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from .errors import DependencyError, ExternalToolError
from .ffprobe import get_extradata_size, probe_audio
from .models import (
    BASELINE_ENCODER,
    CHAPTER_METADATA_NAME,
    CONCAT_LIST_NAME,
    ENCODER_PRIORITY,
    AudiobookJob,
    AudioProbe,
    Chapter,
    ConversionOptions,
)

if TYPE_CHECKING:
    from .config import CreatorConfig

log = logger.bind(stage="transcoder")

TELEGRAM_EXTRADATA_SIZE = 2

# Seconds to wait after terminate() before kill()
_TERMINATE_GRACE = 5.0

# Applied in order; the backslash must come first
_METADATA_ESCAPES = (
    ("\\", "\\\\"),
    ("=", "\\="),
    (";", "\\;"),
    ("#", "\\#"),
    ("\n", "\\\n"),
)


def escape_concat_path(path: Path | str) -> str:
    """Quote-safe path for a concat demuxer `file '...'` line."""
    normalized = str(path).replace("\\", "/")
    return normalized.replace("'", "'\\''")


def escape_metadata_value(value: str) -> str:
    """Escape a free-text value for the FFMETADATA1 format."""
    for raw, escaped in _METADATA_ESCAPES:
        value = value.replace(raw, escaped)
    return value


def build_ffmpeg_args(
    concat_list: Path,
    chapter_metadata: Path,
    output: Path,
    job: AudiobookJob,
    options: ConversionOptions,
    encoder: str,
) -> list[str]:
    """Arguments (without the executable) for the M4B transcode.

    Audio comes from input 0 (the concat list), tags and chapters from
    input 1. Bitrate and channel count always follow the source.
    """
    args = [
        "-y",
        "-hide_banner",
        "-nostats",
        "-loglevel", "error",
        "-progress", "pipe:1",
        "-f", "concat",
        "-safe", "0",
        "-i", str(concat_list),
        "-i", str(chapter_metadata),
        "-map", "0:a",
        "-map_metadata", "1",
        "-map_chapters", "1",
    ]

    if options.telegram_mode:
        args += ["-c:a", encoder, "-profile:a", "aac_low"]
    elif encoder == BASELINE_ENCODER:
        # The native encoder's default fast coder is noticeably worse
        args += ["-c:a", BASELINE_ENCODER, "-aac_coder", "twoloop"]
    else:
        args += ["-c:a", encoder]

    args += [
        "-b:a", f"{job.source_bitrate_kbps}k",
        "-ac", str(job.source_channels),
    ]

    if options.telegram_mode:
        args += [
            "-movflags", "+faststart",
            "-avoid_negative_ts", "make_zero",
            "-fflags", "+genpts",
        ]
    else:
        args += ["-brand", "isom", "-movflags", "+faststart"]

    args.append(str(output))
    return args


def parse_progress_line(line: str, total_seconds: float) -> float | None:
    """Map one `-progress` key=value line to a 0-100 percentage.

    out_time_ms is reported in microseconds, same as out_time_us.
    Returns None for lines that carry no position.
    """
    key, sep, value = line.strip().partition("=")
    if not sep:
        return None
    if key == "progress" and value == "end":
        return 100.0
    if key not in ("out_time_us", "out_time_ms") or total_seconds <= 0:
        return None
    try:
        elapsed = int(value) / 1_000_000
    except ValueError:
        return None
    return max(0.0, min(100.0, elapsed / total_seconds * 100))


class TranscoderGateway:
    """Owns the ffmpeg/ffprobe paths and the per-process encoder choice."""

    def __init__(self, config: CreatorConfig) -> None:
        self.ffmpeg = config.ffmpeg_path
        self.ffprobe = config.ffprobe_path
        self._encoder: str | None = None
        self._encoder_lock = threading.Lock()

    # -- Dependencies --

    def _resolve_all(self) -> tuple[str | None, str | None]:
        # A path with a directory part is checked as-is, a bare name via PATH
        return shutil.which(self.ffmpeg), shutil.which(self.ffprobe)

    def check_dependencies(self) -> tuple[bool, str | None]:
        """Check that the configured ffmpeg and ffprobe exist. No side effects."""
        ffmpeg, ffprobe = self._resolve_all()
        if ffmpeg is None:
            return False, (
                "FFmpeg not found. Please install FFmpeg and ensure it's in your PATH."
            )
        if ffprobe is None:
            return False, (
                "FFprobe not found. Please install FFprobe and ensure it's in your PATH."
            )
        return True, None

    def ensure_dependencies(self) -> None:
        """Raise DependencyError if ffmpeg or ffprobe is missing.

        On success every later subprocess runs the resolved executables.
        """
        available, message = self.check_dependencies()
        if not available:
            raise DependencyError(message)
        self.ffmpeg, self.ffprobe = self._resolve_all()
        log.debug(f"Using ffmpeg={self.ffmpeg}, ffprobe={self.ffprobe}")

    # -- Probing --

    def probe(self, file: Path) -> AudioProbe:
        return probe_audio(file, ffprobe=self.ffprobe)

    # -- Encoder detection --

    def _list_encoders(self) -> str:
        result = subprocess.run(
            [self.ffmpeg, "-hide_banner", "-encoders"],
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            raise ExternalToolError(self.ffmpeg, result.returncode, result.stderr.strip())
        return result.stdout

    def detect_best_encoder(self) -> str:
        """Pick the best AAC encoder ffmpeg offers, probing at most once.

        Detection is a textual search of `ffmpeg -encoders` output for the
        name as a whitespace-delimited token. Falls back to the native
        encoder, which every ffmpeg build ships.
        """
        with self._encoder_lock:
            if self._encoder is not None:
                return self._encoder

            try:
                tokens = set(self._list_encoders().split())
            except (OSError, ExternalToolError) as e:
                log.warning(f"Could not list ffmpeg encoders: {e}")
                tokens = set()

            encoder = next(
                (name for name in ENCODER_PRIORITY if name in tokens),
                BASELINE_ENCODER,
            )
            log.info(f"Using {encoder} encoder")
            self._encoder = encoder
            return encoder

    # -- Control files --

    def render_concat_list(self, audio_files: Iterable[Path], work_dir: Path) -> Path:
        """Write the concat demuxer list. An empty track list gives an empty file."""
        list_path = work_dir / CONCAT_LIST_NAME
        lines = [
            f"file '{escape_concat_path(Path(f).absolute())}'\n" for f in audio_files
        ]
        list_path.write_text("".join(lines), encoding="utf-8")
        log.debug(f"Wrote {len(lines)} entries to {list_path.name}")
        return list_path

    def render_chapter_metadata(
        self,
        chapters: Sequence[Chapter],
        title: str | None,
        author: str | None,
        work_dir: Path,
    ) -> Path:
        """Write the FFMETADATA1 file with book tags and whole-second chapters."""
        metadata_path = work_dir / CHAPTER_METADATA_NAME
        lines = [";FFMETADATA1"]

        if title and title.strip():
            lines.append(f"title={escape_metadata_value(title)}")
            lines.append(f"album={escape_metadata_value(title)}")
        if author and author.strip():
            lines.append(f"artist={escape_metadata_value(author)}")

        lines.append("genre=Audiobook")
        lines.append(f"date={datetime.now().year}")
        lines.append("")

        for chapter in chapters:
            lines.extend(
                [
                    "[CHAPTER]",
                    "TIMEBASE=1/1",
                    f"START={chapter.start_seconds_int}",
                    f"END={chapter.end_seconds_int}",
                    f"title={escape_metadata_value(chapter.title)}",
                    "",
                ]
            )

        metadata_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        log.debug(f"Wrote {len(chapters)} chapters to {metadata_path.name}")
        return metadata_path

    # -- Transcode --

    def transcode(
        self,
        concat_list: Path,
        chapter_metadata: Path,
        output: Path,
        job: AudiobookJob,
        options: ConversionOptions,
        on_progress: Callable[[float], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> bool:
        """Run ffmpeg to produce the M4B file.

        Returns False (never raises) on non-zero exit, a missing ffmpeg,
        or cancellation. Progress is reported as a 0-100 percentage.
        """
        encoder = self.detect_best_encoder()
        cmd = [self.ffmpeg] + build_ffmpeg_args(
            concat_list, chapter_metadata, output, job, options, encoder
        )
        log.debug(f"Command: {' '.join(cmd)}")

        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            log.error(f"Failed to start ffmpeg: {e}")
            return False

        stderr_tail: deque[str] = deque(maxlen=20)
        cancelled = threading.Event()

        # Exiting the block closes both pipes and reaps the process
        with proc:
            stderr_reader = threading.Thread(
                target=lambda: stderr_tail.extend(proc.stderr),
                daemon=True,
            )
            stderr_reader.start()

            if cancel is not None:
                threading.Thread(
                    target=self._watch_cancel,
                    args=(proc, cancel, cancelled),
                    daemon=True,
                ).start()

            try:
                for line in proc.stdout:
                    pct = parse_progress_line(line, job.total_duration_seconds)
                    if pct is not None and on_progress is not None:
                        on_progress(pct)
                proc.wait()
            finally:
                if proc.poll() is None:
                    self._terminate(proc)
                stderr_reader.join(timeout=1.0)

        if cancelled.is_set():
            log.warning(f"Transcode cancelled: {output.name}")
            return False

        if proc.returncode != 0:
            log.error(
                f"ffmpeg exited with code {proc.returncode}: "
                f"{''.join(stderr_tail).strip()[-500:]}"
            )
            return False

        return True

    @staticmethod
    def _terminate(proc: subprocess.Popen) -> None:
        proc.terminate()
        try:
            proc.wait(timeout=_TERMINATE_GRACE)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()

    def _watch_cancel(
        self,
        proc: subprocess.Popen,
        cancel: threading.Event,
        cancelled: threading.Event,
    ) -> None:
        while proc.poll() is None:
            if cancel.wait(timeout=0.2):
                if proc.poll() is None:
                    cancelled.set()
                    log.debug("Cancellation requested, stopping ffmpeg")
                    self._terminate(proc)
                return

    # -- Post-conversion --

    def verify_compatibility(self, output: Path) -> bool:
        """True if the first audio stream reports extradata_size=2.

        Any probing failure counts as "not compatible".
        """
        try:
            size = get_extradata_size(output, ffprobe=self.ffprobe)
        except (OSError, ValueError) as e:
            log.debug(f"Extradata probe failed for {output.name}: {e}")
            return False
        return size == TELEGRAM_EXTRADATA_SIZE
