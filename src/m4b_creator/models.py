"""Core enums, constants, and immutable data types for M4B creation.

Types:
    Chapter           -- One chapter span in seconds (start inclusive, end shared
                         with the next chapter's start).
    ChapterSource     -- Which algorithm produced a job's chapters (metadata, files).
    AudioProbe        -- Per-file audio properties read via ffprobe.
    AudiobookJob      -- Everything needed to bind one source directory into an M4B.
    ConversionOptions -- Output directory and Telegram-compatibility toggle.
    ConversionResult  -- Outcome of a single job, success or failure.
    BatchSummary      -- Counts over a list of results.
"""

import math
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

AUDIO_EXTENSION = ".mp3"

# Structured metadata sits beside the audio files
METADATA_RELATIVE_PATH = Path("metadata") / "metadata.json"

# Descending priority: AudioToolbox > Fraunhofer FDK > ffmpeg native
ENCODER_PRIORITY: tuple[str, ...] = ("aac_at", "libfdk_aac", "aac")
BASELINE_ENCODER = "aac"

DEFAULT_BITRATE_KBPS = 128
DEFAULT_CHANNELS = 2

CONCAT_LIST_NAME = "concat_list.txt"
CHAPTER_METADATA_NAME = "chapters.txt"

_SIZE_UNITS = ("B", "KB", "MB", "GB")


class ChapterSource(StrEnum):
    METADATA = "metadata"
    FILES = "files"


@dataclass(frozen=True)
class Chapter:
    title: str
    start_seconds: float
    end_seconds: float

    @property
    def start_seconds_int(self) -> int:
        """Start truncated to whole seconds (FFMETADATA uses TIMEBASE=1/1)."""
        return math.floor(self.start_seconds)

    @property
    def end_seconds_int(self) -> int:
        return math.floor(self.end_seconds)

    @property
    def duration_seconds(self) -> float:
        return self.end_seconds - self.start_seconds


@dataclass(frozen=True)
class AudioProbe:
    """Audio properties of one file as reported by ffprobe."""

    duration_seconds: float
    bitrate_kbps: int = DEFAULT_BITRATE_KBPS
    channels: int = DEFAULT_CHANNELS


@dataclass(frozen=True)
class AudiobookJob:
    """A discovered audiobook, ready for conversion.

    audio_files and chapters are both in playback order. Chapters partition
    [0, total_duration_seconds] without gaps or overlap.
    """

    source_dir: Path
    title: str
    audio_files: tuple[Path, ...]
    chapters: tuple[Chapter, ...]
    total_duration_seconds: float
    source_bitrate_kbps: int
    source_channels: int
    chapter_source: ChapterSource
    author: str | None = None


@dataclass(frozen=True)
class ConversionOptions:
    output_dir: Path
    telegram_mode: bool = False


def format_file_size(size_bytes: int) -> str:
    """Format a byte count with a 1024 base, e.g. 1536 -> '1.5 KB'."""
    value = float(size_bytes)
    order = 0
    while value >= 1024 and order < len(_SIZE_UNITS) - 1:
        order += 1
        value /= 1024
    number = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{number} {_SIZE_UNITS[order]}"


def format_duration(seconds: float) -> str:
    """Convert seconds to HH:MM:SS (hours are not wrapped at 24)."""
    total = int(seconds)
    h = total // 3600
    m = (total % 3600) // 60
    s = total % 60
    return f"{h:02d}:{m:02d}:{s:02d}"


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of converting one source directory.

    On success output_file, duration_seconds and file_size_bytes are set.
    telegram_extradata_valid is None unless Telegram mode was requested.
    """

    success: bool
    title: str
    output_file: Path | None = None
    duration_seconds: float = 0.0
    file_size_bytes: int = 0
    error_message: str | None = None
    warning_message: str | None = None
    telegram_extradata_valid: bool | None = None

    @classmethod
    def failed(cls, title: str, message: str) -> "ConversionResult":
        return cls(success=False, title=title, error_message=message)

    @property
    def file_size_formatted(self) -> str:
        return format_file_size(self.file_size_bytes)

    @property
    def duration_formatted(self) -> str:
        return format_duration(self.duration_seconds)


@dataclass
class BatchSummary:
    """Result summary from a batch conversion run."""

    completed: int = 0
    failed: int = 0
    total: int = 0
    cancelled: bool = False
    failed_titles: list[str] = field(default_factory=list)
