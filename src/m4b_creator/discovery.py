"""Audiobook discovery -- turns a source directory into an AudiobookJob.

Finds top-level MP3 files, natural-sorts them, probes every track via the
transcoder gateway, and derives chapters either from the downloader's
metadata/metadata.json (spine + chapter offsets) or, failing that, one
chapter per file.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from .metadata import SourceMetadata, load_source_metadata
from .models import (
    AUDIO_EXTENSION,
    AudiobookJob,
    AudioProbe,
    Chapter,
    ChapterSource,
    format_duration,
)

if TYPE_CHECKING:
    from .transcoder import TranscoderGateway

log = logger.bind(stage="discovery")

_DIGITS = re.compile(r"\d+")
_NATURAL_PAD = 20


def natural_sort_key(name: str) -> str:
    """Zero-pad every run of digits so 'track2' sorts before 'track10'."""
    return _DIGITS.sub(lambda m: m.group().zfill(_NATURAL_PAD), name)


def find_audio_files(directory: Path) -> list[Path]:
    """Top-level MP3 files in natural order (non-recursive)."""
    files = [
        f
        for f in directory.iterdir()
        if f.is_file() and f.suffix.lower() == AUDIO_EXTENSION
    ]
    return sorted(files, key=lambda f: natural_sort_key(f.name))


def chapters_from_metadata(
    metadata: SourceMetadata, total_duration: float
) -> list[Chapter]:
    """Chapters anchored at spine offsets; each ends where the next begins."""
    spine = metadata.spine or []
    entries = metadata.chapters or []

    prefix = [0.0]
    for item in spine:
        prefix.append(prefix[-1] + item.duration)

    def start_of(index: int) -> float:
        entry = entries[index]
        if 0 <= entry.spine < len(prefix):
            return prefix[entry.spine] + entry.offset
        return 0.0

    chapters = []
    for i, entry in enumerate(entries):
        end = start_of(i + 1) if i + 1 < len(entries) else total_duration
        chapters.append(
            Chapter(
                title=entry.title if entry.title is not None else f"Chapter {i + 1}",
                start_seconds=start_of(i),
                end_seconds=end,
            )
        )
    return chapters


def chapters_from_files(files: Sequence[Path], durations: Sequence[float]) -> list[Chapter]:
    """One chapter per file, titled by the file's stem."""
    chapters = []
    current = 0.0
    for file, duration in zip(files, durations):
        chapters.append(
            Chapter(
                title=file.stem,
                start_seconds=current,
                end_seconds=current + duration,
            )
        )
        current += duration
    return chapters


class AudiobookDiscoverer:
    """Builds AudiobookJobs, delegating all probing to the gateway."""

    def __init__(self, gateway: TranscoderGateway, max_workers: int = 4) -> None:
        self.gateway = gateway
        self.max_workers = max(1, max_workers)

    def _probe_all(self, files: list[Path]) -> list[AudioProbe]:
        """Probe every track, preserving order. Any ProbeError propagates."""
        workers = min(self.max_workers, len(files))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(self.gateway.probe, files))

    def discover(self, directory: Path) -> AudiobookJob | None:
        """Discover the audiobook in directory.

        Returns None if the directory is missing or holds no MP3 files.
        Raises ProbeError if any track cannot be probed.
        """
        if not directory.is_dir():
            log.warning(f"Source directory does not exist: {directory}")
            return None

        files = find_audio_files(directory)
        if not files:
            log.warning(f"No audio files found in {directory}")
            return None
        log.debug(f"Found {len(files)} audio files in {directory.name}")

        metadata = load_source_metadata(directory)

        probes = self._probe_all(files)
        durations = [p.duration_seconds for p in probes]
        # Bitrate and channel layout of the first track stand for the whole book
        first = probes[0]
        total_duration = sum(durations)

        if metadata is not None and metadata.has_chapter_layout:
            chapter_source = ChapterSource.METADATA
            chapters = chapters_from_metadata(metadata, total_duration)
            title = metadata.title or directory.name
            author = metadata.author()
        else:
            chapter_source = ChapterSource.FILES
            chapters = chapters_from_files(files, durations)
            title = directory.name
            author = None

        log.info(
            f"Discovered {title!r}: {len(files)} files, {len(chapters)} chapters "
            f"({chapter_source}), {format_duration(total_duration)}, "
            f"{first.bitrate_kbps}k, {first.channels}ch"
        )

        return AudiobookJob(
            source_dir=directory,
            title=title,
            author=author,
            audio_files=tuple(files),
            chapters=tuple(chapters),
            total_duration_seconds=total_duration,
            source_bitrate_kbps=first.bitrate_kbps,
            source_channels=first.channels,
            chapter_source=chapter_source,
        )
