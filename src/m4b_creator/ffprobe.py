"""FFprobe subprocess wrappers for audio file inspection."""

import json
import subprocess
from pathlib import Path

from .errors import ProbeError
from .models import DEFAULT_BITRATE_KBPS, DEFAULT_CHANNELS, AudioProbe


def _run_ffprobe(args: list[str], ffprobe: str = "ffprobe") -> subprocess.CompletedProcess:
    """Run ffprobe with common flags."""
    return subprocess.run(
        [ffprobe, "-v", "error"] + args,
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
    )


def _positive_int(value) -> int | None:
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def probe_audio(file: Path, ffprobe: str = "ffprobe") -> AudioProbe:
    """Read duration, bitrate and channel count from one audio file.

    Bitrate prefers the first audio stream, then the container, then 128 kbps.
    Channels default to 2 when no audio stream reports them.
    Raises ProbeError if ffprobe fails or reports no usable duration.
    """
    try:
        result = _run_ffprobe(
            ["-show_format", "-show_streams", "-of", "json", str(file)],
            ffprobe=ffprobe,
        )
    except OSError as exc:
        raise ProbeError(file, str(exc)) from exc

    if result.returncode != 0:
        raise ProbeError(file, result.stderr.strip() or f"exit code {result.returncode}")

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as exc:
        raise ProbeError(file, f"unreadable ffprobe output ({exc})") from exc

    fmt = data.get("format") or {}
    audio_stream = next(
        (s for s in data.get("streams") or [] if s.get("codec_type") == "audio"),
        None,
    )

    try:
        duration = float(fmt["duration"])
    except (KeyError, TypeError, ValueError):
        raise ProbeError(file, "ffprobe returned no duration") from None

    bits_per_sec = _positive_int((audio_stream or {}).get("bit_rate")) or _positive_int(
        fmt.get("bit_rate")
    )
    bitrate_kbps = bits_per_sec // 1000 if bits_per_sec else 0
    if bitrate_kbps <= 0:
        bitrate_kbps = DEFAULT_BITRATE_KBPS

    channels = _positive_int((audio_stream or {}).get("channels")) or DEFAULT_CHANNELS

    return AudioProbe(
        duration_seconds=duration,
        bitrate_kbps=bitrate_kbps,
        channels=channels,
    )


def get_extradata_size(file: Path, ffprobe: str = "ffprobe") -> int | None:
    """Get extradata_size of the first audio stream, or None if not reported."""
    result = _run_ffprobe(
        ["-show_streams", "-select_streams", "a:0", str(file)],
        ffprobe=ffprobe,
    )
    if result.returncode != 0:
        return None
    for line in result.stdout.splitlines():
        key, sep, value = line.strip().partition("=")
        if sep and key == "extradata_size":
            try:
                return int(value)
            except ValueError:
                return None
    return None
