"""Filename sanitization for output M4B files."""

import sys

from loguru import logger

log = logger.bind(stage="sanitize")

if sys.platform == "win32":
    _INVALID_FILENAME_CHARS = frozenset('<>:"/\\|?*') | frozenset(
        chr(c) for c in range(32)
    )
else:
    _INVALID_FILENAME_CHARS = frozenset("/\0")


def sanitize_filename(title: str) -> str:
    """Turn a book title into a filesystem-safe filename (no extension).

    ':' becomes '_' and '"' becomes "'" on every platform, then anything the
    host filesystem forbids becomes '_'. Unicode text and emoji are kept.
    """
    sanitized = title.replace(":", "_").replace('"', "'")
    sanitized = "".join("_" if c in _INVALID_FILENAME_CHARS else c for c in sanitized)
    return sanitized.strip()


def output_filename(title: str, fallback: str = "") -> str:
    """<sanitized title>.m4b, falling back when the title sanitizes to nothing."""
    stem = sanitize_filename(title) or sanitize_filename(fallback) or "audiobook"
    if stem != title:
        log.debug(f"Sanitized output name: {title!r} -> {stem!r}")
    return f"{stem}.m4b"
