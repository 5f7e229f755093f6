"""Structured metadata (metadata/metadata.json) written by the downloader.

Keys are matched case-insensitively. Anything unreadable is treated as
"no metadata" so discovery falls back to file-based chapters.
"""

import json
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, ConfigDict, ValidationError

from .models import METADATA_RELATIVE_PATH

log = logger.bind(stage="metadata")


class Creator(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    role: str | None = None


class SpineItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    duration: float = 0.0


class ChapterEntry(BaseModel):
    """A chapter anchored at an offset (seconds) into one spine item."""

    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    spine: int = 0
    offset: float = 0.0


class SourceMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    creator: list[Creator] | None = None
    spine: list[SpineItem] | None = None
    chapters: list[ChapterEntry] | None = None

    def author(self) -> str | None:
        """Prefer a creator with role 'author', else the first creator."""
        if not self.creator:
            return None
        for c in self.creator:
            if c.role is not None and c.role.lower() == "author":
                return c.name
        return self.creator[0].name

    @property
    def has_chapter_layout(self) -> bool:
        return self.spine is not None and self.chapters is not None


def _lower_keys(value):
    """Recursively lower-case dict keys so lookups ignore case."""
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_lower_keys(v) for v in value]
    return value


def parse_source_metadata(text: str) -> SourceMetadata:
    """Parse a metadata.json document.

    Raises ValueError (json.JSONDecodeError or pydantic.ValidationError)
    on malformed input.
    """
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("metadata document is not a JSON object")
    return SourceMetadata.model_validate(_lower_keys(data))


def load_source_metadata(source_dir: Path) -> SourceMetadata | None:
    """Load <source_dir>/metadata/metadata.json, or None if absent or invalid."""
    path = source_dir / METADATA_RELATIVE_PATH
    if not path.is_file():
        log.debug(f"No metadata file at {path}")
        return None

    try:
        metadata = parse_source_metadata(path.read_text(encoding="utf-8-sig"))
    except (OSError, UnicodeDecodeError, ValueError, ValidationError) as e:
        log.warning(f"Ignoring unreadable metadata {path}: {e}")
        return None

    log.debug(
        f"Loaded metadata: title={metadata.title!r}, "
        f"spine={len(metadata.spine or [])}, chapters={len(metadata.chapters or [])}"
    )
    return metadata
