"""Creator configuration via pydantic-settings (.env + env vars)."""

import sys
from pathlib import Path

from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import ConversionOptions


class CreatorConfig(BaseSettings):
    """All configuration with layered resolution:
    .env file < environment variables < constructor kwargs.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -- Output --
    output_dir: Path = Path(".")
    telegram_mode: bool = False

    # -- External tools --
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # -- Discovery --
    probe_workers: int = 4

    # -- Scratch space --
    temp_prefix: str = "m4b-creator-"

    # -- Logging --
    verbose: bool = False
    log_level: str = "INFO"
    log_dir: Path | None = None

    def options(self) -> ConversionOptions:
        """Per-job options derived from this config."""
        return ConversionOptions(
            output_dir=self.output_dir,
            telegram_mode=self.telegram_mode,
        )

    def ensure_dirs(self) -> None:
        """Create the output directory if it doesn't exist."""
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def setup_logging(self) -> None:
        """Configure loguru for the creator."""
        logger.remove()  # Remove default stderr handler

        log_format = (
            "{time:YYYY-MM-DDTHH:mm:ssZ} | {level:<8} | "
            "{extra[stage]:<12} | {message}"
        )

        def _default_extra(record):
            record["extra"].setdefault("stage", "")
            return True

        logger.add(
            sys.stderr,
            format=log_format,
            level=self.log_level.upper(),
            filter=_default_extra,
        )

        if self.log_dir is None:
            return

        self.log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(self.log_dir / "m4b-creator.log"),
            format=log_format,
            level="DEBUG",
            rotation="10 MB",
            retention="30 days",
            filter=_default_extra,
        )
