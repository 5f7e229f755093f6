"""Exception hierarchy for M4B creation."""

from pathlib import Path


class CreatorError(Exception):
    """Base exception for all m4b-creator errors."""


class DependencyError(CreatorError):
    """ffmpeg or ffprobe could not be located."""


class ProbeError(CreatorError):
    """ffprobe could not read required properties from a file."""

    def __init__(self, file: Path, message: str) -> None:
        super().__init__(f"Failed to probe {file.name}: {message}")
        self.file = file


class ExternalToolError(CreatorError):
    """An external subprocess (ffmpeg, ffprobe, etc.) failed."""

    def __init__(self, tool: str, exit_code: int, stderr: str) -> None:
        super().__init__(f"{tool} exited with code {exit_code}: {stderr}")
        self.tool = tool
        self.exit_code = exit_code
        self.stderr = stderr
