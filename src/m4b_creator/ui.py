"""User-facing output: status messages and transcode progress.

The orchestrator only talks to the UserInterface and ProgressReporter
protocols; the click implementations below are what the CLI wires in.
"""

from collections.abc import Callable
from typing import Protocol

import click

ProgressCallback = Callable[[float], None]


class UserInterface(Protocol):
    def display_info(self, message: str) -> None: ...

    def display_processing_status(self, message: str) -> None: ...

    def display_success(self, message: str) -> None: ...

    def display_warning(self, message: str) -> None: ...

    def display_error(self, message: str) -> None: ...


class ProgressReporter(Protocol):
    def execute_with_progress(
        self,
        description: str,
        operation: Callable[[ProgressCallback], bool],
    ) -> bool:
        """Run operation, feeding its 0-100 callback into a progress display."""
        ...


class ClickUserInterface:
    """Colored terminal output via click.secho."""

    def display_info(self, message: str) -> None:
        click.secho(message, fg="bright_black")

    def display_processing_status(self, message: str) -> None:
        click.secho(message, fg="blue", bold=True)

    def display_success(self, message: str) -> None:
        click.secho(message, fg="green")

    def display_warning(self, message: str) -> None:
        click.secho(message, fg="yellow", err=True)

    def display_error(self, message: str) -> None:
        click.secho(message, fg="red", err=True)


class ClickProgressReporter:
    """0-100 progress bar on stderr using click.progressbar."""

    def execute_with_progress(
        self,
        description: str,
        operation: Callable[[ProgressCallback], bool],
    ) -> bool:
        with click.progressbar(
            length=100,
            label=description,
            show_percent=True,
            show_eta=True,
            file=click.get_text_stream("stderr"),
        ) as bar:
            shown = 0

            def _on_progress(pct: float) -> None:
                nonlocal shown
                target = int(max(0.0, min(100.0, pct)))
                if target > shown:
                    bar.update(target - shown)
                    shown = target

            success = operation(_on_progress)
            if success and shown < 100:
                bar.update(100 - shown)
        return success


class QuietProgressReporter:
    """Runs the operation without drawing anything."""

    def execute_with_progress(
        self,
        description: str,
        operation: Callable[[ProgressCallback], bool],
    ) -> bool:
        return operation(lambda pct: None)
