# Copyright (C) 2025 Torsten Knodt and contributors
# GNU General Public License
# SPDX-License-Identifier: GPL-3.0-or-later
"""CLI interface for the chat session exporter."""

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn

from . import __version__
from .config import ExportOptions, OutputFormat
from .images import DEFAULT_IMAGE_TIMEOUT
from .extractor import process_many

LOGGER = logging.getLogger(__name__)

app = typer.Typer(
    name="chat-session-export",
    help="Convert saved ChatGPT conversations (HTML/MHTML) to Markdown or styled HTML.",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)

ISSUES_URL = "https://github.com/datas-world/chatgpt-saved-session-to-markdown/issues/new"


class _WarningTracker(logging.Handler):
    """Handler to track if any warnings were logged."""

    def __init__(self) -> None:
        super().__init__()
        self.warnings_shown = False

    def emit(self, record: logging.LogRecord) -> None:
        if record.levelno >= logging.WARNING:
            self.warnings_shown = True


_warning_tracker = _WarningTracker()


def _parse_log_level(log_level_str: str) -> int:
    """Parse log level from string (name like 'DEBUG' or integer like '10').

    Raises:
        ValueError: If log level is invalid
    """
    try:
        level_int = int(log_level_str)
    except ValueError:
        level_int = None
    if level_int is not None:
        if level_int < 0:
            raise ValueError("Log level must be non-negative")
        return level_int

    level_map = {
        "CRITICAL": logging.CRITICAL,
        "ERROR": logging.ERROR,
        "WARNING": logging.WARNING,
        "INFO": logging.INFO,
        "DEBUG": logging.DEBUG,
    }
    level_name = log_level_str.upper()
    if level_name in level_map:
        return level_map[level_name]

    raise ValueError(
        f"Invalid log level '{log_level_str}'. "
        f"Use log level names (CRITICAL, ERROR, WARNING, INFO, DEBUG) "
        f"or non-negative integers."
    )


def _setup_logging(verbose: int, quiet: int, log_level: Optional[str]) -> int:
    """Configure logging from the -v/-q counts or an explicit level.

    Each -v lowers the threshold by one predefined level, each -q raises it.

    Returns:
        The final log level that was set
    """
    base_level = _parse_log_level(log_level) if log_level is not None else logging.WARNING
    level = max(0, base_level - (verbose - quiet) * 10)

    _warning_tracker.warnings_shown = False
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False), _warning_tracker],
        force=True,
    )
    LOGGER.info("Log level set to %d (%s)", level, logging.getLevelName(level))
    return level


@app.command()
def run(
    files: List[str] = typer.Argument(..., help="Input files (.html, .htm, .mhtml, .mht). Shell globs allowed."),
    outdir: Optional[Path] = typer.Option(
        None, "-o", "--outdir", help="Output directory (default: next to each input)"
    ),
    output_format: OutputFormat = typer.Option(
        OutputFormat.MARKDOWN, "-f", "--format", help="Output format", case_sensitive=False
    ),
    embed_images: bool = typer.Option(
        True, "--embed-images/--no-embed-images", help="Inline images as PNG data URIs"
    ),
    offline: bool = typer.Option(
        False, "--offline", help="Only embed images available in the saved file"
    ),
    image_timeout: float = typer.Option(
        DEFAULT_IMAGE_TIMEOUT, "--image-timeout", min=0.1, help="Seconds to wait for one remote image"
    ),
    title: Optional[str] = typer.Option(None, "--title", help="Document title (default: from page)"),
    source_url: Optional[str] = typer.Option(
        None, "--source-url", help="URL of the conversation, shown in the header"
    ),
    jobs: int = typer.Option(0, "-j", "--jobs", help="Parallel workers (default: CPU count/auto)"),
    verbose: int = typer.Option(
        0, "-v", "--verbose", count=True, help="Increase verbosity (-v: INFO, -vv: DEBUG)"
    ),
    quiet: int = typer.Option(
        0, "-q", "--quiet", count=True, help="Decrease verbosity (-q: ERROR, -qq: CRITICAL)"
    ),
    log_level: Optional[str] = typer.Option(
        None, "-l", "--log-level", help="Log level name (CRITICAL ... DEBUG) or non-negative integer"
    ),
) -> None:
    """Convert saved chat session files."""
    try:
        level = _setup_logging(verbose, quiet, log_level)
    except ValueError as exc:
        err_console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1)

    options = ExportOptions(
        output_format=output_format,
        embed_images=embed_images,
        fetch_remote_images=not offline,
        image_timeout=image_timeout,
        source_url=source_url,
        title=title,
    )
    LOGGER.info("Starting processing of %d input pattern(s): %s", len(files), ", ".join(files))

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=err_console,
        transient=True,
    ) as progress:
        progress.add_task(f"Converting {len(files)} input(s)...", total=None)
        try:
            produced = process_many(files, outdir, jobs, options)
        except Exception as exc:
            LOGGER.critical("Processing failed: %s", exc)
            LOGGER.debug("Failure details", exc_info=exc)
            raise typer.Exit(1)

    if not produced:
        err_console.print("[red]No outputs were produced[/red]")
        raise typer.Exit(1)

    for path in produced:
        console.print(f"[green]✓[/green] {path}")
    console.print(f"\n[green]Successfully converted {len(produced)} file(s)[/green]")

    if _warning_tracker.warnings_shown and level > logging.DEBUG:
        LOGGER.info(
            "Issues detected during processing. For detailed diagnostics, rerun with DEBUG level: "
            "add -vv or -l DEBUG. To report issues: %s",
            ISSUES_URL,
        )


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"chat-session-export {__version__}")


if __name__ == "__main__":
    app()
