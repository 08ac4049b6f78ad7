"""Main Typer application: imports and registers all CLI commands.

Entry point: ``dot`` (configured via pyproject.toml ``[project.scripts]``).
"""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from dotai import __version__
from dotai.cli.commands.clean import clean_cmd
from dotai.cli.commands.gen import gen_cmd
from dotai.cli.commands.init import init_cmd
from dotai.cli.commands.ls import ls_cmd
from dotai.cli.commands.status import status_cmd
from dotai.config import settings

app = typer.Typer(
    name="dot",
    help="dotai: AI-powered code generation from .ai specification files.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


def configure_logging(level: str) -> None:
    """Route log records through Rich on stderr."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                show_path=False,
                rich_tracebacks=settings.debug,
            )
        ],
        force=True,
    )


def _print_version(value: bool) -> None:
    if value:
        typer.echo(f"dot {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show debug logging.",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_print_version,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """dotai: AI-powered code generation from .ai specification files."""
    configure_logging("DEBUG" if verbose else settings.effective_log_level)


# Register subcommands
app.command(name="init", help="Initialize .dotai/ in the current directory.")(init_cmd)
app.command(
    name="gen",
    help="Generate code from new and changed .ai files.",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)(gen_cmd)
app.command(name="status", help="Show which .ai files have changed.")(status_cmd)
app.command(name="ls", help="List .ai files and their tracked artifacts.")(ls_cmd)
app.command(name="clean", help="Clear generation state.")(clean_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
