"""``dot ls [PATH]``: list specifications with their tracked artifacts."""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from dotai.cli.renderer import display_path, print_error
from dotai.core.loader import SpecificationLoader
from dotai.core.state_store import StateStore, empty_state, get_record
from dotai.errors import DotaiError

logger = logging.getLogger(__name__)

console = Console()


def ls_cmd(
    path: Path = typer.Argument(
        Path("."),
        help="Directory to scan for .ai files.",
    ),
) -> None:
    """List every specification and the artifacts recorded for it.

    An unreadable state file is reported and treated as empty, since
    listing never writes state.
    """
    root = Path.cwd()
    console.print(f"[blue]Listing .ai files in {escape(str(path))}...[/blue]")

    try:
        state = StateStore(root).load()
    except DotaiError as exc:
        logger.warning("Could not load state, listing without artifacts: %s", exc.message)
        state = empty_state()

    try:
        report = SpecificationLoader(root).load_all(path)
    except DotaiError as exc:
        print_error(console, "Error finding .ai files", exc)
        raise typer.Exit(code=1)

    for failure in report.failures:
        console.print(f"[red]Error reading {escape(failure.path)}: {escape(failure.message)}[/red]")

    if not report.specs:
        console.print("[yellow]No .ai files found[/yellow]")
        return

    table = Table(title="Specifications")
    table.add_column("File", style="cyan")
    table.add_column("Artifacts")
    table.add_column("Last generated", style="dim")

    for spec in report.specs:
        record = get_record(state, spec.path)
        if record is None or not record.artifacts:
            artifacts = "[dim](none yet)[/dim]"
        else:
            artifacts = "\n".join(escape(a) for a in record.artifacts)
        generated = (
            record.last_generated_at.strftime("%Y-%m-%d %H:%M:%S") if record is not None else ""
        )
        table.add_row(escape(display_path(spec.path, root)), artifacts, generated)

    console.print(table)
    console.print(f"Total: {len(report.specs)} .ai file(s)")
