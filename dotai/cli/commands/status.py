"""``dot status [PATH]``: show which specifications changed since the last run."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from dotai.cli.renderer import display_path, print_error
from dotai.core.detector import classify, files_to_process
from dotai.core.loader import SpecificationLoader
from dotai.core.state_store import StateStore
from dotai.errors import DotaiError
from dotai.models.specs import Specification

console = Console()

_GROUP_STYLES = (
    ("New", "green"),
    ("Changed", "yellow"),
    ("Unchanged", "dim"),
)


def status_cmd(
    path: Path = typer.Argument(
        Path("."),
        help="Directory to scan for .ai files.",
    ),
) -> None:
    """List new, changed and unchanged specifications."""
    root = Path.cwd()
    console.print(f"[blue]Scanning for .ai files in {escape(str(path))}...[/blue]")

    loader = SpecificationLoader(root)
    try:
        report = loader.load_all(path)
        state = StateStore(root).load()
    except DotaiError as exc:
        print_error(console, "Error checking status", exc)
        raise typer.Exit(code=1)

    for failure in report.failures:
        console.print(f"[red]Error reading {escape(failure.path)}: {escape(failure.message)}[/red]")

    if not report.specs and not report.failures:
        console.print("[yellow]No .ai files found[/yellow]")
        return

    console.print(f"Found {len(report.specs) + len(report.failures)} .ai file(s)")
    console.print()

    classification = classify(report.specs, state)
    groups: tuple[tuple[Specification, ...], ...] = (
        classification.new,
        classification.changed,
        classification.unchanged,
    )
    for (label, style), specs in zip(_GROUP_STYLES, groups):
        if not specs:
            continue
        console.print(f"[{style}]{label} ({len(specs)}):[/{style}]")
        for spec in specs:
            console.print(f"[{style}]  • {escape(display_path(spec.path, root))}[/{style}]")
        console.print()

    pending = len(files_to_process(classification))
    if pending:
        console.print(f'[blue]Run "dot gen" to process {pending} file(s)[/blue]')
    else:
        console.print("No changes detected. All .ai files are up to date.")
