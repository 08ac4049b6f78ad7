"""``dot init``: create the ``.dotai/`` project directory.

Safe to run repeatedly: existing config and state files are left as they are.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from dotai.cli.renderer import print_error
from dotai.core.state_store import StateStore
from dotai.errors import DotaiError

console = Console()


def init_cmd() -> None:
    """Initialize ``.dotai/`` in the current directory."""
    store = StateStore(Path.cwd())
    console.print("[blue]Initializing .dotai directory...[/blue]")

    try:
        created = store.initialize()
    except DotaiError as exc:
        print_error(console, "Error initializing .dotai", exc)
        raise typer.Exit(code=1)

    lines: list[str] = []
    if created:
        lines += [f"[green]✓ Created {path.relative_to(store.root)}[/green]" for path in created]
    else:
        lines.append("[dim].dotai/ is already initialized; nothing to do.[/dim]")
    lines += [
        "",
        "[bold]Next steps:[/bold]",
        "  1. Create a .ai file with your specification",
        "  2. Run: [bold]dot gen[/bold]",
    ]

    console.print(
        Panel(
            "\n".join(lines),
            title="[bold]dotai[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )
