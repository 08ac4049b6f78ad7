"""``dot clean``: forget every generation record."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from dotai.cli.renderer import print_error
from dotai.core.state_store import StateStore
from dotai.errors import DotaiError

console = Console()


def clean_cmd() -> None:
    """Reset the state to empty at the current schema version.

    Also the way out of a state file written by another schema version.
    """
    store = StateStore(Path.cwd())
    console.print("[blue]Clearing generation state...[/blue]")
    try:
        store.clear()
    except DotaiError as exc:
        print_error(console, "Error clearing state", exc)
        raise typer.Exit(code=1)

    console.print("[green]✓ State cleared[/green]")
    console.print('Next run of "dot gen" will regenerate all .ai files')
