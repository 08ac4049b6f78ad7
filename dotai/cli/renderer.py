"""Rich terminal renderer for generation runs.

Implements the orchestrator's progress observer plus the summary and
warning blocks printed by ``dot gen``.

Color scheme
------------
- green   : success, tracked artifacts
- red     : failure
- yellow  : warnings, changed files
- cyan    : iteration markers
- dim     : details
"""

from __future__ import annotations

import os
import threading
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from dotai.errors import DotaiError
from dotai.models.generation import ConvergenceReason, FileOutcome
from dotai.models.specs import Specification

_MAX_LISTED_ARTIFACTS = 10

_CONVERGENCE_MESSAGES: dict[ConvergenceReason, str] = {
    ConvergenceReason.NATURAL: "[green]✓ Converged naturally (agent stopped updating the .ai file)[/green]",
    ConvergenceReason.MAX_ITERATIONS: "[yellow]⚠ Stopped at the iteration limit[/yellow]",
    ConvergenceReason.ERROR: "[red]✗ Stopped due to an error[/red]",
    ConvergenceReason.SINGLE: "[dim]Single pass (iterate mode off)[/dim]",
}


def display_path(path: str, root: Path) -> str:
    """*path* relative to *root* when it lies inside it."""
    try:
        return str(Path(path).relative_to(root.resolve()))
    except ValueError:
        return path


def print_error(console: Console, heading: str, exc: DotaiError) -> None:
    """Print a fatal error with its code and context."""
    console.print(f"[bold red]✗ {heading}:[/bold red] {escape(exc.message)}")
    console.print(f"  [dim]Code: {exc.code}[/dim]")
    for key, value in exc.context.items():
        console.print(f"  [dim]{key}: {escape(str(value))}[/dim]")


class GenerationRenderer:
    """Prints generation progress to a Rich console.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    iterate:
        Whether the run has iterate mode on; controls the per-file
        iteration summary.
    """

    def __init__(self, console: Console | None = None, *, iterate: bool = False) -> None:
        self.console = console or Console()
        self.iterate = iterate
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Observer events
    # ------------------------------------------------------------------

    def file_started(self, position: int, total: int, spec: Specification) -> None:
        with self._lock:
            self.console.print()
            self.console.print(
                f"[bold][{position}/{total}][/bold] [bold white]{os.path.basename(spec.path)}[/bold white]"
            )

    def iteration_started(self, spec: Specification, index: int) -> None:
        if index == 0:
            return
        with self._lock:
            self.console.print(f"[cyan]↻ Iteration {index}[/cyan] [dim]{os.path.basename(spec.path)}[/dim]")

    def artifacts_tracked(
        self, spec: Specification, artifacts: tuple[str, ...], discovered: int
    ) -> None:
        with self._lock:
            if discovered:
                self.console.print(f"  [green]✓ Found {discovered} new file(s) via filesystem scan[/green]")
            if not artifacts:
                self.console.print("  [yellow]⚠ No artifacts detected[/yellow]")
                return
            self.console.print(f"  [green]✓ Tracked {len(artifacts)} artifact(s)[/green]")
            for artifact in artifacts[:_MAX_LISTED_ARTIFACTS]:
                self.console.print(f"    [dim]• {artifact}[/dim]")
            if len(artifacts) > _MAX_LISTED_ARTIFACTS:
                self.console.print(
                    f"    [dim]... and {len(artifacts) - _MAX_LISTED_ARTIFACTS} more[/dim]"
                )

    def file_finished(self, outcome: FileOutcome) -> None:
        name = os.path.basename(outcome.spec_path)
        with self._lock:
            if outcome.success:
                self.console.print(f"  [green]✓ {name}: success[/green]")
            else:
                self.console.print(f"  [red]✗ {name}: {escape(outcome.error or 'failed')}[/red]")
            if self.iterate or outcome.metrics.total_iterations > 1:
                self._print_iteration_summary(outcome)

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------

    def _print_iteration_summary(self, outcome: FileOutcome) -> None:
        metrics = outcome.metrics
        seconds = metrics.total_time_ms / 1000
        self.console.print(
            f"    [bold]Iterations:[/bold] {metrics.total_iterations}  "
            f"[bold]Total:[/bold] {seconds:.1f}s  "
            f"[bold]Average:[/bold] {seconds / metrics.total_iterations:.1f}s"
        )
        self.console.print(f"    {_CONVERGENCE_MESSAGES[metrics.convergence_reason]}")

    def header(self, message: str) -> None:
        self.console.print()
        self.console.print(f"[bold white]{message}[/bold white]")

    def unbounded_warning(self, specs: list[Specification]) -> None:
        """Warn that iteration has no ceiling for these files."""
        names = "\n".join(f"  • {os.path.basename(spec.path)}" for spec in specs)
        self.console.print(
            Panel(
                "\n".join([
                    f"[white]{len(specs)} file(s) will iterate with no maximum.[/white]",
                    "",
                    f"[dim]{names}[/dim]",
                    "",
                    "[white]Each file keeps running until the agent stops updating its spec.[/white]",
                ]),
                title="[bold yellow]⚠ Unbounded iteration[/bold yellow]",
                border_style="yellow",
                padding=(1, 2),
            )
        )

    def summary(self, success_count: int, fail_count: int, *, interrupted: bool = False) -> None:
        table = Table(title="Summary", show_header=False, box=None, padding=(0, 2))
        table.add_column("Outcome")
        table.add_column("Files", justify="right")
        if success_count:
            table.add_row(Text("✓ processed successfully", style="green"), str(success_count))
        if fail_count:
            table.add_row(Text("✗ failed", style="red"), str(fail_count))
        if interrupted:
            table.add_row(Text("⚠ interrupted", style="yellow"), "")
        self.console.print()
        self.console.print(table)
