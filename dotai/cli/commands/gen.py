"""``dot gen [PATH]``: generate code from new and changed specifications.

Loads every ``.ai`` file under PATH, classifies it against the persisted
state, runs the coding agent for new and changed files, and saves the
updated state. Arguments the command does not recognize are forwarded to
the agent unchanged::

    dot gen . --model opus
    dot gen src --iterate --max-iterations unbounded --yes
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from dotai.agents import default_registry
from dotai.agents.base import AgentRegistry
from dotai.cli.renderer import GenerationRenderer, print_error
from dotai.config import settings
from dotai.core.detector import change_summary, classify, files_to_process, has_changes
from dotai.core.interrupt import InterruptGuard
from dotai.core.loader import SpecificationLoader
from dotai.core.orchestrator import GenerationOrchestrator
from dotai.core.state_store import StateStore
from dotai.errors import DotaiError
from dotai.models.generation import RunOptions, UnboundedCap, parse_iteration_cap

console = Console()

EXIT_INTERRUPTED = 130


def build_registry() -> AgentRegistry:
    """Agents available to ``dot gen``."""
    return default_registry(console=console)


def gen_cmd(
    ctx: typer.Context,
    path: Path = typer.Argument(
        Path("."),
        help="Directory to scan for .ai files.",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Regenerate every .ai file regardless of changes.",
    ),
    parallel: bool = typer.Option(
        False,
        "--parallel",
        "-p",
        help="Process files concurrently (agent output may interleave).",
    ),
    concurrency: int = typer.Option(
        settings.default_concurrency,
        "--concurrency",
        "-c",
        min=1,
        max=settings.max_concurrency,
        help="Maximum files in flight with --parallel.",
    ),
    agent: str = typer.Option(
        None,
        "--agent",
        "-a",
        help="Coding agent to use (default: defaultAgent from .dotai/config.json).",
    ),
    iterate: bool = typer.Option(
        False,
        "--iterate",
        help="Re-run the agent while it keeps updating the .ai file.",
    ),
    max_iterations: str = typer.Option(
        str(settings.default_max_iterations),
        "--max-iterations",
        "-i",
        help="Iteration limit per file with --iterate; a number or 'unbounded' / '∞'.",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip the confirmation prompt for unbounded iteration.",
    ),
) -> None:
    """Generate code from new and changed .ai files."""
    try:
        cap = parse_iteration_cap(max_iterations)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--max-iterations") from exc

    root = Path.cwd()
    store = StateStore(root)
    loader = SpecificationLoader(root)
    registry = build_registry()

    try:
        config = store.load_config()
    except DotaiError as exc:
        print_error(console, "Error loading config", exc)
        raise typer.Exit(code=1)

    agent_name = agent or config.default_agent
    if agent_name not in registry:
        console.print(
            f"[bold red]Invalid agent:[/bold red] {agent_name!r}. "
            f"Allowed agents: {', '.join(registry.names())}"
        )
        raise typer.Exit(code=1)

    console.print(f"[blue]Scanning for .ai files in {escape(str(path))}...[/blue]")
    try:
        report = loader.load_all(path)
    except DotaiError as exc:
        print_error(console, "Error finding .ai files", exc)
        raise typer.Exit(code=1)

    for failure in report.failures:
        console.print(f"[red]✗ Error reading {escape(failure.path)}: {escape(failure.message)}[/red]")

    if not report.specs:
        if not report.failures:
            console.print("[yellow]No .ai files found[/yellow]")
            console.print('Create a .ai file first, or run "dot init" to get started')
        return
    console.print(f"[green]✓ Found {len(report.specs)} .ai file(s)[/green]")

    try:
        state = store.load()
    except DotaiError as exc:
        print_error(console, "Error loading state", exc)
        raise typer.Exit(code=1)

    classification = classify(report.specs, state, force=force)
    if not has_changes(classification):
        console.print("[blue]No changes detected. All .ai files are up to date.[/blue]")
        console.print("[dim]Use --force to regenerate anyway[/dim]")
        return

    specs = files_to_process(classification)
    renderer = GenerationRenderer(console, iterate=iterate)

    if iterate and isinstance(cap, UnboundedCap):
        renderer.unbounded_warning(specs)
        if not yes and not typer.confirm("Continue?", default=False):
            console.print("[yellow]⚠ Operation cancelled by user[/yellow]")
            return

    options = RunOptions(
        working_directory=str(root),
        agent_name=agent_name,
        forwarded_flags=tuple(ctx.args),
        force=force,
        parallel=parallel,
        concurrency=concurrency,
        iterate=iterate,
        max_iterations=cap,
    )
    orchestrator = GenerationOrchestrator(registry, loader=loader, observer=renderer)

    renderer.header(f"Processing {len(specs)} file(s) ({change_summary(classification)})...")
    # The guard stays installed until state is saved; once the run returns,
    # interrupts are only recorded so they cannot abort the save.
    with InterruptGuard() as guard:
        result = orchestrator.run(specs, state, options, should_stop=lambda: guard.interrupted)
        guard.hold()

        try:
            store.save(result.state)
        except DotaiError as exc:
            # Reported without failing the run.
            print_error(console, "Error saving state", exc)

        interrupted = result.interrupted or guard.interrupted
        renderer.summary(result.success_count, result.fail_count, interrupted=interrupted)

    if interrupted:
        console.print("[yellow]⚠ Generation interrupted by user[/yellow]")
        console.print("[dim]State has been saved for completed files[/dim]")
        raise typer.Exit(code=EXIT_INTERRUPTED)
