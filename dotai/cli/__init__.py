"""dotai CLI: Typer-based command-line interface.

Provides the ``dot`` command with subcommands for initializing a project,
generating code from ``.ai`` files, inspecting change status, listing
tracked artifacts and clearing state.

All output uses Rich for formatted terminal display.
"""
