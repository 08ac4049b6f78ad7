"""Coding agent backends."""

from __future__ import annotations

from rich.console import Console

from dotai.agents.base import AgentRegistry, CancellableAgent, CodingAgent
from dotai.agents.claude_code import ClaudeCodeAgent


def default_registry(console: Console | None = None) -> AgentRegistry:
    """A fresh registry holding the built-in agents."""
    return AgentRegistry([ClaudeCodeAgent(console=console)])


__all__ = ["AgentRegistry", "CancellableAgent", "ClaudeCodeAgent", "CodingAgent", "default_registry"]
