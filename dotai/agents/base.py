"""Coding agent protocol and registry.

Any object with a ``name`` attribute plus ``invoke`` and ``parse_output``
methods satisfies ``CodingAgent``; no inheritance is required. Each agent
variant owns its output parsing, so the orchestrator never branches on
which agent produced a result.

The registry is a plain value handed to the orchestrator. Tests build
their own registry of fakes.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from typing import Protocol, runtime_checkable

from dotai.errors import AgentError
from dotai.models.generation import GenerationResult, InvokeOptions

logger = logging.getLogger(__name__)


@runtime_checkable
class CodingAgent(Protocol):
    """Protocol for code-generation agent backends."""

    name: str

    def invoke(self, prompt: str, options: InvokeOptions) -> GenerationResult:
        """Run the agent on *prompt* and report success and artifacts.

        Implementations report failures through ``GenerationResult.error``
        rather than raising. An empty ``artifacts`` tuple is allowed.
        """
        ...

    def parse_output(self, raw_output: str) -> list[str]:
        """Extract artifact file names from the agent's raw output."""
        ...


@runtime_checkable
class CancellableAgent(Protocol):
    """Agent whose in-flight invocations can be stopped from another thread."""

    def cancel(self) -> None:
        """Terminate every invocation currently running; safe to call repeatedly."""
        ...


class AgentRegistry:
    """Name → agent lookup.

    Parameters
    ----------
    agents:
        Agents to register up front.
    """

    def __init__(self, agents: Iterable[CodingAgent] = ()) -> None:
        self._agents: dict[str, CodingAgent] = {}
        for agent in agents:
            self.register(agent)

    def register(self, agent: CodingAgent) -> None:
        """Add *agent*, replacing any agent registered under the same name."""
        if agent.name in self._agents:
            logger.debug("Replacing registered agent %r", agent.name)
        self._agents[agent.name] = agent

    def get(self, name: str) -> CodingAgent:
        """Look up an agent by name.

        Raises
        ------
        AgentError
            If no agent is registered under *name*.
        """
        agent = self._agents.get(name)
        if agent is None:
            available = ", ".join(self.names()) or "(none)"
            raise AgentError(
                f"Unknown agent: {name!r}. Available agents: {available}",
                "NOT_FOUND",
                {"requested_agent": name, "available_agents": self.names()},
            )
        return agent

    def names(self) -> list[str]:
        return sorted(self._agents)

    def __contains__(self, name: object) -> bool:
        return name in self._agents

    def __iter__(self) -> Iterator[CodingAgent]:
        return iter(self._agents.values())

    def __len__(self) -> int:
        return len(self._agents)
