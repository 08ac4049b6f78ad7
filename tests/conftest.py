"""Shared test fixtures for dotai."""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from dotai.agents.base import AgentRegistry
from dotai.core.hasher import fingerprint
from dotai.core.loader import SpecificationLoader
from dotai.core.state_store import StateStore
from dotai.models.generation import GenerationResult, InvokeOptions
from dotai.models.specs import Specification
from dotai.models.state import GenerationRecord

Responder = Callable[[str, InvokeOptions, int], GenerationResult]


class FakeAgent:
    """In-memory ``CodingAgent``; records every call.

    *respond* receives ``(prompt, options, call_index)`` and returns the
    ``GenerationResult`` for that call. It may also touch the filesystem to
    simulate an agent editing files or its own specification.
    """

    def __init__(self, name: str = "fake", respond: Responder | None = None) -> None:
        self.name = name
        self._respond = respond or (
            lambda prompt, options, call: GenerationResult(success=True, artifacts=("out.py",))
        )
        self.calls: list[tuple[str, InvokeOptions]] = []
        self._lock = threading.Lock()

    def invoke(self, prompt: str, options: InvokeOptions) -> GenerationResult:
        with self._lock:
            self.calls.append((prompt, options))
            call = len(self.calls) - 1
        return self._respond(prompt, options, call)

    def parse_output(self, raw_output: str) -> list[str]:
        return raw_output.split()

    @property
    def prompts(self) -> list[str]:
        return [prompt for prompt, _ in self.calls]


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Resolved temporary project root."""
    return tmp_path.resolve()


@pytest.fixture
def project(tmp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Temporary project root that is also the current directory."""
    monkeypatch.chdir(tmp_dir)
    return tmp_dir


@pytest.fixture
def loader(tmp_dir: Path) -> SpecificationLoader:
    """Loader confined to the temporary project root."""
    return SpecificationLoader(tmp_dir)


@pytest.fixture
def store(tmp_dir: Path) -> StateStore:
    """StateStore rooted at the temporary project root."""
    return StateStore(tmp_dir)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def write_spec(tmp_dir: Path) -> Callable[..., Path]:
    """Factory fixture: write a ``.ai`` file under the project root."""

    def _factory(name: str = "app.ai", content: str = "Build a CLI tool") -> Path:
        path = tmp_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _factory


@pytest.fixture
def make_spec(tmp_dir: Path) -> Callable[..., Specification]:
    """Factory fixture: build a Specification without touching disk."""

    def _factory(name: str = "app.ai", content: str = "Build a CLI tool") -> Specification:
        return Specification(
            path=str(tmp_dir / name),
            content=content,
            fingerprint=fingerprint(content),
        )

    return _factory


@pytest.fixture
def make_record() -> Callable[..., GenerationRecord]:
    """Factory fixture: build a GenerationRecord with sensible defaults."""

    def _factory(
        content: str = "Build a CLI tool",
        artifacts: tuple[str, ...] = ("cli.py",),
        **overrides: Any,
    ) -> GenerationRecord:
        defaults: dict[str, Any] = {
            "lastHash": fingerprint(content),
            "lastContent": content,
            "lastGenerated": datetime(2026, 1, 1, tzinfo=timezone.utc),
            "artifacts": artifacts,
        }
        defaults.update(overrides)
        return GenerationRecord(**defaults)

    return _factory


@pytest.fixture
def make_agent() -> Callable[..., FakeAgent]:
    """Factory fixture: build a FakeAgent."""

    def _factory(name: str = "fake", respond: Responder | None = None) -> FakeAgent:
        return FakeAgent(name=name, respond=respond)

    return _factory


@pytest.fixture
def make_registry() -> Callable[..., AgentRegistry]:
    """Factory fixture: registry holding the given agents."""

    def _factory(*agents: Any) -> AgentRegistry:
        return AgentRegistry(agents)

    return _factory
