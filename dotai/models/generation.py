"""Models for agent invocation, the per-file iteration loop and run results."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from dotai.models.specs import Specification
from dotai.models.state import GenerationRecord, PersistedState

UNBOUNDED_TOKENS = ("unbounded", "infinite", "inf", "infinity", "∞")


class ConvergenceReason(str, Enum):
    """Why the iteration loop for one file stopped."""

    NATURAL = "natural"  # agent left the .ai file unchanged
    MAX_ITERATIONS = "max-iterations"  # cap reached while the agent still asked for more
    ERROR = "error"
    SINGLE = "single"  # iterate mode disabled


# ---------------------------------------------------------------------------
# Iteration cap (tagged variant)
# ---------------------------------------------------------------------------


class BoundedCap(BaseModel):
    """At most ``limit`` iterations per file."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["bounded"] = "bounded"
    limit: int = Field(ge=1)

    def reached(self, iterations_run: int) -> bool:
        return iterations_run >= self.limit

    def __str__(self) -> str:
        return str(self.limit)


class UnboundedCap(BaseModel):
    """No ceiling: the agent decides when to stop."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["unbounded"] = "unbounded"

    def reached(self, iterations_run: int) -> bool:
        return False

    def __str__(self) -> str:
        return "unbounded"


IterationCap = Annotated[Union[BoundedCap, UnboundedCap], Field(discriminator="kind")]


def parse_iteration_cap(value: str | int) -> BoundedCap | UnboundedCap:
    """Parse ``"10"``, ``10``, ``"unbounded"`` or ``"∞"`` into a cap.

    Raises
    ------
    ValueError
        If the value is neither a positive integer nor an unbounded token.
    """
    if isinstance(value, int):
        return BoundedCap(limit=value)
    text = value.strip()
    if text.lower() in UNBOUNDED_TOKENS:
        return UnboundedCap()
    try:
        limit = int(text)
    except ValueError:
        raise ValueError(
            f"max iterations must be a positive integer or 'unbounded', got {value!r}"
        ) from None
    if limit < 1:
        raise ValueError(f"max iterations must be >= 1, got {limit}")
    return BoundedCap(limit=limit)


# ---------------------------------------------------------------------------
# Agent gateway contract
# ---------------------------------------------------------------------------


class InvokeOptions(BaseModel):
    """Options handed to a ``CodingAgent.invoke`` call."""

    model_config = ConfigDict(frozen=True)

    working_directory: str
    agent_config: dict[str, Any] = Field(default_factory=dict)
    existing_artifacts: tuple[str, ...] = ()
    forwarded_flags: tuple[str, ...] = ()


class GenerationResult(BaseModel):
    """What an agent reports back after one invocation."""

    model_config = ConfigDict(frozen=True)

    success: bool
    artifacts: tuple[str, ...] = ()
    error: str | None = None
    raw_output: str | None = None


# ---------------------------------------------------------------------------
# Orchestrator inputs and outputs
# ---------------------------------------------------------------------------


class RunOptions(BaseModel):
    """Caller-facing knobs of a generation run."""

    model_config = ConfigDict(frozen=True)

    working_directory: str
    agent_name: str = "claude-code"
    agent_config: dict[str, Any] = Field(default_factory=dict)
    forwarded_flags: tuple[str, ...] = ()
    force: bool = False
    parallel: bool = False
    concurrency: int = Field(default=5, ge=1, le=50)
    iterate: bool = False
    max_iterations: IterationCap = Field(default_factory=lambda: BoundedCap(limit=10))


class IterationMetrics(BaseModel):
    """Timing and convergence report for one file. Reporting only."""

    model_config = ConfigDict(frozen=True)

    total_iterations: int = Field(ge=1)
    total_time_ms: float
    convergence_reason: ConvergenceReason
    iteration_times_ms: tuple[float, ...] = ()


class IterationResult(BaseModel):
    """Outcome of a single ``run_iteration`` call."""

    model_config = ConfigDict(frozen=True)

    success: bool
    state: PersistedState
    reloaded: Specification | None = None
    spec_changed: bool = False
    error: str | None = None


class FileOutcome(BaseModel):
    """Outcome of the full iteration loop for one specification.

    ``record`` is the record produced by the last successful iteration, or
    ``None`` when no iteration succeeded (the prior record stands).
    """

    model_config = ConfigDict(frozen=True)

    spec_path: str
    success: bool
    record: GenerationRecord | None = None
    state: PersistedState
    metrics: IterationMetrics
    error: str | None = None


class RunResult(BaseModel):
    """Outcome of processing every file in a run."""

    model_config = ConfigDict(frozen=True)

    success_count: int = 0
    fail_count: int = 0
    state: PersistedState
    outcomes: tuple[FileOutcome, ...] = ()
    interrupted: bool = False
