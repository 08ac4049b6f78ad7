"""dotai data models: all Pydantic v2, all frozen (immutable)."""

from dotai.models.generation import (
    BoundedCap,
    ConvergenceReason,
    FileOutcome,
    GenerationResult,
    InvokeOptions,
    IterationCap,
    IterationMetrics,
    IterationResult,
    RunOptions,
    RunResult,
    UnboundedCap,
    parse_iteration_cap,
)
from dotai.models.specs import (
    ChangeClassification,
    LoadFailure,
    LoadReport,
    Specification,
)
from dotai.models.state import (
    DEFAULT_CONFIG,
    STATE_VERSION,
    DotaiConfig,
    GenerationRecord,
    PersistedState,
)

__all__ = [
    # specs
    "Specification",
    "ChangeClassification",
    "LoadFailure",
    "LoadReport",
    # state
    "STATE_VERSION",
    "DEFAULT_CONFIG",
    "DotaiConfig",
    "GenerationRecord",
    "PersistedState",
    # generation
    "BoundedCap",
    "UnboundedCap",
    "IterationCap",
    "parse_iteration_cap",
    "ConvergenceReason",
    "InvokeOptions",
    "GenerationResult",
    "RunOptions",
    "IterationMetrics",
    "IterationResult",
    "FileOutcome",
    "RunResult",
]
