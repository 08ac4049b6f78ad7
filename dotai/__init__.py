"""dotai: change-driven code generation from ``.ai`` specification files.

Finds ``.ai`` specifications, detects which ones changed since the last
run, drives a coding agent to (re)generate their artifacts and persists
what was generated under ``.dotai/`` for the next incremental run.
"""

__version__ = "0.1.0"
__description__ = "AI-powered code generation from .ai specification files"

from dotai.core.orchestrator import GenerationOrchestrator
from dotai.core.state_store import StateStore
from dotai.core.loader import SpecificationLoader

__all__ = ["GenerationOrchestrator", "SpecificationLoader", "StateStore", "__version__"]
