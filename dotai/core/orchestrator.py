"""Generation orchestrator: drives the agent over changed specifications.

One file is processed as an explicit loop of iterations. Each iteration
builds a prompt from the file's prior record, invokes the agent, records
the artifacts, and re-reads the specification to see whether the agent
rewrote it. When iterate mode is on, a rewritten specification queues the
next iteration:

    Start → RunIteration → Continue → RunIteration ...
                         ↘ natural | max-iterations | error | single

Across files the orchestrator runs either sequentially, threading state
from one file to the next, or with bounded parallelism. In parallel mode
every file starts from the same snapshot and returns only its own record;
records are folded into the snapshot one key at a time in completion
order. Two tasks writing the same key resolve last-write-wins by that
order. The input list is expected to be free of duplicate paths.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Protocol

from dotai.agents.base import AgentRegistry, CancellableAgent
from dotai.core.loader import SpecificationLoader
from dotai.core.prompt import build_prompt
from dotai.core.security import filter_safe_artifacts
from dotai.core.state_store import get_record, put_record
from dotai.core.workspace import discover_new_files
from dotai.errors import DotaiError, InternalInvariantError
from dotai.models.generation import (
    ConvergenceReason,
    FileOutcome,
    InvokeOptions,
    IterationMetrics,
    IterationResult,
    RunOptions,
    RunResult,
)
from dotai.models.specs import Specification
from dotai.models.state import GenerationRecord, PersistedState, dedupe

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Progress observer
# ---------------------------------------------------------------------------


class GenerationObserver(Protocol):
    """Receives progress events. Called from worker threads in parallel mode."""

    def file_started(self, position: int, total: int, spec: Specification) -> None: ...

    def iteration_started(self, spec: Specification, index: int) -> None: ...

    def artifacts_tracked(
        self, spec: Specification, artifacts: tuple[str, ...], discovered: int
    ) -> None: ...

    def file_finished(self, outcome: FileOutcome) -> None: ...


class NullObserver:
    """Observer that ignores every event."""

    def file_started(self, position: int, total: int, spec: Specification) -> None:
        pass

    def iteration_started(self, spec: Specification, index: int) -> None:
        pass

    def artifacts_tracked(
        self, spec: Specification, artifacts: tuple[str, ...], discovered: int
    ) -> None:
        pass

    def file_finished(self, outcome: FileOutcome) -> None:
        pass


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class GenerationOrchestrator:
    """Runs the incremental generation pipeline over a list of specifications.

    Parameters
    ----------
    registry:
        Agents available to this run.
    loader:
        Used to re-read a specification after each iteration.
    observer:
        Progress sink for the CLI; silent by default.
    clock:
        Monotonic clock in seconds, injectable for tests.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        *,
        loader: SpecificationLoader | None = None,
        observer: GenerationObserver | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.registry = registry
        self.loader = loader or SpecificationLoader()
        self.observer: GenerationObserver = observer or NullObserver()
        self._clock = clock
        self._cancelled = threading.Event()

    # ------------------------------------------------------------------
    # Single iteration
    # ------------------------------------------------------------------

    def run_iteration(
        self,
        spec: Specification,
        state: PersistedState,
        options: RunOptions,
        working_directory: str,
    ) -> IterationResult:
        """Run the agent once for *spec* against *state*.

        On failure the returned state is *state* itself, so the prior
        record (if any) is untouched.
        """
        prior = get_record(state, spec.path)
        prior_artifacts = prior.artifacts if prior is not None else ()

        try:
            prompt = build_prompt(spec, prior)
            agent = self.registry.get(options.agent_name)
        except DotaiError as exc:
            logger.error("%s: %s", spec.path, exc.message)
            return IterationResult(success=False, state=state, error=exc.message)

        logger.debug("Invoking agent %s for %s", agent.name, spec.path)
        try:
            result = agent.invoke(
                prompt,
                InvokeOptions(
                    working_directory=working_directory,
                    agent_config=options.agent_config,
                    existing_artifacts=prior_artifacts,
                    forwarded_flags=options.forwarded_flags,
                ),
            )
        except Exception as exc:
            logger.exception("Agent %s raised while processing %s", agent.name, spec.path)
            return IterationResult(success=False, state=state, error=f"{type(exc).__name__}: {exc}")

        if not result.success:
            error = result.error or "agent reported failure"
            logger.error("Agent %s failed for %s: %s", agent.name, spec.path, error)
            return IterationResult(success=False, state=state, error=error)

        artifacts = dedupe([*prior_artifacts, *filter_safe_artifacts(result.artifacts)])
        discovered = 0
        if not artifacts:
            logger.info("No artifacts reported, scanning %s for new files", working_directory)
            new_files = discover_new_files(working_directory, prior_artifacts)
            discovered = len(new_files)
            artifacts = dedupe([*prior_artifacts, *new_files])
        if not artifacts:
            logger.warning("No artifacts detected for %s", spec.path)
        self.observer.artifacts_tracked(spec, artifacts, discovered)

        record = GenerationRecord(
            lastHash=spec.fingerprint,
            lastContent=spec.content,
            lastGenerated=datetime.now(timezone.utc),
            artifacts=artifacts,
        )
        new_state = put_record(state, spec.path, record)

        # The agent may have rewritten its own specification to queue more work.
        try:
            reloaded = self.loader.load(spec.path)
        except DotaiError as exc:
            logger.warning(
                "Could not re-read %s to check for spec changes: %s", spec.path, exc.message
            )
            return IterationResult(success=True, state=new_state, reloaded=None, spec_changed=False)

        return IterationResult(
            success=True,
            state=new_state,
            reloaded=reloaded,
            spec_changed=reloaded.content != spec.content,
        )

    # ------------------------------------------------------------------
    # Per-file loop
    # ------------------------------------------------------------------

    def process_file(
        self,
        spec: Specification,
        state: PersistedState,
        options: RunOptions,
        working_directory: str | None = None,
    ) -> FileOutcome:
        """Run the iteration loop for one specification until it converges.

        A plain loop carrying ``(current_spec, current_state, index)``, so
        stack depth does not grow with the number of agent-requested rounds.
        """
        workdir = working_directory or options.working_directory
        started = self._clock()
        iteration_times: list[float] = []
        current_spec = spec
        current_state = state
        index = 0
        error: str | None = None

        while True:
            self.observer.iteration_started(current_spec, index)
            iteration_started = self._clock()
            result = self.run_iteration(current_spec, current_state, options, workdir)
            iteration_times.append((self._clock() - iteration_started) * 1000)

            if not result.success:
                reason = ConvergenceReason.ERROR
                error = result.error
                break

            current_state = result.state

            if not options.iterate:
                reason = ConvergenceReason.SINGLE
                break

            if not result.spec_changed:
                logger.info("%s unchanged by the agent, work complete", spec.path)
                reason = ConvergenceReason.NATURAL
                break

            if result.reloaded is None:
                exc = InternalInvariantError(
                    f"Iteration {index} for {spec.path} reported a spec change "
                    "without a reloaded specification",
                    "MISSING_RELOAD",
                    {"path": spec.path, "iteration": index},
                )
                logger.error(exc.message)
                reason = ConvergenceReason.ERROR
                error = exc.message
                break

            if options.max_iterations.reached(index + 1):
                logger.warning(
                    "%s: maximum iterations (%s) reached; the agent updated the file "
                    "but no further iteration will run",
                    spec.path,
                    options.max_iterations,
                )
                reason = ConvergenceReason.MAX_ITERATIONS
                break

            if self._cancelled.is_set():
                logger.warning("%s: run cancelled, not starting iteration %d", spec.path, index + 1)
                reason = ConvergenceReason.ERROR
                error = "Run cancelled"
                break

            logger.info("%s: agent queued more work, starting iteration %d", spec.path, index + 1)
            current_spec = result.reloaded
            index += 1

        outcome = FileOutcome(
            spec_path=spec.path,
            success=reason is not ConvergenceReason.ERROR,
            record=get_record(current_state, spec.path) if current_state is not state else None,
            state=current_state,
            metrics=IterationMetrics(
                total_iterations=index + 1,
                total_time_ms=(self._clock() - started) * 1000,
                convergence_reason=reason,
                iteration_times_ms=tuple(iteration_times),
            ),
            error=error,
        )
        self.observer.file_finished(outcome)
        return outcome

    # ------------------------------------------------------------------
    # Run over many files
    # ------------------------------------------------------------------

    def run(
        self,
        specs: list[Specification],
        state: PersistedState,
        options: RunOptions,
        *,
        should_stop: Callable[[], bool] | None = None,
    ) -> RunResult:
        """Process *specs* sequentially or in parallel per ``options.parallel``.

        A ``KeyboardInterrupt`` (or *should_stop* turning true between files)
        ends the run early; the returned state still holds every record
        completed before that point. In parallel mode the interrupt also
        cancels queued files and terminates running agents that implement
        ``CancellableAgent``; their files end without a record.

        The agent's working directory is ``options.working_directory`` in
        sequential mode and the specification's own directory in parallel
        mode. Paths found by the fallback workspace scan are relative to
        that directory, so the same file can be recorded as ``api/server.py``
        by a sequential run and as ``server.py`` by a parallel one.
        """
        self._cancelled.clear()
        if options.parallel:
            return self._run_parallel(specs, state, options)
        return self._run_sequential(specs, state, options, should_stop or (lambda: False))

    def _run_sequential(
        self,
        specs: list[Specification],
        state: PersistedState,
        options: RunOptions,
        should_stop: Callable[[], bool],
    ) -> RunResult:
        outcomes: list[FileOutcome] = []
        interrupted = False

        for position, spec in enumerate(specs, start=1):
            if should_stop():
                interrupted = True
                break
            self.observer.file_started(position, len(specs), spec)
            try:
                outcome = self._process_isolated(spec, state, options, options.working_directory)
                state = outcome.state
                outcomes.append(outcome)
            except KeyboardInterrupt:
                logger.warning("Interrupted while processing %s", spec.path)
                interrupted = True
                break

        return self._summarize(state, outcomes, interrupted)

    def _run_parallel(
        self,
        specs: list[Specification],
        snapshot: PersistedState,
        options: RunOptions,
    ) -> RunResult:
        completed: list[FileOutcome] = []
        interrupted = False

        executor = ThreadPoolExecutor(
            max_workers=options.concurrency, thread_name_prefix="dotai-gen"
        )
        futures: dict[Future[FileOutcome], Specification] = {}
        try:
            for position, spec in enumerate(specs, start=1):
                self.observer.file_started(position, len(specs), spec)
                # Each agent works from its spec's directory to keep
                # concurrent agents out of each other's way.
                workdir = os.path.dirname(spec.path) or options.working_directory
                futures[executor.submit(self._process_isolated, spec, snapshot, options, workdir)] = spec

            for future in as_completed(futures):
                completed.append(future.result())
        except KeyboardInterrupt:
            logger.warning("Interrupted, abandoning %d in-flight file(s)", len(futures) - len(completed))
            interrupted = True
            self._cancel_in_flight()
        finally:
            executor.shutdown(wait=not interrupted, cancel_futures=interrupted)

        state = snapshot
        for outcome in completed:
            if outcome.record is not None:
                state = put_record(state, outcome.spec_path, outcome.record)
        return self._summarize(state, completed, interrupted)

    def _cancel_in_flight(self) -> None:
        """Stop further iterations and terminate running agent processes."""
        self._cancelled.set()
        for agent in self.registry:
            if isinstance(agent, CancellableAgent):
                agent.cancel()

    def _process_isolated(
        self,
        spec: Specification,
        state: PersistedState,
        options: RunOptions,
        working_directory: str,
    ) -> FileOutcome:
        """``process_file`` with any unexpected exception turned into a failure."""
        started = self._clock()
        try:
            return self.process_file(spec, state, options, working_directory)
        except Exception as exc:
            logger.exception("Unexpected error while processing %s", spec.path)
            outcome = FileOutcome(
                spec_path=spec.path,
                success=False,
                record=None,
                state=state,
                metrics=IterationMetrics(
                    total_iterations=1,
                    total_time_ms=(self._clock() - started) * 1000,
                    convergence_reason=ConvergenceReason.ERROR,
                ),
                error=f"{type(exc).__name__}: {exc}",
            )
            self.observer.file_finished(outcome)
            return outcome

    @staticmethod
    def _summarize(
        state: PersistedState, outcomes: list[FileOutcome], interrupted: bool
    ) -> RunResult:
        successes = sum(1 for o in outcomes if o.success)
        return RunResult(
            success_count=successes,
            fail_count=len(outcomes) - successes,
            state=state,
            outcomes=tuple(outcomes),
            interrupted=interrupted,
        )
