"""Unit tests for the GenerationOrchestrator.

Covers a single iteration, the per-file iteration loop and its
convergence reasons, sequential and bounded-parallel runs, failure
isolation and interrupt handling.
"""

from __future__ import annotations

import os
import threading
from concurrent.futures import as_completed
from pathlib import Path

import pytest

from dotai.core import orchestrator as orchestrator_module
from dotai.core.loader import SpecificationLoader
from dotai.core.orchestrator import GenerationOrchestrator, NullObserver
from dotai.core.state_store import empty_state, get_record, put_record
from dotai.models.generation import (
    BoundedCap,
    ConvergenceReason,
    GenerationResult,
    IterationResult,
    RunOptions,
    UnboundedCap,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _options(root: Path, **overrides) -> RunOptions:
    return RunOptions(working_directory=str(root), agent_name="fake", **overrides)


def _file_name(prompt: str) -> str:
    """The specification file name embedded in a prompt's first line."""
    first = prompt.splitlines()[0]
    return first.split("from ", 1)[1].rstrip(":")


def _rewriting_agent(make_agent, spec_path: Path):
    """Agent that appends a task line to its spec on every call."""

    def respond(prompt, options, call):
        with spec_path.open("a", encoding="utf-8") as handle:
            handle.write(f"\nTask {call + 1}")
        return GenerationResult(success=True, artifacts=(f"file{call}.py",))

    return make_agent(respond=respond)


class _BlockingAgent:
    """Finishes ``a.ai`` at once; every other file waits until ``cancel()``.

    After release the blocked file's spec is rewritten so the iteration
    loop would normally continue.
    """

    name = "fake"

    def __init__(self, spec_dir: Path) -> None:
        self.spec_dir = spec_dir
        self.released = threading.Event()
        self.cancel_calls = 0
        self.blocked_calls = 0
        self.blocked = threading.Event()

    def invoke(self, prompt, options):
        file_name = _file_name(prompt)
        if file_name == "a.ai":
            return GenerationResult(success=True, artifacts=("a.py",))
        self.blocked_calls += 1
        self.blocked.set()
        self.released.wait(timeout=10)
        with (self.spec_dir / file_name).open("a", encoding="utf-8") as handle:
            handle.write("\nMore work")
        return GenerationResult(success=True, artifacts=("b.py",))

    def parse_output(self, raw_output):
        return []

    def cancel(self) -> None:
        self.cancel_calls += 1
        self.released.set()


class _FinishedFiles(NullObserver):
    """Collects outcomes by file name and signals once *expected* have finished."""

    def __init__(self, expected: int) -> None:
        self.expected = expected
        self.outcomes = {}
        self.done = threading.Event()

    def file_finished(self, outcome):
        self.outcomes[os.path.basename(outcome.spec_path)] = outcome
        if len(self.outcomes) >= self.expected:
            self.done.set()


# ---------------------------------------------------------------------------
# Test: run_iteration
# ---------------------------------------------------------------------------


class TestRunIteration:
    """One agent invocation against the current state."""

    def test_first_run_records_spec_and_artifacts(self, tmp_dir, loader, write_spec, make_agent, make_registry):
        path = write_spec("app.ai", "Build a CLI tool")
        spec = loader.load(path)
        agent = make_agent()
        orch = GenerationOrchestrator(make_registry(agent), loader=loader)

        result = orch.run_iteration(spec, empty_state(), _options(tmp_dir), str(tmp_dir))

        assert result.success is True
        record = get_record(result.state, spec.path)
        assert record is not None
        assert record.last_fingerprint == spec.fingerprint
        assert record.last_content == "Build a CLI tool"
        assert record.artifacts == ("out.py",)
        assert result.spec_changed is False
        assert "Implement the following specification from app.ai" in agent.prompts[0]

    def test_update_prompt_uses_prior_record(
        self, tmp_dir, loader, write_spec, make_agent, make_registry, make_record
    ):
        path = write_spec("app.ai", "Line 1\nLine 2 modified")
        spec = loader.load(path)
        state = put_record(
            empty_state(), spec.path, make_record(content="Line 1\nLine 2", artifacts=("cli.py",))
        )
        agent = make_agent()
        orch = GenerationOrchestrator(make_registry(agent), loader=loader)

        result = orch.run_iteration(spec, state, _options(tmp_dir), str(tmp_dir))

        prompt, options = agent.calls[0]
        assert "SPECIFICATION CHANGES:" in prompt
        assert "  - cli.py" in prompt
        assert "    2 + Line 2 modified" in prompt
        assert options.existing_artifacts == ("cli.py",)
        assert get_record(result.state, spec.path).artifacts == ("cli.py", "out.py")

    def test_agent_failure_leaves_state_untouched(
        self, tmp_dir, loader, write_spec, make_agent, make_registry, make_record
    ):
        path = write_spec("app.ai", "changed")
        spec = loader.load(path)
        prior = make_record(content="original")
        state = put_record(empty_state(), spec.path, prior)
        agent = make_agent(respond=lambda p, o, c: GenerationResult(success=False, error="boom"))
        orch = GenerationOrchestrator(make_registry(agent), loader=loader)

        result = orch.run_iteration(spec, state, _options(tmp_dir), str(tmp_dir))

        assert result.success is False
        assert result.error == "boom"
        assert result.state is state
        assert get_record(result.state, spec.path) is prior

    def test_agent_exception_becomes_failure(self, tmp_dir, loader, write_spec, make_agent, make_registry):
        spec = loader.load(write_spec())

        def respond(prompt, options, call):
            raise RuntimeError("agent crashed")

        orch = GenerationOrchestrator(make_registry(make_agent(respond=respond)), loader=loader)
        result = orch.run_iteration(spec, empty_state(), _options(tmp_dir), str(tmp_dir))

        assert result.success is False
        assert "agent crashed" in result.error

    def test_unknown_agent_is_a_failure(self, tmp_dir, loader, write_spec, make_registry):
        spec = loader.load(write_spec())
        orch = GenerationOrchestrator(make_registry(), loader=loader)

        result = orch.run_iteration(spec, empty_state(), _options(tmp_dir), str(tmp_dir))

        assert result.success is False
        assert "Unknown agent" in result.error

    def test_unsafe_artifact_names_are_dropped(self, tmp_dir, loader, write_spec, make_agent, make_registry):
        spec = loader.load(write_spec())
        agent = make_agent(
            respond=lambda p, o, c: GenerationResult(
                success=True, artifacts=("../evil.py", "ok.py", "sub/dir.py", "ok.py")
            )
        )
        orch = GenerationOrchestrator(make_registry(agent), loader=loader)

        result = orch.run_iteration(spec, empty_state(), _options(tmp_dir), str(tmp_dir))

        assert get_record(result.state, spec.path).artifacts == ("ok.py",)

    def test_workspace_scan_when_no_artifacts_reported(
        self, tmp_dir, loader, write_spec, make_agent, make_registry
    ):
        spec = loader.load(write_spec())

        def respond(prompt, options, call):
            (Path(options.working_directory) / "generated.txt").write_text("x")
            (Path(options.working_directory) / "src").mkdir()
            (Path(options.working_directory) / "src" / "main.py").write_text("x")
            return GenerationResult(success=True, artifacts=())

        orch = GenerationOrchestrator(make_registry(make_agent(respond=respond)), loader=loader)
        result = orch.run_iteration(spec, empty_state(), _options(tmp_dir), str(tmp_dir))

        assert get_record(result.state, spec.path).artifacts == ("generated.txt", "src/main.py")

    def test_detects_spec_rewritten_by_agent(self, tmp_dir, loader, write_spec, make_agent, make_registry):
        path = write_spec("app.ai", "Step one")
        spec = loader.load(path)
        orch = GenerationOrchestrator(make_registry(_rewriting_agent(make_agent, path)), loader=loader)

        result = orch.run_iteration(spec, empty_state(), _options(tmp_dir), str(tmp_dir))

        assert result.spec_changed is True
        assert result.reloaded is not None
        assert result.reloaded.content == "Step one\nTask 1"
        # The record describes the content the agent was given.
        assert get_record(result.state, spec.path).last_content == "Step one"

    def test_unreadable_spec_after_run_is_not_a_change(
        self, tmp_dir, loader, write_spec, make_agent, make_registry
    ):
        path = write_spec("app.ai", "Step one")
        spec = loader.load(path)

        def respond(prompt, options, call):
            path.unlink()
            return GenerationResult(success=True, artifacts=("a.py",))

        orch = GenerationOrchestrator(make_registry(make_agent(respond=respond)), loader=loader)
        result = orch.run_iteration(spec, empty_state(), _options(tmp_dir), str(tmp_dir))

        assert result.success is True
        assert result.reloaded is None
        assert result.spec_changed is False


# ---------------------------------------------------------------------------
# Test: process_file
# ---------------------------------------------------------------------------


class TestProcessFile:
    """The per-file loop and its convergence reasons."""

    def test_single_pass_without_iterate(self, tmp_dir, loader, write_spec, make_agent, make_registry):
        path = write_spec("app.ai", "Step one")
        agent = _rewriting_agent(make_agent, path)
        orch = GenerationOrchestrator(make_registry(agent), loader=loader)

        outcome = orch.process_file(loader.load(path), empty_state(), _options(tmp_dir))

        assert outcome.success is True
        assert outcome.metrics.total_iterations == 1
        assert outcome.metrics.convergence_reason is ConvergenceReason.SINGLE
        assert len(agent.calls) == 1

    def test_stops_at_max_iterations_with_artifact_union(
        self, tmp_dir, loader, write_spec, make_agent, make_registry
    ):
        path = write_spec("app.ai", "Step one")
        agent = _rewriting_agent(make_agent, path)
        orch = GenerationOrchestrator(make_registry(agent), loader=loader)

        outcome = orch.process_file(
            loader.load(path),
            empty_state(),
            _options(tmp_dir, iterate=True, max_iterations=BoundedCap(limit=3)),
        )

        assert outcome.success is True
        assert outcome.metrics.total_iterations == 3
        assert outcome.metrics.convergence_reason is ConvergenceReason.MAX_ITERATIONS
        assert len(outcome.metrics.iteration_times_ms) == 3
        assert outcome.record.artifacts == ("file0.py", "file1.py", "file2.py")
        assert outcome.record.last_content == "Step one\nTask 1\nTask 2"
        assert len(agent.calls) == 3

    def test_natural_convergence(self, tmp_dir, loader, write_spec, make_agent, make_registry):
        path = write_spec("app.ai", "Step one")

        def respond(prompt, options, call):
            if call == 0:
                path.write_text("Step one\nStep two", encoding="utf-8")
            return GenerationResult(success=True, artifacts=(f"f{call}.py",))

        agent = make_agent(respond=respond)
        orch = GenerationOrchestrator(make_registry(agent), loader=loader)

        outcome = orch.process_file(
            loader.load(path), empty_state(), _options(tmp_dir, iterate=True, max_iterations=UnboundedCap())
        )

        assert outcome.metrics.total_iterations == 2
        assert outcome.metrics.convergence_reason is ConvergenceReason.NATURAL
        assert outcome.record.last_content == "Step one\nStep two"
        assert outcome.record.artifacts == ("f0.py", "f1.py")

    def test_second_iteration_gets_update_prompt(self, tmp_dir, loader, write_spec, make_agent, make_registry):
        path = write_spec("app.ai", "Step one")

        def respond(prompt, options, call):
            if call == 0:
                path.write_text("Step one\nStep two", encoding="utf-8")
            return GenerationResult(success=True, artifacts=("a.py",))

        agent = make_agent(respond=respond)
        orch = GenerationOrchestrator(make_registry(agent), loader=loader)
        orch.process_file(loader.load(path), empty_state(), _options(tmp_dir, iterate=True))

        assert "This is a new specification" in agent.prompts[0]
        assert "    2 + Step two" in agent.prompts[1]
        assert agent.calls[1][1].existing_artifacts == ("a.py",)

    def test_failure_on_later_iteration_keeps_earlier_record(
        self, tmp_dir, loader, write_spec, make_agent, make_registry
    ):
        path = write_spec("app.ai", "Step one")

        def respond(prompt, options, call):
            if call == 0:
                path.write_text("Step one\nStep two", encoding="utf-8")
                return GenerationResult(success=True, artifacts=("a.py",))
            return GenerationResult(success=False, error="quota exceeded")

        orch = GenerationOrchestrator(make_registry(make_agent(respond=respond)), loader=loader)
        outcome = orch.process_file(loader.load(path), empty_state(), _options(tmp_dir, iterate=True))

        assert outcome.success is False
        assert outcome.error == "quota exceeded"
        assert outcome.metrics.convergence_reason is ConvergenceReason.ERROR
        assert outcome.metrics.total_iterations == 2
        assert outcome.record is not None
        assert outcome.record.last_content == "Step one"

    def test_first_iteration_failure_has_no_record(self, tmp_dir, loader, write_spec, make_agent, make_registry):
        path = write_spec()
        agent = make_agent(respond=lambda p, o, c: GenerationResult(success=False, error="nope"))
        orch = GenerationOrchestrator(make_registry(agent), loader=loader)

        state = empty_state()
        outcome = orch.process_file(loader.load(path), state, _options(tmp_dir))

        assert outcome.success is False
        assert outcome.record is None
        assert outcome.state is state

    def test_change_without_reload_is_an_invariant_error(
        self, tmp_dir, loader, write_spec, make_agent, make_registry
    ):
        class NoReload(GenerationOrchestrator):
            def run_iteration(self, spec, state, options, working_directory):
                return IterationResult(success=True, state=state, reloaded=None, spec_changed=True)

        orch = NoReload(make_registry(make_agent()), loader=loader)
        outcome = orch.process_file(loader.load(write_spec()), empty_state(), _options(tmp_dir, iterate=True))

        assert outcome.success is False
        assert outcome.metrics.convergence_reason is ConvergenceReason.ERROR
        assert "without a reloaded specification" in outcome.error


# ---------------------------------------------------------------------------
# Test: run (sequential)
# ---------------------------------------------------------------------------


class TestSequentialRun:
    """Sequential mode threads state from file to file."""

    def test_failure_is_isolated_per_file(self, tmp_dir, loader, write_spec, make_agent, make_registry):
        specs = [loader.load(write_spec(f"{name}.ai", f"Spec {name}")) for name in ("a", "b", "c")]

        def respond(prompt, options, call):
            if _file_name(prompt) == "b.ai":
                return GenerationResult(success=False, error="b failed")
            return GenerationResult(success=True, artifacts=("x.py",))

        orch = GenerationOrchestrator(make_registry(make_agent(respond=respond)), loader=loader)
        result = orch.run(specs, empty_state(), _options(tmp_dir))

        assert result.success_count == 2
        assert result.fail_count == 1
        assert set(result.state.records) == {specs[0].path, specs[2].path}
        assert [o.success for o in result.outcomes] == [True, False, True]

    def test_failed_file_keeps_prior_record(
        self, tmp_dir, loader, write_spec, make_agent, make_registry, make_record
    ):
        spec = loader.load(write_spec("a.ai", "new text"))
        prior = make_record(content="old text")
        state = put_record(empty_state(), spec.path, prior)
        agent = make_agent(respond=lambda p, o, c: GenerationResult(success=False, error="x"))
        orch = GenerationOrchestrator(make_registry(agent), loader=loader)

        result = orch.run([spec], state, _options(tmp_dir))

        assert get_record(result.state, spec.path) is prior

    def test_unexpected_exception_is_isolated(self, tmp_dir, write_spec, make_agent, make_registry):
        class FlakyLoader(SpecificationLoader):
            def load(self, path):
                if str(path).endswith("b.ai") and self.armed:
                    raise ValueError("disk on fire")
                return super().load(path)

        flaky = FlakyLoader(tmp_dir)
        flaky.armed = False
        specs = [flaky.load(write_spec(f"{name}.ai", f"Spec {name}")) for name in ("a", "b")]
        flaky.armed = True

        orch = GenerationOrchestrator(make_registry(make_agent()), loader=flaky)
        result = orch.run(specs, empty_state(), _options(tmp_dir))

        assert result.success_count == 1
        assert result.fail_count == 1
        assert "disk on fire" in result.outcomes[1].error
        assert set(result.state.records) == {specs[0].path}

    def test_should_stop_ends_run_between_files(self, tmp_dir, loader, write_spec, make_agent, make_registry):
        specs = [loader.load(write_spec(f"{name}.ai", name)) for name in ("a", "b", "c")]
        agent = make_agent()
        orch = GenerationOrchestrator(make_registry(agent), loader=loader)

        result = orch.run(specs, empty_state(), _options(tmp_dir), should_stop=lambda: len(agent.calls) >= 1)

        assert result.interrupted is True
        assert len(result.outcomes) == 1
        assert set(result.state.records) == {specs[0].path}

    def test_keyboard_interrupt_keeps_completed_records(
        self, tmp_dir, loader, write_spec, make_agent, make_registry
    ):
        specs = [loader.load(write_spec(f"{name}.ai", name)) for name in ("a", "b")]

        def respond(prompt, options, call):
            if call == 1:
                raise KeyboardInterrupt
            return GenerationResult(success=True, artifacts=("a.py",))

        orch = GenerationOrchestrator(make_registry(make_agent(respond=respond)), loader=loader)
        result = orch.run(specs, empty_state(), _options(tmp_dir))

        assert result.interrupted is True
        assert result.success_count == 1
        assert set(result.state.records) == {specs[0].path}


# ---------------------------------------------------------------------------
# Test: run (parallel)
# ---------------------------------------------------------------------------


class TestParallelRun:
    """Bounded-parallel mode merges per-file records into the snapshot."""

    def test_merge_preserves_untouched_records(
        self, tmp_dir, loader, write_spec, make_agent, make_registry, make_record
    ):
        record_a = make_record(content="a")
        record_b = make_record(content="b")
        snapshot = put_record(
            put_record(empty_state(), str(tmp_dir / "a.ai"), record_a), str(tmp_dir / "b.ai"), record_b
        )
        specs = [loader.load(write_spec(f"{name}.ai", name)) for name in ("c", "d", "e")]
        orch = GenerationOrchestrator(make_registry(make_agent()), loader=loader)

        result = orch.run(specs, snapshot, _options(tmp_dir, parallel=True, concurrency=2))

        assert result.success_count == 3
        assert len(result.state.records) == 5
        assert result.state.records[str(tmp_dir / "a.ai")] is record_a
        assert result.state.records[str(tmp_dir / "b.ai")] is record_b
        assert len(snapshot.records) == 2

    def test_agent_runs_in_spec_directory(self, tmp_dir, loader, write_spec, make_agent, make_registry):
        specs = [loader.load(write_spec("pkg/one.ai", "one")), loader.load(write_spec("two.ai", "two"))]
        agent = make_agent()
        orch = GenerationOrchestrator(make_registry(agent), loader=loader)

        orch.run(specs, empty_state(), _options(tmp_dir, parallel=True))

        directories = {options.working_directory for _, options in agent.calls}
        assert directories == {str(tmp_dir / "pkg"), str(tmp_dir)}

    def test_failures_do_not_cancel_siblings(self, tmp_dir, loader, write_spec, make_agent, make_registry):
        specs = [loader.load(write_spec(f"{name}.ai", name)) for name in ("a", "b", "c", "d")]

        def respond(prompt, options, call):
            if _file_name(prompt) in ("b.ai", "d.ai"):
                raise RuntimeError("crashed")
            return GenerationResult(success=True, artifacts=("x.py",))

        orch = GenerationOrchestrator(make_registry(make_agent(respond=respond)), loader=loader)
        result = orch.run(specs, empty_state(), _options(tmp_dir, parallel=True, concurrency=4))

        assert result.success_count == 2
        assert result.fail_count == 2
        assert set(result.state.records) == {specs[0].path, specs[2].path}

    def test_keyboard_interrupt_cancels_in_flight_agents(
        self, tmp_dir, loader, write_spec, make_registry, monkeypatch
    ):
        specs = [loader.load(write_spec(f"{name}.ai", name)) for name in ("a", "b")]
        agent = _BlockingAgent(tmp_dir)
        observer = _FinishedFiles(expected=2)

        def interrupted_after_first(futures):
            completed = as_completed(futures)
            yield next(completed)
            assert agent.blocked.wait(timeout=10)
            raise KeyboardInterrupt

        monkeypatch.setattr(orchestrator_module, "as_completed", interrupted_after_first)
        orch = GenerationOrchestrator(make_registry(agent), loader=loader, observer=observer)

        result = orch.run(
            specs,
            empty_state(),
            _options(tmp_dir, parallel=True, concurrency=2, iterate=True, max_iterations=UnboundedCap()),
        )

        assert result.interrupted is True
        assert set(result.state.records) == {specs[0].path}
        assert agent.cancel_calls == 1

        # The released worker stops instead of starting another iteration.
        assert observer.done.wait(timeout=10)
        blocked = observer.outcomes["b.ai"]
        assert blocked.error == "Run cancelled"
        assert blocked.metrics.total_iterations == 1
        assert agent.blocked_calls == 1

    def test_fallback_scan_paths_follow_the_agent_directory(
        self, tmp_dir, loader, write_spec, make_agent, make_registry
    ):
        spec = loader.load(write_spec("api/server.ai", "server"))

        def respond(prompt, options, call):
            (tmp_dir / "api" / "server.py").write_text("app = None\n", encoding="utf-8")
            return GenerationResult(success=True)

        orch = GenerationOrchestrator(make_registry(make_agent(respond=respond)), loader=loader)

        sequential = orch.run([spec], empty_state(), _options(tmp_dir))
        parallel = orch.run([spec], empty_state(), _options(tmp_dir, parallel=True))

        assert get_record(sequential.state, spec.path).artifacts == ("api/server.py",)
        assert get_record(parallel.state, spec.path).artifacts == ("server.py",)
