"""ClaudeCodeAgent: CodingAgent implementation for the Claude Code CLI.

Runs ``claude -p <prompt> --output-format stream-json`` in the working
directory, renders the NDJSON event stream on the console as it arrives,
and extracts artifact file names from the final ``result`` event.

Name extraction is a best-effort heuristic over the agent's closing
narration. When it finds nothing the orchestrator falls back to a
workspace scan.
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
import threading
from typing import Any

from rich.console import Console
from rich.text import Text

from dotai.agents.formatting import (
    clean_error_message,
    strip_line_numbers,
    summarize_tool_input,
    truncate_lines,
)
from dotai.config import DotaiSettings, settings as default_settings
from dotai.errors import ValidationError
from dotai.models.generation import GenerationResult, InvokeOptions

logger = logging.getLogger(__name__)

ALLOWED_MODELS: tuple[str, ...] = (
    "claude-sonnet-4",
    "claude-sonnet-4-5",
    "claude-sonnet-4-5-20250929",
    "claude-opus-4",
    "claude-haiku-4",
    "sonnet",
    "opus",
    "haiku",
)

_TOOL_NAME = re.compile(r"^(mcp__)?[A-Za-z][A-Za-z0-9_]*$")
_SHELL_METACHARACTERS = re.compile(r"[;&|`$\\<>]")
_CONTROL_CHARACTERS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

_EXTENSIONS = (
    "ts|tsx|js|jsx|py|rs|go|java|cpp|c|h|css|scss|html|json|yaml|yml|md|txt|sh|toml"
)
_BARE_FILE_NAME = re.compile(rf"(?:^|(?<=\s)|(?<=`))([A-Za-z0-9_.-]+\.(?:{_EXTENSIONS}))(?=$|\s|`)")
_BACKTICK_PATH = re.compile(rf"`([^`]+\.(?:{_EXTENSIONS}))`")


# ---------------------------------------------------------------------------
# Flag validation
# ---------------------------------------------------------------------------


def validate_model(model: str) -> str:
    if model not in ALLOWED_MODELS:
        raise ValidationError(
            f"Invalid model: {model!r}. Allowed models: {', '.join(ALLOWED_MODELS)}",
            "INVALID_MODEL",
            {"model": model, "allowed_models": list(ALLOWED_MODELS)},
        )
    return model


def validate_tool_list(tools: str) -> str:
    """Accept ``"Read,Write,Bash(git:*)"``-style lists without shell metacharacters."""
    for tool in (part.strip() for part in tools.split(",")):
        name = tool.split("(", 1)[0].strip()
        if not _TOOL_NAME.match(name) or ("(" in tool and _SHELL_METACHARACTERS.search(tool)):
            raise ValidationError(
                f"Invalid tool list: {tools!r}. Tool names must be alphanumeric with underscores.",
                "INVALID_CONFIG",
                {"tools": tools},
            )
    return tools


def sanitize_system_prompt(prompt: str) -> str:
    return _CONTROL_CHARACTERS.sub("", prompt)


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


class ClaudeCodeAgent:
    """Invokes the Claude Code CLI.

    Satisfies ``dotai.agents.base.CodingAgent`` and ``CancellableAgent``
    structurally.

    Parameters
    ----------
    console:
        Where streamed agent activity is rendered.
    settings:
        Supplies the executable name and timeout.
    """

    name = "claude-code"

    def __init__(
        self,
        console: Console | None = None,
        settings: DotaiSettings | None = None,
    ) -> None:
        self.console = console or Console()
        self._settings = settings or default_settings
        self._lock = threading.Lock()
        self._running: set[subprocess.Popen[str]] = set()
        self._cancelled: set[subprocess.Popen[str]] = set()

    def invoke(self, prompt: str, options: InvokeOptions) -> GenerationResult:
        try:
            args = self.build_arguments(prompt, options)
        except ValidationError as exc:
            return GenerationResult(success=False, error=exc.message)

        try:
            raw_output = self._run(args, options.working_directory)
        except (RuntimeError, OSError) as exc:
            return GenerationResult(success=False, error=str(exc))

        return GenerationResult(
            success=True,
            artifacts=tuple(self.parse_output(raw_output)),
            raw_output=raw_output,
        )

    def parse_output(self, raw_output: str) -> list[str]:
        """Pull plausible file names out of the final ``result`` text.

        Accepts newline-delimited events or a single JSON object; lines that
        are not JSON are ignored.
        """
        result_text = ""
        for line in raw_output.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(event, dict) and event.get("type") == "result" and event.get("result"):
                result_text = str(event["result"])

        if not result_text:
            return []

        artifacts: dict[str, None] = {}
        for match in _BARE_FILE_NAME.finditer(result_text):
            artifacts[match.group(1)] = None
        for match in _BACKTICK_PATH.finditer(result_text):
            file_name = match.group(1).replace("\\", "/").rsplit("/", 1)[-1]
            if file_name:
                artifacts[file_name] = None
        return list(artifacts)

    # ------------------------------------------------------------------
    # Command line
    # ------------------------------------------------------------------

    def build_arguments(self, prompt: str, options: InvokeOptions) -> list[str]:
        """Assemble the CLI invocation.

        Raises
        ------
        ValidationError
            If ``agent_config`` names a disallowed model or a malformed tool list.
        """
        args = [
            self._settings.agent_command,
            "-p",
            prompt,
            "--output-format",
            "stream-json",
            "--verbose",
            "--dangerously-skip-permissions",
        ]
        config = options.agent_config
        if config.get("model"):
            args += ["--model", validate_model(str(config["model"]))]
        if config.get("allowedTools"):
            args += ["--allowedTools", validate_tool_list(str(config["allowedTools"]))]
        if config.get("disallowedTools"):
            args += ["--disallowedTools", validate_tool_list(str(config["disallowedTools"]))]
        if config.get("appendSystemPrompt"):
            args += ["--append-system-prompt", sanitize_system_prompt(str(config["appendSystemPrompt"]))]
        if config.get("fallbackModel"):
            args += ["--fallback-model", validate_model(str(config["fallbackModel"]))]
        args += list(options.forwarded_flags)
        return args

    # ------------------------------------------------------------------
    # Process handling
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Terminate every agent process this instance has running.

        The interrupted invocations fail with a "cancelled" error.
        """
        with self._lock:
            running = list(self._running)
            self._cancelled.update(running)
        for proc in running:
            logger.warning("Cancelling agent process %d", proc.pid)
            proc.terminate()

    def _run(self, args: list[str], cwd: str) -> str:
        logger.info("Calling %s in %s", args[0], cwd)
        try:
            proc = subprocess.Popen(
                args,
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError as exc:
            raise RuntimeError(
                f"Agent command {args[0]!r} not found. Install it or set DOTAI_AGENT_COMMAND."
            ) from exc

        with self._lock:
            self._running.add(proc)

        stderr_chunks: list[str] = []
        stderr_reader = threading.Thread(
            target=self._drain, args=(proc.stderr, stderr_chunks), daemon=True
        )
        stderr_reader.start()

        timed_out = threading.Event()

        def _on_timeout() -> None:
            timed_out.set()
            proc.kill()

        timer = threading.Timer(self._settings.agent_timeout_seconds, _on_timeout)
        timer.start()

        stdout_lines: list[str] = []
        tools: dict[str, str] = {}
        try:
            if proc.stdout is None:
                raise RuntimeError("Agent process was started without a stdout pipe")
            for line in proc.stdout:
                stdout_lines.append(line)
                self._render_line(line, tools)
            proc.wait()
        except KeyboardInterrupt:
            logger.warning("Interrupted, terminating agent process")
            _stop_process(proc)
            raise
        except Exception:
            logger.warning("Agent output handling failed, terminating agent process")
            _stop_process(proc)
            raise
        finally:
            timer.cancel()
            stderr_reader.join(timeout=5)
            with self._lock:
                self._running.discard(proc)
                cancelled = proc in self._cancelled
                self._cancelled.discard(proc)

        stderr_text = "".join(stderr_chunks)
        if cancelled:
            raise RuntimeError("Claude Code run was cancelled")
        if timed_out.is_set():
            raise RuntimeError(
                f"Claude Code timed out after {self._settings.agent_timeout_seconds}s"
            )
        if proc.returncode != 0:
            raise RuntimeError(
                f"Claude Code exited with code {proc.returncode}\n{stderr_text[-2000:]}".rstrip()
            )
        if stderr_text:
            logger.debug("Agent stderr: %s", stderr_text[:500])
        return "".join(stdout_lines)

    @staticmethod
    def _drain(stream: Any, sink: list[str]) -> None:
        if stream is None:
            return
        for chunk in stream:
            sink.append(chunk)

    def _render_line(self, line: str, tools: dict[str, str]) -> None:
        """Render one stream-json event; lines of any other shape are skipped."""
        line = line.strip()
        if not line:
            return
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            return
        if not isinstance(event, dict):
            return

        etype = event.get("type")
        message = event.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        blocks = [block for block in content if isinstance(block, dict)] if isinstance(content, list) else []

        if etype == "assistant":
            for block in blocks:
                text = block.get("text")
                if block.get("type") == "text" and isinstance(text, str) and text:
                    self.console.print(Text(text))
                    self.console.print()
                elif block.get("type") == "tool_use":
                    tool_name = str(block.get("name", "unknown"))
                    if block.get("id"):
                        tools[str(block["id"])] = tool_name
                    tool_input = block.get("input")
                    summary = summarize_tool_input(tool_name, tool_input if isinstance(tool_input, dict) else {})
                    self.console.print(Text.assemble((tool_name, "bold"), f" {summary}"))
        elif etype == "user":
            for block in blocks:
                if block.get("type") != "tool_result":
                    continue
                tools.pop(str(block.get("tool_use_id", "")), None)
                result = block.get("content")
                if not isinstance(result, str) or not result.strip():
                    continue
                if block.get("is_error"):
                    self.console.print(Text(f"✗ {clean_error_message(result)}", style="red"))
                else:
                    shown = truncate_lines(strip_line_numbers(result))
                    self.console.print(Text(f"↳ {shown}", style="dim"))
                self.console.print()
        elif etype == "result":
            if event.get("is_error"):
                logger.error("Agent reported an error: %s", event.get("result", ""))
            elif event.get("total_cost_usd") is not None:
                logger.info(
                    "Agent finished in %.1fs, cost: $%.4f",
                    (event.get("duration_ms") or 0) / 1000,
                    event.get("total_cost_usd") or 0,
                )


def _stop_process(proc: subprocess.Popen[str]) -> None:
    """Terminate *proc*, escalating to kill if it does not exit within 5s."""
    proc.terminate()
    try:
        proc.wait(timeout=5)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()
