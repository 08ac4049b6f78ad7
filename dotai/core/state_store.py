"""Durable generation state stored under ``.dotai/``.

Layout::

    .dotai/
      config.json   {"defaultAgent": ..., "stateFile": ...}
      state.json    {"version": ..., "files": {...}}
      .gitignore    state.json

``get_record``/``put_record``/``remove_record`` are pure: they never touch
disk and never mutate the state they are given.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import pydantic

from dotai.errors import ConfigError, FilesystemError, ParseError, StateVersionError, ValidationError
from dotai.models.state import (
    DEFAULT_CONFIG,
    STATE_VERSION,
    DotaiConfig,
    GenerationRecord,
    PersistedState,
)

logger = logging.getLogger(__name__)

DOTAI_DIR = ".dotai"
CONFIG_FILE = "config.json"


# ---------------------------------------------------------------------------
# Pure state transitions
# ---------------------------------------------------------------------------


def empty_state() -> PersistedState:
    """A fresh state at the current schema version."""
    return PersistedState(version=STATE_VERSION, files={})


def get_record(state: PersistedState, path: str) -> GenerationRecord | None:
    return state.records.get(path)


def put_record(state: PersistedState, path: str, record: GenerationRecord) -> PersistedState:
    """Return a new state with exactly *path* added or replaced.

    Every other key maps to the very same record object as before.
    """
    records = dict(state.records)
    records[path] = record
    return state.model_copy(update={"records": records})


def remove_record(state: PersistedState, path: str) -> PersistedState:
    """Return a new state without *path*. Missing keys are a no-op."""
    records = {k: v for k, v in state.records.items() if k != path}
    return state.model_copy(update={"records": records})


# ---------------------------------------------------------------------------
# Parsing / validation
# ---------------------------------------------------------------------------


def _parse_json(text: str, what: str, path: Path) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(
            f"Failed to parse {what} {path}: {exc.msg} (line {exc.lineno})",
            "INVALID_CONTENT",
            {"path": str(path), "excerpt": text[:100]},
        ) from exc


def parse_state(data: Any, path: Path | str = "") -> PersistedState:
    """Validate decoded JSON as a ``PersistedState``.

    The version gate runs before the record schema so that an older layout
    is reported as a version mismatch rather than as a shape error.

    Raises
    ------
    ValidationError
        If the structure is not a state object.
    StateVersionError
        If ``version`` differs from ``STATE_VERSION``.
    """
    if not isinstance(data, dict):
        raise ValidationError(
            f"State file {path} must contain a JSON object",
            "INVALID_STATE",
            {"path": str(path), "received_type": type(data).__name__},
        )
    version = data.get("version")
    if not isinstance(version, str):
        raise ValidationError(
            f"State file {path} has no string 'version' field",
            "INVALID_STATE",
            {"path": str(path), "version": version},
        )
    if version != STATE_VERSION:
        raise StateVersionError(found=version, expected=STATE_VERSION, path=str(path))
    try:
        return PersistedState.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ValidationError(
            f"State file {path} is malformed: {exc.error_count()} validation error(s); "
            f"first: {exc.errors()[0]['msg']} at {exc.errors()[0]['loc']}",
            "INVALID_STATE",
            {"path": str(path)},
        ) from exc


def parse_config(data: Any, path: Path | str = "") -> DotaiConfig:
    """Validate decoded JSON as a ``DotaiConfig``.

    Raises
    ------
    ConfigError
        If a field is missing, empty or of the wrong type.
    """
    try:
        return DotaiConfig.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ConfigError(
            f"Config file {path} is invalid: "
            + "; ".join(f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors()),
            "INVALID_CONFIG",
            {"path": str(path)},
        ) from exc


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class StateStore:
    """Loads and saves state and config for one project root.

    Parameters
    ----------
    root:
        Project root; state lives in ``{root}/.dotai/``.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    @property
    def dotai_dir(self) -> Path:
        return self.root / DOTAI_DIR

    @property
    def config_path(self) -> Path:
        return self.dotai_dir / CONFIG_FILE

    @property
    def gitignore_path(self) -> Path:
        return self.dotai_dir / ".gitignore"

    @property
    def state_path(self) -> Path:
        """State file location, honoring ``stateFile`` from a valid config."""
        try:
            return self.dotai_dir / self.load_config().state_file
        except (ConfigError, ParseError, FilesystemError):
            return self.dotai_dir / DEFAULT_CONFIG.state_file

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    def load_config(self) -> DotaiConfig:
        """Load ``config.json``; defaults when absent."""
        text = self._read_optional(self.config_path)
        if text is None:
            return DEFAULT_CONFIG
        return parse_config(_parse_json(text, "config file", self.config_path), self.config_path)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def load(self) -> PersistedState:
        """Load the persisted state.

        Returns an empty current-schema state if the file does not exist.

        Raises
        ------
        ParseError
            If the file is not valid JSON.
        ValidationError
            If the JSON is not a state object.
        StateVersionError
            If the file was written under another schema version.
        FilesystemError
            If the file exists but cannot be read.
        """
        path = self.state_path
        text = self._read_optional(path)
        if text is None:
            logger.debug("No state file at %s, starting empty", path)
            return empty_state()
        state = parse_state(_parse_json(text, "state file", path), path)
        logger.debug("Loaded %d record(s) from %s", len(state.records), path)
        return state

    def save(self, state: PersistedState) -> None:
        """Persist *state* with write-then-replace.

        A crash mid-write leaves the previous file intact.

        Raises
        ------
        FilesystemError
            If the directory cannot be created or the file cannot be written.
        """
        path = self.state_path
        payload = json.dumps(state.to_wire(), indent=2, ensure_ascii=False) + "\n"
        self._atomic_write(path, payload)
        logger.debug("Saved %d record(s) to %s", len(state.records), path)

    def clear(self) -> None:
        """Reset the state to empty at the current schema version."""
        self.save(empty_state())

    def initialize(self) -> list[Path]:
        """Create ``.dotai/`` with default config, empty state and .gitignore.

        Idempotent: existing files are left untouched. Returns the paths
        that were created by this call.
        """
        created: list[Path] = []
        try:
            self.dotai_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FilesystemError.from_os_error(exc, str(self.dotai_dir)) from exc

        if not self.config_path.exists():
            self._atomic_write(
                self.config_path, json.dumps(DEFAULT_CONFIG.to_wire(), indent=2) + "\n"
            )
            created.append(self.config_path)

        state_path = self.state_path
        if not state_path.exists():
            self._atomic_write(
                state_path, json.dumps(empty_state().to_wire(), indent=2) + "\n"
            )
            created.append(state_path)

        if not self.gitignore_path.exists():
            self._atomic_write(self.gitignore_path, f"{state_path.name}\n")
            created.append(self.gitignore_path)

        for path in created:
            logger.info("Created %s", path)
        return created

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _read_optional(path: Path) -> str | None:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise FilesystemError.from_os_error(exc, str(path)) from exc

    @staticmethod
    def _atomic_write(path: Path, text: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(text)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise FilesystemError.from_os_error(exc, str(path)) from exc
