"""Persisted generation state and project configuration models.

Wire format of ``.dotai/state.json``::

    {
      "version": "0.1.0",
      "files": {
        "/abs/path/app.ai": {
          "lastHash": "<sha256>",
          "lastContent": "...",
          "lastGenerated": "2026-01-01T00:00:00Z",
          "artifacts": ["app.py"]
        }
      }
    }
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Bumped whenever the persisted layout changes. Loading a state written
# under any other version is refused outright.
STATE_VERSION = "0.1.0"

DEFAULT_AGENT = "claude-code"
DEFAULT_STATE_FILE = "state.json"


def dedupe(items: list[str] | tuple[str, ...]) -> tuple[str, ...]:
    """Remove duplicates, keeping first-seen order."""
    return tuple(dict.fromkeys(items))


class GenerationRecord(BaseModel):
    """Last known successful generation outcome for one specification.

    Replaced as a whole unit; never updated field by field.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    last_fingerprint: str = Field(alias="lastHash")
    last_content: str = Field(alias="lastContent")
    last_generated_at: datetime = Field(
        alias="lastGenerated",
        default_factory=lambda: datetime.now(timezone.utc),
    )
    artifacts: tuple[str, ...] = ()

    @field_validator("artifacts", mode="before")
    @classmethod
    def _dedupe_artifacts(cls, value: object) -> object:
        if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
            return dedupe(value)
        return value


class PersistedState(BaseModel):
    """Project-wide durable state: schema version plus per-path records.

    Treat as a value. ``put_record``/``remove_record`` in
    ``dotai.core.state_store`` return new instances and never touch
    ``records`` of the instance they were given.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    schema_version: str = Field(default=STATE_VERSION, alias="version")
    records: dict[str, GenerationRecord] = Field(default_factory=dict, alias="files")

    def to_wire(self) -> dict[str, object]:
        """JSON-ready dict using the on-disk field names."""
        return self.model_dump(mode="json", by_alias=True)


class DotaiConfig(BaseModel):
    """Project configuration stored in ``.dotai/config.json``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    default_agent: str = Field(alias="defaultAgent", min_length=1)
    state_file: str = Field(alias="stateFile", min_length=1)

    @field_validator("state_file")
    @classmethod
    def _plain_file_name(cls, value: str) -> str:
        # Resolved inside .dotai/, so it must not name another directory.
        if "/" in value or "\\" in value or value in (".", ".."):
            raise ValueError(f"stateFile must be a plain file name, got {value!r}")
        return value

    def to_wire(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


DEFAULT_CONFIG = DotaiConfig(defaultAgent=DEFAULT_AGENT, stateFile=DEFAULT_STATE_FILE)
