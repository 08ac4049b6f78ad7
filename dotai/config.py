"""Runtime settings: env-driven via pydantic-settings.

Reads ``DOTAI_*`` environment variables and an optional ``.env`` file.
Project-level configuration (``.dotai/config.json``) is a separate model,
see ``dotai.models.state.DotaiConfig``.

Examples
--------
Override via environment::

    export DOTAI_LOG_LEVEL=DEBUG
    export DOTAI_AGENT_COMMAND=/opt/bin/claude
"""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class DotaiSettings(BaseSettings):
    """Process-wide settings with environment variable overrides."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="DOTAI_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"
    debug: bool = False

    # Agent invocation
    agent_command: str = "claude"
    agent_timeout_seconds: int = 1800

    # Execution modes
    default_concurrency: int = 5
    max_concurrency: int = 50
    default_max_iterations: int = 10

    @property
    def effective_log_level(self) -> str:
        """``DEBUG`` when debug mode is on, otherwise ``log_level``."""
        return "DEBUG" if self.debug else self.log_level.upper()


# Module-level singleton, import as `from dotai.config import settings`
settings = DotaiSettings()
