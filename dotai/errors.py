"""Error taxonomy for dotai.

Every error raised by the pipeline is a ``DotaiError`` subclass carrying a
``kind`` (the taxonomy bucket), a ``code`` (the specific failure) and a
``context`` dict naming the entity that failed (path, agent name, versions).
"""

from __future__ import annotations

from typing import Any


class DotaiError(RuntimeError):
    """Base class for all dotai errors.

    Parameters
    ----------
    message:
        Human-readable description naming the failing entity.
    code:
        Machine-readable failure code, e.g. ``"ENOENT"`` or ``"VERSION_MISMATCH"``.
    context:
        Extra structured data for logging and display.
    """

    kind: str = "internal"

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN",
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.context: dict[str, Any] = dict(context or {})

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logging."""
        return {
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "context": self.context,
        }


class FilesystemError(DotaiError):
    """Read, write or directory traversal failure."""

    kind = "filesystem"

    @classmethod
    def from_os_error(cls, exc: OSError, path: str | None = None) -> FilesystemError:
        """Wrap an ``OSError``, keeping its errno name as the code."""
        import errno

        code = errno.errorcode.get(exc.errno or 0, "UNKNOWN")
        return cls(
            f"{exc.strerror or exc}: {path or exc.filename}",
            code,
            {"path": path or exc.filename, "errno": exc.errno},
        )


class SecurityError(DotaiError):
    """Path escapes its base directory, or an unsafe artifact name."""

    kind = "security"


class ParseError(DotaiError):
    """Malformed persisted JSON or malformed diff input."""

    kind = "parse"


class ValidationError(DotaiError):
    """Schema violation: bad state/config shape, bad agent flags."""

    kind = "validation"


class StateVersionError(ValidationError):
    """Persisted state was written by an incompatible schema version.

    This is fatal: the state is never coerced into the running schema.
    """

    def __init__(self, found: str, expected: str, path: str = "") -> None:
        super().__init__(
            f"State file {path or ''} has schema version {found!r} but this "
            f"version of dotai expects {expected!r}. The state cannot be read "
            "safely. Run 'dot clean' to reinitialize the state (all "
            "specifications will be treated as new on the next 'dot gen').",
            "VERSION_MISMATCH",
            {"found": found, "expected": expected, "path": path},
        )
        self.found = found
        self.expected = expected


class ConfigError(ValidationError):
    """``.dotai/config.json`` is missing required fields or malformed."""


class AgentError(DotaiError):
    """Unknown agent name, or the agent reported failure."""

    kind = "agent"


class InternalInvariantError(DotaiError):
    """An internal invariant was violated; the affected file is stopped."""

    kind = "internal"
