"""Boundary checks for paths and agent-reported artifact names."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from dotai.errors import SecurityError

logger = logging.getLogger(__name__)

_SAFE_ARTIFACT_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")


def validate_path_within_base(path: str | Path, base_dir: str | Path) -> Path:
    """Resolve *path* and ensure it stays inside *base_dir*.

    Symlinks are resolved on both sides, so a link pointing out of the base
    is rejected the same way as a crafted ``../`` path.

    Raises
    ------
    SecurityError
        If the resolved path escapes the resolved base directory.
    """
    resolved = Path(path).resolve()
    resolved_base = Path(base_dir).resolve()
    if not resolved.is_relative_to(resolved_base):
        raise SecurityError(
            f"Path {str(path)!r} is outside the allowed directory {str(resolved_base)!r}",
            "PATH_TRAVERSAL",
            {"path": str(path), "resolved": str(resolved), "base": str(resolved_base)},
        )
    return resolved


def validate_artifact_name(name: str) -> str:
    """Accept only plain file names made of ``[A-Za-z0-9_.-]``.

    Raises
    ------
    SecurityError
        On a path separator, a ``..`` sequence or any other character.
    """
    if ".." in name or "/" in name or "\\" in name or not _SAFE_ARTIFACT_NAME.match(name):
        raise SecurityError(
            f"Unsafe artifact name {name!r}: only letters, digits, '_', '-' and '.' "
            "are allowed, without '..' or path separators",
            "INVALID_INPUT",
            {"artifact": name},
        )
    return name


def filter_safe_artifacts(names: list[str] | tuple[str, ...]) -> list[str]:
    """Keep the safe artifact names, logging and dropping the rest."""
    safe: list[str] = []
    for name in names:
        try:
            safe.append(validate_artifact_name(name))
        except SecurityError as exc:
            logger.warning("Dropping agent-reported artifact: %s", exc.message)
    return safe
