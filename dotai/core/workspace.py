"""Full-tree workspace scan used for fallback artifact discovery.

Agents do not always report every file they touch. When an agent run
yields no artifacts at all, the orchestrator lists every file under the
working directory and treats paths not previously attributed to the
specification as newly generated.

The scan walks the entire tree on each call and is not cached, so its cost
grows with the project size.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotai.core.loader import MAX_DEPTH, SKIP_DIRECTORIES, is_spec_file

logger = logging.getLogger(__name__)

_IGNORED_FILES = frozenset({".gitignore"})


def scan_workspace_files(root: str | Path) -> list[str]:
    """Return every regular file under *root* as a POSIX path relative to it.

    Skips the ``.dotai`` state directory (and the other well-known
    non-source directories), every specification file and ``.gitignore``.
    Unreadable directories are skipped; other errors propagate.
    """
    base = Path(root).resolve()
    found: list[str] = []

    def walk(directory: Path, depth: int) -> None:
        if depth > MAX_DEPTH:
            return
        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except PermissionError:
            logger.debug("Permission denied while scanning %s", directory)
            return
        for entry in entries:
            if entry.is_dir(follow_symlinks=False):
                if entry.name in SKIP_DIRECTORIES:
                    continue
                walk(Path(entry.path), depth + 1)
            elif entry.is_file():
                if is_spec_file(entry.name) or entry.name in _IGNORED_FILES:
                    continue
                found.append(Path(entry.path).relative_to(base).as_posix())

    walk(base, 0)
    return found


def discover_new_files(root: str | Path, known: list[str] | tuple[str, ...]) -> list[str]:
    """Files under *root* that are not in *known*, in scan order."""
    known_set = set(known)
    return [path for path in scan_workspace_files(root) if path not in known_set]
