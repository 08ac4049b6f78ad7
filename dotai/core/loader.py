"""Specification discovery and loading.

Walks a root directory for ``*.ai`` files, then reads, trims and
fingerprints each one. A file that cannot be read is reported and
skipped; it never aborts the scan of its siblings.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotai.core.hasher import fingerprint
from dotai.core.security import validate_path_within_base
from dotai.errors import DotaiError, FilesystemError
from dotai.models.specs import LoadFailure, LoadReport, Specification

logger = logging.getLogger(__name__)

SPEC_EXTENSION = ".ai"

# Symlink cycles and pathological trees stop here.
MAX_DEPTH = 50

SKIP_DIRECTORIES = frozenset(
    {".dotai", "node_modules", ".git", ".hg", ".svn", "__pycache__", ".venv"}
)


def is_spec_file(name: str) -> bool:
    return name.endswith(SPEC_EXTENSION)


def should_skip_directory(name: str) -> bool:
    return name in SKIP_DIRECTORIES


def normalize_content(raw: str) -> str:
    """Specifications are plain text; normalization is a trim."""
    return raw.strip()


class SpecificationLoader:
    """Finds and loads ``.ai`` specifications.

    Parameters
    ----------
    base_dir:
        Every loaded path must resolve inside this directory. Defaults to
        the current working directory at construction time.
    """

    def __init__(self, base_dir: str | Path | None = None) -> None:
        self.base_dir = Path(base_dir if base_dir is not None else os.getcwd()).resolve()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def find(self, root: str | Path) -> list[Path]:
        """Return every specification file under *root*, in walk order.

        Raises
        ------
        FilesystemError
            If a directory cannot be listed.
        """
        results: list[Path] = []
        self._walk(Path(root).resolve(), results, 0)
        return results

    def _walk(self, directory: Path, results: list[Path], depth: int) -> None:
        if depth >= MAX_DEPTH:
            logger.debug("Max depth reached at %s, not descending", directory)
            return
        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError as exc:
            raise FilesystemError.from_os_error(exc, str(directory)) from exc

        for entry in entries:
            if entry.is_dir():
                if should_skip_directory(entry.name):
                    continue
                self._walk(Path(entry.path), results, depth + 1)
            elif entry.is_file() and is_spec_file(entry.name):
                results.append(Path(entry.path))

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self, path: str | Path) -> Specification:
        """Read one specification.

        Raises
        ------
        SecurityError
            If the path resolves outside ``base_dir``.
        FilesystemError
            If the file cannot be read.
        """
        resolved = validate_path_within_base(path, self.base_dir)
        try:
            raw = resolved.read_text(encoding="utf-8")
        except OSError as exc:
            raise FilesystemError.from_os_error(exc, str(resolved)) from exc
        except UnicodeDecodeError as exc:
            raise FilesystemError(
                f"Specification is not valid UTF-8: {resolved}",
                "EILSEQ",
                {"path": str(resolved)},
            ) from exc

        content = normalize_content(raw)
        return Specification(
            path=str(resolved),
            content=content,
            fingerprint=fingerprint(content),
        )

    def load_all(self, root: str | Path) -> LoadReport:
        """Find and load every specification under *root*.

        Per-file failures are collected in ``LoadReport.failures``.
        Directory listing failures propagate.
        """
        specs: list[Specification] = []
        failures: list[LoadFailure] = []
        for path in self.find(root):
            try:
                specs.append(self.load(path))
            except DotaiError as exc:
                logger.warning("Skipping %s: %s", path, exc.message)
                failures.append(
                    LoadFailure(path=str(path), kind=exc.kind, message=exc.message)
                )
        return LoadReport(specs=tuple(specs), failures=tuple(failures))
