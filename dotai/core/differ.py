"""Line-oriented diffs of specification text for inclusion in prompts."""

from __future__ import annotations

import difflib
import re

from dotai.errors import ParseError

CONTEXT_LINES = 3

_HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")


def generate_diff(old_content: str, new_content: str, label: str = "specification") -> str:
    """Unified diff of *old_content* → *new_content* with three lines of context.

    Both sides carry *label*. Identical inputs produce the two header lines
    and no hunks.
    """
    header = [
        f"--- {label}\tPrevious version",
        f"+++ {label}\tCurrent version",
    ]
    body = difflib.unified_diff(
        old_content.splitlines(),
        new_content.splitlines(),
        n=CONTEXT_LINES,
        lineterm="",
    )
    # difflib emits its own ---/+++ pair first when there is any hunk.
    hunks = [line for i, line in enumerate(body) if i >= 2]
    return "\n".join(header + hunks) + "\n"


def format_for_prompt(diff: str) -> str:
    """Render a unified diff as ``<line> <marker> <text>`` rows.

    The counter starts at each hunk's target start line and advances on
    context and added rows only, so a removed row shows the position it
    would occupy in the new file. A diff without hunks formats to ``""``.

    Raises
    ------
    ParseError
        If a ``@@`` line is not a valid hunk header.
    """
    rows: list[str] = []
    line_number = 1
    in_hunk = False

    for line in diff.split("\n"):
        if line.startswith("---") or line.startswith("+++"):
            if not in_hunk:
                continue
        if line.startswith("@@"):
            match = _HUNK_HEADER.match(line)
            if match is None:
                raise ParseError(
                    f"Malformed hunk header: {line!r}",
                    "INVALID_CONTENT",
                    {"line": line},
                )
            line_number = int(match.group(3))
            in_hunk = True
            continue
        if not in_hunk or not line:
            continue

        marker, text = line[0], line[1:]
        if marker == "+":
            rows.append(f"{line_number:>5} + {text}")
            line_number += 1
        elif marker == "-":
            rows.append(f"{line_number:>5} - {text}")
        elif marker == " ":
            rows.append(f"{line_number:>5}   {text}")
            line_number += 1
        # "\ No newline at end of file" and anything else is dropped.

    return "\n".join(rows)


def has_significant_changes(old_content: str, new_content: str) -> bool:
    """False when the two texts differ only in whitespace.

    Informational only; regeneration is driven by the fingerprint.
    """
    return _collapse_whitespace(old_content) != _collapse_whitespace(new_content)


def _collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text.strip())
