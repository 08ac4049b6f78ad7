"""Helpers for rendering agent tool activity on the console."""

from __future__ import annotations

import re
from typing import Any

_LINE_NUMBER_PREFIX = re.compile(r"^\s*\d+→", re.MULTILINE)
_XML_TAG = re.compile(r"</?[A-Za-z_]\w*>")


def strip_line_numbers(text: str) -> str:
    """Remove ``"    12→"`` prefixes that file-reading tools add."""
    if "→" not in text:
        return text
    return _LINE_NUMBER_PREFIX.sub("", text)


def clean_error_message(text: str) -> str:
    """Drop XML-like tags (``<error>``, ``</tool_use_error>``).

    Comparisons such as ``a < 10`` are left alone.
    """
    return _XML_TAG.sub("", text).strip()


def truncate_lines(text: str, limit: int = 5) -> str:
    lines = text.split("\n")
    if len(lines) <= limit:
        return text
    return "\n".join(lines[:limit]) + "\n..."


def summarize_tool_input(tool_name: str, tool_input: dict[str, Any]) -> str:
    """One-line summary of a tool call for display."""
    if tool_name in ("Read", "Write", "Edit"):
        return str(tool_input.get("file_path", ""))
    if tool_name == "Bash":
        return str(tool_input.get("command", ""))[:120]
    if tool_name == "Glob":
        return str(tool_input.get("pattern", ""))
    if tool_name == "Grep":
        return f"/{tool_input.get('pattern', '')}/"
    for value in tool_input.values():
        if isinstance(value, str) and value:
            return value[:80]
    return ""
