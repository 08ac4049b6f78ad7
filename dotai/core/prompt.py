"""Prompt construction for the coding agent.

New specifications get their full text. Changed specifications get only a
line-numbered diff against the last generated content plus the list of
artifacts already on disk, so the agent applies targeted edits instead of
re-deriving the whole specification.
"""

from __future__ import annotations

import os

from dotai.core.differ import format_for_prompt, generate_diff
from dotai.models.specs import Specification
from dotai.models.state import GenerationRecord

FIRST_TIME_TEMPLATE = """\
Implement the following specification from {file_name}:

{content}

This is a new specification with no existing artifacts.

INSTRUCTIONS:
- Implement the specification fully
- Create all necessary files
- Follow best practices for the language/framework
- Ensure all code is production-ready"""

UPDATE_TEMPLATE = """\
Implement changes to the specification from {file_name}

EXISTING ARTIFACTS:
{artifacts}

SPECIFICATION CHANGES:
{diff}

INSTRUCTIONS:
- Implement the changes shown in the diff
- Update existing artifacts as needed
- Preserve any custom code or manual edits where sensible
- Create new files if required by the changes
- Delete files if they're no longer needed
- Ensure all changes are consistent with the updated specification"""


def build_first_time_prompt(spec: Specification) -> str:
    return FIRST_TIME_TEMPLATE.format(
        file_name=os.path.basename(spec.path), content=spec.content
    )


def build_update_prompt(spec: Specification, record: GenerationRecord) -> str:
    """Diff-based prompt against the content of the last generation."""
    file_name = os.path.basename(spec.path)
    diff = format_for_prompt(generate_diff(record.last_content, spec.content, file_name))
    artifacts = (
        "\n".join(f"  - {artifact}" for artifact in record.artifacts)
        if record.artifacts
        else "  (none)"
    )
    return UPDATE_TEMPLATE.format(file_name=file_name, artifacts=artifacts, diff=diff)


def build_prompt(spec: Specification, record: GenerationRecord | None) -> str:
    if record is None:
        return build_first_time_prompt(spec)
    return build_update_prompt(spec, record)
