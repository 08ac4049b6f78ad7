"""Change detection: classify specifications against persisted state."""

from __future__ import annotations

from dotai.core.state_store import get_record
from dotai.models.specs import ChangeClassification, Specification
from dotai.models.state import PersistedState


def classify(
    specs: list[Specification] | tuple[Specification, ...],
    state: PersistedState,
    force: bool = False,
) -> ChangeClassification:
    """Split *specs* into new / changed / unchanged, keeping input order.

    A specification without a record is always new, even under *force*:
    forcing regeneration never invents a previous generation to diff against.
    """
    new: list[Specification] = []
    changed: list[Specification] = []
    unchanged: list[Specification] = []

    for spec in specs:
        record = get_record(state, spec.path)
        if record is None:
            new.append(spec)
        elif force or record.last_fingerprint != spec.fingerprint:
            changed.append(spec)
        else:
            unchanged.append(spec)

    return ChangeClassification(
        new=tuple(new), changed=tuple(changed), unchanged=tuple(unchanged)
    )


def files_to_process(classification: ChangeClassification) -> list[Specification]:
    """New files first, then changed files. Unchanged files are never processed."""
    return [*classification.new, *classification.changed]


def has_changes(classification: ChangeClassification) -> bool:
    return bool(classification.new or classification.changed)


def change_summary(classification: ChangeClassification) -> str:
    """E.g. ``"new: 1, unchanged: 3"``; empty groups are omitted."""
    groups = (
        ("new", classification.new),
        ("changed", classification.changed),
        ("unchanged", classification.unchanged),
    )
    return ", ".join(f"{label}: {len(items)}" for label, items in groups if items)
