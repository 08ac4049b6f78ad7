"""Specification and change-classification models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class Specification(BaseModel):
    """A single ``.ai`` specification as loaded from disk.

    ``fingerprint`` is computed over ``content`` only, never over the path,
    so a moved file with identical content fingerprints identically.
    """

    model_config = ConfigDict(frozen=True)

    path: str  # absolute path, also the state key
    content: str  # trimmed body text
    fingerprint: str  # sha256 hex of content


class ChangeClassification(BaseModel):
    """Three disjoint groups over a set of loaded specifications.

    Each group preserves the discovery order of the input.
    """

    model_config = ConfigDict(frozen=True)

    new: tuple[Specification, ...] = ()
    changed: tuple[Specification, ...] = ()
    unchanged: tuple[Specification, ...] = ()


class LoadFailure(BaseModel):
    """A specification that could not be loaded, with the reason."""

    model_config = ConfigDict(frozen=True)

    path: str
    kind: str
    message: str


class LoadReport(BaseModel):
    """Result of loading every specification under a root."""

    model_config = ConfigDict(frozen=True)

    specs: tuple[Specification, ...] = ()
    failures: tuple[LoadFailure, ...] = ()
