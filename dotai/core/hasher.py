"""Content fingerprinting for change detection.

Only the specification body is hashed. Paths and metadata never enter the
digest, so renaming a file without touching its content does not change
its fingerprint.
"""

from __future__ import annotations

import hashlib


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def fingerprint(content: str) -> str:
    """Fingerprint a normalized specification body (UTF-8, SHA-256 hex)."""
    return sha256_hex(content.encode("utf-8"))
