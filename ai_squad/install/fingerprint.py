"""Content fingerprints — truncated SHA-256 digests of file bytes."""

from __future__ import annotations

import hashlib
from pathlib import Path

FINGERPRINT_LENGTH = 16


def fingerprint_bytes(data: bytes) -> str:
    """Fingerprint raw bytes."""
    return hashlib.sha256(data).hexdigest()[:FINGERPRINT_LENGTH]


def fingerprint(path: str | Path) -> str | None:
    """Fingerprint a file on disk, or None when it is absent or unreadable."""
    sha = hashlib.sha256()
    try:
        with Path(path).open("rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                sha.update(chunk)
    except OSError:
        return None
    return sha.hexdigest()[:FINGERPRINT_LENGTH]
