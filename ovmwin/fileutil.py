"""Small file helpers."""

from __future__ import annotations

import hashlib
import os
from typing import Optional

_CHUNK = 1024 * 1024


def exists(path: str) -> bool:
    """Return True when ``path`` can be stat'ed."""
    try:
        os.stat(path)
    except (OSError, ValueError):
        return False
    return True


def touch(path: str) -> None:
    """Create ``path``, truncating it when it already exists."""
    with open(path, "wb"):
        pass


def sha256_file(path: str) -> Optional[str]:
    """Return the hex SHA-256 of the file, or None when it cannot be read."""
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as handle:
            for chunk in iter(lambda: handle.read(_CHUNK), b""):
                digest.update(chunk)
    except OSError:
        return None
    return digest.hexdigest()