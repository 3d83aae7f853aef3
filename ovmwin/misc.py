"""Data disk sizing and small string helpers."""

from __future__ import annotations

import random
import string
from typing import Iterable

INIT_SIZE = 301 * 1024 * 1024 * 1024
SECTOR = 512

_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193

LETTERS = string.ascii_lowercase + string.ascii_uppercase + string.digits


def _fnv1a_32(data: bytes) -> int:
    value = _FNV_OFFSET
    for byte in data:
        value ^= byte
        value = (value * _FNV_PRIME) & 0xFFFFFFFF
    return value


def _name_number(name: str) -> int:
    """Map a name to a number from 1 to 50000."""
    return _fnv1a_32(name.encode("utf-8")) % 50000 + 1


def data_size(name: str) -> int:
    """Size in bytes of the data disk for ``name``; distinct names give distinct sizes."""
    return INIT_SIZE - SECTOR * _name_number(name)


def random_string(length: int) -> str:
    return "".join(random.choices(LETTERS, k=length))


def contains_string(items: Iterable[str], s: str) -> bool:
    return s in items