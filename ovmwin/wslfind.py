"""Locating the wsl executable."""

from __future__ import annotations

import functools
import os

from .fileutil import exists
from .paths import local_app_data, program_files, system32_root


@functools.lru_cache(maxsize=None)
def find() -> str:
    """Return the path of wsl.exe, looked up once; fall back to ``wsl``."""
    candidates = []
    if base := program_files():
        candidates.append(os.path.join(base, "WSL", "wsl.exe"))
    if base := local_app_data():
        candidates.append(os.path.join(base, "Microsoft", "WindowsApps", "wsl.exe"))
    if base := system32_root():
        candidates.append(os.path.join(base, "wsl.exe"))

    return next((path for path in candidates if exists(path)), "wsl")