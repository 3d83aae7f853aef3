"""Well-known Windows locations, looked up through the environment."""

from __future__ import annotations

import os
import posixpath
from pathlib import Path
from typing import Optional

from .fileutil import exists


def local_app_data() -> Optional[str]:
    if value := os.environ.get("LOCALAPPDATA"):
        return value
    if user := os.environ.get("USERPROFILE"):
        return os.path.join(user, "AppData", "Local")
    return None


def system32_root() -> Optional[str]:
    for variable in ("SystemRoot", "windir"):
        if value := os.environ.get(variable):
            return os.path.join(value, "System32")
    return None


def program_files() -> Optional[str]:
    return os.environ.get("ProgramFiles") or None


def cache_path() -> Optional[str]:
    base = local_app_data()
    if base is None:
        return None
    return os.path.join(base, "ovm", "Cache")


def config_path() -> Optional[str]:
    """Return ``~/.config/ovm``, creating it; None when that is impossible."""
    try:
        path = Path.home() / ".config" / "ovm"
        path.mkdir(parents=True, exist_ok=True)
    except (OSError, RuntimeError):
        return None
    return str(path)


def host_path_to_wsl(path: str) -> str:
    """Translate ``C:\\Users\\bh\\test.txt`` into ``/mnt/c/Users/bh/test.txt``."""
    drive = path[:1].lower()
    target = path[2:].replace("\\", "/")
    return posixpath.normpath("/".join(["/mnt", drive, target]))


def notepad_path() -> Optional[str]:
    system32 = system32_root()
    if system32 is None:
        return None
    candidate = os.path.join(system32, "notepad.exe")
    return candidate if exists(candidate) else None