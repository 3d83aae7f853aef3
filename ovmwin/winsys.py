"""Windows system facilities: file copy, build check, RunOnce and virtualization."""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
from typing import Optional

from .execution import silent_popen_kwargs
from .fileutil import exists
from .logger import Logger
from .paths import system32_root

try:
    import winreg
except ImportError:
    winreg = None

# 19043 claims WSL2 support, but current WSL2 releases misbehave on it; 19044 (21H2) is used.
MIN_BUILD_NUMBER = 19044

REGISTRY_RUN_ONCE_PATH = r"Software\Microsoft\Windows\CurrentVersion\RunOnce"

_VIRTUALIZATION_QUERY = (
    "$p = Get-CimInstance -ClassName Win32_Processor | Select-Object -First 1; "
    'Write-Output "$($p.VirtualizationFirmwareEnabled),'
    '$($p.SecondLevelAddressTranslationExtensions)"'
)
_QUERY_TIMEOUT = 30


def copy_file(src: str, dst: str, overwrite: bool = True) -> None:
    """Copy ``src`` to ``dst``; raise FileExistsError when ``dst`` exists and may not be replaced."""
    if not overwrite and os.path.exists(dst):
        raise FileExistsError(f"destination already exists: {dst}")
    shutil.copy2(src, dst)


def _current_build_number() -> int:
    get_version = getattr(sys, "getwindowsversion", None)
    if get_version is None:
        return 0
    return get_version().build


def support_wsl2(log: Logger, build_number: Optional[int] = None) -> bool:
    """Whether the Windows build is new enough for WSL2."""
    if build_number is None:
        build_number = _current_build_number()
    log.info(f"Current system build number is {build_number}")
    return build_number >= MIN_BUILD_NUMBER


def run_once(name: str, launch_path: str) -> None:
    """Register ``launch_path`` to run once after the next sign-in of the current user."""
    if winreg is None:
        raise OSError("the Windows registry is not available")

    try:
        key = winreg.CreateKeyEx(
            winreg.HKEY_CURRENT_USER, REGISTRY_RUN_ONCE_PATH, 0, winreg.KEY_SET_VALUE
        )
    except OSError as exc:
        raise OSError(f"failed to create/open registry key: {exc}") from exc

    with key:
        try:
            winreg.SetValueEx(key, name, 0, winreg.REG_EXPAND_SZ, launch_path)
        except OSError as exc:
            raise OSError(f"failed to set registry value: {exc}") from exc


def _powershell() -> str:
    root = system32_root()
    if root:
        candidate = os.path.join(root, "WindowsPowerShell", "v1.0", "powershell.exe")
        if exists(candidate):
            return candidate
    return "powershell"


def is_supported_virtualization() -> tuple[bool, bool]:
    """Return (firmware virtualization enabled, SLAT supported) for the first processor."""
    try:
        result = subprocess.run(
            [_powershell(), "-NoProfile", "-NonInteractive", "-Command", _VIRTUALIZATION_QUERY],
            stdin=subprocess.DEVNULL,
            capture_output=True,
            timeout=_QUERY_TIMEOUT,
            **silent_popen_kwargs(),
        )
    except (OSError, subprocess.SubprocessError):
        return False, False

    if result.returncode != 0:
        return False, False

    text = (result.stdout or b"").decode("utf-8", errors="replace").strip()
    vf, _, slat = text.partition(",")
    return vf.strip().lower() == "true", slat.strip().lower() == "true"