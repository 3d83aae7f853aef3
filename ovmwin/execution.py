"""Running helper programs without a console window."""

from __future__ import annotations

import os
import subprocess
from typing import Iterable

from .logger import Logger

CREATE_NO_WINDOW = 0x08000000


def silent_popen_kwargs() -> dict:
    """Keyword arguments for subprocess calls that must not open a window."""
    if os.name == "nt":
        return {"creationflags": CREATE_NO_WINDOW}
    return {}


def silent(log: Logger, command: str, *args: str) -> None:
    """Run a command with its output discarded; raise CalledProcessError on failure."""
    log.info(f"Running command: {command} {' '.join(args)}")
    subprocess.run(
        [command, *args],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        check=True,
        **silent_popen_kwargs(),
    )


def _escape_one(arg: str) -> str:
    if not arg:
        return '""'
    has_space = " " in arg or "\t" in arg
    if not has_space and '"' not in arg:
        return arg
    out = []
    slashes = 0
    for char in arg:
        if char == "\\":
            slashes += 1
            out.append(char)
        elif char == '"':
            out.append("\\" * slashes)
            out.append('\\"')
            slashes = 0
        else:
            slashes = 0
            out.append(char)
    if has_space:
        out.append("\\" * slashes)
        return '"' + "".join(out) + '"'
    return "".join(out)


def escape_arg(args: Iterable[str]) -> str:
    """Quote arguments for a Windows command line and join them with spaces."""
    return " ".join(_escape_one(arg) for arg in args)