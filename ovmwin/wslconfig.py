"""Reading and repairing the user's .wslconfig."""

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import Optional

from .fileutil import exists
from .logger import Logger
from .paths import notepad_path


class WSLConfig:
    """Access to ``~/.wslconfig`` for detecting settings that break the VM."""

    def __init__(self, log: Logger):
        self._log = log

    def _path(self) -> Optional[str]:
        try:
            path = Path.home() / ".wslconfig"
        except (RuntimeError, KeyError):
            return None
        return str(path) if exists(str(path)) else None

    def exist_incompatible(self) -> list[str]:
        """Names of keys in the [wsl2] section that are known to be incompatible."""
        found = []
        if self.get_value("wsl2", "kernel") is not None:
            found.append("kernel")
        if self.get_value("wsl2", "localhostForwarding") == "false":
            found.append("localhostForwarding")
        return found

    def fix(self) -> None:
        """Comment out the incompatible keys."""
        self._comment_key("kernel")
        self._comment_key("localhostforwarding")

    def open(self) -> None:
        """Open the config file in Notepad without waiting for it."""
        config = self._path()
        if config is None:
            self._log.info("WSL config file not found")
            return

        notepad = notepad_path()
        if notepad is None:
            raise FileNotFoundError("notepad not found")

        try:
            subprocess.Popen([notepad, config])
        except OSError as exc:
            raise OSError(f"failed to open wsl config file: {exc}") from exc

    def get_value(self, expect_section: str, expect_key: str) -> Optional[str]:
        """Return the lower-cased value of a key in a section, or None when it is absent."""
        config = self._path()
        if config is None:
            self._log.info("WSL config file not found")
            return None

        try:
            raw = Path(config).read_bytes()
        except OSError as exc:
            self._log.warn(f"Failed to open .wslconfig file: {exc}")
            return None

        expect_key = expect_key.lower()
        wanted = f"[{expect_section}]"
        section = ""
        for text in raw.decode("utf-8", errors="replace").split("\n"):
            line = text.strip().lower()
            if line.startswith("#"):
                continue
            if line.startswith("[") and line.endswith("]"):
                section = line
            if section != wanted or section == line:
                continue

            key, sep, value = line.partition("=")
            if not sep or key.strip() != expect_key:
                continue
            value = value.strip().strip('"')
            if not value:
                continue

            self._log.info(f"Find {expect_key} key in .wslconfig: {line}")
            return value

        self._log.info(f"No {expect_key} key config found in WSL config file: {config}")
        return None

    def _comment_key(self, expect_key: str) -> None:
        self._log.info(f"Ready comment {expect_key} key in .wslconfig")

        config = self._path()
        if config is None:
            self._log.info("WSL config file not found, skip comment key")
            return

        try:
            content = Path(config).read_bytes()
        except OSError as exc:
            raise OSError(f"failed to read wslconfig file: {exc}") from exc

        pattern = re.compile(
            rb"(?im)^[ \t]*" + re.escape(expect_key.encode("utf-8")) + rb"\s*=.*$"
        )
        updated = pattern.sub(rb"# \g<0>", content)

        try:
            Path(config).write_bytes(updated)
        except OSError as exc:
            raise OSError(f"failed to write wslconfig file: {exc}") from exc