"""Rotating plain-text log files shared by the whole program."""

from __future__ import annotations

import os
import threading
from datetime import datetime
from typing import BinaryIO

LOG_COUNT = 5

_registry: list[Logger] = []
_registry_lock = threading.Lock()


def _log_file(directory: str, name: str, index: int) -> str:
    file_name = name if index == 1 else f"{name}.{index}"
    return os.path.join(directory, f"{file_name}.log")


def _create_log(directory: str, name: str) -> BinaryIO:
    """Shift existing logs one slot back and open a fresh, empty log file."""
    for index in range(LOG_COUNT - 1, 0, -1):
        current = _log_file(directory, name, index)
        if os.path.exists(current):
            try:
                os.replace(current, _log_file(directory, name, index + 1))
            except OSError as exc:
                raise OSError(f"cannot rename log file: {exc}") from exc
    try:
        return open(_log_file(directory, name, 1), "wb", buffering=0)
    except OSError as exc:
        raise OSError(f"cannot open log file: {exc}") from exc


def _open_latest_log(directory: str, name: str) -> BinaryIO:
    for index in range(1, LOG_COUNT + 1):
        candidate = _log_file(directory, name, index)
        if not os.path.exists(candidate):
            continue
        try:
            return open(candidate, "ab", buffering=0)
        except OSError as exc:
            raise OSError(f"cannot open log file: {exc}") from exc
    raise FileNotFoundError(f"cannot find latest log file in: {directory}")


class Logger:
    """A thread-safe writer of timestamped lines into one log file."""

    def __init__(self, directory: str, name: str, stream: BinaryIO, *, is_child: bool = False):
        self.directory = directory
        self.name = name
        self.is_child = is_child
        self._stream = stream
        self._lock = threading.Lock()

    @property
    def file_path(self) -> str:
        return self._stream.name

    @property
    def closed(self) -> bool:
        return self._stream.closed

    def _write(self, tag: str, message: str) -> None:
        now = datetime.now()
        stamp = f"{now:%Y-%m-%d %H:%M:%S}.{now.microsecond // 1000:03d}"
        prefix = f"[{tag}]: " if tag else ""
        child = " [CHILD]" if self.is_child else ""
        line = f"{stamp}{child} {prefix}{message}\n".encode("utf-8")
        with self._lock:
            try:
                self._stream.write(line)
            except (OSError, ValueError):
                pass

    def _sync(self) -> None:
        try:
            os.fsync(self._stream.fileno())
        except (OSError, ValueError):
            pass

    def raw(self, message: str) -> None:
        self._write("", message)

    def info(self, message: str) -> None:
        self._write("INFO", message)

    def warn(self, message: str) -> None:
        self._write("WARN", message)
        self._sync()

    def error(self, message: str) -> RuntimeError:
        """Log the message and return it as an exception ready to raise."""
        self._write("ERROR", message)
        self._sync()
        return RuntimeError(message)

    def with_appended_name(self, name: str) -> Logger:
        return new(self.directory, f"{self.name}-{name}")

    def close(self) -> None:
        self._stream.close()
        with _registry_lock:
            if self in _registry:
                _registry.remove(self)

    def __enter__(self) -> Logger:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _register(log: Logger) -> Logger:
    with _registry_lock:
        _registry.append(log)
    return log


def new(path: str, name: str) -> Logger:
    """Rotate old logs and start a new log file named after ``name``."""
    return _register(Logger(path, name, _create_log(path, name)))


def new_with_child_process(path: str, name: str) -> Logger:
    """Append to the most recent existing log file instead of creating one."""
    return _register(Logger(path, name, _open_latest_log(path, name), is_child=True))


def new_only_create(path: str, name: str) -> str:
    """Rotate and create an empty log file; return its path."""
    stream = _create_log(path, name)
    log_path = stream.name
    stream.close()
    return log_path


def close_all() -> None:
    with _registry_lock:
        loggers = list(_registry)
        _registry.clear()
    for log in loggers:
        log._sync()
        log._stream.close()