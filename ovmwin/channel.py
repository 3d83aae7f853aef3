"""Process-wide one-slot signals between the HTTP handlers and the checks."""

from __future__ import annotations

import threading
from collections import deque
from typing import Any, Optional


class _Channel:
    """A bounded, closable queue; receiving from a closed channel yields its zero value."""

    def __init__(self, zero: Any = None, capacity: int = 1):
        self._zero = zero
        self._capacity = capacity
        self._items: deque = deque()
        self._closed = False
        self._cond = threading.Condition()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def put(self, value: Any = None, timeout: Optional[float] = None) -> None:
        with self._cond:
            if self._closed:
                raise RuntimeError("send on closed channel")
            ready = self._cond.wait_for(
                lambda: self._closed or len(self._items) < self._capacity, timeout
            )
            if not ready:
                raise TimeoutError("channel send timed out")
            if self._closed:
                raise RuntimeError("send on closed channel")
            self._items.append(value)
            self._cond.notify_all()

    def get(self, timeout: Optional[float] = None) -> Any:
        with self._cond:
            ready = self._cond.wait_for(lambda: self._items or self._closed, timeout)
            if not ready:
                raise TimeoutError("channel receive timed out")
            if self._items:
                value = self._items.popleft()
                self._cond.notify_all()
                return value
            return self._zero

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()


_wsl_updated = _Channel()
_wsl_config_updated = _Channel(zero=0)
_wsl_shutdown = _Channel()


def _reset() -> None:
    global _wsl_updated, _wsl_config_updated, _wsl_shutdown
    _wsl_updated = _Channel()
    _wsl_config_updated = _Channel(zero=0)
    _wsl_shutdown = _Channel()


def close() -> None:
    _wsl_updated.close()
    _wsl_config_updated.close()
    _wsl_shutdown.close()


def notify_wsl_updated() -> None:
    _wsl_updated.put(None)


def receive_wsl_updated() -> _Channel:
    return _wsl_updated


def notify_wsl_config_updated(flag: int) -> None:
    _wsl_config_updated.put(flag)


def receive_wsl_config_updated() -> _Channel:
    return _wsl_config_updated


def notify_wsl_shutdown() -> None:
    _wsl_shutdown.put(None)


def receive_wsl_shutdown() -> _Channel:
    return _wsl_shutdown