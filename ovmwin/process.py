"""Waiting on a bound parent process."""

from __future__ import annotations

import threading

import psutil

from .logger import Logger

_POLL_INTERVAL = 1.0


def wait_bind_pid(cancel: threading.Event, log: Logger, pid: int) -> None:
    """Block until ``cancel`` is set; raise ProcessLookupError once ``pid`` has exited."""
    if pid == 0:
        log.info("PID is 0, no need to wait")
        cancel.wait()
        return

    log.info(f"Wait bind pid: {pid} exit")
    while True:
        if cancel.is_set():
            log.info("Cancel wait bind pid, because context done")
            return
        try:
            alive = psutil.pid_exists(pid)
        except (psutil.Error, OSError, ValueError) as exc:
            raise RuntimeError(f"check bind pid {pid} error: {exc}") from exc
        if not alive:
            raise ProcessLookupError(f"bind pid {pid} exited")
        cancel.wait(_POLL_INTERVAL)