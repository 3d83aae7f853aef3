"""Notifying the controlling application of progress over a named pipe."""

from __future__ import annotations

import http.client
import os
import queue
import socket
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union
from urllib.parse import quote_plus

from .logger import Logger

_TIMEOUT = 0.2


class _Stage(str, Enum):
    INIT = "init"
    RUN = "run"


class InitEvent(str, Enum):
    SYSTEM_NOT_SUPPORT = "SystemNotSupport"
    NOT_SUPPORT_VIRTUALIZATION = "NotSupportVirtualization"
    NEED_ENABLE_FEATURE = "NeedEnableFeature"
    ENABLE_FEATURING = "EnableFeaturing"
    ENABLE_FEATURE_FAILED = "EnableFeatureFailed"
    ENABLE_FEATURE_SUCCESS = "EnableFeatureSuccess"
    NEED_REBOOT = "NeedReboot"
    WSL_CONFIG_MAYBE_INCOMPATIBLE = "WSLConfigMaybeIncompatible"
    NEED_UPDATE_WSL = "NeedUpdateWSL"
    UPDATING_WSL = "UpdatingWSL"
    UPDATE_WSL_FAILED = "UpdateWSLFailed"
    UPDATE_WSL_SUCCESS = "UpdateWSLSuccess"
    EXIT = "Exit"
    SUCCESS = "Success"
    ERROR = "Error"


class RunEvent(str, Enum):
    UPDATING_ROOTFS = "UpdatingRootFS"
    UPDATE_ROOTFS_FAILED = "UpdateRootFSFailed"
    UPDATE_ROOTFS_SUCCESS = "UpdateRootFSSuccess"
    UPDATING_DATA = "UpdatingData"
    UPDATE_DATA_FAILED = "UpdateDataFailed"
    UPDATE_DATA_SUCCESS = "UpdateDataSuccess"
    STARTING = "Starting"
    READY = "Ready"
    EXIT = "Exit"
    ERROR = "Error"


# Exit ends the main process, NeedReboot ends the elevated child process.
_TERMINAL = frozenset({"Exit", InitEvent.NEED_REBOOT.value})


@dataclass(frozen=True)
class _Datum:
    stage: _Stage
    name: str
    value: str

    @property
    def target(self) -> str:
        return (
            f"/notify?stage={self.stage.value}"
            f"&name={quote_plus(self.name)}&value={quote_plus(self.value)}"
        )

    def __str__(self) -> str:
        return f"{{stage:{self.stage.value} name:{self.name} value:{self.value}}}"


class _PipeFile:
    """Socket-like wrapper over a Windows named pipe opened as a file."""

    def __init__(self, path: str):
        self._stream = open(path, "r+b", buffering=0)

    def sendall(self, data) -> None:
        view = memoryview(data)
        while view:
            written = self._stream.write(view)
            if not written:
                raise OSError("pipe write failed")
            view = view[written:]

    def makefile(self, mode: str = "rb", *args, **kwargs):
        return self._stream

    def close(self) -> None:
        self._stream.close()


def _open_pipe(path: str, timeout: Optional[float]):
    if os.name == "nt":
        return _PipeFile(path)
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.settimeout(timeout)
    try:
        sock.connect(path)
    except OSError:
        sock.close()
        raise
    return sock


class _PipeConnection(http.client.HTTPConnection):
    def __init__(self, pipe_path: str, timeout: Optional[float]):
        super().__init__("ovm", timeout=timeout)
        self._pipe_path = pipe_path

    def connect(self) -> None:
        self.sock = _open_pipe(self._pipe_path, self.timeout)


def _send(pipe_path: str, target: str) -> int:
    connection = _PipeConnection(pipe_path, _TIMEOUT)
    try:
        connection.request("GET", target)
        response = connection.getresponse()
        response.read()
        return response.status
    finally:
        connection.close()


class _Notifier:
    def __init__(self, log: Logger, pipe_path: str):
        self._log = log
        self._pipe_path = pipe_path
        self._queue: queue.SimpleQueue = queue.SimpleQueue()
        self._finished = threading.Event()
        self._closed = False
        self._lock = threading.Lock()
        self._worker = threading.Thread(target=self._run, name="ovm-event", daemon=True)
        self._worker.start()

    def _run(self) -> None:
        while True:
            datum = self._queue.get()
            self._deliver(datum)
            if datum.name in _TERMINAL:
                self._finished.set()
                return

    def _deliver(self, datum: _Datum) -> None:
        self._log.info(f"Notify {datum.name} event to http://ovm{datum.target}")
        try:
            status = _send(self._pipe_path, datum.target)
        except (OSError, http.client.HTTPException) as exc:
            self._log.warn(f"Notify {datum} event failed: {exc}")
            return
        if status != 200:
            self._log.warn(f"Notify {datum} event failed, status code is: {status}")

    def submit(self, datum: _Datum) -> None:
        terminal = datum.name in _TERMINAL
        with self._lock:
            if self._closed:
                return
            self._queue.put(datum)
            if terminal:
                self._closed = True
        if terminal:
            self._finished.wait()


_notifier: Optional[_Notifier] = None


def setup(log: Logger, pipe_path: str) -> None:
    """Start delivering events to the HTTP server listening on ``pipe_path``."""
    global _notifier
    _notifier = _Notifier(log, pipe_path)


def _notify(stage: _Stage, name: str, value: str) -> None:
    notifier = _notifier
    if notifier is None:
        return
    notifier.submit(_Datum(stage, name, value))


def notify_init(name: Union[InitEvent, str], value: str = "") -> None:
    """Queue an init-stage event; terminal events wait until they are delivered."""
    _notify(_Stage.INIT, InitEvent(name).value, value)


def notify_run(name: Union[RunEvent, str], value: str = "") -> None:
    """Queue a run-stage event; terminal events wait until they are delivered."""
    _notify(_Stage.RUN, RunEvent(name).value, value)