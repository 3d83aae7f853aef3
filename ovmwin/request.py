"""Plain HTTP GET requests and resumable-by-hash file downloads."""

from __future__ import annotations

import ipaddress
import os
import threading
import urllib.error
import urllib.parse
import urllib.request
from typing import BinaryIO, Optional

from .fileutil import sha256_file
from .logger import Logger

DEFAULT_TIMEOUT = 0.2
_CHUNK = 64 * 1024
_PROGRESS_INTERVAL = 1.0

_direct_opener = urllib.request.build_opener(urllib.request.ProxyHandler({}))
_default_opener = urllib.request.build_opener()


def _is_loopback(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def _open(request: urllib.request.Request, timeout: Optional[float]):
    host = urllib.parse.urlsplit(request.full_url).hostname or ""
    opener = _direct_opener if _is_loopback(host) else _default_opener
    return opener.open(request, timeout=timeout)


def get(
    url: str,
    no_cache: bool = False,
    timeout: float = DEFAULT_TIMEOUT,
    cancel: Optional[threading.Event] = None,
) -> bytes:
    """Fetch ``url`` and return its body; raise OSError unless the status is 200."""
    if cancel is not None and cancel.is_set():
        raise InterruptedError(f"request to {url} canceled")

    headers = {"Cache-Control": "no-cache"} if no_cache else {}
    try:
        request = urllib.request.Request(url, headers=headers, method="GET")
    except ValueError as exc:
        raise ValueError(f"failed to create {url} request: {exc}") from exc

    try:
        with _open(request, timeout) as response:
            status = response.status
            body = response.read()
    except urllib.error.HTTPError as exc:
        exc.close()
        raise OSError(f"unexpected status code {exc.code}") from exc
    except OSError as exc:
        raise ConnectionError(f"failed to send {url} request: {exc}") from exc

    if status != 200:
        raise OSError(f"unexpected status code {status}")
    return body


def _content_length(url: str) -> int:
    request = urllib.request.Request(url, method="HEAD")
    try:
        response = _open(request, None)
    except urllib.error.HTTPError as exc:
        response = exc
    except OSError as exc:
        raise ConnectionError(f"failed to send head request: {exc}") from exc
    with response:
        value = response.headers.get("Content-Length")
    try:
        return int(value) if value is not None else -1
    except ValueError:
        return -1


def _print_percent(stop: threading.Event, log: Logger, out: BinaryIO, total: int) -> None:
    if total <= 0:
        return
    while not stop.is_set():
        try:
            size = os.fstat(out.fileno()).st_size
        except (OSError, ValueError):
            break
        size = size or 1
        log.info(f"Downloading {size / total * 100:.2f}%")
        stop.wait(_PROGRESS_INTERVAL)


def _check_cancel(log: Logger, cancel: threading.Event) -> None:
    if cancel.is_set():
        log.warn("Download canceled, because parent context is done")
        raise InterruptedError("download canceled")


def _fetch(log: Logger, url: str, out: BinaryIO, cancel: threading.Event) -> None:
    _check_cancel(log, cancel)
    request = urllib.request.Request(url, method="GET")
    try:
        response = _open(request, None)
    except urllib.error.HTTPError as exc:
        response = exc
    except OSError as exc:
        raise ConnectionError(f"failed to send get request: {exc}") from exc

    with response:
        while True:
            _check_cancel(log, cancel)
            try:
                chunk = response.read(_CHUNK)
            except OSError as exc:
                raise OSError(f"failed to write file: {exc}") from exc
            if not chunk:
                break
            try:
                out.write(chunk)
            except OSError as exc:
                raise OSError(f"failed to write file: {exc}") from exc


def download(
    log: Logger,
    url: str,
    output: str,
    sha256: str,
    cancel: Optional[threading.Event] = None,
) -> None:
    """Download ``url`` into ``output`` unless a file with hash ``sha256`` is already there."""
    current = sha256_file(output)
    if current is not None and current == sha256:
        log.info("File already downloaded, skip download")
        return
    if current is not None:
        log.info(f"Expected sha256: {sha256}, but got {current}")

    tmp_output = f"{output}.tmp"
    if sha256_file(tmp_output) == sha256:
        log.info("Temp file already downloaded, only rename")
        try:
            os.replace(tmp_output, output)
        except OSError as exc:
            raise OSError(f"failed to rename file: {exc}") from exc
        return

    cancel = cancel if cancel is not None else threading.Event()

    try:
        out = open(tmp_output, "wb")
    except OSError as exc:
        raise OSError(f"failed to create file in download: {exc}") from exc

    with out:
        total = _content_length(url)
        stop = threading.Event()
        progress = threading.Thread(
            target=_print_percent, args=(stop, log, out, total), daemon=True
        )
        progress.start()
        try:
            _fetch(log, url, out, cancel)
        finally:
            stop.set()
            progress.join()

    try:
        os.replace(tmp_output, output)
    except OSError as exc:
        raise OSError(f"failed to rename file: {exc}") from exc