"""Waiting for the podman service inside the distro to answer."""

from __future__ import annotations

import threading
import time
from typing import Optional

from . import request

TIMEOUT = 10.0
RETRY_INTERVAL = 0.2


def ready(cancel: Optional[threading.Event], podman_port: int) -> None:
    """Poll the podman image list until it answers with 200.

    Raise TimeoutError after ``TIMEOUT`` seconds and InterruptedError when
    ``cancel`` is set.
    """
    cancel = cancel if cancel is not None else threading.Event()
    deadline = time.monotonic() + TIMEOUT
    url = f"http://127.0.0.1:{podman_port}/images/json"

    while True:
        if cancel.is_set():
            raise InterruptedError("podman readiness check canceled")
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise TimeoutError(f"podman did not answer within {TIMEOUT} seconds")
        try:
            request.get(url, timeout=min(request.DEFAULT_TIMEOUT, remaining), cancel=cancel)
        except OSError:
            cancel.wait(RETRY_INTERVAL)
            continue
        return