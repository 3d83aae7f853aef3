"""Process exit with registered clean-up functions."""

from __future__ import annotations

import sys
import threading
from typing import Callable, NoReturn

from . import channel, logger

_exit_funcs: list[Callable[[], None]] = []
_lock = threading.Lock()


def register_exit_func(func: Callable[[], None]) -> None:
    with _lock:
        _exit_funcs.append(func)


def run_exit_funcs() -> None:
    with _lock:
        funcs = list(_exit_funcs)
    for func in funcs:
        func()


def exit(code: int) -> NoReturn:
    """Run clean-up functions, close channels and logs, then exit with ``code``."""
    run_exit_funcs()
    channel.close()
    logger.close_all()
    sys.exit(code)