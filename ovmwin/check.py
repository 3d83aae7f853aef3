"""System requirement checks run by the init command."""

from __future__ import annotations

import os
import tempfile
import threading
from enum import IntEnum
from typing import Any, Optional

from packaging.version import InvalidVersion, Version

from . import channel, event
from .distro import WSLCommandError, get_all_wsl_distros, wsl_exec
from .execution import silent
from .fileutil import exists, touch
from .logger import Logger
from .misc import random_string
from .paths import config_path
from .types import InitOpt
from .winsys import is_supported_virtualization
from .wslconfig import WSLConfig
from .wslfind import find

MIN_VERSION = "2.3.24"
SKIP_WSLCONFIG_CHECK_FILE_SUFFIX = "_check-wslconfig.skip"

_STATUS_KEYWORDS = (
    "Windows Subsystem for Linux",
    "BIOS",
    "wsl.exe",
    "enablevirtualization",
    "WSL1",
)
_POLL = 0.2
_CANCELED = object()


class FixWSLConfig(IntEnum):
    AUTO = 0
    OPEN = 1
    SKIP = 2


def _receive_or_cancel(cancel: threading.Event, chan) -> Any:
    """Wait for a value on ``chan``; return the cancel marker once ``cancel`` is set."""
    while not cancel.is_set():
        try:
            return chan.get(timeout=_POLL)
        except TimeoutError:
            continue
    return _CANCELED


def check(cancel: threading.Event, opt: InitOpt) -> None:
    """Run every check in order, stopping at the first one that needs the user."""
    # The config check goes last: fixing it may shut WSL down.
    for step in (_check_version, _check_feature, _check_bios, _check_wsl_config):
        if not step(cancel, opt):
            return


def _check_feature(cancel: threading.Event, opt: InitOpt) -> bool:
    log = opt.logger
    if is_feature_enabled(log):
        log.info("WSL2 feature is already enabled")
        return True

    log.info("WSL2 feature is not enabled")
    event.notify_init(event.InitEvent.NEED_ENABLE_FEATURE)
    opt.can_enable_feature = True
    cancel.wait()
    return False


def _check_version(cancel: threading.Event, opt: InitOpt) -> bool:
    log = opt.logger
    if not should_update_wsl(log):
        log.info("WSL2 is up to date")
        return True

    event.notify_init(event.InitEvent.NEED_UPDATE_WSL)
    opt.can_update_wsl = True

    if _receive_or_cancel(cancel, channel.receive_wsl_updated()) is _CANCELED:
        log.warn("Cancel waiting wsl update, ctx is done")
        return False
    log.info("WSL updated")
    return True


def _check_bios(cancel: threading.Event, opt: InitOpt) -> bool:
    log = opt.logger

    try:
        distros = get_all_wsl_distros(log, False)
    except RuntimeError:
        distros = set()
    if distros:
        log.info("Exist WSL distros, BIOS may support virtualization")
        return True

    if _is_supported_virtualization(log):
        log.info("Virtualization is supported")
        return True

    if _mount_reports_expected_error(log, opt):
        log.info("Expected error in mount vhdx, BIOS may support virtualization")
        return True

    log.info("Virtualization is not supported")
    event.notify_init(event.InitEvent.NOT_SUPPORT_VIRTUALIZATION)
    cancel.wait()
    return False


def _skip_path(opt: InitOpt) -> Optional[str]:
    base = config_path()
    if base is None:
        return None
    return os.path.join(base, f"{opt.name}{SKIP_WSLCONFIG_CHECK_FILE_SUFFIX}")


def _check_wsl_config(cancel: threading.Event, opt: InitOpt) -> bool:
    log = opt.logger

    skip_path = _skip_path(opt)
    if skip_path is None:
        log.warn("Failed to get OVM config path")
    elif exists(skip_path):
        log.info("WSL config check skipped")
        return True

    incompatible = WSLConfig(log).exist_incompatible()
    if not incompatible:
        log.info("WSL2 config is compatible")
        return True

    event.notify_init(event.InitEvent.WSL_CONFIG_MAYBE_INCOMPATIBLE, ",".join(incompatible))
    opt.can_fix_wsl_config = True

    flag = _receive_or_cancel(cancel, channel.receive_wsl_config_updated())
    if flag is _CANCELED:
        log.warn("cancel waiting fix wsl config, ctx is done")
        return False

    log.info("WSL config updated")
    if flag == FixWSLConfig.OPEN:
        channel.receive_wsl_shutdown().get()
    return True


def skip_config_check(opt: InitOpt) -> None:
    """Remember that the user chose to skip the .wslconfig check for this VM."""
    skip_path = _skip_path(opt)
    if skip_path is None:
        opt.logger.warn("Failed to get OVM config path")
        return
    try:
        touch(skip_path)
    except OSError as exc:
        opt.logger.warn(f"Failed to touch skip file: {exc}")


def _is_supported_virtualization(log: Logger) -> bool:
    vf, slat = is_supported_virtualization()
    if not slat:
        log.warn("SLAT is not supported")
    if not vf:
        log.warn("VT-x is not supported")
    # SLAT is reported false inside VMware even when nested virtualization works,
    # so only the firmware flag decides.
    return vf


def _mount_reports_expected_error(log: Logger, opt: InitOpt) -> bool:
    temp_vhdx = os.path.join(
        tempfile.gettempdir(), f"ovm-win-{opt.name}-{random_string(5)}.vhdx"
    )
    try:
        try:
            wsl_exec(log, "--mount", "--bare", "--vhd", temp_vhdx)
        except WSLCommandError as exc:
            if "WSL_E_WSL2_NEEDED" in str(exc):
                log.warn("Mount vhdx failed, BIOS may not support virtualization")
                return False
            log.info(f"Mounting vhdx results in an expected error: {exc}")
            return True

        try:
            wsl_exec(log, "--unmount", temp_vhdx)
        except WSLCommandError:
            pass
        log.warn(
            "Unexpected loading succeeded; WSL may have modified the mechanism. "
            "In this case, we believe there is no issue"
        )
        return True
    finally:
        try:
            os.remove(temp_vhdx)
        except OSError:
            pass


def is_installed(log: Logger) -> bool:
    """Whether a WSL new enough to know ``--version`` is installed."""
    try:
        result = wsl_exec(log, "--help") + "\n"
    except WSLCommandError as exc:
        result = "\n" + str(exc)

    log.info(f"WSL --help result: {result}")
    return "--version, -v" in result


def _has_useless_header(lines: list[str]) -> bool:
    return len(lines) >= 2 and ":" in lines[0] and ":" in lines[1]


def clean_status_output(output: str) -> str:
    """Drop the leading ``Default Distribution`` / ``Default Version`` lines."""
    lines = output.split("\n")
    if _has_useless_header(lines):
        lines = lines[2:]
    return "\n".join(lines)


def _disabled_keyword(output: str) -> Optional[str]:
    cleaned = clean_status_output(output)
    return next((key for key in _STATUS_KEYWORDS if key in cleaned), None)


def status_indicates_disabled(output: str) -> bool:
    """Whether ``wsl --status`` output says a required feature is missing."""
    return _disabled_keyword(output) is not None


def is_feature_enabled(log: Logger) -> bool:
    """Whether the WSL and Virtual Machine Platform features are enabled.

    Setting the default version to 2 is an intended side effect.
    """
    try:
        silent(log, find(), "--set-default-version", "2")
    except (OSError, ValueError, Exception) as exc:  # noqa: BLE001 - any failure means disabled
        log.info(f"Set default version failed: {exc}")
        return False

    try:
        output = wsl_exec(log, "--status")
    except WSLCommandError as exc:
        # Windows 10 fails with an install hint when the features are off; other
        # failures (such as a missing kernel) say nothing about the features.
        return "--install --no-distribution" not in str(exc)

    log.info(f"WSL --status result: {output}")
    if _has_useless_header(output.split("\n")):
        log.info("Exist useless header")
    log.info(f"Cleaned wsl --status line: {clean_status_output(output)}")

    keyword = _disabled_keyword(output)
    if keyword is not None:
        log.warn(f"Find keyword: {keyword} in status result")
        return False
    return True


def parse_wsl_version(output: str) -> str:
    """The version number at the end of the first line of ``wsl --version``."""
    first = output.split("\n")[0].strip()
    offset = first.rfind(" ")
    if offset == -1:
        raise ValueError(f"failed to parse WSL2 version: {output}")
    return first[offset + 1:].strip()


def _wsl_version(log: Logger) -> str:
    try:
        output = wsl_exec(log, "--version")
    except WSLCommandError as exc:
        raise RuntimeError(f"failed to get WSL2 version: {exc}") from exc
    return parse_wsl_version(output)


def should_update_wsl(log: Logger) -> bool:
    """Whether WSL is missing or older than ``MIN_VERSION``."""
    if not is_installed(log):
        log.info("WSL2 is not updated, should update")
        return True

    try:
        current_text = _wsl_version(log)
    except (RuntimeError, ValueError) as exc:
        log.warn(f"Failed to get WSL2 version: {exc}")
        return True

    log.info(f"Current WSL2 version: {current_text}")
    try:
        current = Version(current_text)
    except InvalidVersion as exc:
        log.warn(f"Failed to parse current WSL2 version: {exc}")
        return True

    minimum = Version(MIN_VERSION)
    if current < minimum:
        log.info(f"Current WSL2 version is less than min version: {current} < {minimum}")
        return True
    return False