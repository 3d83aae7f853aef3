"""Managing the WSL distro that hosts the virtual machine."""

from __future__ import annotations

import os
import subprocess
import threading
from typing import IO, Callable, Optional

from . import event, exiting, podman
from .execution import silent_popen_kwargs
from .logger import Logger
from .misc import SECTOR, data_size
from .types import RunOpt
from .wslfind import find

_PROCESS_POLL = 0.2
_OVMD_SETTLE = 1.0
_HOST_ENDPOINT_SCRIPT = "ip route  | grep '^default' | awk '{print $3}'"


class DistroNotExistError(RuntimeError):
    def __init__(self, message: str = "distro does not exist"):
        super().__init__(message)


class DistroNotRunningError(RuntimeError):
    def __init__(self, message: str = "distro is not running"):
        super().__init__(message)


class SharingViolationError(RuntimeError):
    def __init__(self, message: str = "sharing violation"):
        super().__init__(message)


class WSLCommandError(RuntimeError):
    """A wsl command that could not be started or exited with a failure."""

    def __init__(
        self,
        message: str,
        *,
        command: str,
        returncode: Optional[int] = None,
        stdout: str = "",
        stderr: str = "",
    ):
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def _env() -> dict:
    env = {"WSL_UTF8": "1"}
    system_root = os.environ.get("SYSTEMROOT") or os.environ.get("SystemRoot")
    if system_root:
        env["SYSTEMROOT"] = system_root
    return env


def _decode(data: Optional[bytes]) -> str:
    return (data or b"").decode("utf-8", errors="replace")


def _run(command: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        command,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env=_env(),
        **silent_popen_kwargs(),
    )


def _execute(log: Logger, args: list[str], what: str, suffix: str) -> str:
    command = [find(), *args]
    command_str = f"{find()} {' '.join(args)}"
    log.info(f"Running command {what}: {command_str}")
    try:
        result = _run(command)
    except OSError as exc:
        raise WSLCommandError(
            f"failed to run command `{command_str}` {suffix}:   ({exc})",
            command=command_str,
        ) from exc

    stdout, stderr = _decode(result.stdout), _decode(result.stderr)
    if result.returncode != 0:
        raise WSLCommandError(
            f"failed to run command `{command_str}` {suffix}: {stderr} {stdout} "
            f"(exit status {result.returncode})",
            command=command_str,
            returncode=result.returncode,
            stdout=stdout,
            stderr=stderr,
        )
    return stdout


def wsl_exec(log: Logger, *args: str) -> str:
    """Run wsl with ``args`` and return its standard output."""
    return _execute(log, list(args), "in wsl", "failed")


def wsl_invoke(log: Logger, name: str, *args: str) -> None:
    """Run a command inside the distro ``name``."""
    _execute(log, ["-d", name, *args], "in distro", "in distro")


def shutdown(log: Logger) -> None:
    try:
        wsl_exec(log, "--shutdown")
    except WSLCommandError as exc:
        raise RuntimeError(f"could not shutdown WSL: {exc}") from exc


def terminate(log: Logger, distro_name: str) -> None:
    try:
        wsl_exec(log, "--terminate", distro_name)
    except WSLCommandError as exc:
        raise RuntimeError(f"could not terminate distro {distro_name!r}: {exc}") from exc


def import_distro(log: Logger, distro_name: str, install_path: str, rootfs: str) -> None:
    try:
        wsl_exec(log, "--import", distro_name, install_path, rootfs, "--version", "2")
    except WSLCommandError as exc:
        raise RuntimeError(f"import distro {rootfs} failed: {exc}") from exc


def unregister(log: Logger, distro_name: str) -> None:
    try:
        wsl_exec(log, "--unregister", distro_name)
    except WSLCommandError as exc:
        raise RuntimeError(f"unregister {distro_name} failed: {exc}") from exc


def parse_distro_list(output: str) -> set[str]:
    """Distro names from the output of ``wsl --list --quiet``."""
    names = set()
    for line in output.splitlines():
        fields = line.split()
        if fields:
            names.add(fields[0])
    return names


def get_all_wsl_distros(log: Logger, running: bool) -> set[str]:
    """Names of all registered distros, or of the running ones only."""
    args = ["--list", "--quiet", "--running" if running else "--all"]
    try:
        output = wsl_exec(log, *args)
    except WSLCommandError as exc:
        raise RuntimeError(f"could not get distros: {exc}") from exc
    return parse_distro_list(output)


def is_registered(log: Logger, distro_name: str) -> bool:
    return distro_name in get_all_wsl_distros(log, False)


def is_running(log: Logger, distro_name: str) -> bool:
    return distro_name in get_all_wsl_distros(log, True)


def sync_disk(log: Logger, distro_name: str) -> None:
    try:
        wsl_invoke(log, distro_name, "sync")
    except WSLCommandError as exc:
        raise RuntimeError(f"sync disk failed: {exc}") from exc


def _sync_quietly(log: Logger, distro_name: str) -> None:
    try:
        sync_disk(log, distro_name)
    except RuntimeError:
        pass


def safe_sync_disk(log: Logger, distro_name: str) -> None:
    """Flush the distro's disks.

    Raise DistroNotExistError or DistroNotRunningError when there is nothing to flush.
    """
    try:
        registered = is_registered(log, distro_name)
    except RuntimeError as exc:
        raise RuntimeError(
            f"cannot safe terminate distro {distro_name}, because failed to check "
            f"if distro is registered: {exc}"
        ) from exc
    if not registered:
        raise DistroNotExistError()

    try:
        running = is_running(log, distro_name)
    except RuntimeError as exc:
        raise RuntimeError(
            f"cannot safe terminate distro {distro_name}, because failed to check "
            f"if distro is running: {exc}"
        ) from exc
    if not running:
        raise DistroNotRunningError()

    _sync_quietly(log, distro_name)


def mount_vhdx(log: Logger, path: str) -> None:
    try:
        wsl_exec(log, "--mount", "--bare", "--vhd", path)
    except WSLCommandError as exc:
        if "WSL_E_USER_VHD_ALREADY_ATTACHED" in str(exc):
            log.info(f"VHDX already mounted: {path}")
            return
        raise RuntimeError(f"wsl mount {path} failed: {exc}") from exc


def umount_vhdx(log: Logger, path: str) -> None:
    try:
        os.stat(path)
    except FileNotFoundError:
        return
    except (OSError, ValueError):
        pass

    try:
        wsl_exec(log, "--unmount", path)
    except WSLCommandError as exc:
        if "ERROR_FILE_NOT_FOUND" in str(exc):
            log.info(f"VHDX already unmounted: {path}")
            return
        raise RuntimeError(f"wsl umount {path} failed: {exc}") from exc


def move_distro(log: Logger, distro_name: str, new_path: str) -> None:
    try:
        wsl_exec(log, "--manage", distro_name, "--move", new_path)
    except WSLCommandError as exc:
        message = str(exc)
        if "ERROR_SHARING_VIOLATION" in message or "WSL_E_DISTRO_NOT_STOPPED" in message:
            raise SharingViolationError() from exc
        raise RuntimeError(f"wsl move {new_path} failed: {exc}") from exc


def request_stop(log: Logger, name: str) -> None:
    """Ask ovmd to stop its services, then terminate the distro."""
    _sync_quietly(log, name)

    try:
        wsl_invoke(log, name, "/opt/ovmd", "--killall")
    except WSLCommandError as exc:
        raise RuntimeError(f"failed to request stop: {exc}") from exc

    try:
        terminate(log, name)
    except RuntimeError as exc:
        raise RuntimeError(f"failed to terminate in request stop: {exc}") from exc


def stop(log: Logger, name: str) -> None:
    _sync_quietly(log, name)

    try:
        terminate(log, name)
    except RuntimeError as exc:
        raise RuntimeError(f"failed to terminate in stop: {exc}") from exc


def _pump(stream: IO[bytes], sink: Callable[[str], None]) -> None:
    with stream:
        for raw in iter(stream.readline, b""):
            line = raw.decode("utf-8", errors="replace").rstrip("\n")
            sink(line.removesuffix("\r"))


def _launch_ovmd(cancel: threading.Event, opt: RunOpt) -> None:
    log = opt.logger
    try:
        vm_log = log.with_appended_name("vm")
    except OSError as exc:
        raise RuntimeError(f"could not create vm logger: {exc}") from exc

    # Older images located the data disk by a size derived from name and image dir.
    old_data_sector = data_size(opt.name + opt.image_dir) // SECTOR
    data_sector = data_size(opt.name) // SECTOR

    command = [
        find(),
        "-d", opt.distro_name,
        "/opt/ovmd",
        "-p", str(opt.podman_port),
        "-s", f"{data_sector},{old_data_sector}",
    ]

    log.info(
        f"Launching {opt.distro_name}: podman port is: {opt.podman_port}, "
        f"data sector count: {data_sector}"
    )

    try:
        process = subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=_env(),
            **silent_popen_kwargs(),
        )
    except OSError as exc:
        raise RuntimeError(f"failed to start `{opt.distro_name}`: {exc}") from exc

    readers = [
        threading.Thread(target=_pump, args=(stream, vm_log.raw), daemon=True)
        for stream in (process.stdout, process.stderr)
    ]
    for reader in readers:
        reader.start()

    while True:
        try:
            process.wait(timeout=_PROCESS_POLL)
            break
        except subprocess.TimeoutExpired:
            if cancel.is_set():
                process.kill()
                process.wait()
                break

    for reader in readers:
        reader.join()

    if process.returncode != 0:
        raise RuntimeError(
            f"failed to launch ovmd for `{opt.distro_name}`: exit status {process.returncode}"
        )
    raise RuntimeError("ovmd unexpected closed")


def _wait_podman(cancel: threading.Event, opt: RunOpt) -> None:
    # ovmd needs a moment to kill podman processes left from a previous run.
    cancel.wait(_OVMD_SETTLE)
    try:
        podman.ready(cancel, opt.podman_port)
    except (OSError, InterruptedError) as exc:
        raise RuntimeError(f"podman is not ready: {exc}") from exc
    event.notify_run(event.RunEvent.READY)


def _link(parent: threading.Event, child: threading.Event) -> None:
    while not child.is_set():
        if parent.wait(_PROCESS_POLL):
            child.set()
            return


def launch(cancel: threading.Event, log: Logger, opt: RunOpt) -> None:
    """Mount the data disk, start ovmd and report readiness once podman answers.

    Blocks until ovmd exits or ``cancel`` is set, then raises the first failure.
    """
    event.notify_run(event.RunEvent.STARTING)

    data_path = os.path.join(opt.image_dir, "data.vhdx")
    try:
        mount_vhdx(log, data_path)
    except RuntimeError as exc:
        raise RuntimeError(f"failed to mount data.vhdx: {exc}") from exc

    def stop_distro() -> None:
        log.info("Stopping distro...")
        try:
            request_stop(log, opt.distro_name)
        except RuntimeError as exc:
            log.warn(f"Failed to stop distro {opt.distro_name}: {exc}")
        log.info("Distro stopped")

    exiting.register_exit_func(stop_distro)

    group_cancel = threading.Event()
    errors: list[BaseException] = []
    errors_lock = threading.Lock()

    def guarded(task: Callable[[threading.Event, RunOpt], None]) -> None:
        try:
            task(group_cancel, opt)
        except BaseException as exc:  # noqa: BLE001 - handed to the caller below
            with errors_lock:
                errors.append(exc)
            group_cancel.set()

    linker = threading.Thread(target=_link, args=(cancel, group_cancel), daemon=True)
    linker.start()
    workers = [
        threading.Thread(target=guarded, args=(task,), daemon=True)
        for task in (_launch_ovmd, _wait_podman)
    ]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()
    group_cancel.set()
    linker.join()

    if errors:
        raise errors[0]


_host_endpoint: Optional[str] = None
_host_endpoint_lock = threading.Lock()


def _get_host_endpoint(log: Logger, name: str) -> str:
    args = ["-d", name, "/bin/sh", "-c", _HOST_ENDPOINT_SCRIPT]
    command_str = f"{find()} {' '.join(args)}"
    log.info(f"Running command in distro: {command_str}")
    try:
        result = _run([find(), *args])
    except OSError as exc:
        raise RuntimeError(f"failed to run command in distro: {exc}, ") from exc
    if result.returncode != 0:
        raise RuntimeError(
            f"failed to run command in distro: exit status {result.returncode}, "
            f"{_decode(result.stderr)}"
        )
    return _decode(result.stdout).strip()


def host_endpoint(log: Logger, name: str) -> str:
    """Address of the host as seen from the distro; looked up once and cached."""
    global _host_endpoint
    with _host_endpoint_lock:
        if _host_endpoint:
            return _host_endpoint
        try:
            _host_endpoint = _get_host_endpoint(log, name)
        except RuntimeError as exc:
            raise RuntimeError(f"failed to get host endpoint: {exc}") from exc
        log.info(f"Host endpoint is: {_host_endpoint}")
        return _host_endpoint