import subprocess

import pytest

from ovmwin import distro, logger


@pytest.fixture
def log(tmp_path):
    instance = logger.new(str(tmp_path), "distro-test")
    yield instance
    instance.close()


class FakeWSL:
    """Stands in for subprocess.run and records the wsl arguments it receives."""

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def __call__(self, command, **kwargs):
        args = list(command[1:])
        self.calls.append((args, kwargs))
        returncode, stdout, stderr = self.handler(args)
        return subprocess.CompletedProcess(
            command, returncode, stdout.encode("utf-8"), stderr.encode("utf-8")
        )


def install(monkeypatch, handler):
    fake = FakeWSL(handler)
    monkeypatch.setattr(subprocess, "run", fake)
    return fake


def listing(all_names, running_names):
    def handler(args):
        if args[:2] == ["--list", "--quiet"]:
            names = running_names if "--running" in args else all_names
            return 0, "".join(f"{n}\r\n" for n in names), ""
        return 0, "", ""

    return handler


def test_parse_distro_list_takes_first_field_of_each_line():
    output = "Ubuntu\r\n\r\n  Debian   Running  2\novm-test\n"
    assert distro.parse_distro_list(output) == {"Ubuntu", "Debian", "ovm-test"}


def test_parse_distro_list_empty():
    assert distro.parse_distro_list("\n \n") == set()


def test_wsl_exec_returns_stdout_and_sets_utf8_env(monkeypatch, log):
    fake = install(monkeypatch, lambda args: (0, "hello\n", ""))
    assert distro.wsl_exec(log, "--status") == "hello\n"
    args, kwargs = fake.calls[0]
    assert args == ["--status"]
    assert kwargs["env"]["WSL_UTF8"] == "1"


def test_wsl_exec_failure_carries_output(monkeypatch, log):
    install(monkeypatch, lambda args: (1, "out-text", "err-text"))
    with pytest.raises(distro.WSLCommandError) as info:
        distro.wsl_exec(log, "--version")
    assert info.value.returncode == 1
    assert "err-text" in str(info.value)
    assert "out-text" in str(info.value)


def test_wsl_invoke_prefixes_distro(monkeypatch, log):
    fake = install(monkeypatch, lambda args: (0, "", ""))
    assert distro.wsl_invoke(log, "ovm-a", "sync") is None
    assert fake.calls[0][0] == ["-d", "ovm-a", "sync"]


def test_registered_and_running(monkeypatch, log):
    fake = install(monkeypatch, listing(["ovm-a", "Ubuntu"], ["Ubuntu"]))
    assert distro.is_registered(log, "ovm-a") is True
    assert distro.is_running(log, "ovm-a") is False
    assert fake.calls[0][0] == ["--list", "--quiet", "--all"]
    assert fake.calls[1][0] == ["--list", "--quiet", "--running"]


def test_safe_sync_disk_not_exist(monkeypatch, log):
    install(monkeypatch, listing(["Ubuntu"], []))
    with pytest.raises(distro.DistroNotExistError):
        distro.safe_sync_disk(log, "ovm-a")


def test_safe_sync_disk_not_running(monkeypatch, log):
    install(monkeypatch, listing(["ovm-a"], []))
    with pytest.raises(distro.DistroNotRunningError):
        distro.safe_sync_disk(log, "ovm-a")


def test_safe_sync_disk_syncs_running_distro(monkeypatch, log):
    fake = install(monkeypatch, listing(["ovm-a"], ["ovm-a"]))
    assert distro.safe_sync_disk(log, "ovm-a") is None
    assert fake.calls[-1][0] == ["-d", "ovm-a", "sync"]


def test_safe_sync_disk_wraps_listing_error(monkeypatch, log):
    install(monkeypatch, lambda args: (1, "", "boom"))
    with pytest.raises(RuntimeError, match="failed to check if distro is registered"):
        distro.safe_sync_disk(log, "ovm-a")


def test_mount_vhdx_already_attached_is_ok(monkeypatch, log):
    fake = install(monkeypatch, lambda args: (1, "", "WSL_E_USER_VHD_ALREADY_ATTACHED"))
    assert distro.mount_vhdx(log, "data.vhdx") is None
    assert fake.calls[0][0] == ["--mount", "--bare", "--vhd", "data.vhdx"]


def test_mount_vhdx_other_error(monkeypatch, log):
    install(monkeypatch, lambda args: (1, "", "something else"))
    with pytest.raises(RuntimeError, match="wsl mount data.vhdx failed"):
        distro.mount_vhdx(log, "data.vhdx")


def test_umount_vhdx_missing_file_runs_nothing(monkeypatch, log, tmp_path):
    fake = install(monkeypatch, lambda args: (1, "", "boom"))
    assert distro.umount_vhdx(log, str(tmp_path / "missing.vhdx")) is None
    assert fake.calls == []


def test_umount_vhdx_already_unmounted(monkeypatch, log, tmp_path):
    disk = tmp_path / "data.vhdx"
    disk.write_bytes(b"")
    fake = install(monkeypatch, lambda args: (1, "", "ERROR_FILE_NOT_FOUND"))
    distro.umount_vhdx(log, str(disk))
    assert fake.calls[0][0] == ["--unmount", str(disk)]


@pytest.mark.parametrize("marker", ["ERROR_SHARING_VIOLATION", "WSL_E_DISTRO_NOT_STOPPED"])
def test_move_distro_sharing_violation(monkeypatch, log, marker):
    install(monkeypatch, lambda args: (1, "", marker))
    with pytest.raises(distro.SharingViolationError):
        distro.move_distro(log, "ovm-a", "D:\\new")


def test_move_distro_other_error(monkeypatch, log):
    install(monkeypatch, lambda args: (1, "", "nope"))
    with pytest.raises(RuntimeError, match="wsl move"):
        distro.move_distro(log, "ovm-a", "newdir")


def test_terminate_error_names_distro(monkeypatch, log):
    install(monkeypatch, lambda args: (1, "", ""))
    with pytest.raises(RuntimeError, match="could not terminate distro 'ovm-a'"):
        distro.terminate(log, "ovm-a")


def test_import_distro_arguments(monkeypatch, log):
    fake = install(monkeypatch, lambda args: (0, "", ""))
    assert distro.import_distro(log, "ovm-a", "imgdir", "rootfs.tar") is None
    assert fake.calls[0][0] == ["--import", "ovm-a", "imgdir", "rootfs.tar", "--version", "2"]


def test_request_stop_order(monkeypatch, log):
    fake = install(monkeypatch, lambda args: (0, "", ""))
    assert distro.request_stop(log, "ovm-a") is None
    assert [call[0] for call in fake.calls] == [
        ["-d", "ovm-a", "sync"],
        ["-d", "ovm-a", "/opt/ovmd", "--killall"],
        ["--terminate", "ovm-a"],
    ]


def test_stop_ignores_sync_failure_but_reports_terminate(monkeypatch, log):
    install(monkeypatch, lambda args: (1, "", ""))
    with pytest.raises(RuntimeError, match="failed to terminate in stop"):
        distro.stop(log, "ovm-a")


def test_host_endpoint_is_cached(monkeypatch, log):
    monkeypatch.setattr(distro, "_host_endpoint", None)
    fake = install(monkeypatch, lambda args: (0, " 172.20.0.1\n", ""))
    assert distro.host_endpoint(log, "ovm-a") == "172.20.0.1"
    assert distro.host_endpoint(log, "ovm-a") == "172.20.0.1"
    assert len(fake.calls) == 1
    assert fake.calls[0][0][:4] == ["-d", "ovm-a", "/bin/sh", "-c"]


def test_host_endpoint_failure(monkeypatch, log):
    monkeypatch.setattr(distro, "_host_endpoint", None)
    install(monkeypatch, lambda args: (1, "", "no route"))
    with pytest.raises(RuntimeError, match="failed to get host endpoint"):
        distro.host_endpoint(log, "ovm-a")