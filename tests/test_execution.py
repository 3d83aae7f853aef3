import subprocess
import sys

import pytest

from ovmwin import logger
from ovmwin.execution import escape_arg, silent, silent_popen_kwargs


@pytest.fixture
def log(tmp_path):
    instance = logger.new(str(tmp_path), "exec")
    yield instance
    instance.close()


def test_silent_success_logs_command(log):
    silent(log, sys.executable, "-c", "print('quiet')")
    with open(log.file_path, encoding="utf-8") as handle:
        content = handle.read()
    assert f"[INFO]: Running command: {sys.executable} -c print('quiet')" in content
    assert "quiet\n" not in content.replace("print('quiet')", "")


def test_silent_failure_raises(log):
    with pytest.raises(subprocess.CalledProcessError) as info:
        silent(log, sys.executable, "-c", "import sys; sys.exit(3)")
    assert info.value.returncode == 3


def test_silent_popen_kwargs_usable():
    result = subprocess.run(
        [sys.executable, "-c", "print('ok')"], capture_output=True, text=True, **silent_popen_kwargs()
    )
    assert result.stdout.strip() == "ok"


def test_escape_simple_and_empty():
    assert escape_arg(["plain", "C:\\dir\\file"]) == "plain C:\\dir\\file"
    assert escape_arg([""]) == '""'
    assert escape_arg([]) == ""


@pytest.mark.parametrize(
    "args",
    [
        ["a b"],
        ['say "hi"'],
        ["tab\there"],
        ["C:\\Program Files\\"],
        ['back\\"quote'],
        ["/i", "C:\\cache dir\\wsl2.msi", "/passive", "/L*V", "x y\\\\"],
    ],
)
def test_escape_matches_msvc_rules(args):
    assert escape_arg(args) == subprocess.list2cmdline(args)