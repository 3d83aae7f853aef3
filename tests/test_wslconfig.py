import pytest

from ovmwin import logger
from ovmwin.wslconfig import WSLConfig


@pytest.fixture
def home(monkeypatch, tmp_path):
    directory = tmp_path / "home"
    directory.mkdir()
    monkeypatch.setenv("HOME", str(directory))
    monkeypatch.setenv("USERPROFILE", str(directory))
    return directory


@pytest.fixture
def log(tmp_path):
    instance = logger.new(str(tmp_path), "wslconfig")
    yield instance
    instance.close()


def _read_log(instance):
    with open(instance.file_path, encoding="utf-8") as handle:
        return handle.read()


def _write(home, text):
    path = home / ".wslconfig"
    path.write_text(text, encoding="utf-8")
    return path


def test_get_value_in_section(home, log):
    _write(home, "[wsl2]\nmemory=4gb\nkernel=c:/kernel\n")
    assert WSLConfig(log).get_value("wsl2", "kernel") == "c:/kernel"


def test_get_value_key_case_insensitive(home, log):
    _write(home, "[wsl2]\n  LocalhostForwarding = False \n")
    assert WSLConfig(log).get_value("wsl2", "localhostForwarding") == "false"


def test_get_value_strips_quotes(home, log):
    _write(home, '[wsl2]\nswap="0"\n')
    assert WSLConfig(log).get_value("wsl2", "swap") == "0"


def test_get_value_ignores_other_sections_and_comments(home, log):
    _write(home, "[experimental]\nkernel=c:/a\n[wsl2]\n# kernel=c:/b\n")
    assert WSLConfig(log).get_value("wsl2", "kernel") is None


def test_get_value_ignores_empty_value(home, log):
    _write(home, '[wsl2]\nkernel=""\n')
    assert WSLConfig(log).get_value("wsl2", "kernel") is None


def test_get_value_without_file(home, log):
    assert WSLConfig(log).get_value("wsl2", "kernel") is None
    assert "WSL config file not found" in _read_log(log)


def test_exist_incompatible_both(home, log):
    _write(home, "[wsl2]\nkernel=c:/k\nlocalhostForwarding=false\n")
    assert WSLConfig(log).exist_incompatible() == ["kernel", "localhostForwarding"]


def test_exist_incompatible_forwarding_true(home, log):
    _write(home, "[wsl2]\nkernel=c:/k\nlocalhostForwarding=true\n")
    assert WSLConfig(log).exist_incompatible() == ["kernel"]


def test_exist_incompatible_without_file(home, log):
    assert WSLConfig(log).exist_incompatible() == []


def test_fix_comments_keys(home, log):
    path = _write(home, "[wsl2]\nkernel=c:/k\nLocalhostForwarding=false\nmemory=4GB\n")
    config = WSLConfig(log)
    config.fix()
    content = path.read_text(encoding="utf-8")
    assert "# kernel=c:/k" in content
    assert "# LocalhostForwarding=false" in content
    assert "\nmemory=4GB\n" in content
    assert config.exist_incompatible() == []


def test_fix_without_file_creates_nothing(home, log):
    assert WSLConfig(log).fix() is None
    assert not (home / ".wslconfig").exists()
    assert "WSL config file not found, skip comment key" in _read_log(log)


def test_open_without_file(home, log):
    WSLConfig(log).open()
    assert "WSL config file not found" in _read_log(log)


def test_open_without_notepad(home, log, monkeypatch, tmp_path):
    _write(home, "[wsl2]\n")
    monkeypatch.setenv("SystemRoot", str(tmp_path / "nowhere"))
    monkeypatch.delenv("windir", raising=False)
    with pytest.raises(FileNotFoundError, match="notepad not found"):
        WSLConfig(log).open()