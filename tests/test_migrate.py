import os

import pytest

from ovmwin import logger
from ovmwin.migrate import MigrateContext, reset_data, setup_log_path
from ovmwin.types import BasicOpt, MigrateOpt, Version


@pytest.fixture
def log(tmp_path):
    log_dir = tmp_path / "logs"
    log_dir.mkdir()
    instance = logger.new(str(log_dir), "migrate-test")
    yield instance
    instance.close()


def test_setup_log_path_makes_absolute_and_creates(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    opt = BasicOpt(log_path=os.path.join("a", "b"))
    setup_log_path(opt)
    assert os.path.isabs(opt.log_path)
    assert opt.log_path == os.path.abspath(os.path.join("a", "b"))
    assert os.path.isdir(opt.log_path)


def test_reset_data_keeps_rootfs(tmp_path, log):
    path = tmp_path / "versions.json"
    path.write_text(Version(rootfs="r1", data="d1").to_json())
    reset_data(log, str(path))
    assert Version.from_json(path.read_bytes()) == Version(rootfs="r1", data="RESET")


def test_reset_data_removes_invalid_json(tmp_path, log):
    path = tmp_path / "versions.json"
    path.write_text("[1, 2")
    reset_data(log, str(path))
    assert not path.exists()


def test_reset_data_missing_file_stays_missing(tmp_path, log):
    path = tmp_path / "versions.json"
    reset_data(log, str(path))
    assert not path.exists()


def test_context_sets_distro_name_without_touching_input():
    original = MigrateOpt(name="demo", old_image_dir="old", new_image_dir="new")
    ctx = MigrateContext(original)
    assert ctx.opt.distro_name == "ovm-demo"
    assert original.distro_name == ""


def test_setup_creates_log_and_new_dir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    new_dir = tmp_path / "new" / "images"
    ctx = MigrateContext(
        MigrateOpt(name="demo", log_path="logs", old_image_dir=str(tmp_path), new_image_dir=str(new_dir))
    )
    ctx.setup()
    try:
        assert ctx.opt.log_path == os.path.abspath("logs")
        assert os.path.isfile(os.path.join(ctx.opt.log_path, "migratedemo.log"))
        assert new_dir.is_dir()
        assert ctx.logger is ctx.opt.logger
    finally:
        ctx.logger.close()