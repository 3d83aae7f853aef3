"""Moving a VM's disk images to another directory."""

from __future__ import annotations

import dataclasses
import os
import shutil
from pathlib import Path

from . import distro, logger
from .logger import Logger
from .types import BasicOpt, MigrateOpt, Version
from .winsys import copy_file


def _remove_all(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass


def _remove_quietly(path: str) -> None:
    try:
        _remove_all(path)
    except OSError:
        pass


def setup_log_path(opt: BasicOpt) -> None:
    """Make ``opt.log_path`` absolute and create the directory."""
    path = os.path.abspath(opt.log_path)
    try:
        os.makedirs(path, mode=0o755, exist_ok=True)
    except OSError as exc:
        raise OSError(f"failed to create log folder {path}: {exc}") from exc
    opt.log_path = path


def reset_data(log: Logger, versions_json_path: str) -> None:
    """Mark the data version as RESET; drop the file when it cannot be rewritten."""
    path = Path(versions_json_path)
    try:
        raw = path.read_bytes()
    except OSError as exc:
        log.warn(f"Failed to read versions.json: {exc}")
        _remove_quietly(versions_json_path)
        return

    try:
        content = Version.from_json(raw)
    except ValueError as exc:
        text = raw.decode("utf-8", errors="replace")
        log.warn(f"Failed to unmarshal versions.json file, json content: {text}, {exc}")
        _remove_quietly(versions_json_path)
        return

    content.data = "RESET"

    try:
        path.write_text(content.to_json(), encoding="utf-8")
    except OSError as exc:
        log.warn(f"Failed to write versions to {versions_json_path}: {exc}")
        _remove_quietly(versions_json_path)
        return

    log.info("Success to reset data")


class MigrateContext:
    """The migrate command: copies data and versions, then moves the distro."""

    def __init__(self, opt: MigrateOpt):
        self.opt = dataclasses.replace(opt)
        self.opt.distro_name = f"ovm-{self.opt.name}"

    @property
    def logger(self):
        return self.opt.logger

    def setup(self) -> None:
        opt = self.opt
        try:
            setup_log_path(opt)
        except OSError as exc:
            raise OSError(f"failed to setup log path: {exc}") from exc

        try:
            opt.logger = logger.new(opt.log_path, "migrate" + opt.name)
        except OSError as exc:
            raise OSError(f"failed to setup log: {exc}") from exc

        try:
            os.makedirs(opt.new_image_dir, mode=0o755, exist_ok=True)
        except OSError as exc:
            raise OSError(f"failed to create new image dir: {exc}") from exc

    def _stop_distro(self, log: Logger) -> None:
        try:
            distro.terminate(log, self.opt.distro_name)
        except RuntimeError as exc:
            log.warn(f"Failed to terminate: {exc}")
            try:
                distro.shutdown(log)
            except RuntimeError as shutdown_exc:
                raise RuntimeError(f"failed to shutdown wsl: {shutdown_exc}") from shutdown_exc
        log.info("Distro is terminated")

    def _move_distro(self, log: Logger) -> None:
        name, target = self.opt.distro_name, self.opt.new_image_dir
        try:
            distro.move_distro(log, name, target)
        except distro.SharingViolationError:
            try:
                distro.shutdown(log)
            except RuntimeError as exc:
                raise RuntimeError(f"failed to shutdown wsl: {exc}") from exc
            try:
                distro.move_distro(log, name, target)
            except RuntimeError as exc:
                raise RuntimeError(f"failed to move distro: {exc}") from exc
        except RuntimeError as exc:
            raise RuntimeError(f"failed to move distro: {exc}") from exc
        log.info("Distro is moved")

    def start(self) -> None:
        opt = self.opt
        log = opt.logger

        log.info(f"Ready to migrate, from {opt.old_image_dir} to {opt.new_image_dir}")

        try:
            distro.safe_sync_disk(log, opt.distro_name)
        except distro.DistroNotExistError:
            log.info("Distro is not exist")
        except distro.DistroNotRunningError:
            log.info("Distro is not running")
        except RuntimeError as exc:
            log.warn(f"Failed to sync disk: {exc}")
            self._stop_distro(log)
        else:
            self._stop_distro(log)

        old_data = os.path.join(opt.old_image_dir, "data.vhdx")
        # No need to mount again: the next start mounts the disk itself.
        try:
            distro.umount_vhdx(log, old_data)
        except RuntimeError as exc:
            raise RuntimeError(f"failed to umount data: {exc}") from exc
        try:
            copy_file(old_data, os.path.join(opt.new_image_dir, "data.vhdx"), True)
        except OSError as exc:
            raise OSError(f"failed to copy data: {exc}") from exc
        log.info("File data.vhdx is copied to new dir")

        old_versions = os.path.join(opt.old_image_dir, "versions.json")
        new_versions = os.path.join(opt.new_image_dir, "versions.json")
        try:
            copy_file(old_versions, new_versions, True)
        except OSError as exc:
            raise OSError(f"failed to copy versions: {exc}") from exc
        log.info("File versions.json is copied to new dir")

        self._move_distro(log)

        for path, label in ((old_data, "data.vhdx"), (old_versions, "versions.json")):
            try:
                _remove_all(path)
            except OSError as exc:
                log.warn(f"Failed to remove old {label}: {exc}")

        reset_data(log, new_versions)

        log.info(f"Success to migrate, from {opt.old_image_dir} to {opt.new_image_dir}")