"""Replacing the rootfs distro and the data disk when their versions change."""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from . import distro, event, vhdx
from .fileutil import exists
from .misc import data_size
from .types import VERSION_DATA, VERSION_ROOTFS, RunOpt, Version


def _remove_all(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass


class Updater:
    """Compares wanted image versions with versions.json and replaces what changed."""

    def __init__(self, opt: RunOpt, version: Version):
        self.opt = opt
        self.version = version
        self.json_path = os.path.join(opt.image_dir, "versions.json")

    @property
    def _log(self):
        return self.opt.logger

    def save(self) -> None:
        try:
            Path(self.json_path).write_text(self.version.to_json(), encoding="utf-8")
        except OSError as exc:
            raise OSError(f"failed to write versions to {self.json_path}: {exc}") from exc

    def need_update(self) -> list[str]:
        """Keys of the parts that must be replaced, rootfs first."""
        log = self._log
        try:
            raw = Path(self.json_path).read_bytes()
        except OSError as exc:
            log.warn(f"Failed to read versions.json file: {exc}")
            return [VERSION_ROOTFS, VERSION_DATA]

        try:
            stored = Version.from_json(raw)
        except ValueError as exc:
            content = raw.decode("utf-8", errors="replace")
            log.warn(f"Failed to unmarshal versions.json file, json content: {content}, {exc}")
            try:
                _remove_all(self.json_path)
            except OSError:
                pass
            return [VERSION_ROOTFS, VERSION_DATA]

        result = []

        rootfs_path = os.path.join(self.opt.image_dir, "ext4.vhdx")
        if stored.rootfs != self.version.rootfs:
            log.info(
                f"Need update rootfs, because version changed: "
                f"{stored.rootfs} -> {self.version.rootfs}"
            )
            result.append(VERSION_ROOTFS)
        elif not exists(rootfs_path):
            log.info(f"Need update rootfs, because rootfs not exists: {rootfs_path}")
            result.append(VERSION_ROOTFS)

        data_path = os.path.join(self.opt.image_dir, "data.vhdx")
        if stored.data != self.version.data:
            log.info(
                f"Need update data, because version changed: {stored.data} -> {self.version.data}"
            )
            result.append(VERSION_DATA)
        elif not exists(data_path):
            log.info(f"Need update data, because data not exists: {data_path}")
            result.append(VERSION_DATA)

        return result

    def check_and_replace(self) -> None:
        """Replace the data disk and then the rootfs as needed, and record the versions."""
        log = self._log
        needed = self.need_update()
        if not needed:
            log.info("No need to update versions")
            return

        if VERSION_DATA in needed:
            event.notify_run(event.RunEvent.UPDATING_DATA)
            try:
                self._update_data()
            except (OSError, RuntimeError, ValueError) as exc:
                event.notify_run(event.RunEvent.UPDATE_DATA_FAILED)
                raise RuntimeError(f"failed to update data: {exc}") from exc
            event.notify_run(event.RunEvent.UPDATE_DATA_SUCCESS)
            log.info("Update data success")

        if VERSION_ROOTFS in needed:
            event.notify_run(event.RunEvent.UPDATING_ROOTFS)
            try:
                self._update_rootfs()
            except (OSError, RuntimeError) as exc:
                event.notify_run(event.RunEvent.UPDATE_ROOTFS_FAILED)
                raise RuntimeError(f"failed to update rootfs: {exc}") from exc
            event.notify_run(event.RunEvent.UPDATE_ROOTFS_SUCCESS)
            log.info("Update rootfs success")

        try:
            self.save()
        except OSError as exc:
            raise OSError(f"failed to save versions: {exc}") from exc

    def _update_rootfs(self) -> None:
        log = self._log
        name = self.opt.distro_name

        remove = True
        try:
            distro.safe_sync_disk(log, name)
        except distro.DistroNotRunningError:
            pass
        except distro.DistroNotExistError:
            remove = False
        except RuntimeError as exc:
            raise RuntimeError(
                f"cannot remove old distro {name} in sync disk step: {exc}"
            ) from exc

        if remove:
            log.info(f"Removing old distro: {name}")
            try:
                distro.unregister(log, name)
            except RuntimeError as exc:
                raise RuntimeError(f"cannot remove old distro {name}: {exc}") from exc

        log.info(f"Importing distro {name} from {self.opt.rootfs_path}")
        try:
            distro.import_distro(log, name, self.opt.image_dir, self.opt.rootfs_path)
        except RuntimeError as exc:
            raise RuntimeError(f"failed to import distro: {exc}") from exc

    def _update_data(self) -> None:
        log = self._log
        name = self.opt.distro_name

        try:
            distro.safe_sync_disk(log, name)
        except (distro.DistroNotExistError, distro.DistroNotRunningError):
            pass
        except RuntimeError as exc:
            raise RuntimeError(f"cannot terminate distro {name} in sync disk step: {exc}") from exc
        else:
            log.info(f"Shutting down distro: {name}")
            try:
                distro.terminate(log, name)
            except RuntimeError as exc:
                raise RuntimeError(f"cannot terminate distro {name}: {exc}") from exc

        data_path = os.path.join(self.opt.image_dir, "data.vhdx")

        log.info(f"Umounting data: {data_path}")
        try:
            distro.umount_vhdx(log, data_path)
        except RuntimeError as exc:
            raise RuntimeError(f"failed to unmount data: {exc}") from exc

        log.info(f"Removing old data: {data_path}")
        try:
            _remove_all(data_path)
        except OSError as exc:
            raise OSError(f"failed to remove old data: {exc}") from exc

        size = data_size(self.opt.name)
        log.info(f"Creating new data: {data_path}, size: {size}")
        try:
            vhdx.create(data_path, size)
        except (OSError, ValueError) as exc:
            raise OSError(f"failed to create new data: {exc}") from exc