"""Option records and the image version record."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional, Union

from .logger import Logger

VERSION_ROOTFS = "rootfs"
VERSION_DATA = "data"


@dataclass
class Version:
    rootfs: str = ""
    data: str = ""

    def to_json(self) -> str:
        return json.dumps(
            {VERSION_ROOTFS: self.rootfs, VERSION_DATA: self.data},
            separators=(",", ":"),
            ensure_ascii=False,
        )

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> Version:
        """Parse a JSON document; raise ValueError when it is not a version object."""
        try:
            obj = json.loads(raw)
        except ValueError as exc:
            raise ValueError(f"invalid versions json: {exc}") from exc
        if obj is None:
            return cls()
        if not isinstance(obj, dict):
            raise ValueError(f"versions json must be an object, got {type(obj).__name__}")
        fields = {}
        for key, value in obj.items():
            field = key.lower()
            if field not in (VERSION_ROOTFS, VERSION_DATA) or value is None:
                continue
            if not isinstance(value, str):
                raise ValueError(f"versions field {key!r} must be a string")
            fields[field] = value
        return cls(**fields)


@dataclass
class BasicOpt:
    name: str = ""
    log_path: str = ""
    event_npipe_name: str = ""
    restful_endpoint: str = ""
    bind_pid: int = 0
    logger: Optional[Logger] = None


@dataclass
class InitOpt(BasicOpt):
    is_elevated_process: bool = False
    can_reboot: bool = False
    can_enable_feature: bool = False
    can_update_wsl: bool = False
    can_fix_wsl_config: bool = False


@dataclass
class RunOpt(BasicOpt):
    distro_name: str = ""
    image_dir: str = ""
    rootfs_path: str = ""
    version: str = ""
    podman_port: int = 0
    stopped_with_api: bool = False


@dataclass
class MigrateOpt(BasicOpt):
    distro_name: str = ""
    old_image_dir: str = ""
    new_image_dir: str = ""