"""Creating dynamically sized VHDX disk images."""

from __future__ import annotations

import math
import os
import struct
import uuid

_KB = 1024
_MB = 1024 * 1024

BLOCK_SIZE = 1 * _MB
LOGICAL_SECTOR_SIZE = 512
PHYSICAL_SECTOR_SIZE = 4096
MAX_SIZE = 64 * 1024 ** 4

_FILE_SIGNATURE = b"vhdxfile"
_HEADER_SIGNATURE = b"head"
_REGION_SIGNATURE = b"regi"
_METADATA_SIGNATURE = b"metadata"

_HEADER_OFFSETS = (64 * _KB, 128 * _KB)
_HEADER_SIZE = 4 * _KB
_REGION_TABLE_OFFSETS = (192 * _KB, 256 * _KB)
_REGION_TABLE_SIZE = 64 * _KB
_LOG_OFFSET = 1 * _MB
_LOG_LENGTH = 1 * _MB
_METADATA_OFFSET = 2 * _MB
_METADATA_LENGTH = 1 * _MB
_METADATA_TABLE_SIZE = 64 * _KB
_BAT_OFFSET = 3 * _MB

_BAT_GUID = uuid.UUID("2DC27766-F623-4200-9D64-115E9BFD4A08")
_METADATA_GUID = uuid.UUID("8B7CA206-4790-4B9A-B8FE-575F050F886E")
_FILE_PARAMETERS_GUID = uuid.UUID("CAA16737-FA36-4D43-B3B6-33F0AA44E76B")
_VIRTUAL_DISK_SIZE_GUID = uuid.UUID("2FA54224-CD1B-4876-B211-5DBED83BF4B8")
_VIRTUAL_DISK_ID_GUID = uuid.UUID("BECA12AB-B2E6-4523-93EF-C309E000C746")
_LOGICAL_SECTOR_GUID = uuid.UUID("8141BF1D-A96F-4709-BA47-F233A8FAAB5F")
_PHYSICAL_SECTOR_GUID = uuid.UUID("CDA348C7-445D-4471-9CC9-E9885251C556")

_FLAG_VIRTUAL_DISK = 0x2
_FLAG_REQUIRED = 0x4

_CREATOR = "ovmwin"


def _crc_table() -> tuple[int, ...]:
    table = []
    for n in range(256):
        crc = n
        for _ in range(8):
            crc = (crc >> 1) ^ 0x82F63B78 if crc & 1 else crc >> 1
        table.append(crc)
    return tuple(table)


_CRC_TABLE = _crc_table()


def _crc32c(data: bytes) -> int:
    crc = 0xFFFFFFFF
    table = _CRC_TABLE
    for byte in data:
        crc = table[(crc ^ byte) & 0xFF] ^ (crc >> 8)
    return crc ^ 0xFFFFFFFF


def _seal(buf: bytearray) -> bytes:
    """Store the CRC-32C of ``buf`` in its checksum field (bytes 4 to 8)."""
    struct.pack_into("<I", buf, 4, 0)
    struct.pack_into("<I", buf, 4, _crc32c(bytes(buf)))
    return bytes(buf)


def _checksum_ok(buf: bytes) -> bool:
    stored = struct.unpack_from("<I", buf, 4)[0]
    zeroed = bytearray(buf)
    struct.pack_into("<I", zeroed, 4, 0)
    return _crc32c(bytes(zeroed)) == stored


def _file_identifier() -> bytes:
    creator = _CREATOR.encode("utf-16-le")[:512].ljust(512, b"\0")
    return _FILE_SIGNATURE + creator


def _header(sequence: int, file_write: uuid.UUID, data_write: uuid.UUID) -> bytes:
    buf = bytearray(_HEADER_SIZE)
    struct.pack_into(
        "<4sIQ16s16s16sHHIQ",
        buf,
        0,
        _HEADER_SIGNATURE,
        0,
        sequence,
        file_write.bytes_le,
        data_write.bytes_le,
        bytes(16),
        0,
        1,
        _LOG_LENGTH,
        _LOG_OFFSET,
    )
    return _seal(buf)


def _region_table(bat_length: int) -> bytes:
    buf = bytearray(_REGION_TABLE_SIZE)
    entries = (
        (_BAT_GUID, _BAT_OFFSET, bat_length),
        (_METADATA_GUID, _METADATA_OFFSET, _METADATA_LENGTH),
    )
    struct.pack_into("<4sIII", buf, 0, _REGION_SIGNATURE, 0, len(entries), 0)
    for index, (guid, offset, length) in enumerate(entries):
        struct.pack_into("<16sQII", buf, 16 + 32 * index, guid.bytes_le, offset, length, 1)
    return _seal(buf)


def _metadata(size: int) -> bytes:
    items = (
        (_FILE_PARAMETERS_GUID, struct.pack("<II", BLOCK_SIZE, 0), _FLAG_REQUIRED),
        (_VIRTUAL_DISK_SIZE_GUID, struct.pack("<Q", size), _FLAG_VIRTUAL_DISK | _FLAG_REQUIRED),
        (_VIRTUAL_DISK_ID_GUID, uuid.uuid4().bytes_le, _FLAG_VIRTUAL_DISK | _FLAG_REQUIRED),
        (_LOGICAL_SECTOR_GUID, struct.pack("<I", LOGICAL_SECTOR_SIZE), _FLAG_VIRTUAL_DISK | _FLAG_REQUIRED),
        (_PHYSICAL_SECTOR_GUID, struct.pack("<I", PHYSICAL_SECTOR_SIZE), _FLAG_VIRTUAL_DISK | _FLAG_REQUIRED),
    )
    table = bytearray(_METADATA_TABLE_SIZE)
    struct.pack_into("<8sHH20s", table, 0, _METADATA_SIGNATURE, 0, len(items), bytes(20))
    data = bytearray()
    for index, (guid, payload, flags) in enumerate(items):
        offset = _METADATA_TABLE_SIZE + len(data)
        struct.pack_into("<16sIIII", table, 32 + 32 * index, guid.bytes_le, offset, len(payload), flags, 0)
        data += payload
    return bytes(table) + bytes(data)


def _bat_length(size: int) -> int:
    chunk_ratio = (2 ** 23 * LOGICAL_SECTOR_SIZE) // BLOCK_SIZE
    blocks = math.ceil(size / BLOCK_SIZE)
    entries = blocks + (blocks - 1) // chunk_ratio
    return math.ceil(entries * 8 / _MB) * _MB


def create(path: str, max_size_in_bytes: int) -> None:
    """Create a sparse, dynamically growing VHDX of the given virtual size.

    Raise FileExistsError when ``path`` exists and ValueError for a bad size.
    """
    size = max_size_in_bytes
    if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
        raise ValueError(f"invalid virtual disk size: {size!r}")
    if size % LOGICAL_SECTOR_SIZE:
        raise ValueError(f"virtual disk size {size} is not a multiple of {LOGICAL_SECTOR_SIZE}")
    if size > MAX_SIZE:
        raise ValueError(f"virtual disk size {size} exceeds {MAX_SIZE}")

    bat_length = _bat_length(size)
    file_write, data_write = uuid.uuid4(), uuid.uuid4()
    region = _region_table(bat_length)

    try:
        handle = open(path, "xb")
    except FileExistsError:
        raise
    except OSError as exc:
        raise OSError(f"failed to create virtual disk: {exc}") from exc

    try:
        with handle:
            handle.write(_file_identifier())
            for sequence, offset in enumerate(_HEADER_OFFSETS, start=1):
                handle.seek(offset)
                handle.write(_header(sequence, file_write, data_write))
            for offset in _REGION_TABLE_OFFSETS:
                handle.seek(offset)
                handle.write(region)
            handle.seek(_METADATA_OFFSET)
            handle.write(_metadata(size))
            handle.truncate(_BAT_OFFSET + bat_length)
    except OSError as exc:
        try:
            os.remove(path)
        except OSError:
            pass
        raise OSError(f"failed to create virtual disk: {exc}") from exc


def _read_at(handle, offset: int, length: int) -> bytes:
    handle.seek(offset)
    data = handle.read(length)
    if len(data) != length:
        raise ValueError("truncated VHDX file")
    return data


def _metadata_region(handle) -> tuple[int, int]:
    for offset in _REGION_TABLE_OFFSETS:
        table = _read_at(handle, offset, _REGION_TABLE_SIZE)
        if table[:4] != _REGION_SIGNATURE or not _checksum_ok(table):
            continue
        count = struct.unpack_from("<I", table, 8)[0]
        if count > (_REGION_TABLE_SIZE - 16) // 32:
            continue
        for index in range(count):
            guid, region_offset, length, _ = struct.unpack_from("<16sQII", table, 16 + 32 * index)
            if guid == _METADATA_GUID.bytes_le:
                return region_offset, length
        raise ValueError("VHDX has no metadata region")
    raise ValueError("VHDX has no valid region table")


def read_virtual_size(path: str) -> int:
    """Return the virtual size in bytes recorded in a VHDX file."""
    with open(path, "rb") as handle:
        if handle.read(len(_FILE_SIGNATURE)) != _FILE_SIGNATURE:
            raise ValueError(f"not a VHDX file: {path}")
        region_offset, region_length = _metadata_region(handle)
        table = _read_at(handle, region_offset, _METADATA_TABLE_SIZE)
        if table[:8] != _METADATA_SIGNATURE:
            raise ValueError("invalid VHDX metadata table")
        count = struct.unpack_from("<H", table, 10)[0]
        if count > (_METADATA_TABLE_SIZE - 32) // 32:
            raise ValueError("invalid VHDX metadata entry count")
        for index in range(count):
            guid, item_offset, length, _, _ = struct.unpack_from("<16sIIII", table, 32 + 32 * index)
            if guid != _VIRTUAL_DISK_SIZE_GUID.bytes_le:
                continue
            if length != 8 or item_offset + length > region_length:
                raise ValueError("invalid VHDX virtual disk size item")
            return struct.unpack("<Q", _read_at(handle, region_offset + item_offset, 8))[0]
    raise ValueError("VHDX has no virtual disk size")