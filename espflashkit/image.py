"""Firmware images: flash partitions, RAM-loadable applications and block splitting."""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from typing import Iterator

from .loader_types import BinHeader, BinSegment, ErrorCode, LoaderError, TargetChip

__all__ = [
    "BIN_HEADER_SIZE",
    "BIN_HEADER_EXT_SIZE",
    "ESP_RAM_BLOCK",
    "FLASH_BLOCK",
    "BOOTLOADER_ADDRESS_V0",
    "BOOTLOADER_ADDRESS_V1",
    "BOOTLOADER_ADDRESS_V2",
    "PARTITION_ADDRESS",
    "APPLICATION_ADDRESS",
    "FlashImage",
    "RamImage",
    "parse_ram_image",
    "bootloader_address",
    "split_blocks",
]

BIN_HEADER_SIZE = 0x8
BIN_HEADER_EXT_SIZE = 0x18
ESP_RAM_BLOCK = 0x1800
FLASH_BLOCK = 1024

BOOTLOADER_ADDRESS_V0 = 0x1000
BOOTLOADER_ADDRESS_V1 = 0x0
BOOTLOADER_ADDRESS_V2 = 0x2000
PARTITION_ADDRESS = 0x8000
APPLICATION_ADDRESS = 0x10000

_BOOTLOADER_ADDRESSES = {
    TargetChip.ESP8266: BOOTLOADER_ADDRESS_V1,
    TargetChip.ESP32: BOOTLOADER_ADDRESS_V0,
    TargetChip.ESP32S2: BOOTLOADER_ADDRESS_V0,
    TargetChip.ESP32C3: BOOTLOADER_ADDRESS_V1,
    TargetChip.ESP32S3: BOOTLOADER_ADDRESS_V1,
    TargetChip.ESP32C2: BOOTLOADER_ADDRESS_V1,
    TargetChip.ESP32C5: BOOTLOADER_ADDRESS_V2,
    TargetChip.ESP32H2: BOOTLOADER_ADDRESS_V1,
    TargetChip.ESP32C6: BOOTLOADER_ADDRESS_V1,
}

_SEGMENT_HEADER = struct.Struct("<II")


@dataclass(frozen=True)
class FlashImage:
    """A binary destined for a flash address, with its MD5 as lowercase hex."""

    data: bytes
    addr: int
    md5: str = field(default="")

    def __post_init__(self) -> None:
        if self.addr < 0:
            raise ValueError("flash address must not be negative")
        object.__setattr__(self, "data", bytes(self.data))
        digest = self.md5 or hashlib.md5(self.data).hexdigest()
        object.__setattr__(self, "md5", digest.lower())

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def md5_digest(self) -> bytes:
        """The MD5 as raw bytes."""
        return bytes.fromhex(self.md5)


@dataclass(frozen=True)
class RamImage:
    """An application image split into the segments to load into RAM."""

    header: BinHeader
    segments: tuple[BinSegment, ...]

    @property
    def entrypoint(self) -> int:
        return self.header.entrypoint


def bootloader_address(chip: TargetChip | int) -> int:
    """Flash address at which ``chip`` expects its second-stage bootloader."""
    try:
        return _BOOTLOADER_ADDRESSES[TargetChip(chip)]
    except (KeyError, ValueError):
        raise LoaderError(
            ErrorCode.UNSUPPORTED_CHIP, f"no bootloader address for chip {chip!r}"
        ) from None


def parse_ram_image(data: bytes, chip: TargetChip | int) -> RamImage:
    """Split an application image into its header and segments.

    The ESP8266 image has no extended header, so its segments start right
    after the basic header; every other chip's start after the extended one.
    """
    header = BinHeader.unpack(data)
    offset = BIN_HEADER_SIZE if TargetChip(chip) is TargetChip.ESP8266 else BIN_HEADER_EXT_SIZE
    segments = []
    for index in range(header.segments):
        if offset + _SEGMENT_HEADER.size > len(data):
            raise ValueError(f"segment {index} header lies beyond the end of the image")
        addr, size = _SEGMENT_HEADER.unpack_from(data, offset)
        start = offset + _SEGMENT_HEADER.size
        if start + size > len(data):
            raise ValueError(
                f"segment {index} needs {size} bytes but only {len(data) - start} remain"
            )
        segments.append(BinSegment(addr=addr, data=bytes(data[start:start + size])))
        offset = start + (size // 4) * 4
    return RamImage(header=header, segments=tuple(segments))


def split_blocks(data: bytes, block_size: int) -> Iterator[bytes]:
    """Yield ``data`` in consecutive pieces of at most ``block_size`` bytes."""
    if block_size <= 0:
        raise ValueError("block size must be positive")
    view = memoryview(data)
    for start in range(0, len(view), block_size):
        yield view[start:start + block_size].tobytes()