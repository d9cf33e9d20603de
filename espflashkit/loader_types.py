"""Core types shared by the loader: error codes, target chips and image headers."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum

__all__ = [
    "ErrorCode",
    "LoaderError",
    "TargetChip",
    "BinHeader",
    "BinSegment",
    "SecurityInfo",
    "ConnectArgs",
]


class ErrorCode(IntEnum):
    """Result codes reported by loader operations."""

    SUCCESS = 0
    FAIL = 1
    TIMEOUT = 2
    IMAGE_SIZE = 3
    INVALID_MD5 = 4
    INVALID_PARAM = 5
    INVALID_TARGET = 6
    UNSUPPORTED_CHIP = 7
    UNSUPPORTED_FUNC = 8
    INVALID_RESPONSE = 9


class LoaderError(Exception):
    """Raised when a loader operation fails with a specific error code."""

    def __init__(self, code: ErrorCode | int, detail: str = "") -> None:
        code = ErrorCode(code)
        if code is ErrorCode.SUCCESS:
            raise ValueError("a LoaderError cannot carry the SUCCESS code")
        self.code = code
        self.detail = detail
        message = f"{code.name}: {detail}" if detail else code.name
        super().__init__(message)


_CHIP_NAMES = {
    0: "ESP8266",
    1: "ESP32",
    2: "ESP32-S2",
    3: "ESP32-C3",
    4: "ESP32-S3",
    5: "ESP32-C2",
    6: "ESP32-C5",
    7: "ESP32-H2",
    8: "ESP32-C6",
}


class TargetChip(IntEnum):
    """Chips the loader knows how to talk to."""

    ESP8266 = 0
    ESP32 = 1
    ESP32S2 = 2
    ESP32C3 = 3
    ESP32S3 = 4
    ESP32C2 = 5
    ESP32C5 = 6
    ESP32H2 = 7
    ESP32C6 = 8
    UNKNOWN = 9

    def display_name(self) -> str:
        """Human-readable chip name, or ``INVALID_TARGET`` for an unknown chip."""
        return _CHIP_NAMES.get(int(self), "INVALID_TARGET")


_HEADER = struct.Struct("<BBBBI")


@dataclass(frozen=True)
class BinHeader:
    """The fixed header at the start of an application image."""

    magic: int
    segments: int
    flash_mode: int
    flash_size_freq: int
    entrypoint: int

    SIZE = _HEADER.size

    @classmethod
    def unpack(cls, data: bytes) -> BinHeader:
        """Decode a header from the first bytes of ``data``."""
        if len(data) < _HEADER.size:
            raise ValueError(
                f"image header needs {_HEADER.size} bytes, got {len(data)}"
            )
        return cls(*_HEADER.unpack_from(data))

    def pack(self) -> bytes:
        """Encode the header in its little-endian wire form."""
        try:
            return _HEADER.pack(
                self.magic,
                self.segments,
                self.flash_mode,
                self.flash_size_freq,
                self.entrypoint,
            )
        except struct.error as exc:
            raise ValueError(f"header field out of range: {exc}") from exc


@dataclass(frozen=True)
class BinSegment:
    """One segment of an image: its load address and contents."""

    addr: int
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class SecurityInfo:
    """Security state reported by a target chip."""

    target_chip: TargetChip
    eco_version: int = 0
    secure_boot_enabled: bool = False
    secure_boot_aggressive_revoke_enabled: bool = False
    secure_download_mode_enabled: bool = False
    secure_boot_revoked_keys: tuple[bool, bool, bool] = (False, False, False)
    jtag_software_disabled: bool = False
    jtag_hardware_disabled: bool = False
    usb_disabled: bool = False
    flash_encryption_enabled: bool = False
    dcache_in_uart_download_disabled: bool = False
    icache_in_uart_download_disabled: bool = False

    def __post_init__(self) -> None:
        keys = tuple(bool(k) for k in self.secure_boot_revoked_keys)
        if len(keys) != 3:
            raise ValueError("secure_boot_revoked_keys must hold exactly 3 flags")
        object.__setattr__(self, "secure_boot_revoked_keys", keys)
        object.__setattr__(self, "target_chip", TargetChip(self.target_chip))


@dataclass
class ConnectArgs:
    """Timing parameters used while connecting to a target."""

    sync_timeout: int = 100
    trials: int = 10

    def __post_init__(self) -> None:
        if self.sync_timeout < 0:
            raise ValueError("sync_timeout must not be negative")