"""High-level flashing workflows: connecting, writing images, loading RAM apps."""

from __future__ import annotations

import logging
from typing import Protocol

from .image import ESP_RAM_BLOCK, FLASH_BLOCK, FlashImage, RamImage, parse_ram_image, split_blocks
from .loader_types import ConnectArgs, ErrorCode, LoaderError, SecurityInfo, TargetChip

__all__ = [
    "error_string",
    "connect_to_target",
    "connect_to_target_with_stub",
    "flash_binary",
    "load_ram_binary",
    "reflash_if_changed",
    "describe_security_info",
]

_log = logging.getLogger(__name__)

_ERROR_STRINGS = {
    ErrorCode.SUCCESS: "NONE",
    ErrorCode.FAIL: "UNKNOWN",
    ErrorCode.TIMEOUT: "TIMEOUT",
    ErrorCode.IMAGE_SIZE: "IMAGE SIZE",
    ErrorCode.INVALID_MD5: "INVALID MD5",
    ErrorCode.INVALID_PARAM: "INVALID PARAMETER",
    ErrorCode.INVALID_TARGET: "INVALID TARGET",
    ErrorCode.UNSUPPORTED_CHIP: "UNSUPPORTED CHIP",
    ErrorCode.UNSUPPORTED_FUNC: "UNSUPPORTED FUNCTION",
    ErrorCode.INVALID_RESPONSE: "INVALID RESPONSE",
}

_CONNECT_HINTS = {
    ErrorCode.TIMEOUT: "Check if the host and the target are properly connected.",
    ErrorCode.INVALID_TARGET: "You could be using an unsupported chip, or chip revision.",
    ErrorCode.INVALID_RESPONSE: (
        "Try lowering the transmission rate or using shorter wires to connect "
        "the host and the target."
    ),
}


class _Loader(Protocol):
    def connect(self, args: ConnectArgs) -> None: ...

    def connect_with_stub(self, args: ConnectArgs) -> None: ...

    def get_target(self) -> TargetChip: ...

    def change_transmission_rate(self, rate: int) -> None: ...

    def change_transmission_rate_stub(self, old_rate: int, new_rate: int) -> None: ...

    def flash_start(self, offset: int, image_size: int, block_size: int) -> None: ...

    def flash_write(self, data: bytes) -> None: ...

    def flash_verify(self) -> None: ...

    def flash_verify_known_md5(self, address: int, size: int, expected_md5: str) -> None: ...

    def mem_start(self, offset: int, size: int, block_size: int) -> None: ...

    def mem_write(self, data: bytes) -> None: ...

    def mem_finish(self, entrypoint: int) -> None: ...


class _Port(Protocol):
    def change_transmission_rate(self, rate: int) -> None: ...


def error_string(code: ErrorCode | int) -> str:
    """Short upper-case description of a loader error code."""
    try:
        return _ERROR_STRINGS[ErrorCode(code)]
    except ValueError:
        raise ValueError(f"unknown error code {code!r}") from None


def _report_connect_failure(err: LoaderError) -> None:
    _log.error("Cannot connect to target. Error: %s", error_string(err.code))
    hint = _CONNECT_HINTS.get(err.code)
    if hint:
        _log.error("%s", hint)


def _switch_rate(change_on_target, port: _Port, rate: int) -> None:
    try:
        change_on_target()
    except LoaderError as err:
        if err.code is ErrorCode.UNSUPPORTED_FUNC:
            _log.error("ESP8266 does not support change transmission rate command.")
        else:
            _log.error("Unable to change transmission rate on target.")
        raise
    try:
        port.change_transmission_rate(rate)
    except LoaderError:
        _log.error("Unable to change transmission rate.")
        raise
    _log.info("Transmission rate changed.")


def connect_to_target(loader: _Loader, port: _Port, higher_rate: int = 0) -> TargetChip:
    """Connect with default timing and optionally raise the link rate.

    The rate is only changed when ``higher_rate`` is non-zero and the target
    is not an ESP8266. Returns the detected chip.
    """
    try:
        loader.connect(ConnectArgs())
    except LoaderError as err:
        _report_connect_failure(err)
        raise
    _log.info("Connected to target")

    chip = TargetChip(loader.get_target())
    if higher_rate and chip is not TargetChip.ESP8266:
        _switch_rate(lambda: loader.change_transmission_rate(higher_rate), port, higher_rate)
    return chip


def connect_to_target_with_stub(
    loader: _Loader, port: _Port, current_rate: int, higher_rate: int
) -> TargetChip:
    """Connect using the flasher stub and switch to ``higher_rate`` if it differs."""
    try:
        loader.connect_with_stub(ConnectArgs())
    except LoaderError as err:
        _report_connect_failure(err)
        raise
    _log.info("Connected to target")

    if higher_rate != current_rate:
        _switch_rate(
            lambda: loader.change_transmission_rate_stub(current_rate, higher_rate),
            port,
            higher_rate,
        )
    return TargetChip(loader.get_target())


def flash_binary(loader: _Loader, data: bytes, address: int, verify: bool = True) -> int:
    """Erase, write and optionally MD5-verify ``data`` at ``address``.

    Returns the number of bytes written.
    """
    data = bytes(data)
    _log.info("Erasing flash (this may take a while)...")
    try:
        loader.flash_start(address, len(data), FLASH_BLOCK)
    except LoaderError as err:
        _log.error("Erasing flash failed with error: %s.", error_string(err.code))
        if err.code is ErrorCode.INVALID_PARAM:
            _log.error(
                "If using Secure Download Mode, double check that the specified "
                "target flash size is correct."
            )
        raise
    _log.info("Start programming")

    written = 0
    for block in split_blocks(data, FLASH_BLOCK):
        try:
            loader.flash_write(block)
        except LoaderError as err:
            _log.error("Packet could not be written! Error %s.", error_string(err.code))
            raise
        written += len(block)
        _log.info("Progress: %d %%", int(written / len(data) * 100))
    _log.info("Finished programming")

    if verify:
        try:
            loader.flash_verify()
        except LoaderError as err:
            if err.code is ErrorCode.UNSUPPORTED_FUNC:
                _log.error("ESP8266 does not support flash verify command.")
            else:
                _log.error("MD5 does not match. Error: %s", error_string(err.code))
            raise
        _log.info("Flash verified")
    return written


def load_ram_binary(loader: _Loader, data: bytes) -> RamImage:
    """Load every segment of an application image into RAM and start it."""
    _log.info("Start loading")
    image = parse_ram_image(data, loader.get_target())

    for segment in image.segments:
        _log.info("Downloading %d bytes at 0x%08x...", segment.size, segment.addr)
        try:
            loader.mem_start(segment.addr, segment.size, ESP_RAM_BLOCK)
        except LoaderError as err:
            _log.error(
                "Loading to RAM could not be started. Error: %s.", error_string(err.code)
            )
            if err.code is ErrorCode.INVALID_PARAM:
                _log.error("Check if the chip has Secure Download Mode enabled.")
            raise
        for block in split_blocks(segment.data, ESP_RAM_BLOCK):
            try:
                loader.mem_write(block)
            except LoaderError as err:
                _log.error("Packet could not be written! Error: %s.", error_string(err.code))
                raise

    try:
        loader.mem_finish(image.entrypoint)
    except LoaderError as err:
        _log.error("Loading to RAM finished with error: %s.", error_string(err.code))
        raise
    _log.info("Finished loading")
    return image


def reflash_if_changed(loader: _Loader, image: FlashImage) -> bool:
    """Flash ``image`` only if the target's flash MD5 differs. Returns True if flashed."""
    try:
        loader.flash_verify_known_md5(image.addr, image.size, image.md5)
    except LoaderError:
        _log.info("MD5 mismatch at 0x%x, flashing...", image.addr)
        flash_binary(loader, image.data, image.addr)
        return True
    _log.info("MD5 match at 0x%x, skipping...", image.addr)
    return False


def _state(enabled: bool) -> str:
    return "ENABLED" if enabled else "DISABLED"


def describe_security_info(info: SecurityInfo) -> list[str]:
    """Render a target's security state as report lines."""
    lines = [f"Target chip: {info.target_chip.display_name()}"]
    if info.target_chip is not TargetChip.ESP32S2:
        lines.append(f"Eco version number: {info.eco_version}")
    lines.append(f"Secure boot: {_state(info.secure_boot_enabled)}")
    lines.append(
        f"Secure boot aggressive revoke: {_state(info.secure_boot_aggressive_revoke_enabled)}"
    )
    lines.append(f"Flash encryption: {_state(info.flash_encryption_enabled)}")
    lines.append(f"Secure download mode: {_state(info.secure_download_mode_enabled)}")
    for key, revoked in enumerate(info.secure_boot_revoked_keys):
        lines.append(f"Secure boot key {key} revoked: {'TRUE' if revoked else 'FALSE'}")

    if info.jtag_hardware_disabled:
        jtag = "PERMANENTLY DISABLED"
    elif info.jtag_software_disabled:
        jtag = "DISABLED IN SOFTWARE"
    else:
        jtag = "ENABLED"
    lines.append(f"JTAG access: {jtag}")
    lines.append(f"USB access: {_state(not info.usb_disabled)}")
    lines.append(
        "Data cache in UART download mode: "
        f"{_state(not info.dcache_in_uart_download_disabled)}"
    )
    lines.append(
        "Instruction cache in UART download mode: "
        f"{_state(not info.icache_in_uart_download_disabled)}"
    )
    return lines