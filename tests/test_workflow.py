import hashlib
import logging
import struct

import pytest

from espflashkit.image import ESP_RAM_BLOCK, FLASH_BLOCK, FlashImage
from espflashkit.loader_types import (
    BinHeader,
    ConnectArgs,
    ErrorCode,
    LoaderError,
    SecurityInfo,
    TargetChip,
)
from espflashkit.workflow import (
    connect_to_target,
    connect_to_target_with_stub,
    describe_security_info,
    error_string,
    flash_binary,
    load_ram_binary,
    reflash_if_changed,
)

APP_START_ADDRESS = 0x10000


class FakeLoader:
    def __init__(self, chip=TargetChip.ESP32, fail=None, flash_size=0x40000):
        self.chip = chip
        self.fail = dict(fail or {})
        self.calls = []
        self.flash = bytearray(b"\xff" * flash_size)
        self._pos = 0
        self._region = (0, 0)
        self.mem_blocks = []

    def _check(self, name):
        if name in self.fail:
            raise LoaderError(self.fail[name])

    def connect(self, args):
        self.calls.append(("connect", args))
        self._check("connect")

    def connect_with_stub(self, args):
        self.calls.append(("connect_with_stub", args))
        self._check("connect_with_stub")

    def get_target(self):
        return self.chip

    def change_transmission_rate(self, rate):
        self.calls.append(("change_rate", rate))
        self._check("change_rate")

    def change_transmission_rate_stub(self, old_rate, new_rate):
        self.calls.append(("change_rate_stub", old_rate, new_rate))
        self._check("change_rate_stub")

    def flash_start(self, offset, image_size, block_size):
        self.calls.append(("flash_start", offset, image_size, block_size))
        self._check("flash_start")
        self._pos = offset
        self._region = (offset, image_size)

    def flash_write(self, data):
        self.calls.append(("flash_write", len(data)))
        self._check("flash_write")
        self.flash[self._pos:self._pos + len(data)] = data
        self._pos += len(data)

    def flash_verify(self):
        self.calls.append(("flash_verify",))
        self._check("flash_verify")

    def flash_verify_known_md5(self, address, size, expected_md5):
        self.calls.append(("verify_md5", address, size))
        actual = hashlib.md5(bytes(self.flash[address:address + size])).hexdigest()
        if actual != expected_md5:
            raise LoaderError(ErrorCode.INVALID_MD5)

    def mem_start(self, offset, size, block_size):
        self.calls.append(("mem_start", offset, size, block_size))
        self._check("mem_start")

    def mem_write(self, data):
        self.calls.append(("mem_write", len(data)))
        self._check("mem_write")
        self.mem_blocks.append(bytes(data))

    def mem_finish(self, entrypoint):
        self.calls.append(("mem_finish", entrypoint))
        self._check("mem_finish")


class FakePort:
    def __init__(self, fail=False):
        self.rates = []
        self.fail = fail

    def change_transmission_rate(self, rate):
        if self.fail:
            raise LoaderError(ErrorCode.FAIL)
        self.rates.append(rate)


def _names(loader):
    return [call[0] for call in loader.calls]


def _ram_image(segments, entrypoint=0x40080000, extended=True):
    header = BinHeader(0xE9, len(segments), 2, 0x20, entrypoint).pack()
    if extended:
        header += b"\x00" * 16
    body = b"".join(struct.pack("<II", addr, len(data)) + data for addr, data in segments)
    return header + body


# Cases carried over from the source's own tests


def test_can_connect():
    loader = FakeLoader(chip=TargetChip.ESP32)
    assert connect_to_target(loader, FakePort()) is TargetChip.ESP32
    assert loader.calls[0][0] == "connect"
    assert loader.calls[0][1] == ConnectArgs(sync_timeout=100, trials=10)


def test_can_write_application_to_flash():
    image = bytes(range(256)) * 13 + b"tail"
    loader = FakeLoader()
    written = flash_binary(loader, image, APP_START_ADDRESS)
    assert written == len(image)
    assert bytes(loader.flash[APP_START_ADDRESS:APP_START_ADDRESS + len(image)]) == image
    assert loader.calls[0] == ("flash_start", APP_START_ADDRESS, len(image), FLASH_BLOCK)
    writes = [c[1] for c in loader.calls if c[0] == "flash_write"]
    assert writes == [1024, 1024, 1024, 260]
    assert loader.calls[-1] == ("flash_verify",)


# error strings


@pytest.mark.parametrize(
    "code, text",
    [
        (ErrorCode.SUCCESS, "NONE"),
        (ErrorCode.FAIL, "UNKNOWN"),
        (ErrorCode.INVALID_PARAM, "INVALID PARAMETER"),
        (ErrorCode.UNSUPPORTED_FUNC, "UNSUPPORTED FUNCTION"),
        (9, "INVALID RESPONSE"),
    ],
)
def test_error_string(code, text):
    assert error_string(code) == text


def test_error_string_rejects_unknown_code():
    with pytest.raises(ValueError):
        error_string(42)


# connecting


def test_connect_changes_rate_on_target_and_port():
    loader = FakeLoader()
    port = FakePort()
    connect_to_target(loader, port, 230400)
    assert ("change_rate", 230400) in loader.calls
    assert port.rates == [230400]


def test_connect_skips_rate_change_for_esp8266():
    loader = FakeLoader(chip=TargetChip.ESP8266)
    port = FakePort()
    assert connect_to_target(loader, port, 230400) is TargetChip.ESP8266
    assert "change_rate" not in _names(loader)
    assert port.rates == []


def test_connect_without_higher_rate_keeps_rate():
    loader = FakeLoader()
    port = FakePort()
    connect_to_target(loader, port, 0)
    assert _names(loader) == ["connect"]
    assert port.rates == []


def test_connect_failure_is_raised_with_hint(caplog):
    loader = FakeLoader(fail={"connect": ErrorCode.TIMEOUT})
    with caplog.at_level(logging.ERROR, logger="espflashkit.workflow"):
        with pytest.raises(LoaderError) as info:
            connect_to_target(loader, FakePort(), 230400)
    assert info.value.code is ErrorCode.TIMEOUT
    assert "properly connected" in caplog.text


def test_connect_target_rate_failure_leaves_port_alone():
    loader = FakeLoader(fail={"change_rate": ErrorCode.UNSUPPORTED_FUNC})
    port = FakePort()
    with pytest.raises(LoaderError) as info:
        connect_to_target(loader, port, 460800)
    assert info.value.code is ErrorCode.UNSUPPORTED_FUNC
    assert port.rates == []


def test_connect_port_rate_failure_propagates():
    with pytest.raises(LoaderError) as info:
        connect_to_target(FakeLoader(), FakePort(fail=True), 460800)
    assert info.value.code is ErrorCode.FAIL


def test_connect_with_stub_changes_rate_when_different():
    loader = FakeLoader(chip=TargetChip.ESP32S3)
    port = FakePort()
    chip = connect_to_target_with_stub(loader, port, 115200, 230400)
    assert chip is TargetChip.ESP32S3
    assert ("change_rate_stub", 115200, 230400) in loader.calls
    assert port.rates == [230400]


def test_connect_with_stub_same_rate_skips_change():
    loader = FakeLoader()
    port = FakePort()
    connect_to_target_with_stub(loader, port, 115200, 115200)
    assert _names(loader) == ["connect_with_stub"]
    assert port.rates == []


def test_connect_with_stub_failure_raises():
    loader = FakeLoader(fail={"connect_with_stub": ErrorCode.INVALID_RESPONSE})
    with pytest.raises(LoaderError) as info:
        connect_to_target_with_stub(loader, FakePort(), 115200, 230400)
    assert info.value.code is ErrorCode.INVALID_RESPONSE


# flashing


def test_flash_binary_without_verify():
    loader = FakeLoader()
    flash_binary(loader, b"\x01\x02\x03\x04", 0x1000, verify=False)
    assert "flash_verify" not in _names(loader)
    assert bytes(loader.flash[0x1000:0x1004]) == b"\x01\x02\x03\x04"


def test_flash_binary_start_failure_writes_nothing():
    loader = FakeLoader(fail={"flash_start": ErrorCode.INVALID_PARAM})
    with pytest.raises(LoaderError) as info:
        flash_binary(loader, b"data" * 10, 0)
    assert info.value.code is ErrorCode.INVALID_PARAM
    assert "flash_write" not in _names(loader)


def test_flash_binary_write_failure_stops():
    loader = FakeLoader(fail={"flash_write": ErrorCode.TIMEOUT})
    with pytest.raises(LoaderError) as info:
        flash_binary(loader, b"x" * 3000, 0)
    assert info.value.code is ErrorCode.TIMEOUT
    assert _names(loader).count("flash_write") == 1


def test_flash_binary_verify_failure_raises():
    loader = FakeLoader(fail={"flash_verify": ErrorCode.INVALID_MD5})
    with pytest.raises(LoaderError) as info:
        flash_binary(loader, b"abcd", 0)
    assert info.value.code is ErrorCode.INVALID_MD5


# RAM loading


def test_load_ram_binary_loads_segments():
    seg_a = bytes(range(16))
    seg_b = b"\xaa" * (ESP_RAM_BLOCK + 8)
    data = _ram_image([(0x3FFB0000, seg_a), (0x40080000, seg_b)], entrypoint=0x40081234)
    loader = FakeLoader(chip=TargetChip.ESP32C3)
    image = load_ram_binary(loader, data)
    assert image.entrypoint == 0x40081234
    assert [c for c in loader.calls if c[0] == "mem_start"] == [
        ("mem_start", 0x3FFB0000, 16, ESP_RAM_BLOCK),
        ("mem_start", 0x40080000, ESP_RAM_BLOCK + 8, ESP_RAM_BLOCK),
    ]
    assert [len(b) for b in loader.mem_blocks] == [16, ESP_RAM_BLOCK, 8]
    assert b"".join(loader.mem_blocks) == seg_a + seg_b
    assert loader.calls[-1] == ("mem_finish", 0x40081234)


def test_load_ram_binary_esp8266_uses_short_header():
    seg = b"\x11\x22\x33\x44"
    data = _ram_image([(0x40100000, seg)], entrypoint=0x40100004, extended=False)
    loader = FakeLoader(chip=TargetChip.ESP8266)
    load_ram_binary(loader, data)
    assert loader.mem_blocks == [seg]
    assert ("mem_start", 0x40100000, 4, ESP_RAM_BLOCK) in loader.calls


def test_load_ram_binary_start_failure_skips_finish():
    data = _ram_image([(0x3FFB0000, b"\x00" * 8)])
    loader = FakeLoader(fail={"mem_start": ErrorCode.INVALID_PARAM})
    with pytest.raises(LoaderError) as info:
        load_ram_binary(loader, data)
    assert info.value.code is ErrorCode.INVALID_PARAM
    assert "mem_finish" not in _names(loader)


# fast reflash


def test_reflash_skips_matching_image():
    payload = b"hello world!" * 10
    loader = FakeLoader()
    loader.flash[0x8000:0x8000 + len(payload)] = payload
    assert reflash_if_changed(loader, FlashImage(payload, 0x8000)) is False
    assert "flash_start" not in _names(loader)


def test_reflash_writes_changed_image():
    payload = b"new firmware" * 10
    loader = FakeLoader()
    assert reflash_if_changed(loader, FlashImage(payload, APP_START_ADDRESS)) is True
    assert bytes(loader.flash[APP_START_ADDRESS:APP_START_ADDRESS + len(payload)]) == payload
    assert reflash_if_changed(loader, FlashImage(payload, APP_START_ADDRESS)) is False


# security report


def test_describe_security_info_defaults():
    lines = describe_security_info(SecurityInfo(target_chip=TargetChip.ESP32C3, eco_version=3))
    assert lines[0] == "Target chip: ESP32-C3"
    assert "Eco version number: 3" in lines
    assert "Secure boot: DISABLED" in lines
    assert "JTAG access: ENABLED" in lines
    assert "USB access: ENABLED" in lines
    assert "Secure boot key 2 revoked: FALSE" in lines


def test_describe_security_info_s2_omits_eco_version():
    lines = describe_security_info(SecurityInfo(target_chip=TargetChip.ESP32S2))
    assert not any(line.startswith("Eco version") for line in lines)
    assert lines[0] == "Target chip: ESP32-S2"


def test_describe_security_info_flags():
    info = SecurityInfo(
        target_chip=TargetChip.ESP32S3,
        secure_boot_enabled=True,
        secure_boot_revoked_keys=(False, True, False),
        jtag_software_disabled=True,
        usb_disabled=True,
        flash_encryption_enabled=True,
        dcache_in_uart_download_disabled=True,
    )
    lines = describe_security_info(info)
    assert "Secure boot: ENABLED" in lines
    assert "Secure boot key 1 revoked: TRUE" in lines
    assert "JTAG access: DISABLED IN SOFTWARE" in lines
    assert "USB access: DISABLED" in lines
    assert "Flash encryption: ENABLED" in lines
    assert "Data cache in UART download mode: DISABLED" in lines
    assert "Instruction cache in UART download mode: ENABLED" in lines


def test_describe_security_info_hardware_jtag_wins():
    info = SecurityInfo(
        target_chip=TargetChip.ESP32C6,
        jtag_software_disabled=True,
        jtag_hardware_disabled=True,
    )
    assert "JTAG access: PERMANENTLY DISABLED" in describe_security_info(info)