# espflashkit

espflashkit holds host-side building blocks for putting firmware onto ESP chips
(ESP8266, ESP32 and the S2, S3, C2, C3, C5, C6 and H2 variants) through their ROM
bootloader: shared types, a byte-stream port, image parsing and the higher-level
flashing steps. It has no dependencies outside the standard library.

## Modules

### `espflashkit.loader_types`

- `ErrorCode`: an `IntEnum` of result codes (`SUCCESS`, `FAIL`, `TIMEOUT`, `IMAGE_SIZE`,
  `INVALID_MD5`, `INVALID_PARAM`, `INVALID_TARGET`, `UNSUPPORTED_CHIP`,
  `UNSUPPORTED_FUNC`, `INVALID_RESPONSE`).
- `LoaderError(code, detail="")`: the exception every failure is raised as. Its `code`
  attribute is an `ErrorCode`. It cannot be built with `SUCCESS`.
- `TargetChip`: an `IntEnum` of supported chips plus `UNKNOWN`. `display_name()` returns
  names such as `ESP32-C3`, or `INVALID_TARGET` for `UNKNOWN`.
- `BinHeader`: the 8-byte image header. Use `BinHeader.unpack(data)` to decode it and
  `pack()` to encode it.
- `BinSegment`: a load address and its bytes.
- `SecurityInfo`: a chip's security flags.
- `ConnectArgs`: connection timing. The defaults are `sync_timeout=100` and `trials=10`.

### `espflashkit.io`

- `Deadline`: a one-shot millisecond timer. Call `start(ms)` to arm it. `remaining_ms()`
  and `expired` report how much time is left.
- `BasePort(stream, *, set_reset=None, set_boot=None, reset_hold_ms=100, boot_hold_ms=50)`
  wraps any object with `read(size)` and `write(data)`, such as a serial port or a socket
  file. It offers these operations:
  - `write(data, timeout)` and `read(size, timeout)`. Each transfers exactly the
    requested bytes, or raises `LoaderError` with `TIMEOUT` or `FAIL`. A transfer is
    limited to 65535 bytes.
  - `delay_ms`, `start_timer` and `remaining_time`.
  - `enter_bootloader()` holds the boot line across a reset pulse. `reset_target()`
    pulses reset. Both drive the optional `set_reset`/`set_boot` callbacks, which
    receive `True` to assert a line. Without those callbacks the pin operations do
    nothing.
  - `change_transmission_rate(rate)` sets the stream's `baudrate` attribute. It raises
    `UNSUPPORTED_FUNC` if the stream has none.
  - `debug_print(text)` logs at debug level.

  The older names `change_baudrate`, `serial_write` and `serial_read` are aliases for
  `change_transmission_rate`, `write` and `read`.

### `espflashkit.image`

- `FlashImage(data, addr, md5="")`: a binary bound for a flash address. If you leave out
  the MD5, it is computed from the data.
- `RamImage`: a parsed header with its segments. The `entrypoint` property gives the
  entry point.
- `parse_ram_image(data, chip)`: splits an application image into segments. Segments
  start after the 8-byte header on the ESP8266 and after the 24-byte extended header on
  other chips.
- `bootloader_address(chip)`: returns `0x1000` for ESP32/ESP32-S2, `0x2000` for ESP32-C5
  and `0x0` for the others.
- `split_blocks(data, block_size)`: yields consecutive blocks of at most `block_size`
  bytes.
- Constants: `PARTITION_ADDRESS`, `APPLICATION_ADDRESS`, `ESP_RAM_BLOCK`, `FLASH_BLOCK`.

### `espflashkit.workflow`

- `connect_to_target(loader, port, higher_rate=0)`: connects with default
  `ConnectArgs`. When `higher_rate` is non-zero and the chip is not an ESP8266, it
  switches both the target and the port to that rate. It returns the `TargetChip`.
- `connect_to_target_with_stub(loader, port, current_rate, higher_rate)`: the same
  through the flasher stub. It changes the rate when the two rates differ.
- `flash_binary(loader, data, address, verify=True)`: erases, writes in 1024-byte blocks
  and optionally verifies by MD5. It returns the number of bytes written.
- `load_ram_binary(loader, data)`: loads every segment in `ESP_RAM_BLOCK` pieces and
  starts the entry point. It returns the `RamImage`.
- `reflash_if_changed(loader, image)`: flashes only when the target reports an MD5
  mismatch. It returns whether it flashed.
- `describe_security_info(info)`: returns report lines for a `SecurityInfo`.
- `error_string(code)`: returns the short name of an error code, such as `"INVALID MD5"`.

Progress and diagnostics are reported through the `logging` module.

## What the package does not do

The package does not implement the bootloader command protocol itself. You supply the
`loader` that the workflow functions call. It must provide these methods: `connect`,
`connect_with_stub`, `get_target`, `change_transmission_rate`,
`change_transmission_rate_stub`, `flash_start`, `flash_write`, `flash_verify`,
`flash_verify_known_md5`, `mem_start`, `mem_write` and `mem_finish`. Each raises
`LoaderError` on failure.

There is also no command-line tool, no bundled serial driver and no flasher stub
binaries.

## Installation

```
pip install espflashkit
```

To run the tests:

```
pip install "espflashkit[test]"
pytest
```

## Example

```python
from espflashkit.image import APPLICATION_ADDRESS, FlashImage
from espflashkit.io import BasePort
from espflashkit.loader_types import LoaderError
from espflashkit.workflow import connect_to_target, reflash_if_changed

port = BasePort(stream)           # any object with read(size) and write(data)
loader = make_loader(port)        # your implementation of the loader methods

try:
    chip = connect_to_target(loader, port, 230400)
    with open("app.bin", "rb") as f:
        image = FlashImage(f.read(), APPLICATION_ADDRESS)
    reflash_if_changed(loader, image)
except LoaderError as err:
    print("flashing failed:", err.code.name)
```