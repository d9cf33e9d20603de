"""Host-side port used by the loader to reach a target: byte transfer, timing and pins."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Protocol

from .loader_types import ErrorCode, LoaderError

__all__ = [
    "Deadline",
    "BasePort",
    "DEFAULT_RESET_HOLD_MS",
    "DEFAULT_BOOT_HOLD_MS",
    "MAX_TRANSFER_SIZE",
]

DEFAULT_RESET_HOLD_MS = 100
DEFAULT_BOOT_HOLD_MS = 50
MAX_TRANSFER_SIZE = 0xFFFF

_POLL_INTERVAL_S = 0.001

_log = logging.getLogger(__name__)


class _ByteStream(Protocol):
    def read(self, size: int) -> Optional[bytes]: ...

    def write(self, data: bytes) -> Optional[int]: ...


PinControl = Callable[[bool], None]


class Deadline:
    """A one-shot timer that reports how many milliseconds are left."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._end: Optional[float] = None

    def start(self, ms: int) -> None:
        """Arm the timer to expire ``ms`` milliseconds from now."""
        if ms < 0:
            raise ValueError("timer duration must not be negative")
        self._end = self._clock() + ms / 1000

    def remaining_ms(self) -> int:
        """Milliseconds until expiry; 0 once elapsed or if never started."""
        if self._end is None:
            return 0
        remaining = self._end - self._clock()
        return max(0, int(remaining * 1000))

    @property
    def expired(self) -> bool:
        return self.remaining_ms() == 0


def _check_size(size: int) -> None:
    if size < 0:
        raise ValueError("transfer size must not be negative")
    if size > MAX_TRANSFER_SIZE:
        raise ValueError(
            f"transfer size {size} exceeds the maximum of {MAX_TRANSFER_SIZE} bytes"
        )


class BasePort:
    """A port over a binary stream, with optional reset and boot pin control.

    ``set_reset`` and ``set_boot`` receive ``True`` to assert the line and
    ``False`` to release it. Without them the pin operations have no effect,
    which suits links where the target is put into download mode by hand.
    """

    def __init__(
        self,
        stream: _ByteStream,
        *,
        set_reset: Optional[PinControl] = None,
        set_boot: Optional[PinControl] = None,
        reset_hold_ms: int = DEFAULT_RESET_HOLD_MS,
        boot_hold_ms: int = DEFAULT_BOOT_HOLD_MS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if reset_hold_ms < 0 or boot_hold_ms < 0:
            raise ValueError("hold times must not be negative")
        self._stream = stream
        self._set_reset = set_reset
        self._set_boot = set_boot
        self.reset_hold_ms = reset_hold_ms
        self.boot_hold_ms = boot_hold_ms
        self._clock = clock
        self._sleep = sleep
        self._timer = Deadline(clock)

    def write(self, data: bytes, timeout: int) -> None:
        """Write all of ``data``, raising ``LoaderError`` on timeout or failure."""
        _check_size(len(data))
        deadline = Deadline(self._clock)
        deadline.start(timeout)
        view = memoryview(bytes(data))
        written = 0
        while written < len(view):
            try:
                count = self._stream.write(view[written:].tobytes())
            except OSError as exc:
                raise LoaderError(ErrorCode.FAIL, f"write failed: {exc}") from exc
            if count is None:
                count = len(view) - written
            if count > 0:
                written += count
                continue
            if deadline.expired:
                raise LoaderError(
                    ErrorCode.TIMEOUT, f"wrote {written} of {len(view)} bytes"
                )
            self._sleep(_POLL_INTERVAL_S)
        flush = getattr(self._stream, "flush", None)
        if callable(flush):
            try:
                flush()
            except OSError as exc:
                raise LoaderError(ErrorCode.FAIL, f"flush failed: {exc}") from exc

    def read(self, size: int, timeout: int) -> bytes:
        """Read exactly ``size`` bytes, raising ``LoaderError`` on timeout or failure."""
        _check_size(size)
        deadline = Deadline(self._clock)
        deadline.start(timeout)
        received = bytearray()
        while len(received) < size:
            try:
                chunk = self._stream.read(size - len(received))
            except OSError as exc:
                raise LoaderError(ErrorCode.FAIL, f"read failed: {exc}") from exc
            if chunk:
                received += chunk
                continue
            if deadline.expired:
                raise LoaderError(
                    ErrorCode.TIMEOUT, f"read {len(received)} of {size} bytes"
                )
            self._sleep(_POLL_INTERVAL_S)
        return bytes(received)

    def delay_ms(self, ms: int) -> None:
        """Block for ``ms`` milliseconds."""
        if ms < 0:
            raise ValueError("delay must not be negative")
        self._sleep(ms / 1000)

    def start_timer(self, ms: int) -> None:
        """Start the port's timeout timer."""
        self._timer.start(ms)

    def remaining_time(self) -> int:
        """Milliseconds left on the timer started by ``start_timer``."""
        return self._timer.remaining_ms()

    def enter_bootloader(self) -> None:
        """Hold the boot strap asserted across a reset so the target enters download mode."""
        self._drive(self._set_boot, True)
        self._drive(self._set_reset, True)
        self.delay_ms(self.reset_hold_ms)
        self._drive(self._set_reset, False)
        self.delay_ms(self.boot_hold_ms)
        self._drive(self._set_boot, False)

    def reset_target(self) -> None:
        """Pulse the reset line."""
        self._drive(self._set_reset, True)
        self.delay_ms(self.reset_hold_ms)
        self._drive(self._set_reset, False)

    def change_transmission_rate(self, rate: int) -> None:
        """Switch the link to ``rate`` if the underlying stream has a baud rate."""
        if rate <= 0:
            raise LoaderError(ErrorCode.INVALID_PARAM, "transmission rate must be positive")
        if not hasattr(self._stream, "baudrate"):
            raise LoaderError(
                ErrorCode.UNSUPPORTED_FUNC, "stream has no adjustable transmission rate"
            )
        try:
            self._stream.baudrate = rate  # type: ignore[attr-defined]
        except (OSError, ValueError) as exc:
            raise LoaderError(ErrorCode.FAIL, f"cannot set rate {rate}: {exc}") from exc

    def debug_print(self, text: str) -> None:
        """Emit a debug trace line."""
        _log.debug("%s", text)

    # Older names kept for callers written against the previous interface.
    change_baudrate = change_transmission_rate
    serial_write = write
    serial_read = read

    @staticmethod
    def _drive(pin: Optional[PinControl], asserted: bool) -> None:
        if pin is not None:
            pin(asserted)