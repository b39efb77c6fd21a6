"""Character devices: a display bound to the console and a PS/2 keyboard."""

from __future__ import annotations

import enum
from collections import deque
from typing import Callable, Iterator, Optional

from dexos.console import ConsoleManager

PS2_STATUS_PORT = 0x64
PS2_DATA_PORT = 0x60
PS2_OUTPUT_FULL = 0x01
SCANCODE_EXTENDED = 0xE0
SCANCODE_RELEASE = 0x80

# US scancode set 1, make codes 0x00..0x39; unmapped codes are NUL.
_SCANCODE_MAP = (
    "\0\x1b1234567890-=\b"
    "\tqwertyuiop[]\n\0"
    "asdfghjkl;'`\0\\z"
    "xcvbnm,./\0*\0 "
)


class DeviceType(enum.IntEnum):
    DISPLAY = 1
    KEYBOARD = 2


class Device:
    """A named device of a given type."""

    def __init__(self, name: str, dev_type: DeviceType) -> None:
        self.name = name
        self.type = dev_type

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, type={self.type.name})"


class DisplayConsole(Device):
    """Display device that writes to the active console."""

    def __init__(self, consoles: ConsoleManager) -> None:
        super().__init__("console0", DeviceType.DISPLAY)
        self._consoles = consoles

    def putc(self, ch: str) -> None:
        self._consoles.putc(ch)

    def write(self, text: str) -> None:
        self._consoles.write(text)

    def clear(self) -> None:
        self._consoles.clear()

    def set_color(self, fg: int, bg: int) -> None:
        self._consoles.set_color(fg, bg)


def translate_scancode(scancode: int) -> Optional[str]:
    """Character for a set-1 make code, or None for releases and unmapped keys."""
    if scancode == SCANCODE_EXTENDED or scancode & SCANCODE_RELEASE:
        return None
    if scancode < len(_SCANCODE_MAP):
        ch = _SCANCODE_MAP[scancode]
        if ch != "\0":
            return ch
    return None


class PS2Keyboard(Device):
    """Keyboard on a PS/2 controller, with a serial line as fallback input.

    ``port`` reads an I/O port by number; ``serial`` returns a pending
    character or None.
    """

    def __init__(
        self,
        port: Callable[[int], int],
        serial: Optional[Callable[[], Optional[str]]] = None,
    ) -> None:
        super().__init__("ps2kbd0", DeviceType.KEYBOARD)
        self._port = port
        self._serial = serial

    def try_getc(self) -> Optional[str]:
        """A character if one is waiting on the controller, otherwise None."""
        if not self._port(PS2_STATUS_PORT) & PS2_OUTPUT_FULL:
            return None
        return translate_scancode(self._port(PS2_DATA_PORT) & 0xFF)

    def getc(self) -> str:
        """Wait for a character from the keyboard or the serial line."""
        while True:
            ch = self.try_getc()
            if ch is not None:
                return ch
            if self._serial is not None:
                s = self._serial()
                if s is not None:
                    return s


class DeviceRegistry:
    """Registered devices, most recently registered first."""

    def __init__(self) -> None:
        self._devices: deque[Device] = deque()

    def register(self, dev: Device) -> None:
        self._devices.appendleft(dev)

    def first_of_type(self, dev_type: DeviceType) -> Optional[Device]:
        return next((d for d in self._devices if d.type == dev_type), None)

    def find_by_name(self, name: Optional[str]) -> Optional[Device]:
        if name is None:
            return None
        return next((d for d in self._devices if d.name == name), None)

    def __iter__(self) -> Iterator[Device]:
        return iter(list(self._devices))