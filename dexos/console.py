"""Text consoles with a scrollback buffer, mirrored to a serial sink."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Callable, MutableSequence, Optional

DEFAULT_COLS = 80
DEFAULT_ROWS = 25
SCROLLBACK_ROWS = 512
MAX_CONSOLES = 4
DEFAULT_COLOR = 0x0F
# VGA text memory spans 32 KiB of 16-bit cells.
VGA_TEXT_CELLS = 0x8000 // 2
FB_TYPE_EGA_TEXT = 2
# Width the progress bar is laid out for.
PROGRESS_COLS = DEFAULT_COLS

_U64 = (1 << 64) - 1
_HEX = "0123456789ABCDEF"


def _entry(ch: str, color: int) -> int:
    return (ord(ch) & 0xFF) | ((color & 0xFF) << 8)


def _row_text(cells: MutableSequence[int], start: int, width: int) -> str:
    return "".join(chr(cell & 0xFF) for cell in cells[start:start + width])


@dataclass
class FramebufferInfo:
    """Framebuffer description from the boot loader; ``pitch`` is in bytes."""

    type: int
    bpp: int
    width: int
    height: int
    pitch: int
    vram: MutableSequence[int]


class Console:
    """One text console: a visible cell window, a scrollback ring and a bound VRAM."""

    def __init__(
        self,
        cols: int = DEFAULT_COLS,
        rows: int = DEFAULT_ROWS,
        vram: Optional[MutableSequence[int]] = None,
        pitch: int = 0,
        scrollback_rows: int = SCROLLBACK_ROWS,
    ) -> None:
        if scrollback_rows <= 0:
            raise ValueError("scrollback must hold at least one row")
        self.color = DEFAULT_COLOR
        self.row = 0
        self.col = 0
        self.view_offset = 0
        self.scrollback: deque[tuple[int, ...]] = deque(maxlen=scrollback_rows)
        self._bind(cols, rows, vram, pitch)

    def _bind(
        self, cols: int, rows: int, vram: Optional[MutableSequence[int]], pitch: int
    ) -> None:
        if cols <= 0 or rows <= 0:
            raise ValueError("console geometry must be positive")
        self.cols = cols
        self.rows = rows
        self.pitch = pitch or cols
        self.vram = vram if vram is not None else [0] * (self.pitch * rows)
        self.cells = [_entry(" ", self.color)] * (cols * rows)

    def text_rows(self) -> list[str]:
        """Characters of the live window, one string per row."""
        return [_row_text(self.cells, r * self.cols, self.cols) for r in range(self.rows)]

    def screen_rows(self) -> list[str]:
        """Characters currently in the bound VRAM, one string per row."""
        return [_row_text(self.vram, r * self.pitch, self.cols) for r in range(self.rows)]


class ConsoleManager:
    """Owns up to four consoles and routes output to the active one."""

    def __init__(self, serial: Optional[Callable[[str], None]] = None) -> None:
        self._serial = serial
        self.vga: list[int] = [0] * VGA_TEXT_CELLS
        self._slots: list[Optional[Console]] = [None] * MAX_CONSOLES
        self._active: Optional[Console] = None
        self.hw_cursor = 0

    # --- rendering -------------------------------------------------------

    def _move_cursor(self, row: int, col: int, cols: int) -> None:
        self.hw_cursor = (row * cols + col) & 0xFFFF

    def _render_view(self, c: Console) -> None:
        if c is not self._active:
            return
        offset = min(c.view_offset, len(c.scrollback))
        shown = min(offset, c.rows)
        history = list(c.scrollback)[len(c.scrollback) - shown:] if shown else []
        for r, line in enumerate(history):
            c.vram[r * c.pitch:r * c.pitch + c.cols] = line
        for r in range(shown, c.rows):
            src = (r - shown) * c.cols
            c.vram[r * c.pitch:r * c.pitch + c.cols] = c.cells[src:src + c.cols]
        if c.view_offset:
            self._move_cursor(c.rows - 1, 0, c.cols)
        else:
            self._move_cursor(c.row, c.col, c.cols)

    def _flush(self, c: Console) -> None:
        if c is not self._active:
            return
        if c.view_offset:
            self._render_view(c)
            return
        for r in range(c.rows):
            src = r * c.cols
            c.vram[r * c.pitch:r * c.pitch + c.cols] = c.cells[src:src + c.cols]
        self._move_cursor(c.row, c.col, c.cols)

    def _clear(self, c: Console) -> None:
        c.cells = [_entry(" ", c.color)] * (c.cols * c.rows)
        c.row = c.col = 0
        c.scrollback.clear()
        c.view_offset = 0
        if c is self._active:
            self._flush(c)

    def _scroll_up(self, c: Console) -> None:
        c.scrollback.append(tuple(c.cells[:c.cols]))
        count = len(c.scrollback)
        if 0 < c.view_offset < count:
            c.view_offset = min(c.view_offset + 1, count)
        c.cells = c.cells[c.cols:] + [_entry(" ", c.color)] * c.cols

    def _advance_row(self, c: Console) -> bool:
        c.row += 1
        if c.row >= c.rows:
            self._scroll_up(c)
            c.row = c.rows - 1
            return True
        return False

    def _putc(self, c: Console, ch: str) -> None:
        if ch == "\n":
            c.col = 0
            self._advance_row(c)
        elif ch == "\r":
            c.col = 0
        elif ch == "\b":
            if c.col > 0:
                c.col -= 1
        else:
            prow, pcol = c.row, c.col
            c.cells[prow * c.cols + pcol] = _entry(ch, c.color)
            scrolled = False
            c.col += 1
            if c.col >= c.cols:
                c.col = 0
                scrolled = self._advance_row(c)
            if c is self._active:
                if scrolled or c.view_offset:
                    self._flush(c)
                else:
                    c.vram[prow * c.pitch + pcol] = c.cells[prow * c.cols + pcol]
        if c is self._active:
            self._move_cursor(c.row, c.col, c.cols)

    def _mirror(self, ch: str) -> None:
        if self._serial is not None:
            self._serial(ch)

    def _target(self, console: Optional[Console]) -> Optional[Console]:
        return console if console is not None else self._active

    # --- setup -------------------------------------------------------------

    def init(self) -> None:
        """Create the default console in slot 0 (or redraw it) and activate it."""
        c0 = self._slots[0]
        if c0 is None:
            c0 = Console(DEFAULT_COLS, DEFAULT_ROWS, self.vga, DEFAULT_COLS)
            self._slots[0] = c0
            self._clear(c0)
        else:
            self._flush(c0)
        self._active = c0

    def init_from_framebuffer(self, fb: Optional[FramebufferInfo]) -> None:
        """Initialise, then rebind slot 0 to an EGA text framebuffer if given one."""
        self.init()
        if fb is None:
            return
        if fb.type == FB_TYPE_EGA_TEXT and fb.bpp == 16:
            c0 = self._slots[0]
            assert c0 is not None
            c0._bind(fb.width, fb.height, fb.vram, fb.pitch // 2)
            self._clear(c0)
            self._active = c0

    def create_vga_text(self, cols: int = 0, rows: int = 0) -> Console:
        """Create a console in a free slot bound to VGA memory (0 means default size)."""
        for index, slot in enumerate(self._slots):
            if slot is None:
                width = cols or DEFAULT_COLS
                height = rows or DEFAULT_ROWS
                console = Console(width, height, self.vga, width)
                self._slots[index] = console
                self._clear(console)
                return console
        raise RuntimeError("no free console slot")

    def set_active(self, console: Optional[Console]) -> None:
        """Make ``console`` active and redraw it."""
        if console is None:
            return
        self._active = console
        self._flush(console)

    def active(self) -> Optional[Console]:
        """The console that receives output by default."""
        return self._active

    # --- output --------------------------------------------------------------

    def clear(self, console: Optional[Console] = None) -> None:
        """Blank a console and drop its scrollback."""
        c = self._target(console)
        if c is not None:
            self._clear(c)

    def putc(self, ch: str, console: Optional[Console] = None) -> None:
        """Write one character and mirror it to serial."""
        c = self._target(console)
        if c is None:
            return
        self._putc(c, ch)
        self._mirror(ch)

    def write(self, text: str, console: Optional[Console] = None) -> None:
        """Write a string and mirror it to serial."""
        c = self._target(console)
        if c is None:
            return
        for ch in text:
            self._putc(c, ch)
            self._mirror(ch)

    def set_color(self, fg: int, bg: int, console: Optional[Console] = None) -> None:
        """Set foreground and background for subsequent output."""
        c = self._target(console)
        if c is None:
            return
        c.color = ((bg << 4) | (fg & 0x0F)) & 0xFF

    def write_hex64(self, value: int) -> None:
        """Write a 64-bit value as 0x followed by 16 upper-case hex digits."""
        self.write("0x")
        value &= _U64
        for shift in range(60, -4, -4):
            self.putc(_HEX[(value >> shift) & 0xF])

    def write_dec(self, value: int) -> None:
        """Write an unsigned value in decimal."""
        if value < 0:
            raise ValueError("value must be non-negative")
        if value == 0:
            self.putc("0")
            self._mirror("0")
            return
        for digit in str(value):
            self.putc(digit)

    def progress(self, label: str, done: int, total: int) -> None:
        """Redraw the current line as ``label [####....] NN%``."""
        if total == 0:
            total = 1
        pct = min(done * 100 // total, 100)
        pct_len = 3 if pct >= 100 else (2 if pct >= 10 else 1)

        self.putc("\r")
        for _ in range(PROGRESS_COLS - 1):
            self.putc(" ")
        self.putc("\r")

        min_bar, max_bar = 10, 50
        reserved = 4 + pct_len + 1
        if PROGRESS_COLS > reserved + min_bar + 1:
            max_label = PROGRESS_COLS - 1 - reserved - min_bar
        else:
            max_label = 0
        label_len = min(len(label), max_label)
        bar_width = PROGRESS_COLS - 1 - reserved - label_len
        bar_width = max(min(bar_width, max_bar), min_bar)

        for ch in label[:label_len]:
            self.putc(ch)
        self.putc(" ")
        self.putc("[")
        bars = pct * bar_width // 100
        for i in range(bar_width):
            self.putc("#" if i < bars else ".")
        self.putc("]")
        self.putc(" ")
        self.write_dec(pct)
        self.putc("%")

    # --- scrollback navigation ----------------------------------------------

    @staticmethod
    def _page(c: Console) -> int:
        return c.rows - 1 if c.rows > 1 else 1

    def page_up(self) -> None:
        """Scroll the active view one page into history."""
        c = self._active
        if c is None:
            return
        c.view_offset = min(c.view_offset + self._page(c), len(c.scrollback))
        self._render_view(c)

    def page_down(self) -> None:
        """Scroll the active view one page towards live output."""
        c = self._active
        if c is None:
            return
        page = self._page(c)
        c.view_offset = 0 if c.view_offset <= page else c.view_offset - page
        self._render_view(c)

    def page_home(self) -> None:
        """Jump to the oldest history row."""
        c = self._active
        if c is None:
            return
        c.view_offset = len(c.scrollback)
        self._render_view(c)

    def page_end(self) -> None:
        """Jump back to live output."""
        c = self._active
        if c is None:
            return
        c.view_offset = 0
        self._render_view(c)