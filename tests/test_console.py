import pytest

from dexos.console import Console, ConsoleManager, FramebufferInfo


@pytest.fixture
def serial():
    return []


@pytest.fixture
def mgr(serial):
    m = ConsoleManager(serial.append)
    m.init()
    return m


def small(mgr, scrollback_rows=512):
    c = Console(10, 3, scrollback_rows=scrollback_rows)
    mgr.set_active(c)
    return c


def stripped(rows):
    return [r.rstrip() for r in rows]


def test_write_reaches_cells_vram_and_serial(mgr, serial):
    mgr.write("hi")
    c = mgr.active()
    assert c.text_rows()[0].startswith("hi")
    assert c.screen_rows()[0].startswith("hi")
    assert "".join(serial) == "hi"


def test_newline_moves_cursor(mgr):
    mgr.write("ab\ncd")
    c = mgr.active()
    assert (c.row, c.col) == (1, 2)
    assert c.text_rows()[1].startswith("cd")
    assert mgr.hw_cursor == c.row * c.cols + c.col


def test_wrap_at_line_end(mgr):
    c = mgr.active()
    mgr.write("x" * (c.cols + 1))
    assert c.text_rows()[0] == "x" * c.cols
    assert c.text_rows()[1].startswith("x")
    assert c.col == 1


def test_backspace_and_carriage_return(mgr):
    c = mgr.active()
    mgr.write("abc\b")
    assert c.col == 2
    mgr.write("\r")
    assert c.col == 0


def test_scroll_pushes_history(mgr):
    c = small(mgr)
    mgr.write("a\nb\nc\nd")
    assert stripped(c.text_rows()) == ["b", "c", "d"]
    assert len(c.scrollback) == 1
    assert "".join(chr(x & 0xFF) for x in c.scrollback[0]).rstrip() == "a"


def test_scrollback_is_bounded(mgr):
    c = small(mgr, scrollback_rows=2)
    mgr.write("\n".join("abcdefg"))
    assert len(c.scrollback) == 2


def test_page_navigation(mgr):
    c = small(mgr)
    mgr.write("a\nb\nc\nd\ne")
    mgr.page_up()
    assert c.view_offset == 2
    assert stripped(c.screen_rows()) == ["a", "b", "c"]
    assert mgr.hw_cursor == (c.rows - 1) * c.cols
    mgr.page_end()
    assert c.view_offset == 0
    assert stripped(c.screen_rows()) == ["c", "d", "e"]
    mgr.page_home()
    assert c.view_offset == len(c.scrollback)
    mgr.page_down()
    assert c.view_offset == 0


def test_view_stays_pinned_while_output_scrolls(mgr):
    c = small(mgr)
    mgr.write("a\nb\nc\nd\ne\nf")
    mgr.page_up()
    assert c.view_offset == 2
    mgr.write("\ng")
    assert c.view_offset == 3


def test_set_color_applies_to_new_cells(mgr):
    c = mgr.active()
    mgr.set_color(4, 1)
    mgr.putc("x")
    assert c.color == 0x14
    assert c.cells[0] >> 8 == c.color
    assert c.cells[0] & 0xFF == ord("x")


def test_clear_resets_state(mgr):
    c = small(mgr)
    mgr.write("a\nb\nc\nd")
    mgr.clear()
    assert (c.row, c.col) == (0, 0)
    assert len(c.scrollback) == 0
    assert stripped(c.text_rows()) == ["", "", ""]


def test_write_hex64(mgr):
    mgr.write_hex64(0xDEADBEEF)
    assert mgr.active().text_rows()[0].startswith("0x00000000DEADBEEF")


def test_write_dec(mgr, serial):
    mgr.write_dec(12345)
    assert mgr.active().text_rows()[0].startswith("12345")
    assert "".join(serial) == "12345"


def test_write_dec_zero_mirrors_twice(mgr, serial):
    mgr.write_dec(0)
    assert mgr.active().text_rows()[0].startswith("0 ")
    assert "".join(serial) == "00"


def test_write_dec_rejects_negative(mgr):
    with pytest.raises(ValueError):
        mgr.write_dec(-1)


def test_no_active_console_writes_nothing(serial):
    m = ConsoleManager(serial.append)
    m.putc("a")
    m.write("bc")
    assert serial == []
    assert m.active() is None


def test_slot_limit(mgr):
    made = [mgr.create_vga_text(40, 10) for _ in range(3)]
    assert all(c.cols == 40 and c.rows == 10 for c in made)
    with pytest.raises(RuntimeError):
        mgr.create_vga_text()


def test_create_default_geometry(mgr):
    c = mgr.create_vga_text()
    assert (c.cols, c.rows) == (80, 25)
    assert mgr.active() is not c


def test_ega_framebuffer_binding(serial):
    vram = [0] * (120 * 30)
    fb = FramebufferInfo(type=2, bpp=16, width=100, height=30, pitch=240, vram=vram)
    m = ConsoleManager(serial.append)
    m.init_from_framebuffer(fb)
    c = m.active()
    assert (c.cols, c.rows, c.pitch) == (100, 30, 120)
    m.write("Z")
    assert vram[0] & 0xFF == ord("Z")
    m.write("\nQ")
    assert vram[c.pitch] & 0xFF == ord("Q")


def test_rgb_framebuffer_keeps_vga():
    fb = FramebufferInfo(type=1, bpp=32, width=1024, height=768, pitch=4096, vram=[])
    m = ConsoleManager()
    m.init_from_framebuffer(fb)
    assert m.active().cols == 80
    assert m.active().vram is m.vga


def test_progress_line(mgr):
    mgr.progress("Load", 50, 100)
    row = mgr.active().text_rows()[0].rstrip()
    assert row.startswith("Load [")
    assert row.endswith("] 50%")
    assert row.count("#") == row.count(".")


def test_progress_full_and_zero_total(mgr):
    mgr.progress("x", 5, 0)
    row = mgr.active().text_rows()[0].rstrip()
    assert row.endswith("] 100%")
    assert "." not in row.split("[")[1]


def test_progress_trims_long_label(mgr):
    mgr.progress("L" * 200, 0, 10)
    c = mgr.active()
    row = c.text_rows()[0].rstrip()
    assert len(row) < c.cols
    assert row.endswith("] 0%")