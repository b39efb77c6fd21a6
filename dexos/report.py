"""Formatting helpers for the boot-time serial log and memory summary."""

from __future__ import annotations

from dexos.pmm import PhysicalMemoryManager

_U32 = (1 << 32) - 1
_U64 = (1 << 64) - 1


def format_u64_hex(value: int) -> str:
    """Format a 64-bit value as 0x plus 16 upper-case hex digits."""
    if not 0 <= value <= _U64:
        raise ValueError("value out of 64-bit range")
    return f"0x{value:016X}"


def format_u32_dec(value: int) -> str:
    """Format a 32-bit value in decimal."""
    if not 0 <= value <= _U32:
        raise ValueError("value out of 32-bit range")
    return str(value)


def format_human_bytes(size: int) -> str:
    """Approximate size in the largest whole unit, e.g. `` (~3 GiB)``."""
    kib = (size >> 10) & _U32
    mib = (size >> 20) & _U32
    gib = (size >> 30) & _U32
    if gib:
        amount = f"{format_u32_dec(gib)} GiB"
    elif mib:
        amount = f"{format_u32_dec(mib)} MiB"
    else:
        amount = f"{format_u32_dec(kib)} KiB"
    return f" (~{amount})"


def serial_encode(text: str) -> bytes:
    """Bytes sent to the serial port for ``text``: each LF is preceded by CR."""
    return text.replace("\n", "\r\n").encode("latin-1")


def memory_report(pmm: PhysicalMemoryManager) -> str:
    """The two memory summary lines logged at boot."""
    total = pmm.total_physical_bytes()
    usable = pmm.total_bytes()
    return (
        f"Total physical: {format_u64_hex(total)}{format_human_bytes(total)}\n"
        f"Usable (free init): {format_u64_hex(usable)}{format_human_bytes(usable)}\n"
    )