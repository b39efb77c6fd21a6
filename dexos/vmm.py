"""Virtual memory manager: 4-level x86_64 page tables with 4 KiB pages."""

from __future__ import annotations

import enum
from typing import Optional

from dexos.pmm import PhysicalMemoryManager

PAGE_SIZE = 4096
KERNEL_BASE = 0xFFFFFFFF80000000
ENTRIES_PER_TABLE = 512

_U64 = (1 << 64) - 1
_ADDR_MASK = ~0xFFF & _U64
_LEVEL_SHIFTS = (39, 30, 21)


class PageFlag(enum.IntFlag):
    """Page-table entry flags."""

    PRESENT = 1 << 0
    RW = 1 << 1
    US = 1 << 2
    PWT = 1 << 3
    PCD = 1 << 4
    ACCESSED = 1 << 5
    DIRTY = 1 << 6
    PS = 1 << 7
    GLOBAL = 1 << 8
    NX = 1 << 63


class VirtualMemoryManager:
    """Builds and walks page tables whose frames come from a physical allocator."""

    def __init__(self, pmm: PhysicalMemoryManager) -> None:
        self._pmm = pmm
        self._tables: dict[int, list[int]] = {}
        self.cr3 = 0

    def _table(self, phys: int) -> list[int]:
        return self._tables.setdefault(phys, [0] * ENTRIES_PER_TABLE)

    def _new_table(self) -> int:
        phys = self._pmm.alloc_frames(1)
        self._tables[phys] = [0] * ENTRIES_PER_TABLE
        return phys

    def _walk(self, pml4: int, virt: int, create: bool) -> Optional[tuple[list[int], int]]:
        table = self._table(pml4)
        for shift in _LEVEL_SHIFTS:
            index = (virt >> shift) & 0x1FF
            entry = table[index]
            if not entry & PageFlag.PRESENT:
                if not create:
                    return None
                entry = self._new_table() | PageFlag.PRESENT | PageFlag.RW
                table[index] = entry
            table = self._table(entry & _ADDR_MASK)
        return table, (virt >> 12) & 0x1FF

    def load_cr3(self, pml4_phys: int) -> None:
        """Switch to the address space rooted at ``pml4_phys``."""
        self._table(pml4_phys)
        self.cr3 = pml4_phys

    def init_identity(self, limit: int = 1 << 32) -> None:
        """Build a new PML4 identity-mapping ``[0, limit)`` and load it.

        Mapping stops early if page-table frames run out.
        """
        pml4 = self._new_table()
        flags = PageFlag.PRESENT | PageFlag.RW
        for addr in range(0, limit, PAGE_SIZE):
            try:
                table, index = self._walk(pml4, addr, create=True)
            except MemoryError:
                break
            table[index] = (addr & _ADDR_MASK) | flags
        self.load_cr3(pml4)

    def _require_loaded(self) -> int:
        if not self.cr3:
            raise RuntimeError("no address space loaded")
        return self.cr3

    def map_page(self, virt: int, phys: int, flags: int = PageFlag.PRESENT | PageFlag.RW) -> None:
        """Map the page at ``virt`` to the frame at ``phys``."""
        table, index = self._walk(self._require_loaded(), virt, create=True)
        table[index] = (phys & _ADDR_MASK) | (int(flags) & ~PageFlag.PS & _U64)

    def unmap_page(self, virt: int) -> None:
        """Clear the mapping of ``virt``; raises LookupError without a page table."""
        found = self._walk(self._require_loaded(), virt, create=False)
        if found is None:
            raise LookupError(f"no page table covers {virt:#x}")
        table, index = found
        table[index] = 0

    def virt_to_phys(self, virt: int) -> Optional[int]:
        """Translate ``virt``, or return None when it is not mapped."""
        if not self.cr3:
            return None
        found = self._walk(self.cr3, virt, create=False)
        if found is None:
            return None
        table, index = found
        entry = table[index]
        if not entry & PageFlag.PRESENT:
            return None
        return (entry & _ADDR_MASK) | (virt & 0xFFF)