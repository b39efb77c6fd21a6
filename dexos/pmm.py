"""Physical memory manager: a frame bitmap over the usable boot memory map."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

FRAME_SIZE = 4096
MAX_REGIONS = 64
MAX_FRAMES = 1024 * 1024
PHYS_CAP = 4 * 1024 * 1024 * 1024
LOW_MEMORY_END = 0x100000

EFI_CONVENTIONAL_MEMORY = 7
MMAP_AVAILABLE = 1

_FREE = 0
_USED = 1


def _align_down(value: int, alignment: int) -> int:
    return value & ~(alignment - 1)


def _align_up(value: int, alignment: int) -> int:
    return (value + alignment - 1) & ~(alignment - 1)


@dataclass(frozen=True)
class EfiMemoryDescriptor:
    """An entry of the UEFI memory map."""

    type: int
    physical_start: int
    number_of_pages: int


@dataclass(frozen=True)
class MemoryMapEntry:
    """An entry of the Multiboot2 memory map."""

    base_addr: int
    length: int
    type: int


@dataclass(frozen=True)
class BootMemoryInfo:
    """Memory information handed over by the boot loader.

    Any part may be absent; ``mem_lower``/``mem_upper`` are in KiB.
    """

    efi_memory_map: Optional[Sequence[EfiMemoryDescriptor]] = None
    memory_map: Optional[Sequence[MemoryMapEntry]] = None
    mem_lower: Optional[int] = None
    mem_upper: Optional[int] = None


@dataclass(frozen=True)
class Region:
    """A usable physical range."""

    base: int
    length: int

    @property
    def end(self) -> int:
        return self.base + self.length


class PhysicalMemoryManager:
    """Allocates 4 KiB frames from the usable memory below 4 GiB."""

    def __init__(self, info: Optional[BootMemoryInfo], from_uefi: bool = False) -> None:
        self._regions: list[Region] = []
        self._base = 0
        self._limit = 0
        self._free = 0
        if info is not None:
            self._parse(info, from_uefi)
        self._total = sum(r.length for r in self._regions)
        self._build_bounds()
        self._bitmap = bytearray([_USED]) * self._frame_count
        usable = 0
        for region in self._regions:
            start = max(region.base, self._base)
            end = min(region.end, self._limit)
            if end > start:
                self._mark(start, end - start, _FREE)
                usable += end - start
        self._free = usable
        self.reserve(self._base, FRAME_SIZE)
        self.reserve(0, LOW_MEMORY_END)

    def _add_region(self, base: int, length: int) -> None:
        if length <= 0 or len(self._regions) >= MAX_REGIONS or base >= PHYS_CAP:
            return
        end = min(base + length, PHYS_CAP)
        if end <= base:
            return
        self._regions.append(Region(base, end - base))

    def _add_aligned(self, start: int, end: int) -> None:
        s = _align_up(start, FRAME_SIZE)
        e = _align_down(end, FRAME_SIZE)
        self._add_region(s, e - s if e > s else 0)

    def _parse(self, info: BootMemoryInfo, from_uefi: bool) -> None:
        if from_uefi and info.efi_memory_map is not None:
            for desc in info.efi_memory_map:
                if desc.type == EFI_CONVENTIONAL_MEMORY:
                    start = desc.physical_start
                    self._add_aligned(start, start + desc.number_of_pages * FRAME_SIZE)
            return
        if info.memory_map is not None:
            for entry in info.memory_map:
                if entry.type == MMAP_AVAILABLE:
                    self._add_aligned(entry.base_addr, entry.base_addr + entry.length)
            return
        if info.mem_upper:
            self._add_region(LOW_MEMORY_END, info.mem_upper * 1024)

    def _build_bounds(self) -> None:
        spans = [
            (r.base, min(r.end, PHYS_CAP)) for r in self._regions if r.base < PHYS_CAP
        ]
        if not spans:
            return
        lo = min(s for s, _ in spans)
        hi = max(e for _, e in spans)
        if hi <= lo:
            return
        self._base = lo
        self._limit = min(hi, lo + MAX_FRAMES * FRAME_SIZE)

    @property
    def _frame_count(self) -> int:
        return (self._limit - self._base) // FRAME_SIZE

    def _clamped_span(self, paddr: int, size: int) -> tuple[int, int]:
        s = max(_align_down(paddr, FRAME_SIZE), self._base)
        e = min(_align_up(paddr + size, FRAME_SIZE), self._limit)
        return (s - self._base) // FRAME_SIZE, max(e - self._base, 0) // FRAME_SIZE

    def _mark(self, paddr: int, size: int, state: int) -> None:
        if size == 0:
            return
        i0, i1 = self._clamped_span(paddr, size)
        if i1 > i0:
            self._bitmap[i0:i1] = bytes([state]) * (i1 - i0)

    def total_bytes(self) -> int:
        """Usable bytes found in the memory map."""
        return self._total

    def free_bytes(self) -> int:
        """Bytes currently available for allocation."""
        return self._free

    def total_physical_bytes(self) -> int:
        """Physical bytes described by the clamped region list."""
        return self._total

    def regions(self) -> tuple[Region, ...]:
        """Usable regions after alignment and clamping."""
        return tuple(self._regions)

    def is_frame_used(self, paddr: int) -> bool:
        """Whether the frame holding ``paddr`` is unavailable."""
        if not self._base <= paddr < self._limit:
            return True
        return self._bitmap[(paddr - self._base) // FRAME_SIZE] == _USED

    def reserve(self, paddr: int, size: int) -> None:
        """Mark a physical range (rounded out to frames) as used."""
        i0, i1 = self._clamped_span(paddr, size)
        if i1 <= i0:
            return
        newly_used = self._bitmap.count(_FREE, i0, i1)
        self._bitmap[i0:i1] = bytes([_USED]) * (i1 - i0)
        self._free -= newly_used * FRAME_SIZE

    def _alloc_within(self, count: int, limit_index: int) -> int:
        if count <= 0:
            raise ValueError("frame count must be positive")
        if self._free < count * FRAME_SIZE:
            raise MemoryError(f"not enough free memory for {count} frames")
        start = self._bitmap.find(bytes([_FREE]) * count, 0, limit_index)
        if start < 0:
            raise MemoryError(f"no run of {count} contiguous free frames")
        self._bitmap[start:start + count] = bytes([_USED]) * count
        self._free -= count * FRAME_SIZE
        return self._base + start * FRAME_SIZE

    def alloc_frames(self, count: int) -> int:
        """Allocate ``count`` contiguous frames and return their physical address."""
        return self._alloc_within(count, self._frame_count)

    def alloc_frames_below(self, count: int, max_phys_exclusive: int) -> int:
        """Allocate contiguous frames lying wholly below ``max_phys_exclusive``."""
        if max_phys_exclusive > self._base:
            limit_index = (max_phys_exclusive - self._base) // FRAME_SIZE
        else:
            limit_index = 0
        return self._alloc_within(count, min(limit_index, self._frame_count))

    def free_frames(self, paddr: int, count: int) -> None:
        """Return frames to the pool; ranges outside the bitmap are ignored."""
        if count <= 0 or not self._base <= paddr < self._limit:
            return
        i0 = (paddr - self._base) // FRAME_SIZE
        i1 = min(i0 + count, self._frame_count)
        released = self._bitmap.count(_USED, i0, i1)
        self._bitmap[i0:i1] = bytes([_FREE]) * (i1 - i0)
        self._free += released * FRAME_SIZE