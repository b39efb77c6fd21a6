import pytest

from dexos.pmm import (
    FRAME_SIZE,
    LOW_MEMORY_END,
    MAX_REGIONS,
    PHYS_CAP,
    BootMemoryInfo,
    EfiMemoryDescriptor,
    MemoryMapEntry,
    PhysicalMemoryManager,
    Region,
)

MiB = 1 << 20


def mmap_info(*entries):
    return BootMemoryInfo(memory_map=[MemoryMapEntry(*e) for e in entries])


@pytest.fixture
def pmm():
    return PhysicalMemoryManager(mmap_info((0, 16 * MiB, 1)))


def test_no_info_yields_empty_manager():
    pmm = PhysicalMemoryManager(None)
    assert pmm.total_bytes() == 0
    assert pmm.free_bytes() == 0
    with pytest.raises(MemoryError):
        pmm.alloc_frames(1)


def test_low_memory_reserved(pmm):
    assert pmm.total_physical_bytes() == 16 * MiB
    assert pmm.total_bytes() == 16 * MiB
    assert pmm.free_bytes() == pmm.total_bytes() - LOW_MEMORY_END
    assert pmm.is_frame_used(0)
    assert pmm.is_frame_used(LOW_MEMORY_END - FRAME_SIZE)
    assert not pmm.is_frame_used(LOW_MEMORY_END)


def test_first_allocation_above_low_memory(pmm):
    assert pmm.alloc_frames(1) == LOW_MEMORY_END


def test_allocations_are_contiguous_and_counted(pmm):
    before = pmm.free_bytes()
    a = pmm.alloc_frames(3)
    b = pmm.alloc_frames(2)
    assert b == a + 3 * FRAME_SIZE
    assert pmm.free_bytes() == before - 5 * FRAME_SIZE
    assert all(pmm.is_frame_used(a + i * FRAME_SIZE) for i in range(5))


def test_free_frames_round_trip(pmm):
    before = pmm.free_bytes()
    addr = pmm.alloc_frames(4)
    pmm.free_frames(addr, 4)
    assert pmm.free_bytes() == before
    assert pmm.alloc_frames(4) == addr


def test_double_free_not_counted_twice(pmm):
    addr = pmm.alloc_frames(1)
    pmm.free_frames(addr, 1)
    after_first = pmm.free_bytes()
    pmm.free_frames(addr, 1)
    assert pmm.free_bytes() == after_first


def test_free_outside_range_ignored(pmm):
    before = pmm.free_bytes()
    pmm.free_frames(PHYS_CAP, 1)
    assert pmm.free_bytes() == before


def test_exhaustion(pmm):
    pmm.alloc_frames(pmm.free_bytes() // FRAME_SIZE)
    assert pmm.free_bytes() == 0
    with pytest.raises(MemoryError):
        pmm.alloc_frames(1)


def test_zero_count_rejected(pmm):
    with pytest.raises(ValueError):
        pmm.alloc_frames(0)
    with pytest.raises(ValueError):
        pmm.alloc_frames_below(0, PHYS_CAP)


def test_alloc_below_limit(pmm):
    with pytest.raises(MemoryError):
        pmm.alloc_frames_below(1, LOW_MEMORY_END)
    addr = pmm.alloc_frames_below(1, 2 * MiB)
    assert addr == LOW_MEMORY_END
    assert addr + FRAME_SIZE <= 2 * MiB


def test_alloc_below_respects_run_end(pmm):
    with pytest.raises(MemoryError):
        pmm.alloc_frames_below(2, LOW_MEMORY_END + FRAME_SIZE)


def test_reserve_blocks_allocation(pmm):
    before = pmm.free_bytes()
    pmm.reserve(LOW_MEMORY_END, 2 * FRAME_SIZE)
    assert pmm.free_bytes() == before - 2 * FRAME_SIZE
    assert pmm.alloc_frames(1) == LOW_MEMORY_END + 2 * FRAME_SIZE


def test_reserve_rounds_out_to_frames(pmm):
    before = pmm.free_bytes()
    pmm.reserve(LOW_MEMORY_END + 1, 1)
    assert pmm.free_bytes() == before - FRAME_SIZE


def test_first_bitmap_frame_reserved():
    base = 2 * MiB
    pmm = PhysicalMemoryManager(mmap_info((base, 4 * MiB, 1)))
    assert pmm.is_frame_used(base)
    assert pmm.alloc_frames(1) == base + FRAME_SIZE
    assert pmm.free_bytes() == pmm.total_bytes() - 2 * FRAME_SIZE


def test_unavailable_entries_ignored():
    pmm = PhysicalMemoryManager(mmap_info((0, 16 * MiB, 2), (2 * MiB, MiB, 1)))
    assert pmm.regions() == (Region(2 * MiB, MiB),)


def test_unaligned_entry_shrinks_inward():
    pmm = PhysicalMemoryManager(mmap_info((2 * MiB + 1, MiB, 1)))
    (region,) = pmm.regions()
    assert region.base == 2 * MiB + FRAME_SIZE
    assert region.end == 3 * MiB
    assert region.base % FRAME_SIZE == 0


def test_regions_clamped_to_four_gib():
    pmm = PhysicalMemoryManager(
        mmap_info((PHYS_CAP - MiB, 2 * MiB, 1), (PHYS_CAP + MiB, MiB, 1))
    )
    assert pmm.regions() == (Region(PHYS_CAP - MiB, MiB),)
    assert pmm.total_physical_bytes() == MiB


def test_region_count_limited():
    entries = [(i * 2 * MiB, MiB, 1) for i in range(MAX_REGIONS + 6)]
    pmm = PhysicalMemoryManager(mmap_info(*entries))
    assert len(pmm.regions()) == MAX_REGIONS


def test_basic_meminfo_fallback():
    pmm = PhysicalMemoryManager(BootMemoryInfo(mem_lower=640, mem_upper=1024))
    assert pmm.regions() == (Region(LOW_MEMORY_END, 1024 * 1024),)


def test_memory_map_preferred_over_basic_meminfo():
    info = BootMemoryInfo(
        memory_map=[MemoryMapEntry(4 * MiB, MiB, 1)], mem_lower=640, mem_upper=1024
    )
    assert PhysicalMemoryManager(info).regions() == (Region(4 * MiB, MiB),)


def test_efi_map_used_only_from_uefi():
    info = BootMemoryInfo(
        efi_memory_map=[
            EfiMemoryDescriptor(7, 8 * MiB, 256),
            EfiMemoryDescriptor(4, 16 * MiB, 256),
        ],
        memory_map=[MemoryMapEntry(2 * MiB, MiB, 1)],
    )
    uefi = PhysicalMemoryManager(info, from_uefi=True)
    assert uefi.regions() == (Region(8 * MiB, 256 * FRAME_SIZE),)
    legacy = PhysicalMemoryManager(info, from_uefi=False)
    assert legacy.regions() == (Region(2 * MiB, MiB),)


def test_free_never_exceeds_total(pmm):
    addrs = [pmm.alloc_frames(n) for n in (1, 7, 3)]
    for addr in addrs:
        pmm.free_frames(addr, 8)
    assert 0 <= pmm.free_bytes() <= pmm.total_bytes()
    assert pmm.free_bytes() % FRAME_SIZE == 0