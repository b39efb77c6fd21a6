import pytest

from dexos.pmm import BootMemoryInfo, MemoryMapEntry, PhysicalMemoryManager, FRAME_SIZE
from dexos.vmm import KERNEL_BASE, PAGE_SIZE, PageFlag, VirtualMemoryManager

MiB = 1 << 20


def make_pmm(length=64 * MiB, base=0):
    return PhysicalMemoryManager(
        BootMemoryInfo(memory_map=[MemoryMapEntry(base, length, 1)])
    )


@pytest.fixture
def vmm():
    return VirtualMemoryManager(make_pmm())


def test_map_without_address_space_fails(vmm):
    with pytest.raises(RuntimeError):
        vmm.map_page(0x1000, 0x2000, PageFlag.PRESENT)
    with pytest.raises(RuntimeError):
        vmm.unmap_page(0x1000)


def test_translate_without_address_space_is_none(vmm):
    assert vmm.virt_to_phys(0x1000) is None


def test_identity_map(vmm):
    limit = 4 * MiB
    vmm.init_identity(limit)
    assert vmm.cr3 != 0
    for addr in (0, PAGE_SIZE, limit - PAGE_SIZE, 0x123456):
        assert vmm.virt_to_phys(addr) == addr
    assert vmm.virt_to_phys(limit) is None


def test_identity_map_consumes_frames():
    pmm = make_pmm()
    vmm = VirtualMemoryManager(pmm)
    before = pmm.free_bytes()
    vmm.init_identity(2 * MiB)
    used = before - pmm.free_bytes()
    assert used > 0
    assert used % FRAME_SIZE == 0


def test_map_translate_round_trip(vmm):
    vmm.init_identity(PAGE_SIZE)
    virt = KERNEL_BASE + 0x5000
    vmm.map_page(virt, 0x200000, PageFlag.PRESENT | PageFlag.RW)
    assert vmm.virt_to_phys(virt) == 0x200000
    assert vmm.virt_to_phys(virt + 0x123) == 0x200123


def test_map_ignores_low_bits_of_phys(vmm):
    vmm.init_identity(PAGE_SIZE)
    vmm.map_page(0x40000000, 0x300ABC, PageFlag.PRESENT)
    assert vmm.virt_to_phys(0x40000000) == 0x300000


def test_non_present_mapping_not_translated(vmm):
    vmm.init_identity(PAGE_SIZE)
    vmm.map_page(0x40000000, 0x300000, PageFlag.RW)
    assert vmm.virt_to_phys(0x40000000) is None


def test_unmap(vmm):
    vmm.init_identity(PAGE_SIZE)
    vmm.map_page(0x40000000, 0x300000, PageFlag.PRESENT)
    vmm.unmap_page(0x40000000)
    assert vmm.virt_to_phys(0x40000000) is None


def test_unmap_without_table_raises(vmm):
    vmm.init_identity(PAGE_SIZE)
    with pytest.raises(LookupError):
        vmm.unmap_page(KERNEL_BASE)


def test_second_page_in_same_table_needs_no_frames():
    pmm = make_pmm()
    vmm = VirtualMemoryManager(pmm)
    vmm.init_identity(PAGE_SIZE)
    vmm.map_page(KERNEL_BASE, 0x200000, PageFlag.PRESENT)
    before = pmm.free_bytes()
    vmm.map_page(KERNEL_BASE + PAGE_SIZE, 0x201000, PageFlag.PRESENT)
    assert pmm.free_bytes() == before
    assert vmm.virt_to_phys(KERNEL_BASE + PAGE_SIZE) == 0x201000


def test_load_cr3_switches_address_space(vmm):
    vmm.init_identity(PAGE_SIZE)
    first = vmm.cr3
    vmm.init_identity(2 * PAGE_SIZE)
    assert vmm.virt_to_phys(PAGE_SIZE) == PAGE_SIZE
    vmm.load_cr3(first)
    assert vmm.cr3 == first
    assert vmm.virt_to_phys(PAGE_SIZE) is None


def test_identity_map_stops_when_frames_run_out():
    pmm = make_pmm(length=3 * FRAME_SIZE, base=0x100000)
    vmm = VirtualMemoryManager(pmm)
    vmm.init_identity(PAGE_SIZE)
    assert vmm.cr3 != 0
    assert vmm.virt_to_phys(0) is None
    assert pmm.free_bytes() == 0
    with pytest.raises(MemoryError):
        vmm.map_page(0, 0, PageFlag.PRESENT)