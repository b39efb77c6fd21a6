# dexos

Core pieces of a small x86-64 hobby kernel as plain Python objects, so they
can be driven, inspected and tested without any hardware. The package has no
dependencies outside the standard library.

## Modules

- `dexos.kmalloc` – `Heap(base, size)`, a first-fit allocator over an address
  range. Payloads are 16-byte aligned, blocks are split when the remainder is
  large enough, and `free` merges adjacent free blocks. `alloc` raises
  `MemoryError` when nothing fits; `usable_size` and `blocks` let you inspect
  the heap.
- `dexos.pmm` – `PhysicalMemoryManager(info, from_uefi)`, a 4 KiB frame bitmap
  built from a `BootMemoryInfo` (an EFI memory map of `EfiMemoryDescriptor`, a
  Multiboot2 memory map of `MemoryMapEntry`, or basic lower/upper memory
  sizes). Usable memory is clamped to 4 GiB; the first frame and everything
  below 1 MiB are reserved. Offers `reserve`, `alloc_frames`,
  `alloc_frames_below`, `free_frames`, `is_frame_used`, `regions` and byte
  totals.
- `dexos.vmm` – `VirtualMemoryManager(pmm)`, four-level page tables whose
  frames come from a `PhysicalMemoryManager`, with `PageFlag` bits,
  `init_identity`, `map_page`, `unmap_page` and `virt_to_phys`.
- `dexos.console` – `ConsoleManager` with up to four `Console` instances
  bound to a simulated VGA text buffer (or an EGA text `FramebufferInfo`).
  Supports colour, `\n`/`\r`/`\b`, a 512-row scrollback with `page_up`,
  `page_down`, `page_home`, `page_end`, hex and decimal output, and a
  one-line `progress` bar. Every character written is also passed to an
  optional serial callback.
- `dexos.report` – `format_u64_hex`, `format_u32_dec`, `format_human_bytes`,
  `serial_encode` and `memory_report(pmm)`, the boot-time memory summary.
- `dexos.cpuid` – `CpuidRegs`, `initial_apic_id` and
  `logical_processor_count`, decoding results from a CPUID query function you
  supply.
- `dexos.block` – `BlockDevice`, `PartitionDevice`, `BlockRegistry` (with
  `find`, iteration and `scan_partitions`, which registers `<parent>pN`
  devices for MBR partitions) and `BlockIOError`.
- `dexos.memdisk` – `MemDisk` and `memdisk_register`: a block device over an
  existing buffer, read-only unless asked otherwise.
- `dexos.ramdisk` – `RamDisk` and `ramdisk_create`: a zero-filled writable
  disk of 512-byte sectors, optionally seeded with a one-partition MBR.
- `dexos.device` – `DeviceRegistry`, `DisplayConsole` (writes to a
  `ConsoleManager`), `PS2Keyboard` (reads through a port callback, falling
  back to a serial callback) and `translate_scancode` for US set-1 make codes.
- `dexos.devfs` – `DevFS`, listing registered block devices and reading and
  writing them at any byte offset.
- `dexos.rootfs` – `RootFS`, a root directory listing the mount points `dev`
  and `root`.
- `dexos.exfat` – `ExFat.mount(bdev)`, a minimal exFAT driver for files in the
  root directory: `scan_root`, `open`, `stat`, `create`, `unlink`, and
  `ExFatNode.read`/`write` following the FAT chain.

## Installation

```
pip install .
```

## Example

```python
from dexos.block import BlockRegistry
from dexos.console import ConsoleManager
from dexos.devfs import DevFS
from dexos.kmalloc import Heap
from dexos.ramdisk import ramdisk_create

heap = Heap(0x10000, 64 * 1024)
a = heap.alloc(24)
print(heap.usable_size(a))          # 32
heap.free(a)

registry = BlockRegistry()
ramdisk_create(registry, "ram0", 64 * 1024, with_mbr=True)
registry.scan_partitions()
print([dev.name for dev in registry])   # ['ram0p1', 'ram0']

devfs = DevFS(registry)
print(devfs.stat("/ram0"))          # StatResult(size=65536, is_dir=False)

serial = []
consoles = ConsoleManager(serial=serial.append)
consoles.init()
consoles.write("hello\n")
print(consoles.active().text_rows()[0].rstrip())   # hello
```

## What it does not do

- Nothing here touches real hardware: memory, VGA text memory, I/O ports and
  CPUID are all simulated or supplied by the caller.
- There is no command-line program and no filesystem mount table tying
  `DevFS`, `RootFS` and `ExFat` together; each is used on its own.
- `ExFat` handles only the root directory, held in a single cluster;
  `ExFatNode.readdir` reports only `"."`, and `format_device` checks the
  device name but writes nothing.
- `RootFS` holds no files: reading or writing its root node raises.

## Running the tests

```
pip install .[test]
pytest
```