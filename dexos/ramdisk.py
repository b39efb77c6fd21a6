"""Zero-filled RAM disks with an optional single-partition MBR."""

from __future__ import annotations

import struct

from dexos.block import BlockDevice, BlockIOError, BlockRegistry, default_sector_size

SEEDED_PARTITION_TYPE = 0x07


class RamDisk(BlockDevice):
    """A writable disk whose size is rounded up to whole sectors."""

    def __init__(self, name: str, size: int) -> None:
        if not name:
            raise ValueError("ramdisk needs a name")
        if size <= 0:
            raise ValueError("ramdisk size must be positive")
        sector = default_sector_size()
        rounded = -(-size // sector) * sector
        super().__init__(name, sector, rounded // sector)
        self.data = bytearray(rounded)

    def _span(self, lba: int, count: int) -> slice:
        start = lba * self.sector_size
        end = start + count * self.sector_size
        if lba < 0 or count < 0 or end > len(self.data):
            raise BlockIOError(f"{self.name}: sectors {lba}..{lba + count} out of range")
        return slice(start, end)

    def read(self, lba: int, count: int) -> bytes:
        if count == 0:
            return b""
        return bytes(self.data[self._span(lba, count)])

    def write(self, lba: int, data: bytes) -> int:
        count = self._sectors_in(data)
        self.data[self._span(lba, count)] = data
        return count

    def _seed_mbr(self) -> None:
        """One partition of type 0x07 from LBA 1 to the end of the disk."""
        if len(self.data) < 2 * self.sector_size or self.sector_count <= 1:
            return
        entry = 446
        self.data[entry + 4] = SEEDED_PARTITION_TYPE
        struct.pack_into("<II", self.data, entry + 8, 1, self.sector_count - 1)
        self.data[510:512] = b"\x55\xaa"


def ramdisk_create(registry: BlockRegistry, name: str, size: int, with_mbr: bool = False) -> RamDisk:
    """Create, optionally partition, and register a RAM disk."""
    disk = RamDisk(name, size)
    if with_mbr:
        disk._seed_mbr()
    registry.register(disk)
    return disk