"""Block device layer: a device registry and MBR partition discovery."""

from __future__ import annotations

import struct
from collections import deque
from typing import Iterator, Optional

DEFAULT_SECTOR_SIZE = 512
NAME_MAX = 15
MBR_SIGNATURE = b"\x55\xaa"
PARTITION_TABLE_OFFSET = 446
PARTITION_ENTRY_SIZE = 16
PARTITION_SLOTS = 4
# Characters of the parent name kept in a partition name before the "pN" suffix.
PARTITION_PARENT_CHARS = 12


class BlockIOError(OSError):
    """A block read or write could not be carried out."""


def default_sector_size() -> int:
    """Sector size used for devices that do not choose their own."""
    return DEFAULT_SECTOR_SIZE


class BlockDevice:
    """A named device addressed in fixed-size sectors.

    The base device supports neither reading nor writing; subclasses
    override ``read`` and, if writable, ``write``.
    """

    def __init__(self, name: str, sector_size: int, sector_count: int) -> None:
        self.name = name[:NAME_MAX]
        self.sector_size = sector_size
        self.sector_count = sector_count

    @property
    def size_bytes(self) -> int:
        return self.sector_count * self.sector_size

    def read(self, lba: int, count: int) -> bytes:
        """Read ``count`` sectors starting at ``lba``."""
        raise BlockIOError(f"{self.name}: device cannot be read")

    def write(self, lba: int, data: bytes) -> int:
        """Write whole sectors from ``data`` at ``lba``; returns the sector count."""
        raise BlockIOError(f"{self.name}: device is read-only")

    def _sectors_in(self, data: bytes) -> int:
        count, rest = divmod(len(data), self.sector_size)
        if rest:
            raise ValueError(
                f"{len(data)} bytes is not a whole number of {self.sector_size}-byte sectors"
            )
        return count

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, sector_size={self.sector_size}, "
            f"sector_count={self.sector_count})"
        )


class PartitionDevice(BlockDevice):
    """A window of ``lba_count`` sectors of a parent device starting at ``lba_base``."""

    def __init__(self, name: str, parent: BlockDevice, lba_base: int, lba_count: int) -> None:
        super().__init__(name, parent.sector_size, lba_count)
        self.parent = parent
        self.lba_base = lba_base
        self.lba_count = lba_count

    def _check(self, lba: int, count: int) -> None:
        if lba < 0 or lba + count > self.lba_count:
            raise BlockIOError(
                f"{self.name}: sectors {lba}..{lba + count} outside partition of {self.lba_count}"
            )

    def read(self, lba: int, count: int) -> bytes:
        self._check(lba, count)
        return self.parent.read(self.lba_base + lba, count)

    def write(self, lba: int, data: bytes) -> int:
        self._check(lba, self._sectors_in(data))
        return self.parent.write(self.lba_base + lba, data)


class BlockRegistry:
    """Registered block devices, most recently registered first."""

    def __init__(self) -> None:
        self._devices: deque[BlockDevice] = deque()

    def register(self, dev: BlockDevice) -> None:
        self._devices.appendleft(dev)

    def find(self, name: str) -> Optional[BlockDevice]:
        """The device called ``name``, or None."""
        return next((d for d in self._devices if d.name == name), None)

    def __iter__(self) -> Iterator[BlockDevice]:
        return iter(list(self._devices))

    def scan_partitions(self) -> list[PartitionDevice]:
        """Register a ``<parent>pN`` device for each MBR partition found.

        Only devices with 512-byte sectors are probed; unreadable devices
        and sectors without the boot signature are skipped.
        """
        created: list[PartitionDevice] = []
        for dev in list(self._devices):
            if dev.sector_size != DEFAULT_SECTOR_SIZE:
                continue
            try:
                mbr = dev.read(0, 1)
            except BlockIOError:
                continue
            if len(mbr) < DEFAULT_SECTOR_SIZE or mbr[510:512] != MBR_SIGNATURE:
                continue
            for slot in range(PARTITION_SLOTS):
                entry = PARTITION_TABLE_OFFSET + slot * PARTITION_ENTRY_SIZE
                ptype = mbr[entry + 4]
                start, count = struct.unpack_from("<II", mbr, entry + 8)
                if ptype == 0 or count == 0:
                    continue
                name = f"{dev.name[:PARTITION_PARENT_CHARS]}p{slot + 1}"
                part = PartitionDevice(name, dev, start, count)
                self.register(part)
                created.append(part)
        return created