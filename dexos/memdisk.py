"""Block device backed by an existing in-memory buffer."""

from __future__ import annotations

from typing import Union

from dexos.block import BlockDevice, BlockIOError, BlockRegistry

Buffer = Union[bytearray, memoryview, bytes]


class MemDisk(BlockDevice):
    """Exposes ``buffer`` as sectors; writes go straight into the buffer."""

    def __init__(self, name: str, buffer: Buffer, sector_size: int = 512, writable: bool = False) -> None:
        if not name:
            raise ValueError("memdisk needs a name")
        if sector_size <= 0:
            raise ValueError("sector size must be positive")
        size = len(buffer)
        if size == 0:
            raise ValueError("memdisk buffer is empty")
        if size % sector_size:
            raise ValueError(f"buffer of {size} bytes is not a multiple of {sector_size}")
        if writable and isinstance(buffer, bytes):
            raise ValueError("a writable memdisk needs a mutable buffer")
        super().__init__(name, sector_size, size // sector_size)
        self._view = memoryview(buffer)
        self.writable = writable

    def _span(self, lba: int, count: int) -> slice:
        start = lba * self.sector_size
        end = start + count * self.sector_size
        if lba < 0 or count < 0 or end > len(self._view):
            raise BlockIOError(f"{self.name}: sectors {lba}..{lba + count} out of range")
        return slice(start, end)

    def read(self, lba: int, count: int) -> bytes:
        return self._view[self._span(lba, count)].tobytes()

    def write(self, lba: int, data: bytes) -> int:
        if not self.writable:
            raise BlockIOError(f"{self.name}: device is read-only")
        count = self._sectors_in(data)
        self._view[self._span(lba, count)] = data
        return count


def memdisk_register(
    registry: BlockRegistry,
    name: str,
    buffer: Buffer,
    sector_size: int = 512,
    writable: bool = False,
) -> MemDisk:
    """Create a memdisk over ``buffer`` and register it."""
    disk = MemDisk(name, buffer, sector_size, writable)
    registry.register(disk)
    return disk