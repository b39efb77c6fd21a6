"""Device filesystem exposing registered block devices as files."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from dexos.block import NAME_MAX, BlockDevice, BlockRegistry

# Largest number of whole sectors moved in one device request.
MAX_SECTORS_PER_IO = 128


@dataclass(frozen=True)
class StatResult:
    """Size in bytes and kind of a filesystem entry."""

    size: int
    is_dir: bool


def _is_root(path: Optional[str]) -> bool:
    return not path or path == "/"


class DevNode:
    """An open devfs entry: the root directory or one block device."""

    def __init__(
        self,
        registry: BlockRegistry,
        name: str = "",
        is_dir: bool = True,
        size: int = 0,
        bdev: Optional[BlockDevice] = None,
    ) -> None:
        self._registry = registry
        self.name = name[:NAME_MAX]
        self.is_dir = is_dir
        self.size = size
        self.bdev = bdev

    def __repr__(self) -> str:
        return f"DevNode(name={self.name!r}, is_dir={self.is_dir}, size={self.size})"

    def readdir(self, index: int) -> Optional[str]:
        """Name of the ``index``-th device, or None past the end or on a file."""
        if index < 0:
            raise ValueError("directory index must be non-negative")
        if not self.is_dir:
            return None
        for position, dev in enumerate(self._registry):
            if position == index:
                return dev.name
        return None

    def _device(self) -> BlockDevice:
        if self.is_dir or self.bdev is None:
            raise IsADirectoryError(f"/{self.name} is a directory")
        return self.bdev

    def _span(self, offset: int, length: int) -> int:
        if offset < 0 or length < 0:
            raise ValueError("offset and length must be non-negative")
        end = min(offset + length, self.size)
        return max(end - offset, 0)

    def read(self, offset: int, length: int) -> bytes:
        """Read up to ``length`` bytes at ``offset``, stopping at the device end."""
        dev = self._device()
        remaining = self._span(offset, length)
        if remaining == 0:
            return b""
        sec = dev.sector_size
        lba, head = divmod(offset, sec)
        out = bytearray()
        if head:
            chunk = dev.read(lba, 1)[head:head + remaining]
            out += chunk
            remaining -= len(chunk)
            lba += 1
        while remaining >= sec:
            count = min(remaining // sec, MAX_SECTORS_PER_IO)
            out += dev.read(lba, count)
            remaining -= count * sec
            lba += count
        if remaining:
            out += dev.read(lba, 1)[:remaining]
        return bytes(out)

    def write(self, offset: int, data: bytes) -> int:
        """Write ``data`` at ``offset``, truncated at the device end; returns bytes written."""
        dev = self._device()
        total = self._span(offset, len(data))
        if total == 0:
            return 0
        src = memoryview(bytes(data))[:total]
        sec = dev.sector_size
        lba, head = divmod(offset, sec)
        pos = 0
        if head:
            sector = bytearray(dev.read(lba, 1))
            put = min(sec - head, total)
            sector[head:head + put] = src[:put]
            dev.write(lba, bytes(sector))
            pos += put
            lba += 1
        while total - pos >= sec:
            count = min((total - pos) // sec, MAX_SECTORS_PER_IO)
            dev.write(lba, bytes(src[pos:pos + count * sec]))
            pos += count * sec
            lba += count
        if pos < total:
            tail = total - pos
            sector = bytearray(dev.read(lba, 1))
            sector[:tail] = src[pos:total]
            dev.write(lba, bytes(sector))
            pos = total
        return pos


class DevFS:
    """Lists the block devices of a registry under its root."""

    def __init__(self, registry: BlockRegistry) -> None:
        self.registry = registry

    def _lookup(self, path: str) -> Optional[BlockDevice]:
        name = path[1:] if path.startswith("/") else path
        if not name:
            return None
        dev = self.registry.find(name)
        if dev is None:
            raise FileNotFoundError(f"no device {path!r}")
        return dev

    def open(self, path: Optional[str]) -> DevNode:
        """Open the root directory or the device named by ``path``."""
        if _is_root(path):
            return DevNode(self.registry)
        dev = self._lookup(path)
        if dev is None:
            return DevNode(self.registry)
        return DevNode(self.registry, dev.name, False, dev.size_bytes, dev)

    def stat(self, path: Optional[str]) -> StatResult:
        """Size and kind of the entry at ``path``."""
        if _is_root(path):
            return StatResult(0, True)
        dev = self._lookup(path)
        if dev is None:
            return StatResult(0, True)
        return StatResult(dev.size_bytes, False)