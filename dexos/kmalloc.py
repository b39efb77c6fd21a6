"""Early kernel heap: a first-fit allocator with 16-byte aligned payloads."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

ALIGNMENT = 16
# Size of a block header (size, free flag, next pointer) rounded up to the alignment.
HEADER_SIZE = 16
# Smallest payload worth splitting off into a block of its own.
MIN_SPLIT_PAYLOAD = 16


def _align_up(value: int, alignment: int) -> int:
    return (value + alignment - 1) & ~(alignment - 1)


@dataclass
class Block:
    """One heap block: a header at ``address`` followed by ``size`` payload bytes."""

    address: int
    size: int
    free: bool

    @property
    def payload(self) -> int:
        return self.address + HEADER_SIZE

    @property
    def end(self) -> int:
        return self.payload + self.size


class Heap:
    """First-fit heap managing the address range ``[base, base + size)``."""

    def __init__(self, base: int, size: int) -> None:
        if size <= HEADER_SIZE:
            raise ValueError(f"heap of {size} bytes cannot hold a block header")
        self.base = base
        self.size = size
        self._blocks: list[Block] = [Block(base, size - HEADER_SIZE, True)]

    def alloc(self, size: int) -> int:
        """Allocate ``size`` bytes and return the payload address."""
        if size <= 0:
            raise ValueError("allocation size must be positive")
        asize = _align_up(size, ALIGNMENT)
        for index, block in enumerate(self._blocks):
            if block.free and block.size >= asize:
                self._split(index, asize)
                block.free = False
                return block.payload
        raise MemoryError(f"no free block of {asize} bytes")

    def _split(self, index: int, asize: int) -> None:
        block = self._blocks[index]
        if block.size >= asize + HEADER_SIZE + MIN_SPLIT_PAYLOAD:
            rest = Block(block.payload + asize, block.size - asize - HEADER_SIZE, True)
            block.size = asize
            self._blocks.insert(index + 1, rest)

    def _find(self, ptr: int) -> Block:
        block = next((b for b in self._blocks if b.payload == ptr), None)
        if block is None:
            raise ValueError(f"address {ptr:#x} is not an allocated block")
        return block

    def free(self, ptr: Optional[int]) -> None:
        """Release a block and merge adjacent free blocks."""
        if ptr is None:
            return
        self._find(ptr).free = True
        merged: list[Block] = []
        for block in self._blocks:
            last = merged[-1] if merged else None
            if last is not None and last.free and block.free and last.end == block.address:
                last.size += HEADER_SIZE + block.size
            else:
                merged.append(block)
        self._blocks = merged

    def usable_size(self, ptr: Optional[int]) -> int:
        """Payload size of the block at ``ptr``; 0 for ``None``."""
        if ptr is None:
            return 0
        return self._find(ptr).size

    def blocks(self) -> tuple[Block, ...]:
        """Snapshot of all blocks in address order."""
        return tuple(replace(b) for b in self._blocks)