"""Minimal exFAT driver: files in the root directory of a 512-byte-sector device."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Optional

from dexos.block import BlockDevice, BlockIOError
from dexos.devfs import StatResult

SECTOR_SIZE = 512
DIR_ENTRY_SIZE = 32
MAX_ROOT_ENTRIES = 32
MAX_NAME_CHARS = 63
NAME_CHARS_PER_ENTRY = 15

FAT_FREE = 0
FAT_EOC = 0xFFFFFFFF

ENTRY_END = 0x00
ENTRY_FILE = 0x85
ENTRY_STREAM = 0xC0
ENTRY_NAME = 0xC1
ATTR_DIRECTORY = 0x10
ATTR_ARCHIVE = 0x20

OEM_NAME = b"EXFAT   "

# Geometry assumed when the device carries no exFAT boot sector.
DEFAULT_FAT_OFFSET = 128
DEFAULT_FAT_LENGTH = 1024
DEFAULT_CLUSTER_HEAP_OFFSET = 1152
DEFAULT_BYTES_PER_SECTOR = 512
DEFAULT_SECTORS_PER_CLUSTER = 1
DEFAULT_ROOT_DIR_CLUSTER = 2

# Offsets of the stream extension fields from the start of a file entry set.
_STREAM_FIRST_CLUSTER = DIR_ENTRY_SIZE + 20
_STREAM_SIZE = DIR_ENTRY_SIZE + 24


class ExFatError(OSError):
    """The filesystem could not carry out an operation."""


def _is_root(path: Optional[str]) -> bool:
    return not path or path == "/"


def _strip(path: str) -> str:
    return path[1:] if path.startswith("/") else path


def _is_file_entry(entry_type: int) -> bool:
    return entry_type & 0x7F == ENTRY_FILE & 0x7F


@dataclass(frozen=True)
class DirEntry:
    """A file found in the root directory."""

    name: str
    first_cluster: int
    size: int
    is_dir: bool


@dataclass(eq=False)
class ExFatNode:
    """An open file or directory."""

    fs: "ExFat"
    first_cluster: int
    is_dir: bool
    size: int

    def read(self, offset: int, length: int) -> bytes:
        """Read up to ``length`` bytes at ``offset``, stopping at the file end."""
        return self.fs._read_file(self, offset, length)

    def write(self, offset: int, data: bytes) -> int:
        """Write ``data`` at ``offset``, growing the file as needed."""
        return self.fs._write_file(self, offset, data)

    def readdir(self, index: int) -> Optional[str]:
        """Directory listing: only ``"."`` at index 0 is reported."""
        if index < 0:
            raise ValueError("directory index must be non-negative")
        if not self.is_dir:
            return None
        return "." if index == 0 else None


@dataclass(eq=False)
class ExFat:
    """A mounted exFAT volume on a block device."""

    bdev: BlockDevice
    fat_offset: int
    fat_length: int
    cluster_heap_offset: int
    bytes_per_sector: int
    sectors_per_cluster: int
    root_dir_cluster: int

    @classmethod
    def mount(cls, bdev: BlockDevice) -> "ExFat":
        """Mount ``bdev``, reading its boot sector or falling back to default geometry."""
        if bdev.sector_size != SECTOR_SIZE:
            raise ExFatError(f"{bdev.name}: exFAT requires {SECTOR_SIZE}-byte sectors")
        try:
            vbr = bdev.read(0, 1)
        except BlockIOError:
            vbr = b""
        if len(vbr) >= SECTOR_SIZE and vbr[3:11] == OEM_NAME:
            fat_offset, fat_length, heap_offset = struct.unpack_from("<III", vbr, 0x80)
            (root_cluster,) = struct.unpack_from("<I", vbr, 0xA0)
            return cls(
                bdev,
                fat_offset,
                fat_length,
                heap_offset,
                1 << vbr[0x6C],
                vbr[0x6D],
                root_cluster,
            )
        return cls(
            bdev,
            DEFAULT_FAT_OFFSET,
            DEFAULT_FAT_LENGTH,
            DEFAULT_CLUSTER_HEAP_OFFSET,
            DEFAULT_BYTES_PER_SECTOR,
            DEFAULT_SECTORS_PER_CLUSTER,
            DEFAULT_ROOT_DIR_CLUSTER,
        )

    @property
    def cluster_size(self) -> int:
        return self.bytes_per_sector * self.sectors_per_cluster

    # --- raw access ------------------------------------------------------

    def _cluster_lba(self, cluster: int) -> int:
        return self.cluster_heap_offset + (cluster - 2) * self.sectors_per_cluster

    def _read_cluster(self, cluster: int) -> bytearray:
        try:
            return bytearray(self.bdev.read(self._cluster_lba(cluster), self.sectors_per_cluster))
        except BlockIOError as exc:
            raise ExFatError(f"cannot read cluster {cluster}") from exc

    def _write_cluster(self, cluster: int, data: bytes) -> None:
        try:
            self.bdev.write(self._cluster_lba(cluster), bytes(data))
        except BlockIOError as exc:
            raise ExFatError(f"cannot write cluster {cluster}") from exc

    def _fat_location(self, cluster: int) -> tuple[int, int]:
        sector, offset = divmod(cluster * 4, self.bytes_per_sector)
        return self.fat_offset + sector, offset

    def _read_sector(self, lba: int) -> bytearray:
        try:
            return bytearray(self.bdev.read(lba, 1))
        except BlockIOError as exc:
            raise ExFatError(f"cannot read FAT sector {lba}") from exc

    def _fat_get(self, cluster: int) -> int:
        lba, offset = self._fat_location(cluster)
        return struct.unpack_from("<I", self._read_sector(lba), offset)[0]

    def _fat_set(self, cluster: int, value: int) -> None:
        lba, offset = self._fat_location(cluster)
        sector = self._read_sector(lba)
        struct.pack_into("<I", sector, offset, value)
        try:
            self.bdev.write(lba, bytes(sector))
        except BlockIOError as exc:
            raise ExFatError(f"cannot write FAT sector {lba}") from exc

    def _next_cluster(self, cluster: int) -> Optional[int]:
        value = self._fat_get(cluster)
        return None if value in (FAT_FREE, FAT_EOC) else value

    def _alloc_cluster(self) -> int:
        """Claim the lowest free cluster, mark it end-of-chain and zero it."""
        entries = self.fat_length * self.bytes_per_sector // 4
        per_sector = self.bytes_per_sector // 4
        cluster = 2
        while cluster < entries:
            lba, _ = self._fat_location(cluster)
            sector = self._read_sector(lba)
            stop = min(entries, (cluster // per_sector + 1) * per_sector)
            for candidate in range(cluster, stop):
                offset = (candidate * 4) % self.bytes_per_sector
                if struct.unpack_from("<I", sector, offset)[0] == FAT_FREE:
                    self._fat_set(candidate, FAT_EOC)
                    try:
                        self._write_cluster(candidate, bytes(self.cluster_size))
                    except ExFatError:
                        pass
                    return candidate
            cluster = stop
        raise ExFatError("no free cluster")

    def _extend(self, cluster: int) -> int:
        new = self._alloc_cluster()
        self._fat_set(cluster, new)
        self._fat_set(new, FAT_EOC)
        return new

    def _ensure_chain(self, node: ExFatNode, needed: int) -> int:
        """Grow the node's chain to ``needed`` clusters; return its last cluster."""
        if node.first_cluster < 2:
            node.first_cluster = self._alloc_cluster()
        count = 1
        last = node.first_cluster
        nxt = self._next_cluster(last)
        while nxt is not None:
            last = nxt
            nxt = self._next_cluster(last)
            count += 1
        while count < needed:
            last = self._extend(last)
            count += 1
        return last

    def _free_chain(self, first: int) -> None:
        cluster = first
        while cluster >= 2:
            value = self._fat_get(cluster)
            self._fat_set(cluster, FAT_FREE)
            if value in (FAT_FREE, FAT_EOC):
                break
            cluster = value

    # --- directory -------------------------------------------------------

    def scan_root(self) -> list[DirEntry]:
        """Files of the root directory, at most 32 of them."""
        buf = self._read_cluster(self.root_dir_cluster)
        size = self.cluster_size
        entries: list[DirEntry] = []
        i = 0
        while i + DIR_ENTRY_SIZE <= size:
            entry_type = buf[i]
            if entry_type == ENTRY_END:
                break
            if not _is_file_entry(entry_type):
                i += DIR_ENTRY_SIZE
                continue
            (attr,) = struct.unpack_from("<H", buf, i + 4)
            j = i + DIR_ENTRY_SIZE
            first, length = 0, 0
            if j + DIR_ENTRY_SIZE <= size and buf[j] == ENTRY_STREAM:
                first, length = struct.unpack_from("<IQ", buf, j + 20)
                j += DIR_ENTRY_SIZE
            chars: list[str] = []
            while j + DIR_ENTRY_SIZE <= size and buf[j] == ENTRY_NAME:
                units = struct.unpack_from(f"<{NAME_CHARS_PER_ENTRY}H", buf, j + 2)
                for unit in units:
                    if len(chars) >= MAX_NAME_CHARS:
                        break
                    if unit:
                        chars.append(chr(unit) if unit < 128 else "?")
                j += DIR_ENTRY_SIZE
            if len(entries) < MAX_ROOT_ENTRIES:
                entries.append(DirEntry("".join(chars), first, length, bool(attr & ATTR_DIRECTORY)))
            i = j
        return entries

    def _lookup(self, path: str) -> DirEntry:
        name = _strip(path)
        entry = next((e for e in self.scan_root() if e.name == name), None)
        if entry is None:
            raise FileNotFoundError(f"no such file {path!r}")
        return entry

    def _update_stream(self, old_first: int, new_first: int, new_size: int) -> bool:
        """Rewrite the size (and first cluster) of the entry whose chain starts at ``old_first``."""
        try:
            buf = self._read_cluster(self.root_dir_cluster)
        except ExFatError:
            return False
        i = 0
        while i + 2 * DIR_ENTRY_SIZE <= self.cluster_size and buf[i] != ENTRY_END:
            if _is_file_entry(buf[i]) and buf[i + DIR_ENTRY_SIZE] == ENTRY_STREAM:
                (first,) = struct.unpack_from("<I", buf, i + _STREAM_FIRST_CLUSTER)
                if first == old_first:
                    if new_first >= 2 and new_first != first:
                        struct.pack_into("<I", buf, i + _STREAM_FIRST_CLUSTER, new_first)
                    struct.pack_into("<Q", buf, i + _STREAM_SIZE, new_size)
                    try:
                        self._write_cluster(self.root_dir_cluster, buf)
                    except ExFatError:
                        return False
                    return True
            i += DIR_ENTRY_SIZE
        return False

    @staticmethod
    def _entry_set_name(buf: bytearray, start: int, size: int) -> tuple[int, str]:
        """Name held by the name entries at ``start``, and the offset after them."""
        j = start
        chars: list[str] = []
        while j + DIR_ENTRY_SIZE <= size and buf[j] == ENTRY_NAME:
            for unit in struct.unpack_from(f"<{NAME_CHARS_PER_ENTRY}H", buf, j + 2):
                if len(chars) >= MAX_NAME_CHARS or unit == 0:
                    break
                chars.append(chr(unit) if unit < 128 else "?")
            j += DIR_ENTRY_SIZE
        return j, "".join(chars)

    # --- public operations ---------------------------------------------------

    def open(self, path: Optional[str]) -> ExFatNode:
        """Open the root directory or a file in it (names are case-sensitive)."""
        if _is_root(path):
            return ExFatNode(self, self.root_dir_cluster, True, 0)
        entry = self._lookup(path)
        return ExFatNode(self, entry.first_cluster, entry.is_dir, entry.size)

    def stat(self, path: Optional[str]) -> StatResult:
        """Size and kind of the entry at ``path``."""
        if _is_root(path):
            return StatResult(0, True)
        entry = self._lookup(path)
        return StatResult(entry.size, entry.is_dir)

    def create(self, path: str) -> None:
        """Add an empty file with one allocated cluster to the root directory."""
        name = _strip(path)
        if not name:
            raise ValueError("file name must not be empty")
        raw = name.encode("utf-8")
        size = self.cluster_size
        buf = self._read_cluster(self.root_dir_cluster)
        slot = 0
        while slot + DIR_ENTRY_SIZE <= size and buf[slot] != ENTRY_END:
            slot += DIR_ENTRY_SIZE
        name_entries = -(-len(raw) // NAME_CHARS_PER_ENTRY)
        secondary = 1 + name_entries
        span = (1 + secondary) * DIR_ENTRY_SIZE
        if slot + span > size:
            raise ExFatError("root directory is full")
        cluster = self._alloc_cluster()

        entry_set = bytearray(span)
        entry_set[0] = ENTRY_FILE
        entry_set[1] = secondary & 0xFF
        struct.pack_into("<H", entry_set, 4, ATTR_ARCHIVE)
        entry_set[DIR_ENTRY_SIZE] = ENTRY_STREAM
        entry_set[DIR_ENTRY_SIZE + 3] = len(raw) & 0xFF
        struct.pack_into("<IQ", entry_set, _STREAM_FIRST_CLUSTER, cluster, 0)
        for index in range(name_entries):
            base = (2 + index) * DIR_ENTRY_SIZE
            chunk = raw[index * NAME_CHARS_PER_ENTRY:(index + 1) * NAME_CHARS_PER_ENTRY]
            entry_set[base] = ENTRY_NAME
            struct.pack_into(f"<{len(chunk)}H", entry_set, base + 2, *chunk)

        buf[slot:slot + span] = entry_set
        if slot + span < size:
            buf[slot + span] = ENTRY_END
        self._write_cluster(self.root_dir_cluster, buf)

    def unlink(self, path: str) -> None:
        """Remove a file and free its clusters.

        The removed entry set is zeroed, which also ends the directory at
        that slot.
        """
        name = _strip(path)
        if not name:
            raise ValueError("file name must not be empty")
        size = self.cluster_size
        buf = self._read_cluster(self.root_dir_cluster)
        i = 0
        while i + DIR_ENTRY_SIZE <= size and buf[i] != ENTRY_END:
            if (
                _is_file_entry(buf[i])
                and i + 2 * DIR_ENTRY_SIZE <= size
                and buf[i + DIR_ENTRY_SIZE] == ENTRY_STREAM
            ):
                end, entry_name = self._entry_set_name(buf, i + 2 * DIR_ENTRY_SIZE, size)
                if entry_name == name:
                    (first,) = struct.unpack_from("<I", buf, i + _STREAM_FIRST_CLUSTER)
                    self._free_chain(first)
                    buf[i:end] = bytes(end - i)
                    self._write_cluster(self.root_dir_cluster, buf)
                    return
            i += DIR_ENTRY_SIZE
        raise FileNotFoundError(f"no such file {path!r}")

    # --- file data ---------------------------------------------------------

    def _read_file(self, node: ExFatNode, offset: int, length: int) -> bytes:
        if node.is_dir:
            raise IsADirectoryError("cannot read a directory")
        if offset < 0 or length < 0:
            raise ValueError("offset and length must be non-negative")
        if offset >= node.size:
            return b""
        length = min(length, node.size - offset)
        skip_clusters, skip = divmod(offset, self.cluster_size)
        cluster = node.first_cluster
        for _ in range(skip_clusters):
            nxt = self._next_cluster(cluster)
            if nxt is None:
                break
            cluster = nxt
        out = bytearray()
        while len(out) < length and cluster >= 2:
            try:
                data = self._read_cluster(cluster)
            except ExFatError:
                break
            out += data[skip:skip + length - len(out)]
            skip = 0
            if len(out) >= length:
                break
            nxt = self._next_cluster(cluster)
            if nxt is None:
                break
            cluster = nxt
        return bytes(out)

    def _write_file(self, node: ExFatNode, offset: int, data: bytes) -> int:
        if node.is_dir:
            raise IsADirectoryError("cannot write a directory")
        if offset < 0:
            raise ValueError("offset must be non-negative")
        data = bytes(data)
        if not data:
            return 0
        end = offset + len(data)
        csz = self.cluster_size
        old_first = node.first_cluster
        self._ensure_chain(node, -(-end // csz))

        skip_clusters, skip = divmod(offset, csz)
        cluster = node.first_cluster
        for _ in range(skip_clusters):
            nxt = self._next_cluster(cluster)
            cluster = nxt if nxt is not None else self._extend(cluster)

        done = 0
        while done < len(data):
            buf = self._read_cluster(cluster)
            take = min(len(data) - done, csz - skip)
            buf[skip:skip + take] = data[done:done + take]
            self._write_cluster(cluster, buf)
            done += take
            skip = 0
            if done >= len(data):
                break
            nxt = self._next_cluster(cluster)
            cluster = nxt if nxt is not None else self._extend(cluster)

        node.size = max(node.size, end)
        self._update_stream(old_first or node.first_cluster, node.first_cluster, node.size)
        return len(data)


def format_device(dev_name: str, label: Optional[str] = None) -> None:
    """Accept a format request for ``dev_name``; the device is left unchanged."""
    if not dev_name:
        raise ValueError("device name must not be empty")