"""Root filesystem that only lists the fixed mount points."""

from __future__ import annotations

from typing import Optional

from dexos.devfs import StatResult

MOUNT_POINTS = ("dev", "root")


def _is_root(path: Optional[str]) -> bool:
    return not path or path == "/"


def _check_range(offset: int, length: int) -> None:
    if offset < 0:
        raise ValueError("offset must be non-negative")
    if length < 0:
        raise ValueError("length must be non-negative")


class RootNode:
    """The root directory; it holds no files of its own."""

    is_dir = True
    size = 0
    name = ""

    def readdir(self, index: int) -> Optional[str]:
        """Name of the ``index``-th mount point, or None past the end."""
        if index < 0:
            raise ValueError("directory index must be non-negative")
        if index >= len(MOUNT_POINTS):
            return None
        return MOUNT_POINTS[index]

    def read(self, offset: int, length: int) -> bytes:
        """Reading always fails: the root filesystem holds no file data."""
        _check_range(offset, length)
        if self.is_dir:
            raise IsADirectoryError(
                f"cannot read {length} bytes at offset {offset}: "
                "the root filesystem has no files to read"
            )
        raise FileNotFoundError("the root filesystem has no files to read")

    def write(self, offset: int, data: bytes) -> int:
        """Writing always fails: the root filesystem is read-only."""
        _check_range(offset, len(data))
        raise PermissionError(
            f"cannot write {len(data)} bytes at offset {offset}: "
            "the root filesystem is read-only"
        )


class RootFS:
    """A filesystem with only a root directory."""

    def open(self, path: Optional[str]) -> RootNode:
        """Open the root directory; any other path does not exist."""
        if _is_root(path):
            return RootNode()
        raise FileNotFoundError(f"no such file {path!r}")

    def stat(self, path: Optional[str]) -> StatResult:
        """Stat the root directory; any other path does not exist."""
        if _is_root(path):
            return StatResult(0, True)
        raise FileNotFoundError(f"no such file {path!r}")