"""Block devices holding a file system image."""

from __future__ import annotations

import os

from .layout import BSIZE


class DiskError(Exception):
    """A block device request could not be carried out."""


def _check_block(blockno: int, nblocks: int) -> None:
    if not 0 <= blockno < nblocks:
        raise DiskError(f"block number {blockno} out of range (0..{nblocks - 1})")


def _check_data(data: bytes) -> None:
    if len(data) != BSIZE:
        raise DiskError(f"block data must be {BSIZE} bytes, got {len(data)}")


class MemoryDisk:
    """A disk held in memory."""

    def __init__(self, nblocks: int) -> None:
        if nblocks < 0:
            raise DiskError("a disk cannot have a negative size")
        self.nblocks = nblocks
        self._data = bytearray(nblocks * BSIZE)

    def read_block(self, blockno: int) -> bytes:
        _check_block(blockno, self.nblocks)
        start = blockno * BSIZE
        return bytes(self._data[start:start + BSIZE])

    def write_block(self, blockno: int, data: bytes) -> None:
        _check_block(blockno, self.nblocks)
        _check_data(data)
        start = blockno * BSIZE
        self._data[start:start + BSIZE] = data


class FileDisk:
    """A disk backed by an image file; its size fixes the number of blocks."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        try:
            self._file = open(path, "r+b")
        except OSError as exc:
            raise DiskError(f"{path}: {exc.strerror}") from exc
        self.nblocks = os.fstat(self._file.fileno()).st_size // BSIZE

    def read_block(self, blockno: int) -> bytes:
        _check_block(blockno, self.nblocks)
        self._file.seek(blockno * BSIZE)
        data = self._file.read(BSIZE)
        if len(data) != BSIZE:
            raise DiskError(f"short read of block {blockno}")
        return data

    def write_block(self, blockno: int, data: bytes) -> None:
        _check_block(blockno, self.nblocks)
        _check_data(data)
        self._file.seek(blockno * BSIZE)
        self._file.write(data)
        self._file.flush()

    def close(self) -> None:
        self._file.close()

    def __enter__(self) -> FileDisk:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()