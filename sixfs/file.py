"""Open file objects shared by file descriptors."""

from __future__ import annotations

import enum
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from .fs import FileSystem, FsError, Inode, Stat
from .layout import BSIZE
from .pipe import Pipe

CONSOLE = 1


class FileError(Exception):
    """A file operation was refused or the file table was misused."""


class FileKind(enum.Enum):
    """What an open file refers to."""

    NONE = 0
    PIPE = 1
    INODE = 2
    DEVICE = 3


@dataclass
class Device:
    """Read and write functions for a major device number."""

    read: Callable[[int], bytes] | None = None
    write: Callable[[bytes], int] | None = None


@dataclass(eq=False)
class OpenFile:
    """An entry of the file table."""

    kind: FileKind = FileKind.NONE
    ref: int = 0
    readable: bool = False
    writable: bool = False
    pipe: Pipe | None = None
    ip: Inode | None = None
    off: int = 0
    major: int = 0


class FileTable:
    """A fixed number of open files, reference counted."""

    def __init__(
        self,
        fs: FileSystem | None,
        nfile: int,
        devices: Mapping[int, Device] | None = None,
    ) -> None:
        if nfile < 1:
            raise ValueError("the file table needs at least one entry")
        self.fs = fs
        self.devices: Mapping[int, Device] = devices if devices is not None else {}
        self._lock = threading.Lock()
        self._files = [OpenFile() for _ in range(nfile)]

    def alloc(self) -> OpenFile:
        """Take a free entry with one reference."""
        with self._lock:
            for f in self._files:
                if f.ref == 0:
                    f.ref = 1
                    return f
        raise FileError("file table full")

    def dup(self, f: OpenFile) -> OpenFile:
        with self._lock:
            if f.ref < 1:
                raise FileError("filedup")
            f.ref += 1
        return f

    def close(self, f: OpenFile) -> None:
        """Drop a reference; release the pipe end or inode with the last one."""
        with self._lock:
            if f.ref < 1:
                raise FileError("fileclose")
            f.ref -= 1
            if f.ref > 0:
                return
            kind, pipe, writable, ip = f.kind, f.pipe, f.writable, f.ip
            f.kind = FileKind.NONE
            f.readable = f.writable = False
            f.pipe = None
            f.ip = None
            f.off = 0
            f.major = 0
        if kind is FileKind.PIPE and pipe is not None:
            pipe.close(writable)
        elif kind in (FileKind.INODE, FileKind.DEVICE) and ip is not None:
            fs = self._require_fs()
            with fs.transaction():
                fs.iput(ip)

    def _require_fs(self) -> FileSystem:
        if self.fs is None:
            raise FileError("no file system attached")
        return self.fs

    def _device(self, f: OpenFile, op: str) -> Callable:
        dev = self.devices.get(f.major)
        fn = getattr(dev, op) if dev is not None else None
        if fn is None:
            raise FileError(f"no {op} function for device {f.major}")
        return fn

    def stat(self, f: OpenFile) -> Stat:
        """Metadata of the inode behind ``f``."""
        if f.kind not in (FileKind.INODE, FileKind.DEVICE) or f.ip is None:
            raise FileError("stat of a file without an inode")
        fs = self._require_fs()
        fs.ilock(f.ip)
        try:
            return fs.stati(f.ip)
        finally:
            fs.iunlock(f.ip)

    def read(self, f: OpenFile, n: int) -> bytes:
        """Read up to ``n`` bytes from ``f``."""
        if not f.readable:
            raise FileError("file not open for reading")
        if f.kind is FileKind.PIPE:
            return f.pipe.read(n)
        if f.kind is FileKind.DEVICE:
            return self._device(f, "read")(n)
        if f.kind is FileKind.INODE:
            fs = self._require_fs()
            fs.ilock(f.ip)
            try:
                data = fs.readi(f.ip, f.off, n)
                f.off += len(data)
            finally:
                fs.iunlock(f.ip)
            return data
        raise FileError("fileread")

    def write(self, f: OpenFile, data: bytes) -> int:
        """Write all of ``data`` to ``f``; returns its length."""
        if not f.writable:
            raise FileError("file not open for writing")
        if f.kind is FileKind.PIPE:
            return f.pipe.write(data)
        if f.kind is FileKind.DEVICE:
            return self._device(f, "write")(data)
        if f.kind is FileKind.INODE:
            return self._write_inode(f, data)
        raise FileError("filewrite")

    def _write_inode(self, f: OpenFile, data: bytes) -> int:
        fs = self._require_fs()
        # Keep each transaction within the log: inode, indirect block,
        # allocation blocks and two blocks of slop for unaligned writes.
        chunk = ((fs.log.maxopblocks - 1 - 1 - 2) // 2) * BSIZE
        if chunk <= 0:
            raise FileError("log operations too small for file writes")
        n = len(data)
        i = 0
        while i < n:
            piece = data[i:i + chunk]
            with fs.transaction():
                fs.ilock(f.ip)
                try:
                    written = fs.writei(f.ip, f.off, piece)
                except FsError as exc:
                    raise FileError(str(exc)) from exc
                finally:
                    fs.iunlock(f.ip)
                if written > 0:
                    f.off += written
            if written != len(piece):
                raise FileError("short write")
            i += written
        return n