"""File system: block allocation, inodes, directories and path names."""

from __future__ import annotations

import enum
import logging
import struct
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from .bio import BufferCache, _SleepLock
from .layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    DIRENT_SIZE,
    FSMAGIC,
    IPB,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    ROOTINO,
    SUPERBLOCK_SIZE,
    DiskInode,
    Dirent,
    Superblock,
    bitmap_block,
    inode_block,
    namecmp,
    truncate_name,
)
from .log import Log

_log = logging.getLogger(__name__)

_ADDR = struct.Struct("<I")


class FsError(Exception):
    """A file-system operation failed or the file system was misused."""


class InodeType(enum.IntEnum):
    """Kinds of inode stored in the type field."""

    DIR = 1
    FILE = 2
    DEVICE = 3


@dataclass(frozen=True)
class Stat:
    """Metadata about an inode."""

    ino: int
    type: int
    nlink: int
    size: int


@dataclass(eq=False)
class Inode:
    """In-memory copy of an inode."""

    inum: int = 0
    ref: int = 0
    valid: bool = False
    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))
    lock: _SleepLock = field(default_factory=lambda: _SleepLock("inode"), repr=False)


def skipelem(path: str) -> tuple[str, str] | None:
    """Split off the first path element.

    Returns the element (cut to DIRSIZ bytes) and the rest of the path
    without leading slashes, or None when no element is left.
    """
    path = path.lstrip("/")
    if not path:
        return None
    elem, _, rest = path.partition("/")
    return truncate_name(elem), rest.lstrip("/")


class FileSystem:
    """A file system on a single block device."""

    def __init__(
        self, disk, nbuf: int, ninode: int, logsize: int, maxopblocks: int
    ) -> None:
        if ninode < 1:
            raise ValueError("the inode table needs at least one entry")
        self.cache = BufferCache(disk, nbuf)
        with self.cache.block(1) as bp:
            self.sb = Superblock.from_bytes(bytes(bp.data[:SUPERBLOCK_SIZE]))
        if self.sb.magic != FSMAGIC:
            raise FsError("invalid file system")
        self.log = Log(self.cache, self.sb, logsize, maxopblocks)
        self._itable_lock = threading.Lock()
        self._itable = [Inode() for _ in range(ninode)]

    @contextmanager
    def transaction(self) -> Iterator[FileSystem]:
        """Run the body of a with-block as one logged operation."""
        with self.log.transaction():
            yield self

    # Blocks.

    def _bzero(self, blockno: int) -> None:
        with self.cache.block(blockno) as bp:
            bp.data[:] = bytes(BSIZE)
            self.log.log_write(bp)

    def _balloc(self) -> int:
        """Allocate a zeroed block; 0 when the disk is full."""
        size = self.sb.size
        for b in range(0, size, BPB):
            found = None
            with self.cache.block(bitmap_block(b, self.sb)) as bp:
                for bi in range(min(BPB, size - b)):
                    m = 1 << (bi % 8)
                    if not bp.data[bi // 8] & m:
                        bp.data[bi // 8] |= m
                        self.log.log_write(bp)
                        found = b + bi
                        break
            if found is not None:
                self._bzero(found)
                return found
        _log.warning("balloc: out of blocks")
        return 0

    def _bfree(self, blockno: int) -> None:
        with self.cache.block(bitmap_block(blockno, self.sb)) as bp:
            bi = blockno % BPB
            m = 1 << (bi % 8)
            if not bp.data[bi // 8] & m:
                raise FsError("freeing free block")
            bp.data[bi // 8] &= ~m & 0xFF
            self.log.log_write(bp)

    # Inodes.

    @staticmethod
    def _dinode_offset(inum: int) -> int:
        return (inum % IPB) * DINODE_SIZE

    def ialloc(self, itype: int) -> Inode:
        """Allocate an inode of the given type; returned unlocked and referenced."""
        for inum in range(1, self.sb.ninodes):
            off = self._dinode_offset(inum)
            with self.cache.block(inode_block(inum, self.sb)) as bp:
                din = DiskInode.from_bytes(bytes(bp.data[off:off + DINODE_SIZE]))
                if din.type != 0:
                    continue
                bp.data[off:off + DINODE_SIZE] = DiskInode(type=int(itype)).to_bytes()
                self.log.log_write(bp)
            return self.iget(inum)
        raise FsError("ialloc: no inodes")

    def iupdate(self, ip: Inode) -> None:
        """Copy the in-memory inode to disk."""
        off = self._dinode_offset(ip.inum)
        with self.cache.block(inode_block(ip.inum, self.sb)) as bp:
            din = DiskInode(ip.type, ip.major, ip.minor, ip.nlink, ip.size, ip.addrs)
            bp.data[off:off + DINODE_SIZE] = din.to_bytes()
            self.log.log_write(bp)

    def iget(self, inum: int) -> Inode:
        """Find or make the table entry for an inode, without locking or reading it."""
        with self._itable_lock:
            empty = None
            for ip in self._itable:
                if ip.ref > 0 and ip.inum == inum:
                    ip.ref += 1
                    return ip
                if empty is None and ip.ref == 0:
                    empty = ip
            if empty is None:
                raise FsError("iget: no inodes")
            empty.inum = inum
            empty.ref = 1
            empty.valid = False
            return empty

    def idup(self, ip: Inode) -> Inode:
        with self._itable_lock:
            ip.ref += 1
        return ip

    def ilock(self, ip: Inode) -> None:
        """Lock the inode, reading it from disk if needed."""
        if ip is None or ip.ref < 1:
            raise FsError("ilock")
        ip.lock.acquire()
        if ip.valid:
            return
        off = self._dinode_offset(ip.inum)
        with self.cache.block(inode_block(ip.inum, self.sb)) as bp:
            din = DiskInode.from_bytes(bytes(bp.data[off:off + DINODE_SIZE]))
        ip.type = din.type
        ip.major = din.major
        ip.minor = din.minor
        ip.nlink = din.nlink
        ip.size = din.size
        ip.addrs = list(din.addrs)
        ip.valid = True
        if ip.type == 0:
            ip.lock.release()
            raise FsError("ilock: no type")

    def iunlock(self, ip: Inode) -> None:
        if ip is None or not ip.lock.holding() or ip.ref < 1:
            raise FsError("iunlock")
        ip.lock.release()

    def iput(self, ip: Inode) -> None:
        """Drop a reference; free the inode on disk when nothing refers to it."""
        self._itable_lock.acquire()
        try:
            if ip.ref == 1 and ip.valid and ip.nlink == 0:
                ip.lock.acquire()
                self._itable_lock.release()
                try:
                    self.itrunc(ip)
                    ip.type = 0
                    self.iupdate(ip)
                    ip.valid = False
                finally:
                    ip.lock.release()
                    self._itable_lock.acquire()
            ip.ref -= 1
        finally:
            self._itable_lock.release()

    def iunlockput(self, ip: Inode) -> None:
        self.iunlock(ip)
        self.iput(ip)

    def _bmap(self, ip: Inode, bn: int) -> int:
        """Disk block of the inode's block ``bn``, allocated if absent; 0 if full."""
        if bn < NDIRECT:
            addr = ip.addrs[bn]
            if addr == 0:
                addr = self._balloc()
                if addr == 0:
                    return 0
                ip.addrs[bn] = addr
            return addr
        bn -= NDIRECT
        if bn < NINDIRECT:
            indirect = ip.addrs[NDIRECT]
            if indirect == 0:
                indirect = self._balloc()
                if indirect == 0:
                    return 0
                ip.addrs[NDIRECT] = indirect
            with self.cache.block(indirect) as bp:
                (addr,) = _ADDR.unpack_from(bp.data, bn * _ADDR.size)
                if addr == 0:
                    addr = self._balloc()
                    if addr:
                        _ADDR.pack_into(bp.data, bn * _ADDR.size, addr)
                        self.log.log_write(bp)
            return addr
        raise FsError("bmap: out of range")

    def itrunc(self, ip: Inode) -> None:
        """Discard the inode's contents; the caller holds its lock."""
        for i, addr in enumerate(ip.addrs[:NDIRECT]):
            if addr:
                self._bfree(addr)
                ip.addrs[i] = 0
        indirect = ip.addrs[NDIRECT]
        if indirect:
            with self.cache.block(indirect) as bp:
                addrs = struct.unpack_from(f"<{NINDIRECT}I", bp.data, 0)
            for addr in addrs:
                if addr:
                    self._bfree(addr)
            self._bfree(indirect)
            ip.addrs[NDIRECT] = 0
        ip.size = 0
        self.iupdate(ip)

    def stati(self, ip: Inode) -> Stat:
        return Stat(ino=ip.inum, type=ip.type, nlink=ip.nlink, size=ip.size)

    def readi(self, ip: Inode, off: int, n: int) -> bytes:
        """Read up to ``n`` bytes at ``off``; short at end of file."""
        if off < 0:
            raise ValueError("negative offset")
        if n < 0 or off > ip.size:
            return b""
        n = min(n, ip.size - off)
        out = bytearray()
        while len(out) < n:
            addr = self._bmap(ip, off // BSIZE)
            if addr == 0:
                break
            start = off % BSIZE
            m = min(n - len(out), BSIZE - start)
            with self.cache.block(addr) as bp:
                out += bp.data[start:start + m]
            off += m
        return bytes(out)

    def writei(self, ip: Inode, off: int, data: bytes) -> int:
        """Write ``data`` at ``off``; returns the number of bytes written."""
        n = len(data)
        if off < 0 or off > ip.size:
            raise FsError(f"writei: offset {off} beyond end of file")
        if off + n > MAXFILE * BSIZE:
            raise FsError("writei: file too large")
        tot = 0
        while tot < n:
            addr = self._bmap(ip, off // BSIZE)
            if addr == 0:
                break
            start = off % BSIZE
            m = min(n - tot, BSIZE - start)
            with self.cache.block(addr) as bp:
                bp.data[start:start + m] = data[tot:tot + m]
                self.log.log_write(bp)
            tot += m
            off += m
        if off > ip.size:
            ip.size = off
        # bmap may have added blocks even when the size is unchanged.
        self.iupdate(ip)
        return tot

    # Directories.

    def _entries(self, dp: Inode, start: int = 0) -> Iterator[tuple[int, Dirent]]:
        for off in range(start, dp.size, DIRENT_SIZE):
            raw = self.readi(dp, off, DIRENT_SIZE)
            if len(raw) != DIRENT_SIZE:
                raise FsError("directory read")
            yield off, Dirent.from_bytes(raw)

    def dirlookup(self, dp: Inode, name: str) -> tuple[Inode, int] | None:
        """Find ``name`` in directory ``dp``: its inode and the entry's offset."""
        if dp.type != InodeType.DIR:
            raise FsError("dirlookup not DIR")
        for off, de in self._entries(dp):
            if de.inum and namecmp(name, de.name) == 0:
                return self.iget(de.inum), off
        return None

    def dirlink(self, dp: Inode, name: str, inum: int) -> None:
        """Add the entry (name, inum) to directory ``dp``."""
        found = self.dirlookup(dp, name)
        if found is not None:
            self.iput(found[0])
            raise FsError(f"dirlink: {name!r} already exists")
        for off, de in self._entries(dp):
            if de.inum == 0:
                break
        else:
            off = dp.size
        raw = Dirent(inum, name).to_bytes()
        if self.writei(dp, off, raw) != DIRENT_SIZE:
            raise FsError("dirlink: short write")

    # Path names.

    def _namex(self, path: str, parent: bool, cwd: Inode | None):
        if path.startswith("/") or cwd is None:
            ip = self.iget(ROOTINO)
        else:
            ip = self.idup(cwd)
        while (elem := skipelem(path)) is not None:
            name, path = elem
            self.ilock(ip)
            if ip.type != InodeType.DIR:
                self.iunlockput(ip)
                return None
            if parent and path == "":
                self.iunlock(ip)
                return ip, name
            found = self.dirlookup(ip, name)
            self.iunlockput(ip)
            if found is None:
                return None
            ip = found[0]
        if parent:
            self.iput(ip)
            return None
        return ip

    def namei(self, path: str, cwd: Inode | None = None) -> Inode | None:
        """Inode for a path, or None; relative paths start at ``cwd`` (root if None)."""
        return self._namex(path, False, cwd)

    def nameiparent(
        self, path: str, cwd: Inode | None = None
    ) -> tuple[Inode, str] | None:
        """Inode of the parent directory and the final element, or None."""
        return self._namex(path, True, cwd)