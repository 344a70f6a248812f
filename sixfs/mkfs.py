"""Build a file system image holding a root directory and a set of files."""

from __future__ import annotations

import os
import struct
import sys
from collections.abc import Iterable
from pathlib import Path

from .fs import InodeType
from .layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    FSMAGIC,
    IPB,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    ROOTINO,
    SUPERBLOCK_SIZE,
    Dirent,
    DiskInode,
    Superblock,
    inode_block,
)

FSSIZE = 2000
NINODES = 200
LOGSIZE = 30

_INDIRECT = struct.Struct(f"<{NINDIRECT}I")

# Disk layout:
# [ boot block | sb block | log | inode blocks | free bit map | data blocks ]


class ImageBuilder:
    """Writes a fresh image with an empty root directory, then adds files."""

    def __init__(
        self,
        path: str | os.PathLike[str],
        fssize: int = FSSIZE,
        ninodes: int = NINODES,
        nlog: int = LOGSIZE,
    ) -> None:
        self.fssize = fssize
        self.nbitmap = fssize // BPB + 1
        self.ninodeblocks = ninodes // IPB + 1
        self.nlog = nlog
        self.nmeta = 2 + nlog + self.ninodeblocks + self.nbitmap
        self.nblocks = fssize - self.nmeta
        if self.nblocks <= 0:
            raise ValueError(f"an image of {fssize} blocks has no room for data")
        self.sb = Superblock(
            magic=FSMAGIC,
            size=fssize,
            nblocks=self.nblocks,
            ninodes=ninodes,
            nlog=nlog,
            logstart=2,
            inodestart=2 + nlog,
            bmapstart=2 + nlog + self.ninodeblocks,
        )
        self.freeinode = 1
        self.freeblock = self.nmeta  # the first block that can be allocated
        self._file = open(path, "w+b")
        try:
            self._file.write(bytes(BSIZE) * fssize)
            self._wsect(1, self.sb.to_bytes().ljust(BSIZE, b"\0"))
            self.rootino = self.ialloc(InodeType.DIR)
            if self.rootino != ROOTINO:
                raise ValueError("root directory did not get the root inode")
            self.iappend(self.rootino, Dirent(self.rootino, ".").to_bytes())
            self.iappend(self.rootino, Dirent(self.rootino, "..").to_bytes())
        except BaseException:
            self._file.close()
            raise

    def _close(self) -> None:
        if not self._file.closed:
            self._file.close()

    def _wsect(self, sec: int, data: bytes) -> None:
        self._file.seek(sec * BSIZE)
        if self._file.write(data) != BSIZE:
            raise OSError(f"short write of block {sec}")

    def _rsect(self, sec: int) -> bytearray:
        self._file.seek(sec * BSIZE)
        data = self._file.read(BSIZE)
        if len(data) != BSIZE:
            raise OSError(f"short read of block {sec}")
        return bytearray(data)

    def _rinode(self, inum: int) -> DiskInode:
        off = (inum % IPB) * DINODE_SIZE
        buf = self._rsect(inode_block(inum, self.sb))
        return DiskInode.from_bytes(bytes(buf[off:off + DINODE_SIZE]))

    def _winode(self, inum: int, din: DiskInode) -> None:
        bn = inode_block(inum, self.sb)
        off = (inum % IPB) * DINODE_SIZE
        buf = self._rsect(bn)
        buf[off:off + DINODE_SIZE] = din.to_bytes()
        self._wsect(bn, bytes(buf))

    def _take_block(self) -> int:
        if self.freeblock >= self.fssize:
            raise ValueError("image is full")
        b = self.freeblock
        self.freeblock += 1
        return b

    def ialloc(self, itype: int) -> int:
        """Allocate the next inode with one link and return its number."""
        inum = self.freeinode
        if inum >= self.sb.ninodes:
            raise ValueError("out of inodes")
        self.freeinode += 1
        self._winode(inum, DiskInode(type=int(itype), nlink=1, size=0))
        return inum

    def iappend(self, inum: int, data: bytes) -> None:
        """Append ``data`` to the contents of inode ``inum``."""
        din = self._rinode(inum)
        off = din.size
        pos = 0
        while pos < len(data):
            fbn = off // BSIZE
            if fbn >= MAXFILE:
                raise ValueError("file too large")
            if fbn < NDIRECT:
                if din.addrs[fbn] == 0:
                    din.addrs[fbn] = self._take_block()
                x = din.addrs[fbn]
            else:
                if din.addrs[NDIRECT] == 0:
                    din.addrs[NDIRECT] = self._take_block()
                indirect = list(_INDIRECT.unpack(bytes(self._rsect(din.addrs[NDIRECT]))))
                if indirect[fbn - NDIRECT] == 0:
                    indirect[fbn - NDIRECT] = self._take_block()
                    self._wsect(din.addrs[NDIRECT], _INDIRECT.pack(*indirect))
                x = indirect[fbn - NDIRECT]
            n1 = min(len(data) - pos, (fbn + 1) * BSIZE - off)
            buf = self._rsect(x)
            start = off - fbn * BSIZE
            buf[start:start + n1] = data[pos:pos + n1]
            self._wsect(x, bytes(buf))
            pos += n1
            off += n1
        din.size = off
        self._winode(inum, din)

    def add_file(self, name: str, data: bytes) -> int:
        """Add a file to the root directory; returns its inode number."""
        if "/" in name:
            raise ValueError(f"{name!r}: file name must not contain '/'")
        inum = self.ialloc(InodeType.FILE)
        self.iappend(self.rootino, Dirent(inum, name).to_bytes())
        self.iappend(inum, data)
        return inum

    def finish(self) -> None:
        """Fix the root directory size, write the free-block bitmap and close."""
        try:
            din = self._rinode(self.rootino)
            din.size = (din.size // BSIZE + 1) * BSIZE
            self._winode(self.rootino, din)

            used = self.freeblock
            if used >= BPB:
                raise ValueError("too many blocks in use for one bitmap block")
            bitmap = bytearray(BSIZE)
            for i in range(used):
                bitmap[i // 8] |= 1 << (i % 8)
            self._wsect(self.sb.bmapstart, bytes(bitmap))
        finally:
            self._close()


def make_image(
    path: str | os.PathLike[str],
    files: Iterable[tuple[str, bytes]] = (),
    fssize: int = FSSIZE,
    ninodes: int = NINODES,
    nlog: int = LOGSIZE,
) -> Superblock:
    """Write an image holding the given (name, data) files in its root."""
    builder = ImageBuilder(path, fssize, ninodes, nlog)
    try:
        for name, data in files:
            builder.add_file(name, data)
        builder.finish()
    finally:
        builder._close()
    return builder.sb


def _image_name(path: str) -> str:
    name = path[len("user/"):] if path.startswith("user/") else path
    if "/" in name:
        raise ValueError(f"{path}: file name must not contain '/'")
    # Programs are built as _name so the host does not run them by mistake.
    return name[1:] if name.startswith("_") else name


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print("Usage: mkfs fs.img files...", file=sys.stderr)
        return 1
    image, paths = args[0], args[1:]
    try:
        builder = ImageBuilder(image)
    except OSError as exc:
        print(f"{image}: {exc.strerror}", file=sys.stderr)
        return 1

    print(
        f"nmeta {builder.nmeta} (boot, super, log blocks {builder.nlog} "
        f"inode blocks {builder.ninodeblocks}, bitmap blocks {builder.nbitmap}) "
        f"blocks {builder.nblocks} total {builder.fssize}"
    )
    try:
        for path in paths:
            try:
                name = _image_name(path)
                data = Path(path).read_bytes()
            except OSError as exc:
                print(f"{path}: {exc.strerror}", file=sys.stderr)
                return 1
            builder.add_file(name, data)
        builder.finish()
    except ValueError as exc:
        print(f"mkfs: {exc}", file=sys.stderr)
        return 1
    finally:
        builder._close()

    print(f"balloc: first {builder.freeblock} blocks have been allocated")
    print(f"balloc: write bitmap block at sector {builder.sb.bmapstart}")
    return 0


if __name__ == "__main__":
    sys.exit(main())