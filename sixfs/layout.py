"""On-disk layout: superblock, inodes, directory entries and name helpers."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from itertools import zip_longest

ROOTINO = 1
BSIZE = 1024
FSMAGIC = 0x10203040
NDIRECT = 12
NINDIRECT = BSIZE // 4
MAXFILE = NDIRECT + NINDIRECT
DIRSIZ = 14

_SUPERBLOCK = struct.Struct("<8I")
_DINODE = struct.Struct(f"<4hI{NDIRECT + 1}I")
_DIRENT = struct.Struct(f"<H{DIRSIZ}s")

SUPERBLOCK_SIZE = _SUPERBLOCK.size
DINODE_SIZE = _DINODE.size
DIRENT_SIZE = _DIRENT.size

# Inodes per block.
IPB = BSIZE // DINODE_SIZE
# Bitmap bits per block.
BPB = BSIZE * 8


def _check_length(data: bytes, size: int, what: str) -> None:
    if len(data) < size:
        raise ValueError(f"{what} needs {size} bytes, got {len(data)}")


@dataclass
class Superblock:
    """Describes the disk layout."""

    magic: int = FSMAGIC
    size: int = 0
    nblocks: int = 0
    ninodes: int = 0
    nlog: int = 0
    logstart: int = 0
    inodestart: int = 0
    bmapstart: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> Superblock:
        _check_length(data, _SUPERBLOCK.size, "superblock")
        return cls(*_SUPERBLOCK.unpack_from(data, 0))

    def to_bytes(self) -> bytes:
        return _SUPERBLOCK.pack(
            self.magic,
            self.size,
            self.nblocks,
            self.ninodes,
            self.nlog,
            self.logstart,
            self.inodestart,
            self.bmapstart,
        )


@dataclass
class DiskInode:
    """On-disk inode structure."""

    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))

    def __post_init__(self) -> None:
        self.addrs = list(self.addrs)
        if len(self.addrs) != NDIRECT + 1:
            raise ValueError(f"an inode holds {NDIRECT + 1} block addresses")

    @classmethod
    def from_bytes(cls, data: bytes) -> DiskInode:
        _check_length(data, _DINODE.size, "inode")
        itype, major, minor, nlink, size, *addrs = _DINODE.unpack_from(data, 0)
        return cls(itype, major, minor, nlink, size, addrs)

    def to_bytes(self) -> bytes:
        return _DINODE.pack(
            self.type, self.major, self.minor, self.nlink, self.size, *self.addrs
        )


def _encode_name(name: str) -> bytes:
    raw = name.encode("utf-8").split(b"\0", 1)[0]
    return raw[:DIRSIZ]


@dataclass
class Dirent:
    """A directory entry: inode number and a name of at most DIRSIZ bytes."""

    inum: int = 0
    name: str = ""

    @classmethod
    def from_bytes(cls, data: bytes) -> Dirent:
        _check_length(data, _DIRENT.size, "directory entry")
        inum, raw = _DIRENT.unpack_from(data, 0)
        return cls(inum, raw.split(b"\0", 1)[0].decode("utf-8", "replace"))

    def to_bytes(self) -> bytes:
        return _DIRENT.pack(self.inum, _encode_name(self.name))


def inode_block(inum: int, sb: Superblock) -> int:
    """Block holding inode ``inum``."""
    return inum // IPB + sb.inodestart


def bitmap_block(b: int, sb: Superblock) -> int:
    """Block of the free map holding the bit for block ``b``."""
    return b // BPB + sb.bmapstart


def truncate_name(name: str) -> str:
    """The name as it is stored in a directory entry."""
    return _encode_name(name).decode("utf-8", "ignore")


def namecmp(s: str, t: str) -> int:
    """Compare two names over at most DIRSIZ bytes; zero when equal."""
    for a, b in zip_longest(_encode_name(s), _encode_name(t), fillvalue=0):
        if a != b:
            return a - b
    return 0