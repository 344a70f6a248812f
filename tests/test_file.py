import pytest

from sixfs.disk import MemoryDisk
from sixfs.file import Device, FileError, FileKind, FileTable
from sixfs.fs import FileSystem, InodeType
from sixfs.layout import (
    BSIZE,
    DINODE_SIZE,
    DIRENT_SIZE,
    IPB,
    ROOTINO,
    Dirent,
    DiskInode,
    Superblock,
)
from sixfs.pipe import Pipe

NBLOCKS = 200
NLOG = 30
NINODES = 64
NINODEBLOCKS = NINODES // IPB + 1
NMETA = 2 + NLOG + NINODEBLOCKS + 1


def _pad(data):
    return bytes(data).ljust(BSIZE, b"\0")


def make_disk():
    disk = MemoryDisk(NBLOCKS)
    sb = Superblock(
        size=NBLOCKS,
        nblocks=NBLOCKS - NMETA,
        ninodes=NINODES,
        nlog=NLOG,
        logstart=2,
        inodestart=2 + NLOG,
        bmapstart=2 + NLOG + NINODEBLOCKS,
    )
    disk.write_block(1, _pad(sb.to_bytes()))
    rootblock = NMETA
    din = DiskInode(type=InodeType.DIR, nlink=1, size=2 * DIRENT_SIZE)
    din.addrs[0] = rootblock
    iblock = bytearray(BSIZE)
    off = (ROOTINO % IPB) * DINODE_SIZE
    iblock[off:off + DINODE_SIZE] = din.to_bytes()
    disk.write_block(sb.inodestart + ROOTINO // IPB, bytes(iblock))
    disk.write_block(
        rootblock,
        _pad(Dirent(ROOTINO, ".").to_bytes() + Dirent(ROOTINO, "..").to_bytes()),
    )
    bitmap = bytearray(BSIZE)
    for b in range(NMETA + 1):
        bitmap[b // 8] |= 1 << (b % 8)
    disk.write_block(sb.bmapstart, bytes(bitmap))
    return disk


def open_fs(disk):
    return FileSystem(disk, nbuf=30, ninode=50, logsize=NLOG, maxopblocks=10)


def new_file(fs):
    with fs.transaction():
        ip = fs.ialloc(InodeType.FILE)
        fs.ilock(ip)
        ip.nlink = 1
        fs.iupdate(ip)
        fs.iunlock(ip)
    return ip


def open_inode(table, ip, readable=True, writable=True):
    f = table.alloc()
    f.kind = FileKind.INODE
    f.ip = ip
    f.readable = readable
    f.writable = writable
    return f


def test_inode_write_read_round_trip():
    fs = open_fs(make_disk())
    table = FileTable(fs, 10)
    f = open_inode(table, new_file(fs))
    data = b"some file content"
    assert table.write(f, data) == len(data)
    assert f.off == len(data)
    f.off = 0
    assert table.read(f, 100) == data
    assert table.read(f, 100) == b""


def test_large_write_spans_transactions_and_persists():
    disk = make_disk()
    fs = open_fs(disk)
    table = FileTable(fs, 10)
    ip = new_file(fs)
    f = open_inode(table, ip)
    data = bytes(i % 251 for i in range(5000))
    assert table.write(f, data) == len(data)

    fs2 = open_fs(disk)
    ip2 = fs2.iget(ip.inum)
    fs2.ilock(ip2)
    try:
        assert ip2.size == len(data)
        assert fs2.readi(ip2, 0, len(data)) == data
    finally:
        fs2.iunlock(ip2)


def test_stat_reports_inode():
    fs = open_fs(make_disk())
    table = FileTable(fs, 10)
    ip = new_file(fs)
    f = open_inode(table, ip)
    table.write(f, b"abc")
    st = table.stat(f)
    assert st.ino == ip.inum
    assert st.type == InodeType.FILE
    assert st.size == 3
    assert st.nlink == 1


def test_close_releases_inode_reference():
    fs = open_fs(make_disk())
    table = FileTable(fs, 10)
    ip = new_file(fs)
    f = open_inode(table, ip)
    assert ip.ref == 1
    table.dup(f)
    table.close(f)
    assert f.ref == 1
    assert ip.ref == 1
    table.close(f)
    assert f.ref == 0
    assert f.kind is FileKind.NONE
    assert ip.ref == 0


def test_read_requires_readable():
    fs = open_fs(make_disk())
    table = FileTable(fs, 10)
    f = open_inode(table, new_file(fs), readable=False)
    with pytest.raises(FileError):
        table.read(f, 1)


def test_write_requires_writable():
    fs = open_fs(make_disk())
    table = FileTable(fs, 10)
    f = open_inode(table, new_file(fs), writable=False)
    with pytest.raises(FileError):
        table.write(f, b"x")


def test_alloc_exhausts_table():
    table = FileTable(None, 2)
    a = table.alloc()
    b = table.alloc()
    assert a is not b
    with pytest.raises(FileError):
        table.alloc()
    table.close(a)
    assert table.alloc() is a


def test_dup_and_close_of_free_entry_raise():
    table = FileTable(None, 1)
    f = table.alloc()
    table.close(f)
    with pytest.raises(FileError):
        table.dup(f)
    with pytest.raises(FileError):
        table.close(f)


def test_pipe_files():
    table = FileTable(None, 4)
    p = Pipe()
    rf = table.alloc()
    rf.kind, rf.readable, rf.pipe = FileKind.PIPE, True, p
    wf = table.alloc()
    wf.kind, wf.writable, wf.pipe = FileKind.PIPE, True, p
    assert table.write(wf, b"abc") == 3
    assert table.read(rf, 10) == b"abc"
    table.close(wf)
    assert not p.writeopen
    assert table.read(rf, 10) == b""
    table.close(rf)
    assert p.closed


def test_stat_of_pipe_raises():
    table = FileTable(None, 2)
    f = table.alloc()
    f.kind, f.readable, f.pipe = FileKind.PIPE, True, Pipe()
    with pytest.raises(FileError):
        table.stat(f)


def test_device_read_and_write():
    written = bytearray()

    def dev_write(data):
        written.extend(data)
        return len(data)

    devices = {1: Device(read=lambda n: b"k" * n, write=dev_write)}
    table = FileTable(None, 2, devices)
    f = table.alloc()
    f.kind, f.major, f.readable, f.writable = FileKind.DEVICE, 1, True, True
    assert table.read(f, 3) == b"kkk"
    assert table.write(f, b"out") == 3
    assert bytes(written) == b"out"


def test_unknown_device_raises():
    table = FileTable(None, 2, {1: Device(read=lambda n: b"")})
    f = table.alloc()
    f.kind, f.major, f.readable, f.writable = FileKind.DEVICE, 7, True, True
    with pytest.raises(FileError):
        table.read(f, 1)
    f.major = 1
    with pytest.raises(FileError):
        table.write(f, b"x")


def test_read_of_unset_kind_raises():
    table = FileTable(None, 1)
    f = table.alloc()
    f.readable = True
    with pytest.raises(FileError):
        table.read(f, 1)