"""File-system calls made on behalf of one process."""

from __future__ import annotations

import enum

from .file import FileError, FileKind, FileTable, OpenFile
from .fs import FileSystem, FsError, Inode, InodeType, Stat
from .layout import DIRENT_SIZE, ROOTINO, Dirent, namecmp
from .pipe import Pipe

NOFILE = 16
NDEV = 10


class OpenMode(enum.IntFlag):
    """Flags accepted by :meth:`Process.open`."""

    RDONLY = 0x000
    WRONLY = 0x001
    RDWR = 0x002
    CREATE = 0x200
    TRUNC = 0x400


class Process:
    """The file descriptors and current directory of one process."""

    def __init__(
        self,
        fs: FileSystem,
        files: FileTable,
        nofile: int = NOFILE,
        cwd: Inode | None = None,
    ) -> None:
        if nofile < 1:
            raise ValueError("a process needs at least one file descriptor")
        self.fs = fs
        self.files = files
        self.ofile: list[OpenFile | None] = [None] * nofile
        # The process holds its own reference to its current directory.
        self.cwd = fs.idup(cwd) if cwd is not None else fs.iget(ROOTINO)

    # Descriptors.

    def _argfd(self, fd: int) -> OpenFile:
        if not 0 <= fd < len(self.ofile) or self.ofile[fd] is None:
            raise FileError(f"bad file descriptor {fd}")
        return self.ofile[fd]

    def _fdalloc(self, f: OpenFile) -> int:
        for fd, slot in enumerate(self.ofile):
            if slot is None:
                self.ofile[fd] = f
                return fd
        raise FileError("no free file descriptor")

    def close(self, fd: int) -> None:
        f = self._argfd(fd)
        self.ofile[fd] = None
        self.files.close(f)

    def dup(self, fd: int) -> int:
        """A new descriptor for the same open file."""
        f = self._argfd(fd)
        newfd = self._fdalloc(f)
        self.files.dup(f)
        return newfd

    def read(self, fd: int, n: int) -> bytes:
        return self.files.read(self._argfd(fd), n)

    def write(self, fd: int, data: bytes) -> int:
        return self.files.write(self._argfd(fd), data)

    def fstat(self, fd: int) -> Stat:
        return self.files.stat(self._argfd(fd))

    # Names.

    def _parent(self, path: str) -> tuple[Inode, str]:
        found = self.fs.nameiparent(path, self.cwd)
        if found is None:
            raise FsError(f"{path}: no such parent directory")
        return found

    def _create(self, path: str, itype: InodeType, major: int, minor: int) -> Inode:
        """Create ``path`` and return its inode locked; the caller runs a transaction."""
        fs = self.fs
        dp, name = self._parent(path)
        fs.ilock(dp)
        hit = fs.dirlookup(dp, name)
        if hit is not None:
            ip = hit[0]
            fs.iunlockput(dp)
            fs.ilock(ip)
            if itype == InodeType.FILE and ip.type in (InodeType.FILE, InodeType.DEVICE):
                return ip
            fs.iunlockput(ip)
            raise FsError(f"{path}: already exists")

        try:
            ip = fs.ialloc(itype)
        except FsError:
            fs.iunlockput(dp)
            raise

        fs.ilock(ip)
        ip.major = major
        ip.minor = minor
        ip.nlink = 1
        fs.iupdate(ip)

        try:
            if itype == InodeType.DIR:
                # No nlink for ".": that would be a cyclic reference count.
                fs.dirlink(ip, ".", ip.inum)
                fs.dirlink(ip, "..", dp.inum)
            fs.dirlink(dp, name, ip.inum)
        except FsError:
            ip.nlink = 0
            fs.iupdate(ip)
            fs.iunlockput(ip)
            fs.iunlockput(dp)
            raise

        if itype == InodeType.DIR:
            dp.nlink += 1  # for ".."
            fs.iupdate(dp)
        fs.iunlockput(dp)
        return ip

    def open(self, path: str, mode: int = OpenMode.RDONLY) -> int:
        """Open ``path`` and return the new file descriptor."""
        mode = OpenMode(mode)
        fs = self.fs
        with fs.transaction():
            if mode & OpenMode.CREATE:
                ip = self._create(path, InodeType.FILE, 0, 0)
            else:
                ip = fs.namei(path, self.cwd)
                if ip is None:
                    raise FsError(f"{path}: no such file or directory")
                fs.ilock(ip)
                if ip.type == InodeType.DIR and mode != OpenMode.RDONLY:
                    fs.iunlockput(ip)
                    raise FsError(f"{path}: is a directory")

            if ip.type == InodeType.DEVICE and not 0 <= ip.major < NDEV:
                fs.iunlockput(ip)
                raise FsError(f"{path}: bad device number {ip.major}")

            try:
                f = self.files.alloc()
            except FileError:
                fs.iunlockput(ip)
                raise
            try:
                fd = self._fdalloc(f)
            except FileError:
                self.files.close(f)
                fs.iunlockput(ip)
                raise

            if ip.type == InodeType.DEVICE:
                f.kind = FileKind.DEVICE
                f.major = ip.major
            else:
                f.kind = FileKind.INODE
                f.off = 0
            f.ip = ip
            f.readable = not mode & OpenMode.WRONLY
            f.writable = bool(mode & (OpenMode.WRONLY | OpenMode.RDWR))

            if mode & OpenMode.TRUNC and ip.type == InodeType.FILE:
                fs.itrunc(ip)
            fs.iunlock(ip)
        return fd

    def link(self, old: str, new: str) -> None:
        """Make ``new`` another name for the file ``old``."""
        fs = self.fs
        with fs.transaction():
            ip = fs.namei(old, self.cwd)
            if ip is None:
                raise FsError(f"{old}: no such file or directory")
            fs.ilock(ip)
            if ip.type == InodeType.DIR:
                fs.iunlockput(ip)
                raise FsError(f"{old}: cannot link a directory")
            ip.nlink += 1
            fs.iupdate(ip)
            fs.iunlock(ip)

            try:
                dp, name = self._parent(new)
                fs.ilock(dp)
                try:
                    fs.dirlink(dp, name, ip.inum)
                finally:
                    fs.iunlockput(dp)
            except FsError:
                fs.ilock(ip)
                ip.nlink -= 1
                fs.iupdate(ip)
                fs.iunlockput(ip)
                raise
            fs.iput(ip)

    def _isdirempty(self, dp: Inode) -> bool:
        """True if the directory holds nothing but "." and ".."."""
        for off in range(2 * DIRENT_SIZE, dp.size, DIRENT_SIZE):
            raw = self.fs.readi(dp, off, DIRENT_SIZE)
            if len(raw) != DIRENT_SIZE:
                raise FsError("isdirempty: readi")
            if Dirent.from_bytes(raw).inum != 0:
                return False
        return True

    def _unlink_entry(self, dp: Inode, name: str) -> Inode:
        """Clear the entry ``name`` of the locked directory; returns its inode locked."""
        fs = self.fs
        if namecmp(name, ".") == 0 or namecmp(name, "..") == 0:
            raise FsError(f"cannot unlink {name!r}")
        hit = fs.dirlookup(dp, name)
        if hit is None:
            raise FsError(f"{name}: no such file or directory")
        ip, off = hit
        fs.ilock(ip)
        if ip.nlink < 1:
            fs.iunlockput(ip)
            raise FsError("unlink: nlink < 1")
        if ip.type == InodeType.DIR and not self._isdirempty(ip):
            fs.iunlockput(ip)
            raise FsError(f"{name}: directory not empty")
        if fs.writei(dp, off, bytes(DIRENT_SIZE)) != DIRENT_SIZE:
            fs.iunlockput(ip)
            raise FsError("unlink: writei")
        if ip.type == InodeType.DIR:
            dp.nlink -= 1
            fs.iupdate(dp)
        return ip

    def unlink(self, path: str) -> None:
        """Remove the name ``path``; the file goes when its last reference does."""
        fs = self.fs
        with fs.transaction():
            dp, name = self._parent(path)
            fs.ilock(dp)
            try:
                ip = self._unlink_entry(dp, name)
            finally:
                fs.iunlockput(dp)
            ip.nlink -= 1
            fs.iupdate(ip)
            fs.iunlockput(ip)

    def mkdir(self, path: str) -> None:
        with self.fs.transaction():
            self.fs.iunlockput(self._create(path, InodeType.DIR, 0, 0))

    def mknod(self, path: str, major: int, minor: int) -> None:
        with self.fs.transaction():
            self.fs.iunlockput(self._create(path, InodeType.DEVICE, major, minor))

    def chdir(self, path: str) -> None:
        fs = self.fs
        with fs.transaction():
            ip = fs.namei(path, self.cwd)
            if ip is None:
                raise FsError(f"{path}: no such file or directory")
            fs.ilock(ip)
            if ip.type != InodeType.DIR:
                fs.iunlockput(ip)
                raise FsError(f"{path}: not a directory")
            fs.iunlock(ip)
            fs.iput(self.cwd)
            self.cwd = ip

    def pipe(self) -> tuple[int, int]:
        """Create a pipe; returns the read and write descriptors."""
        rf = self.files.alloc()
        try:
            wf = self.files.alloc()
        except FileError:
            self.files.close(rf)
            raise
        p = Pipe()
        rf.kind, rf.readable, rf.writable, rf.pipe = FileKind.PIPE, True, False, p
        wf.kind, wf.readable, wf.writable, wf.pipe = FileKind.PIPE, False, True, p
        try:
            fd0 = self._fdalloc(rf)
        except FileError:
            self.files.close(rf)
            self.files.close(wf)
            raise
        try:
            fd1 = self._fdalloc(wf)
        except FileError:
            self.ofile[fd0] = None
            self.files.close(rf)
            self.files.close(wf)
            raise
        return fd0, fd1