# sixfs

`sixfs` is a small Unix-style file system written in plain Python. It
covers the stack from raw disk blocks up to file descriptors:

- `sixfs.layout` defines the on-disk format: the `Superblock`, `DiskInode` and
  `Dirent` records, the `inode_block` and `bitmap_block` helpers, and the name
  helpers `namecmp` and `truncate_name`. Names are cut to 14 bytes.
- `sixfs.disk` provides the block devices. `MemoryDisk` keeps its blocks in memory and
  `FileDisk` reads and writes an image file. `FileDisk` is also a context manager.
- `sixfs.bio` holds `BufferCache`, an LRU cache of disk blocks. Each buffer is locked
  while it is in use.
- `sixfs.log` holds `Log`, a redo log that groups updates into transactions. When a `Log`
  is created it replays any transaction that was committed but not yet installed.
- `sixfs.fs` holds `FileSystem`, which handles block allocation, inodes, reading and
  writing of file contents, directories and path lookup (`namei`, `nameiparent`).
- `sixfs.pipe` holds `Pipe`, a bounded blocking byte pipe. `sixfs.console` holds `Console`,
  a line-buffered input device that handles backspace, kill-line (control-U), end of
  file (control-D) and a process-dump hook (control-P).
- `sixfs.file` holds `FileTable`, a reference-counted table of `OpenFile` objects.
  An open file refers to a pipe, an inode, or a `Device` chosen by its major number.
- `sixfs.syscalls` holds `Process`, which owns file descriptors and a current directory.
  It offers `open`, `close`, `dup`, `read`, `write`, `fstat`, `link`, `unlink`,
  `mkdir`, `mknod`, `chdir` and `pipe`. The flags for `open` are in `OpenMode`.
- `sixfs.mkfs` holds `ImageBuilder` and `make_image`, which build a fresh image. It also
  holds the `sixfs-mkfs` command.

Errors are raised as exceptions, for example `FsError`, `FileError`, `PipeError`,
`LogError` or `DiskError`.

## Installing

```
pip install .
```

## Building an image

```
sixfs-mkfs fs.img README.md notes.txt
```

This command writes a 2000-block image to `fs.img`. The image has 200 inodes and 30 log blocks.
Its root directory holds `.`, `..` and one entry for each file named on the command line.
A leading `user/` is dropped from each name, and so is a leading `_`. After the
prefix is dropped, a name may not contain `/`.

You can build the same image from Python:

```python
from sixfs.mkfs import make_image

sb = make_image("fs.img", [("hello", b"hello, world\n")], 2000, 200, 30)
print(sb.nblocks)
```

## Using an image

```python
from sixfs.disk import FileDisk
from sixfs.fs import FileSystem
from sixfs.file import FileTable
from sixfs.syscalls import OpenMode, Process

with FileDisk("fs.img") as disk:
    fs = FileSystem(disk, 30, 50, 30, 10)   # buffers, inodes, log size, blocks per op
    files = FileTable(fs, 100, {})
    proc = Process(fs, files, 16, None)

    proc.mkdir("/docs")
    fd = proc.open("/docs/a.txt", OpenMode.CREATE | OpenMode.RDWR)
    proc.write(fd, b"some text")
    proc.close(fd)

    fd = proc.open("/docs/a.txt", OpenMode.RDONLY)
    print(proc.read(fd, 100))
    print(proc.fstat(fd))
    proc.close(fd)
```

Each call that changes the file system runs inside a log transaction. The
changed blocks go to the log first and are copied to their home locations only
after the log header is written. If the process stops partway through, the next
`FileSystem` opened on the image finishes or discards the transaction.

## What it does not do

- A `Process` only handles file operations. There is no scheduler, no `fork`,
  `exec` or `wait`, and no loading of programs from the image.
- `Console` is not connected to a terminal. Characters reach it through
  `Console.interrupt`, and its output goes to the function you pass in
  (standard output by default). To serve it through file descriptors, register it
  as a `Device`.
- `sixfs-mkfs` puts files only in the root directory. Its free-block bitmap
  covers one bitmap block.

## Running the tests

```
pip install .[test]
pytest
```