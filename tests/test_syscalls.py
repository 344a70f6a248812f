import pytest

from sixfs.disk import FileDisk
from sixfs.file import CONSOLE, Device, FileError, FileTable
from sixfs.fs import FileSystem, FsError, InodeType
from sixfs.mkfs import make_image
from sixfs.pipe import PipeError
from sixfs.syscalls import OpenMode, Process

README = b"hello world\n"


@pytest.fixture
def output():
    return []


@pytest.fixture
def proc(tmp_path, output):
    image = tmp_path / "fs.img"
    make_image(image, [("readme", README)], 1000, 200, 30)

    def console_write(data):
        output.append(bytes(data))
        return len(data)

    with FileDisk(image) as disk:
        fs = FileSystem(disk, 30, 50, 30, 10)
        devices = {CONSOLE: Device(read=lambda n: b"typed"[:n], write=console_write)}
        files = FileTable(fs, 100, devices)
        yield Process(fs, files, 16, None)


def test_open_and_read_existing(proc):
    fd = proc.open("/readme", OpenMode.RDONLY)
    assert proc.read(fd, 100) == README
    assert proc.read(fd, 100) == b""


def test_open_missing_raises(proc):
    with pytest.raises(FsError):
        proc.open("/nope", OpenMode.RDONLY)


def test_create_write_read_round_trip(proc):
    data = b"some notes"
    fd = proc.open("/notes", OpenMode.CREATE | OpenMode.RDWR)
    assert proc.write(fd, data) == len(data)
    proc.close(fd)
    fd = proc.open("/notes", OpenMode.RDONLY)
    assert proc.read(fd, 64) == data


def test_fstat_reports_size_and_type(proc):
    data = b"abcdef"
    fd = proc.open("/f", OpenMode.CREATE | OpenMode.WRONLY)
    proc.write(fd, data)
    st = proc.fstat(fd)
    assert st.size == len(data)
    assert st.type == InodeType.FILE
    assert st.nlink == 1


def test_large_write_round_trip(proc):
    data = bytes(i % 251 for i in range(20000))
    fd = proc.open("/big", OpenMode.CREATE | OpenMode.WRONLY)
    assert proc.write(fd, data) == len(data)
    proc.close(fd)
    fd = proc.open("/big", OpenMode.RDONLY)
    assert proc.read(fd, 30000) == data
    assert proc.fstat(fd).size == len(data)


def test_write_to_readonly_raises(proc):
    fd = proc.open("/readme", OpenMode.RDONLY)
    with pytest.raises(FileError):
        proc.write(fd, b"x")


def test_read_from_writeonly_raises(proc):
    fd = proc.open("/readme", OpenMode.WRONLY)
    with pytest.raises(FileError):
        proc.read(fd, 1)


def test_lowest_descriptor_is_reused(proc):
    fd0 = proc.open("/readme", OpenMode.RDONLY)
    fd1 = proc.open("/readme", OpenMode.RDONLY)
    assert fd1 == fd0 + 1
    proc.close(fd0)
    assert proc.open("/readme", OpenMode.RDONLY) == fd0


def test_descriptor_table_exhaustion(proc):
    small = Process(proc.fs, proc.files, 2, None)
    small.open("/readme", OpenMode.RDONLY)
    small.open("/readme", OpenMode.RDONLY)
    with pytest.raises(FileError):
        small.open("/readme", OpenMode.RDONLY)


def test_close_twice_raises(proc):
    fd = proc.open("/readme", OpenMode.RDONLY)
    proc.close(fd)
    with pytest.raises(FileError):
        proc.close(fd)


def test_bad_descriptor_raises(proc):
    with pytest.raises(FileError):
        proc.read(5, 1)
    with pytest.raises(FileError):
        proc.read(-1, 1)


def test_dup_shares_offset(proc):
    fd = proc.open("/readme", OpenMode.RDONLY)
    other = proc.dup(fd)
    assert other != fd
    first = proc.read(fd, 5)
    rest = proc.read(other, 100)
    assert first + rest == README


def test_mkdir_chdir_and_relative_paths(proc):
    proc.mkdir("/dir")
    proc.chdir("/dir")
    fd = proc.open("inner", OpenMode.CREATE | OpenMode.WRONLY)
    proc.write(fd, b"x")
    proc.close(fd)
    fd = proc.open("/dir/inner", OpenMode.RDONLY)
    assert proc.read(fd, 10) == b"x"
    proc.chdir("..")
    fd = proc.open("readme", OpenMode.RDONLY)
    assert proc.read(fd, 100) == README


def test_mkdir_existing_raises(proc):
    proc.mkdir("/d")
    with pytest.raises(FsError):
        proc.mkdir("/d")


def test_create_existing_file_opens_it(proc):
    fd = proc.open("/readme", OpenMode.CREATE | OpenMode.RDONLY)
    assert proc.read(fd, 100) == README


def test_create_over_directory_raises(proc):
    proc.mkdir("/d")
    with pytest.raises(FsError):
        proc.open("/d", OpenMode.CREATE | OpenMode.RDWR)


def test_directory_opens_only_read_only(proc):
    proc.mkdir("/d")
    with pytest.raises(FsError):
        proc.open("/d", OpenMode.WRONLY)
    fd = proc.open("/d", OpenMode.RDONLY)
    assert proc.fstat(fd).type == InodeType.DIR


def test_chdir_to_file_raises(proc):
    with pytest.raises(FsError):
        proc.chdir("/readme")


def test_mkdir_and_unlink_update_parent_link_count(proc):
    root = proc.open("/", OpenMode.RDONLY)
    before = proc.fstat(root).nlink
    proc.mkdir("/sub")
    assert proc.fstat(root).nlink == before + 1
    proc.unlink("/sub")
    assert proc.fstat(root).nlink == before


def test_unlink_removes_name(proc):
    proc.unlink("/readme")
    with pytest.raises(FsError):
        proc.open("/readme", OpenMode.RDONLY)


def test_unlink_dot_entries_raises(proc):
    proc.mkdir("/d")
    with pytest.raises(FsError):
        proc.unlink("/d/.")
    with pytest.raises(FsError):
        proc.unlink("/d/..")


def test_unlink_nonempty_directory_raises(proc):
    proc.mkdir("/d")
    proc.close(proc.open("/d/f", OpenMode.CREATE | OpenMode.WRONLY))
    with pytest.raises(FsError):
        proc.unlink("/d")
    proc.unlink("/d/f")
    proc.unlink("/d")
    with pytest.raises(FsError):
        proc.chdir("/d")


def test_unlinked_open_file_stays_readable(proc):
    fd = proc.open("/readme", OpenMode.RDONLY)
    proc.unlink("/readme")
    assert proc.read(fd, 100) == README
    proc.close(fd)
    fd = proc.open("/fresh", OpenMode.CREATE | OpenMode.RDWR)
    proc.write(fd, b"new")
    proc.close(fd)
    assert proc.read(proc.open("/fresh", OpenMode.RDONLY), 10) == b"new"


def test_link_adds_a_name(proc):
    proc.link("/readme", "/again")
    fd = proc.open("/again", OpenMode.RDONLY)
    assert proc.read(fd, 100) == README
    assert proc.fstat(fd).nlink == 2
    proc.unlink("/readme")
    assert proc.fstat(fd).nlink == 1


def test_link_directory_raises(proc):
    proc.mkdir("/d")
    with pytest.raises(FsError):
        proc.link("/d", "/e")


def test_link_to_existing_name_restores_link_count(proc):
    with pytest.raises(FsError):
        proc.link("/readme", "/readme")
    fd = proc.open("/readme", OpenMode.RDONLY)
    assert proc.fstat(fd).nlink == 1


def test_link_missing_source_raises(proc):
    with pytest.raises(FsError):
        proc.link("/nope", "/other")


def test_pipe_round_trip(proc):
    r, w = proc.pipe()
    data = b"through the pipe"
    assert proc.write(w, data) == len(data)
    proc.close(w)
    assert proc.read(r, 100) == data
    assert proc.read(r, 100) == b""


def test_pipe_write_without_reader_raises(proc):
    r, w = proc.pipe()
    proc.close(r)
    with pytest.raises(PipeError):
        proc.write(w, b"x")


def test_device_file_routes_to_device(proc, output):
    proc.mknod("/console", CONSOLE, 0)
    fd = proc.open("/console", OpenMode.RDWR)
    assert proc.write(fd, b"hi") == 2
    assert output == [b"hi"]
    assert proc.read(fd, 3) == b"typ"
    assert proc.fstat(fd).type == InodeType.DEVICE


def test_open_device_with_bad_major_raises(proc):
    proc.mknod("/bad", 99, 0)
    with pytest.raises(FsError):
        proc.open("/bad", OpenMode.RDWR)


def test_truncate_on_open(proc):
    fd = proc.open("/readme", OpenMode.WRONLY | OpenMode.TRUNC)
    assert proc.fstat(fd).size == 0
    proc.close(fd)
    assert proc.read(proc.open("/readme", OpenMode.RDONLY), 100) == b""