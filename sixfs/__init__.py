"""A small Unix-style file system: disk images, buffer cache, redo log, inodes, pipes and console."""

__version__ = "0.1.0"