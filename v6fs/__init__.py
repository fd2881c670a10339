"""A small Unix-style file system: image builder, block cache, log, inodes, files and tools."""

__version__ = "0.1.0"