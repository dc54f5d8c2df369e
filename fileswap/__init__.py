"""File-backed swap space with a page-file allocator and asynchronous I/O workers."""

__version__ = "0.1.0"
__all__ = ["aio", "allocator", "fileswap", "pagefile", "swapfiles"]