"""Locations in the swap files that hold (parts of) swapped-out chunks."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Iterator, Optional


class SwapError(Exception):
    """Raised when swap space cannot be managed as requested."""


class PageStatus(enum.IntEnum):
    """State of a page file location."""

    FREE = 1
    """Free space not occupied by a swapped chunk."""
    PART = 2
    """Part of an object, followed by further parts."""
    END = 4
    """Last part of an object, or the whole object."""
    WAS_READ = 8
    """Has been read by the user."""
    UNKNOWN = 16
    """Temporary location of unknown state."""


def pad_to_alignment(size: int, alignment: int) -> int:
    """Round ``size`` up to the next multiple of ``alignment``."""
    remainder = size % alignment
    return size if remainder == 0 else size + alignment - remainder


@dataclass(eq=False)
class PageFileLocation:
    """A contiguous range of one swap file.

    Objects are preferably stored contiguously; when swap is fragmented an
    object is split over several locations linked through ``next``.  The last
    location of an object carries ``PageStatus.END`` and its ``owner``.
    """

    file: int
    offset: int
    size: int
    status: PageStatus = PageStatus.FREE
    next: Optional[PageFileLocation] = None
    owner: Any = None
    pending: Any = None

    def parts(self) -> Iterator[PageFileLocation]:
        """Yield this location and every following part up to the end."""
        current: Optional[PageFileLocation] = self
        while current is not None:
            yield current
            if current.status == PageStatus.END:
                return
            current = current.next