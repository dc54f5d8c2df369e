"""Allocation of space inside a set of equally sized swap files."""

from __future__ import annotations

import bisect
from typing import Any, Callable, Dict, Iterator, List, Optional

from .pagefile import PageFileLocation, PageStatus, SwapError, pad_to_alignment

MIN_FRAGMENT = 48
"""Free remainders smaller than this are not worth tracking separately."""


class _OffsetMap:
    """A mapping from global offsets to locations, iterated in key order."""

    def __init__(self) -> None:
        self._keys: List[int] = []
        self._items: Dict[int, PageFileLocation] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: int) -> bool:
        return key in self._items

    def __getitem__(self, key: int) -> PageFileLocation:
        return self._items[key]

    def __setitem__(self, key: int, value: PageFileLocation) -> None:
        if key not in self._items:
            bisect.insort(self._keys, key)
        self._items[key] = value

    def __delitem__(self, key: int) -> None:
        self.pop(key)

    def pop(self, key: int) -> PageFileLocation:
        """Remove ``key`` and return the location stored under it."""
        location = self._items.pop(key)
        self._keys.pop(bisect.bisect_left(self._keys, key))
        return location

    def values(self) -> Iterator[PageFileLocation]:
        return (self._items[key] for key in list(self._keys))

    def first_key(self) -> Optional[int]:
        return self._keys[0] if self._keys else None

    def key_after(self, key: int) -> Optional[int]:
        index = bisect.bisect_right(self._keys, key)
        return self._keys[index] if index < len(self._keys) else None

    def key_before(self, key: int) -> Optional[int]:
        index = bisect.bisect_left(self._keys, key)
        return self._keys[index - 1] if index > 0 else None


class SwapAllocator:
    """First-fit allocator over a global offset space spanning all swap files.

    ``swap_free`` counts every byte not handed out, including padding and
    small remainders absorbed into allocations.
    """

    def __init__(self, page_file_size: int, page_file_number: int, alignment: int) -> None:
        if page_file_size <= 0 or alignment <= 0:
            raise ValueError("page file size and alignment must be positive")
        if page_file_size % alignment:
            raise ValueError("page file size must be a multiple of the alignment")
        self.page_file_size = page_file_size
        self.alignment = alignment
        self.page_file_number = 0
        self.swap_size = 0
        self.swap_free = 0
        self._free = _OffsetMap()
        self._all = _OffsetMap()
        self.add_files(0, page_file_number)

    def global_offset(self, location: PageFileLocation) -> int:
        """Map a file location to its offset in the global swap space."""
        return location.file * self.page_file_size + location.offset

    def location_at(self, offset: int, length: int) -> PageFileLocation:
        """Build a location for ``length`` bytes at a global ``offset``."""
        file = offset // self.page_file_size
        return PageFileLocation(
            file, offset - file * self.page_file_size, length, PageStatus.UNKNOWN
        )

    def add_files(self, start: int, stop: int) -> None:
        """Register swap files ``start`` up to ``stop`` as free space."""
        if start != self.page_file_number or stop < start:
            raise ValueError(
                f"files must be appended after file {self.page_file_number}"
            )
        for index in range(start, stop):
            location = PageFileLocation(index, 0, self.page_file_size)
            key = index * self.page_file_size
            self._free[key] = location
            self._all[key] = location
        added = (stop - start) * self.page_file_size
        self.page_file_number = stop
        self.swap_size += added
        self.swap_free += added

    def allocate(
        self,
        size: int,
        owner: Any = None,
        reclaim: Optional[Callable[[int], bool]] = None,
    ) -> Optional[PageFileLocation]:
        """Find room for ``size`` bytes and return the first part of it.

        A single free range that fits is preferred; otherwise the object is
        spread over consecutive free ranges.  ``reclaim`` is asked to release
        the missing number of bytes when free space is short.  Returns None
        when no free space is tracked at all; raises SwapError when swap is
        exhausted.
        """
        if not len(self._free):
            return None
        found = next((loc for loc in self._free.values() if loc.size >= size), None)
        if found is not None:
            location = self._alloc_in_free(found, size)
            if location is None:
                return None
            location.status = PageStatus.END
            location.next = None
            location.owner = owner
            return location

        total = 0
        for location in self._free.values():
            total -= total % self.alignment
            total += location.size
            if total >= size:
                break
        if total < size and reclaim is not None:
            missing = size - total
            if reclaim(missing):
                total += missing
        if total < size:
            raise SwapError("Out of swap space")
        return self._allocate_parts(size, owner)

    def _allocate_parts(self, size: int, owner: Any) -> Optional[PageFileLocation]:
        first: Optional[PageFileLocation] = None
        former: Optional[PageFileLocation] = None
        remaining = size
        key = self._free.first_key()
        while key is not None:
            chunk = self._free[key]
            alloc_here = min(chunk.size, remaining)
            if remaining > alloc_here:
                alloc_here -= alloc_here % self.alignment
            next_key = self._free.key_after(key)
            part = self._alloc_in_free(chunk, alloc_here)
            if part is None:
                if former is not None:
                    former.status = PageStatus.END
                break
            remaining -= alloc_here
            part.status = PageStatus.END if remaining == 0 else PageStatus.PART
            part.next = None
            part.owner = None
            if first is None:
                first = part
            if former is not None:
                former.next = part
            if remaining == 0:
                part.owner = owner
                break
            former = part
            if next_key is None or next_key not in self._free:
                part.status = PageStatus.END
                break
            key = next_key
        if first is None:
            return None
        if remaining:
            self.free(first)
            return None
        return first

    def _alloc_in_free(
        self, chunk: PageFileLocation, size: int
    ) -> Optional[PageFileLocation]:
        former_offset = self.global_offset(chunk)
        padded = pad_to_alignment(size, self.alignment)
        if padded > chunk.size:
            return None
        self._free.pop(former_offset)
        if chunk.size - padded < MIN_FRAGMENT:
            # The remainder is too small to track; the whole range is used.
            self.swap_free -= chunk.size
            chunk.size = size
            return chunk
        part = PageFileLocation(chunk.file, chunk.offset, size)
        chunk.offset += padded
        chunk.size -= padded
        chunk.next = None
        new_offset = self.global_offset(chunk)
        self._free[new_offset] = chunk
        self._all[new_offset] = chunk
        self._all[former_offset] = part
        self.swap_free -= padded
        return part

    def free(self, location: PageFileLocation) -> None:
        """Release every part of an allocation, merging adjacent free space."""
        current: Optional[PageFileLocation] = location
        while current is not None:
            if current.status == PageStatus.FREE:
                raise SwapError("Location is already free")
            following = current.next
            is_end = current.status == PageStatus.END
            self.swap_free += current.size
            goff = self.global_offset(current)

            if current.offset != 0:
                prev_key = self._all.key_before(goff)
                if prev_key is not None and self._all[prev_key].status == PageStatus.FREE:
                    previous = self._all[prev_key]
                    previous.size += current.size
                    self._all.pop(goff)
                    current = previous
                    goff = prev_key

            next_key = self._all.key_after(goff)
            next_offset = self.swap_size if next_key is None else next_key
            span = next_offset - goff
            if current.size != span:
                self.swap_free += span - current.size
                current.size = span

            if next_key is not None:
                follower = self._all[next_key]
                if follower.offset != 0 and follower.status == PageStatus.FREE:
                    current.size += follower.size
                    self._free.pop(next_key)
                    self._all.pop(next_key)

            current.status = PageStatus.FREE
            current.next = None
            current.owner = None
            current.pending = None
            self._free[goff] = current
            if is_end:
                break
            current = following

    def stats(self) -> Dict[str, Any]:
        """Summarise how the swap space is used."""
        free = sum(loc.size for loc in self._free.values())
        end = part = 0
        for loc in self._all.values():
            if loc.status == PageStatus.END:
                end += loc.size
            elif loc.status == PageStatus.PART:
                part += loc.size
        counted = free + end + part
        total = self.swap_size
        return {
            "total": total,
            "free": free,
            "end": end,
            "part": part,
            "fragments": len(self._free),
            "free_fraction": free / counted if counted else 0.0,
            "unaccounted_fraction": (total - counted) / total if total else 0.0,
            "sane": free == self.swap_free,
        }