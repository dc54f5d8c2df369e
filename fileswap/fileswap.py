"""A swap space spread over files on disk, filled and drained asynchronously."""

from __future__ import annotations

import enum
import itertools
import logging
import mmap
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Set

from .aio import MAX_TRANSACTIONS, AsyncIO, IOEvent, IORequest
from .allocator import SwapAllocator
from .pagefile import PageFileLocation, SwapError, pad_to_alignment
from .swapfiles import SwapFiles

logger = logging.getLogger(__name__)

MIB = 1024**2
GIB = 1024**3
DMA_ALIGNMENT = 512
RESIZE_FRACTION = 0.1
"""Swap files grow in steps of this fraction of their full size."""


class SwapPolicy(enum.Enum):
    """What to do when swap space runs out."""

    FIXED = "fixed"
    AUTOEXTENDABLE = "autoextendable"
    INTERACTIVE = "interactive"


class ChunkStatus(enum.Enum):
    """Where the data of a chunk currently lives."""

    ALLOCATED = "allocated"
    ALLOCATED_INUSE_READ = "allocated_inuse_read"
    ALLOCATED_INUSE_WRITE = "allocated_inuse_write"
    SWAPPED = "swapped"
    SWAPIN = "swapin"
    SWAPOUT = "swapout"

    @property
    def is_allocated(self) -> bool:
        return self.name.startswith("ALLOCATED")


_chunk_ids = itertools.count()


@dataclass(eq=False)
class SwapChunk:
    """A block of data that can be moved between RAM and swap."""

    data: Optional[bytearray]
    status: ChunkStatus = ChunkStatus.ALLOCATED
    use_count: int = 0
    swap_location: Optional[PageFileLocation] = None
    size: int = field(init=False)
    id: int = field(default_factory=lambda: next(_chunk_ids))

    def __post_init__(self) -> None:
        if self.data is None:
            raise ValueError("a chunk starts out holding its data")
        self.data = bytearray(self.data)
        self.size = len(self.data)


@dataclass(eq=False)
class _Transaction:
    chunk: SwapChunk
    reading: bool
    remaining: int
    buffer: bytearray


class FileSwap:
    """Swap space in numbered files with asynchronous transfers.

    ``swap_used`` counts bytes of chunks that live in swap only;
    ``ram_delta`` counts chunk bytes this swap brought into RAM (positive)
    or took out of it (negative).
    """

    def __init__(
        self,
        size: int,
        filemask: str,
        one_file: int = 0,
        enable_dma: bool = False,
        policy: SwapPolicy = SwapPolicy.AUTOEXTENDABLE,
    ) -> None:
        if size <= 0:
            raise ValueError("swap size must be positive")
        if one_file < 0:
            raise ValueError("page file size must not be negative")
        self.page_size = mmap.PAGESIZE
        self.policy = policy
        self.prompt: Callable[[str], str] = input
        self._allocator: Optional[SwapAllocator] = None
        self.enable_dma = False
        self.memory_alignment = 1
        self.set_dma(enable_dma)

        if one_file == 0:
            one_file = max(MIB, min(4 * GIB, size // 16))
        one_file = pad_to_alignment(one_file, self.memory_alignment)
        self.page_file_size = one_file
        number = -(-size // one_file)

        self._files = SwapFiles(filemask, self.enable_dma)
        try:
            self._files.open_range(0, number)
        except Exception:
            self._files.close()
            raise
        if self._files.direct != self.enable_dma:
            self.set_dma(self._files.direct)
        self._allocator = SwapAllocator(one_file, number, self.memory_alignment)

        self.swap_used = 0
        self.ram_delta = 0
        self.pending_release = 0
        self._state = threading.Condition(threading.RLock())
        self._aio_waiter = threading.Lock()
        self._pending: Set[IORequest] = set()
        self._queued = 0
        self._chunks: dict = {}
        self._failure: Optional[SwapError] = None
        self._closed = False

        workers = max(1, (os.cpu_count() or 2) // 2)
        self._aio = AsyncIO(self._files, workers)
        self._stop = threading.Event()
        self._arrive_thread = threading.Thread(
            target=self._arrive_worker, name="swap-arrive", daemon=True
        )
        self._arrive_thread.start()

    # -- properties -------------------------------------------------------

    @property
    def swap_size(self) -> int:
        return self._allocator.swap_size

    @property
    def swap_free(self) -> int:
        return self._allocator.swap_free

    @property
    def page_file_number(self) -> int:
        return self._allocator.page_file_number

    @property
    def pending_transfers(self) -> int:
        return self._queued

    @property
    def closed(self) -> bool:
        return self._closed

    # -- configuration ----------------------------------------------------

    def set_dma(self, enabled: bool) -> None:
        """Switch the alignment needed for direct I/O on or off."""
        alignment = DMA_ALIGNMENT if enabled else 1
        if self._allocator is not None and self.page_file_size % alignment:
            raise SwapError("Page file size does not fit the DMA alignment")
        self.enable_dma = bool(enabled)
        self.memory_alignment = alignment
        if self._allocator is not None:
            self._allocator.alignment = alignment

    # -- bookkeeping ------------------------------------------------------

    def _check_open(self) -> None:
        if self._closed:
            raise SwapError("Swap is closed")

    def _claim(self, size: int, ram: bool, used: bool) -> None:
        delta = size if used else -size
        if ram:
            self.ram_delta += delta
        else:
            self.swap_used += delta

    def _raise_failure(self) -> None:
        if self._failure is not None:
            failure, self._failure = self._failure, None
            raise failure

    def _wait_for_aio(self) -> None:
        self._raise_failure()
        if not self.check_for_aio():
            self._state.wait(0.001)

    def _release(self, location: PageFileLocation) -> None:
        for part in list(location.parts()):
            while part.pending is not None:
                self._wait_for_aio()
        self._allocator.free(location)

    def _cleanup_cached(self, minimum_size: int = 0) -> bool:
        cleaned = 0
        for chunk in list(self._chunks.values()):
            if minimum_size != 0 and cleaned >= minimum_size:
                break
            if chunk.status.is_allocated and chunk.swap_location is not None:
                cleaned += chunk.size
                self._release(chunk.swap_location)
                chunk.swap_location = None
        return cleaned > minimum_size

    # -- transfers --------------------------------------------------------

    def _copy_mem(self, location: PageFileLocation, chunk: SwapChunk, reading: bool) -> None:
        parts = list(location.parts())
        transaction = _Transaction(
            chunk, reading, len(parts), bytearray(chunk.size) if reading else bytearray()
        )
        source = b"" if reading else bytes(chunk.data)
        buffer_offset = 0
        for part in parts:
            self._schedule(part, transaction, buffer_offset, source)
            buffer_offset += part.size

    def _schedule(
        self, part: PageFileLocation, transaction: _Transaction, buffer_offset: int, source: bytes
    ) -> None:
        length = pad_to_alignment(part.size, self.memory_alignment)
        needed = part.offset + length
        current = self._files.ensure_size(part.file, 0)
        if needed > current:
            step = max(1, int(self.page_file_size * RESIZE_FRACTION))
            rounded = -(-needed // step) * step
            self._files.ensure_size(part.file, max(needed, min(rounded, self.page_file_size)))
        data = None
        if not transaction.reading:
            data = source[buffer_offset:buffer_offset + part.size].ljust(length, b"\0")
        request = IORequest(part.file, part.offset, length, data, (part, transaction, buffer_offset))
        part.pending = request
        self._pending.add(request)
        self._queued += 1
        self._aio.submit(request)

    def _arrived(self, event: IOEvent) -> None:
        request = event.request
        part, transaction, buffer_offset = request.tag
        if event.error != 0 or event.result != request.length:
            logger.error(
                "We have trouble in chunk %s, error %d; transferred %d of %d bytes",
                transaction.chunk.id, event.error, event.result, request.length,
            )
            raise SwapError("unknown aio error")
        if transaction.reading and event.data is not None:
            transaction.buffer[buffer_offset:buffer_offset + part.size] = event.data[:part.size]
        part.pending = None
        transaction.remaining -= 1
        if transaction.remaining == 0:
            self._complete(transaction)
        self._queued -= 1
        self._state.notify_all()

    def _complete(self, transaction: _Transaction) -> None:
        chunk = transaction.chunk
        if chunk.status is ChunkStatus.SWAPIN:
            chunk.data = transaction.buffer
            chunk.status = (
                ChunkStatus.ALLOCATED if chunk.use_count == 0 else ChunkStatus.ALLOCATED_INUSE_READ
            )
            self._claim(chunk.size, ram=False, used=False)
        elif chunk.status is ChunkStatus.SWAPOUT:
            chunk.data = None
            chunk.status = ChunkStatus.SWAPPED
            self._claim(chunk.size, ram=True, used=False)
            self.pending_release -= chunk.size
        else:
            raise SwapError("AIO Synchronization broken!")
        self._state.notify_all()

    def check_for_aio(self) -> bool:
        """Process arrived transfers.

        Returns False when another thread is already waiting for arrivals,
        True otherwise.
        """
        if not self._aio_waiter.acquire(blocking=False):
            return False
        try:
            with self._state:
                if self._queued == 0:
                    return True
                events = self._aio.get_events(0, MAX_TRANSACTIONS)
                if not events:
                    events = self._aio.get_events(1, MAX_TRANSACTIONS, timeout=1e-4)
                for event in events:
                    if event.request in self._pending:
                        self._pending.discard(event.request)
                        self._arrived(event)
                return True
        finally:
            self._aio_waiter.release()

    def _arrive_worker(self) -> None:
        while not self._stop.is_set():
            if self._queued > 0:
                try:
                    self.check_for_aio()
                except SwapError as exc:
                    logger.error("Asynchronous transfer failed: %s", exc)
                    with self._state:
                        self._failure = exc
                        self._state.notify_all()
            self._stop.wait(0.001)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until no transfer is pending; False if ``timeout`` ran out."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._state:
            while self._queued:
                self._raise_failure()
                if deadline is not None and time.monotonic() >= deadline:
                    return False
                self._wait_for_aio()
            self._raise_failure()
            return True

    # -- interface --------------------------------------------------------

    def swap_out(self, chunk: SwapChunk) -> int:
        """Start moving ``chunk`` to swap; return the bytes it accounts for."""
        with self._state:
            self._check_open()
            if chunk.size > self.swap_free:
                return 0
            if chunk.status in (ChunkStatus.SWAPPED, ChunkStatus.SWAPOUT):
                return chunk.size
            if chunk.status is ChunkStatus.SWAPIN:
                return 0
            self._chunks[chunk.id] = chunk
            if chunk.swap_location is not None:
                # The data on disk is still valid; dropping RAM is enough.
                chunk.data = None
                chunk.status = ChunkStatus.SWAPPED
                self._claim(chunk.size, ram=True, used=False)
                self._claim(chunk.size, ram=False, used=True)
                self._state.notify_all()
                return chunk.size
            location = self._allocator.allocate(chunk.size, chunk, self._cleanup_cached)
            if location is None:
                return 0
            chunk.swap_location = location
            self._claim(chunk.size, ram=False, used=True)
            self.pending_release += chunk.size
            chunk.status = ChunkStatus.SWAPOUT
            self._copy_mem(location, chunk, reading=False)
            return chunk.size

    def swap_in(self, chunk: SwapChunk) -> int:
        """Start reading ``chunk`` back into RAM; return the bytes scheduled."""
        with self._state:
            self._check_open()
            while chunk.status is ChunkStatus.SWAPOUT:
                self._wait_for_aio()
            if chunk.swap_location is None or chunk.status is ChunkStatus.SWAPIN:
                return 0
            if chunk.status.is_allocated:
                return 0
            self._claim(chunk.size, ram=True, used=True)
            chunk.status = ChunkStatus.SWAPIN
            self._copy_mem(chunk.swap_location, chunk, reading=True)
            return chunk.size

    def swap_out_many(self, chunks: Iterable[SwapChunk]) -> int:
        """Swap out every chunk; return the summed bytes."""
        return sum(self.swap_out(chunk) for chunk in chunks)

    def swap_in_many(self, chunks: Iterable[SwapChunk]) -> int:
        """Swap in every chunk; return the summed bytes."""
        return sum(self.swap_in(chunk) for chunk in chunks)

    def swap_delete(self, chunk: SwapChunk) -> None:
        """Forget ``chunk`` and release its swap space."""
        with self._state:
            self._check_open()
            if chunk.swap_location is not None:
                self._release(chunk.swap_location)
                chunk.swap_location = None
                if chunk.data is None:
                    self._claim(chunk.size, ram=False, used=False)
            self._chunks.pop(chunk.id, None)

    def invalidate_cache_for(self, chunk: SwapChunk) -> None:
        """Drop the on-disk copy of a chunk that may have changed in RAM."""
        with self._state:
            self._check_open()
            if chunk.swap_location is not None:
                self._release(chunk.swap_location)
                chunk.swap_location = None

    def extend_swap(self, size: int) -> bool:
        """Add swap files for at least ``size`` bytes; False if the disk is too full."""
        if size < 0:
            raise ValueError("size must not be negative")
        with self._state:
            self._check_open()
            size = pad_to_alignment(size, self.page_file_size)
            if size > self._files.free_disk_space():
                return False
            old = self.page_file_number
            new = old + size // self.page_file_size
            self._files.open_range(old, new)
            self._allocator.add_files(old, new)
            return True

    def extend_swap_by_policy(self, min_size: int) -> bool:
        """Grow swap by at least ``min_size`` bytes as the policy allows."""
        needed = pad_to_alignment(min_size, self.page_file_size)
        extend_by = 0
        if self.policy is SwapPolicy.FIXED:
            return False
        if self.policy is SwapPolicy.AUTOEXTENDABLE:
            free_on_disk = self._files.free_disk_space()
            if free_on_disk < needed:
                return False
            logger.warning(
                "Extending possible swap space by %d MB ( %d MB left on hdd)",
                self.page_file_size // MIB, free_on_disk // MIB,
            )
            extend_by = needed
        else:
            free_on_disk = self._files.free_disk_space()
            while extend_by < needed or extend_by > free_on_disk:
                message = (
                    f"I am out of swap.\n\tI can increase in steps of "
                    f"~{self.page_file_size // MIB}MB\n\tWe need at least "
                    f"{needed // self.page_file_size} steps, possible steps until disk "
                    f"is full: {free_on_disk // self.page_file_size}\n\t please type in "
                    f"an integer number and press enter"
                )
                logger.warning(message)
                while True:
                    try:
                        answer = self.prompt(message)
                    except EOFError:
                        return False
                    try:
                        steps = int(answer.strip())
                        break
                    except ValueError:
                        logger.error("I don't feel like this being an integer.")
                free_on_disk = self._files.free_disk_space()
                extend_by = steps * self.page_file_size
                if extend_by > free_on_disk:
                    logger.error("You want to assign more disk space than you have.")
                if extend_by < needed:
                    logger.error("You want to assign less than we need.")
        return self.extend_swap(extend_by)

    def close(self) -> None:
        """Stop the workers and delete the swap files."""
        if self._closed:
            return
        self._closed = True
        self._stop.set()
        self._arrive_thread.join()
        self._aio.close()
        with self._state:
            self._pending.clear()
            self._queued = 0
            self._chunks.clear()
        self._files.close()

    def __enter__(self) -> FileSwap:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()