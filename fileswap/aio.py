"""Asynchronous reads and writes of swap files served by worker threads."""

from __future__ import annotations

import errno
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, List, Optional

from .pagefile import SwapError
from .swapfiles import SwapFiles

MAX_TRANSACTIONS = 10240


@dataclass(eq=False)
class IORequest:
    """A transfer of ``length`` bytes at ``offset`` of swap file ``file``.

    A request carrying ``data`` writes it; one without reads.  ``tag`` is
    left for the caller to find what the request belongs to.
    """

    file: int
    offset: int
    length: int
    data: Optional[bytes] = None
    tag: Any = None

    def __post_init__(self) -> None:
        if self.offset < 0 or self.length < 0:
            raise ValueError("offset and length must not be negative")
        if self.data is not None and len(self.data) != self.length:
            raise ValueError("data must hold exactly length bytes")

    @property
    def is_write(self) -> bool:
        return self.data is not None


@dataclass(eq=False)
class IOEvent:
    """Completion of a request: bytes transferred, an errno (0 on success), read data."""

    request: IORequest
    result: int
    error: int = 0
    data: Optional[bytes] = None


class AsyncIO:
    """Queues requests to ``workers`` threads and collects their completions."""

    def __init__(self, files: SwapFiles, workers: int = 1) -> None:
        if workers < 1:
            raise ValueError("at least one worker is needed")
        self.files = files
        self._requests: "queue.Queue[Optional[IORequest]]" = queue.Queue()
        self._done: "queue.Queue[IOEvent]" = queue.Queue()
        self._closed = False
        self._threads = [
            threading.Thread(target=self._work, name=f"swap-io-{n}", daemon=True)
            for n in range(workers)
        ]
        for thread in self._threads:
            thread.start()

    def _work(self) -> None:
        while True:
            request = self._requests.get()
            if request is None:
                return
            self._done.put(self._perform(request))

    def _perform(self, request: IORequest) -> IOEvent:
        try:
            if request.data is not None:
                count = self.files.write(request.file, request.offset, request.data)
                return IOEvent(request, count)
            data = self.files.read(request.file, request.offset, request.length)
            return IOEvent(request, len(data), 0, data)
        except OSError as exc:
            code = exc.errno or errno.EIO
            return IOEvent(request, -code, code)
        except (IndexError, ValueError):
            return IOEvent(request, -errno.EINVAL, errno.EINVAL)

    def submit(self, request: IORequest) -> None:
        """Queue ``request`` for a worker."""
        if self._closed:
            raise SwapError("Could not enqueue request")
        self._requests.put(request)

    def get_events(
        self, min_nr: int = 0, max_nr: int = MAX_TRANSACTIONS, timeout: Optional[float] = None
    ) -> List[IOEvent]:
        """Collect up to ``max_nr`` completions, waiting for at least ``min_nr``.

        Waiting ends after ``timeout`` seconds, or never when it is None;
        whatever arrived by then is returned.
        """
        if min_nr < 0 or max_nr < 1 or min_nr > max_nr:
            raise ValueError("need 0 <= min_nr <= max_nr and max_nr >= 1")
        deadline = None if timeout is None else time.monotonic() + timeout
        events: List[IOEvent] = []
        while len(events) < max_nr:
            try:
                if len(events) >= min_nr:
                    event = self._done.get_nowait()
                elif deadline is None:
                    event = self._done.get()
                else:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    event = self._done.get(timeout=remaining)
            except queue.Empty:
                break
            events.append(event)
        return events

    def close(self) -> None:
        """Finish queued requests and stop the workers."""
        if self._closed:
            return
        self._closed = True
        for _ in self._threads:
            self._requests.put(None)
        for thread in self._threads:
            thread.join()