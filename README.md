# fileswap

`fileswap` gives a Python program a swap space backed by files on disk. Use it
when the program holds more data than it wants to keep in memory. Blocks of
bytes are written to a set of page files, and a page-file allocator keeps track
of where each block lives. The blocks can be read back later.

Worker threads carry out the reads and writes. A background thread collects
finished transfers and updates the state of each chunk. You can also collect
them yourself by calling `check_for_aio()`, or wait for all of them with
`wait_idle()`.

## Installing

```
pip install .
```

Nothing outside the standard library is needed at run time. To run the tests:

```
pip install ".[test]"
pytest
```

## Overview

- **`fileswap.fileswap.FileSwap`** is the swap itself. Its arguments are:
  - `size`: the total size.
  - `filemask`: a file mask with two `%d` fields, for example
    `"/tmp/swap-%d-%d"`. The first field takes the process id and the second
    takes the file number.
  - `one_file`: the size of one page file. With `0`, the size is chosen
    automatically as a sixteenth of the total, kept between 1 MiB and 4 GiB.
  - `enable_dma`: switches on direct I/O (see below).
  - `policy`: a `SwapPolicy`.

  Its main methods:
  - `swap_out(chunk)` and `swap_in(chunk)` schedule transfers.
  - `swap_out_many(chunks)` and `swap_in_many(chunks)` do the same for several
    chunks.
  - `swap_delete(chunk)` releases a chunk's swap space.
  - `invalidate_cache_for(chunk)` drops the on-disk copy of a chunk that is
    still in memory.
  - `extend_swap(size)` adds page files.
  - `extend_swap_by_policy(min_size)` grows the swap as the policy allows.
  - `close()` stops the workers and deletes the page files. `FileSwap` is also
    a context manager, so leaving a `with` block closes it.

- **`fileswap.fileswap.SwapChunk`** holds one block of data, its `ChunkStatus`
  (`ALLOCATED`, `SWAPOUT`, `SWAPPED`, `SWAPIN`, …) and its location in swap.

- **`fileswap.fileswap.SwapPolicy`** sets what `extend_swap_by_policy` does:
  - `FIXED` refuses to grow.
  - `AUTOEXTENDABLE` adds the needed space if the disk has room for it.
  - `INTERACTIVE` asks how many steps to add, through `FileSwap.prompt`. By
    default that is the built-in `input`.

- **`fileswap.allocator.SwapAllocator`** is a first-fit allocator over all page
  files.
  - When no single free region is large enough, it splits a block over several
    regions.
  - Neighbouring free regions are merged when space is freed.
  - `stats()` summarises how the space is used.

- **`fileswap.swapfiles.SwapFiles`** creates, grows, reads, writes and finally
  deletes the page files.

- **`fileswap.aio.AsyncIO`** is the worker pool. It carries out `IORequest`s
  and reports an `IOEvent` for each one.

- **`fileswap.pagefile`** defines `PageFileLocation`, `PageStatus`,
  `pad_to_alignment`, and `SwapError`, which is raised on failures.

## Example

```python
from fileswap.fileswap import FileSwap, SwapChunk, SwapPolicy

with FileSwap(8 * 1024 * 1024, "/tmp/demo-swap-%d-%d", 0, False,
              SwapPolicy.FIXED) as swap:
    chunk = SwapChunk(b"hello, swap" * 1000)
    swap.swap_out(chunk)   # schedules the write
    swap.wait_idle(5.0)    # waits until the transfer has completed
    swap.swap_in(chunk)    # schedules the read
    swap.wait_idle(5.0)
    assert chunk.data.startswith(b"hello, swap")
    swap.swap_delete(chunk)
```

## Direct I/O

Passing `enable_dma=True` does two things:

- Every transfer is padded to 512-byte alignment.
- The page files are opened with `O_DIRECT` where the platform provides it.

If the file system refuses direct I/O for the first page file, the swap falls
back to buffered files and to an alignment of 1.

## What it does not do

`fileswap` only moves chunks between memory and disk when it is told to. It
does not decide which chunks to swap out or when, and it does not track how
much memory the program uses.

Running out of swap space does not grow the swap by itself. `swap_out` either
returns `0` or raises `SwapError`, and the caller decides whether to call
`extend_swap_by_policy`.

There is no command-line tool.