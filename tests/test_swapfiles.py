import os

import pytest

from fileswap.pagefile import SwapError
from fileswap.swapfiles import SwapFiles


@pytest.fixture
def mask(tmp_path):
    return str(tmp_path / "swap-%d-%d")


@pytest.fixture
def files(mask):
    swap = SwapFiles(mask)
    swap.open_range(0, 2)
    yield swap
    swap.close()


def test_file_name_uses_pid_and_index(tmp_path, mask):
    swap = SwapFiles(mask)
    assert swap.file_name(3) == str(tmp_path / f"swap-{os.getpid()}-3")


def test_invalid_mask_raises():
    with pytest.raises(SwapError):
        SwapFiles("swap-%s")


def test_open_range_creates_files(files):
    assert len(files) == 2
    assert os.path.exists(files.file_name(0))
    assert os.path.exists(files.file_name(1))


def test_open_range_must_append(files):
    with pytest.raises(ValueError):
        files.open_range(5, 6)


def test_open_range_extends(files):
    files.open_range(2, 4)
    assert len(files) == 4
    assert os.path.exists(files.file_name(3))


def test_write_read_round_trip(files):
    payload = b"swapped data" * 10
    assert files.write(1, 100, payload) == len(payload)
    assert files.read(1, 100, len(payload)) == payload


def test_read_past_end_is_short(files):
    files.write(0, 0, b"abc")
    assert files.read(0, 0, 10) == b"abc"


def test_ensure_size_grows_but_never_shrinks(files):
    assert files.ensure_size(0, 4096) == 4096
    assert os.path.getsize(files.file_name(0)) == 4096
    assert files.ensure_size(0, 1000) == 4096
    assert os.path.getsize(files.file_name(0)) == 4096


def test_invalid_index_raises(files):
    with pytest.raises(IndexError):
        files.read(-1, 0, 4)
    with pytest.raises(IndexError):
        files.ensure_size(7, 10)


def test_close_removes_files(mask):
    swap = SwapFiles(mask)
    swap.open_range(0, 3)
    names = [swap.file_name(n) for n in range(3)]
    swap.close()
    assert not any(os.path.exists(name) for name in names)
    assert len(swap) == 0


def test_context_manager_closes(mask):
    with SwapFiles(mask) as swap:
        swap.open_range(0, 1)
        name = swap.file_name(0)
        assert swap.write(0, 0, b"context") == 7
        assert swap.read(0, 0, 7) == b"context"
        assert len(swap) == 1
    assert len(swap) == 0
    assert not os.path.exists(name)


def test_free_disk_space_is_positive(files):
    assert files.free_disk_space() > 0


def test_direct_round_trip_or_fallback(mask):
    with SwapFiles(mask, direct=True) as swap:
        swap.open_range(0, 1)
        payload = bytes(range(256)) * 16
        swap.ensure_size(0, len(payload))
        assert swap.write(0, 0, payload) == len(payload)
        assert swap.read(0, 0, len(payload)) == payload