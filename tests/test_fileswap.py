import pytest

from fileswap.fileswap import MIB, ChunkStatus, FileSwap, SwapChunk, SwapPolicy
from fileswap.pagefile import SwapError


def _mask(tmp_path):
    return str(tmp_path / "swap-%d-%d")


def _pattern(size, seed=0):
    return bytearray((seed + n) % 256 for n in range(size))


@pytest.fixture
def small_swap(tmp_path):
    swap = FileSwap(4096, _mask(tmp_path), one_file=1024, policy=SwapPolicy.FIXED)
    yield swap
    swap.close()


def test_default_layout_uses_one_mib_files(tmp_path):
    with FileSwap(3 * MIB, _mask(tmp_path)) as swap:
        assert swap.page_file_size == MIB
        assert swap.page_file_number == 3
        assert swap.swap_size == 3 * MIB
        assert swap.swap_free == swap.swap_size
        assert len(list(tmp_path.iterdir())) == 3


def test_close_removes_files(tmp_path):
    with FileSwap(2048, _mask(tmp_path), one_file=1024) as swap:
        assert len(list(tmp_path.iterdir())) == 2
    assert swap.closed
    assert list(tmp_path.iterdir()) == []


def test_round_trip(small_swap):
    original = _pattern(600, 7)
    chunk = SwapChunk(original)
    assert small_swap.swap_out(chunk) == 600
    assert small_swap.wait_idle(5.0)
    assert chunk.status is ChunkStatus.SWAPPED
    assert chunk.data is None
    assert small_swap.swap_used == 600
    assert small_swap.swap_in(chunk) == 600
    assert small_swap.wait_idle(5.0)
    assert chunk.status is ChunkStatus.ALLOCATED
    assert bytes(chunk.data) == bytes(original)
    assert small_swap.swap_used == 0
    assert small_swap.ram_delta == 0


def test_cached_swap_out_is_immediate(small_swap):
    chunk = SwapChunk(_pattern(300, 1))
    small_swap.swap_out(chunk)
    small_swap.wait_idle(5.0)
    small_swap.swap_in(chunk)
    small_swap.wait_idle(5.0)
    assert chunk.swap_location is not None
    assert small_swap.swap_out(chunk) == 300
    assert chunk.status is ChunkStatus.SWAPPED
    assert small_swap.pending_transfers == 0
    small_swap.swap_in(chunk)
    small_swap.wait_idle(5.0)
    assert bytes(chunk.data) == bytes(_pattern(300, 1))


def test_swap_in_waits_for_pending_swap_out(small_swap):
    chunk = SwapChunk(_pattern(500, 3))
    small_swap.swap_out(chunk)
    assert small_swap.swap_in(chunk) == 500
    assert small_swap.wait_idle(5.0)
    assert bytes(chunk.data) == bytes(_pattern(500, 3))


def test_fragmented_chunk_round_trip(small_swap):
    fillers = [SwapChunk(_pattern(600, n)) for n in range(4)]
    assert small_swap.swap_out_many(fillers) == 2400
    big = SwapChunk(_pattern(800, 9))
    assert small_swap.swap_out(big) == 800
    assert len(list(big.swap_location.parts())) >= 2
    assert small_swap.wait_idle(5.0)
    assert small_swap.swap_in_many(fillers + [big]) == 3200
    assert small_swap.wait_idle(5.0)
    assert bytes(big.data) == bytes(_pattern(800, 9))
    for n, chunk in enumerate(fillers):
        assert bytes(chunk.data) == bytes(_pattern(600, n))


def test_delete_returns_all_space(small_swap):
    chunks = [SwapChunk(_pattern(700, n)) for n in range(3)]
    small_swap.swap_out_many(chunks)
    small_swap.wait_idle(5.0)
    for chunk in chunks:
        small_swap.swap_delete(chunk)
    assert small_swap.swap_free == small_swap.swap_size
    assert small_swap.swap_used == 0
    assert all(chunk.swap_location is None for chunk in chunks)


def test_invalidate_cache_frees_space(small_swap):
    chunk = SwapChunk(_pattern(600))
    small_swap.swap_out(chunk)
    small_swap.wait_idle(5.0)
    small_swap.swap_in(chunk)
    small_swap.wait_idle(5.0)
    assert small_swap.swap_free < small_swap.swap_size
    small_swap.invalidate_cache_for(chunk)
    assert chunk.swap_location is None
    assert small_swap.swap_free == small_swap.swap_size


def test_too_large_chunk_is_not_swapped(tmp_path):
    with FileSwap(1024, _mask(tmp_path), one_file=1024, policy=SwapPolicy.FIXED) as swap:
        chunk = SwapChunk(_pattern(2000))
        assert swap.swap_out(chunk) == 0
        assert chunk.status is ChunkStatus.ALLOCATED
        assert chunk.swap_location is None


def test_swap_in_of_resident_chunk_does_nothing(small_swap):
    chunk = SwapChunk(_pattern(100))
    assert small_swap.swap_in(chunk) == 0
    assert chunk.status is ChunkStatus.ALLOCATED


def test_extend_swap_adds_whole_files(small_swap, tmp_path):
    before = small_swap.swap_size
    files_before = small_swap.page_file_number
    assert small_swap.extend_swap(small_swap.page_file_size + 1)
    assert small_swap.page_file_number == files_before + 2
    assert small_swap.swap_size == before + 2 * small_swap.page_file_size
    assert len(list(tmp_path.iterdir())) == files_before + 2


def test_fixed_policy_refuses_to_extend(small_swap):
    before = small_swap.swap_size
    assert small_swap.extend_swap_by_policy(100) is False
    assert small_swap.swap_size == before


def test_autoextendable_policy_extends(tmp_path):
    with FileSwap(1024, _mask(tmp_path), one_file=1024) as swap:
        assert swap.policy is SwapPolicy.AUTOEXTENDABLE
        assert swap.extend_swap_by_policy(100)
        assert swap.swap_size == 2 * swap.page_file_size


def test_interactive_policy_reads_steps(tmp_path):
    with FileSwap(1024, _mask(tmp_path), one_file=1024, policy=SwapPolicy.INTERACTIVE) as swap:
        answers = iter(["abc", "2"])
        swap.prompt = lambda message: next(answers)
        assert swap.extend_swap_by_policy(100)
        assert swap.swap_size == 3 * swap.page_file_size


def test_interactive_policy_without_input(tmp_path):
    with FileSwap(1024, _mask(tmp_path), one_file=1024, policy=SwapPolicy.INTERACTIVE) as swap:
        def no_input(message):
            raise EOFError

        swap.prompt = no_input
        assert swap.extend_swap_by_policy(100) is False
        assert swap.swap_size == swap.page_file_size


def test_dma_alignment_must_fit_page_files(tmp_path):
    with FileSwap(1000, _mask(tmp_path), one_file=1000) as swap:
        assert swap.memory_alignment == 1
        with pytest.raises(SwapError):
            swap.set_dma(True)
        assert swap.memory_alignment == 1


def test_closed_swap_rejects_work(tmp_path):
    swap = FileSwap(1024, _mask(tmp_path), one_file=1024)
    swap.close()
    with pytest.raises(SwapError):
        swap.swap_out(SwapChunk(_pattern(10)))


def test_invalid_size_raises(tmp_path):
    with pytest.raises(ValueError):
        FileSwap(0, _mask(tmp_path))