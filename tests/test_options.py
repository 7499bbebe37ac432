from pathlib import Path

import pytest

from blobvault.options import (
    HASH_PAIR_SIZE,
    MAX_SIZE,
    BatchOptions,
    InlineOptions,
    Options,
    PathOptions,
    raw_outboard_size,
)
from blobvault.util import IROH_BLOCK_SIZE, blake3_hash

HASH = blake3_hash(b"hello world")


def test_path_layout(tmp_path):
    opts = PathOptions.from_root(tmp_path)
    hexed = HASH.hex()
    assert opts.data_dir == tmp_path / "data"
    assert opts.temp_dir == tmp_path / "temp"
    assert opts.data_path(HASH) == tmp_path / "data" / f"{hexed}.data"
    assert opts.outboard_path(HASH) == tmp_path / "data" / f"{hexed}.obao4"
    assert opts.sizes_path(HASH) == tmp_path / "data" / f"{hexed}.sizes4"
    assert opts.bitfield_path(HASH) == tmp_path / "data" / f"{hexed}.bitfield"


def test_paths_accept_hex_string(tmp_path):
    opts = PathOptions.from_root(tmp_path)
    assert opts.data_path(HASH.hex()) == opts.data_path(HASH)


def test_temp_file_names_are_unique_and_in_temp_dir(tmp_path):
    opts = PathOptions.from_root(tmp_path)
    names = {opts.temp_file_name() for _ in range(50)}
    assert len(names) == 50
    assert all(name.parent == tmp_path / "temp" for name in names)


def test_raw_outboard_size_small_blobs_need_no_outboard():
    assert raw_outboard_size(0) == 0
    assert raw_outboard_size(1) == 0
    assert raw_outboard_size(IROH_BLOCK_SIZE) == 0


def test_raw_outboard_size_one_pair_after_first_block():
    assert raw_outboard_size(IROH_BLOCK_SIZE + 1) == HASH_PAIR_SIZE


@pytest.mark.parametrize("size", [0, 1024, 1024 * 16 + 1, 1024 * 1024, 1024 * 1024 * 8])
def test_raw_outboard_size_is_multiple_of_pair(size):
    assert raw_outboard_size(size) % HASH_PAIR_SIZE == 0


def test_raw_outboard_size_monotonic():
    sizes = [raw_outboard_size(n * 1000) for n in range(200)]
    assert sizes == sorted(sizes)


def test_raw_outboard_size_negative():
    with pytest.raises(ValueError):
        raw_outboard_size(-1)


def test_inline_defaults():
    opts = InlineOptions()
    assert opts.max_data_inlined == 1024 * 16
    assert opts.max_outboard_inlined == 1024 * 16


def test_no_inline_and_always_inline(tmp_path):
    never = Options(path=PathOptions.from_root(tmp_path), inline=InlineOptions.no_inline())
    always = Options(path=PathOptions.from_root(tmp_path), inline=InlineOptions.always_inline())
    assert not never.is_inlined_data(1)
    assert never.is_inlined_data(0)
    assert always.is_inlined_data(MAX_SIZE)
    assert always.is_inlined_all(1024 * 1024 * 8)


def test_batch_defaults():
    opts = BatchOptions()
    assert opts.max_read_batch == 10000
    assert opts.max_write_batch == 1000
    assert opts.max_write_duration < opts.max_read_duration


def test_options_from_root(tmp_path):
    opts = Options.from_root(tmp_path)
    assert opts.path == PathOptions.from_root(Path(tmp_path))
    assert opts.inline == InlineOptions()
    assert opts.batch == BatchOptions()
    assert opts.gc is None


@pytest.mark.parametrize(
    "size,expected",
    [(0, True), (1024, True), (1024 * 16 - 1, True), (1024 * 16, True), (1024 * 16 + 1, False)],
)
def test_is_inlined_data_thresholds(tmp_path, size, expected):
    assert Options.from_root(tmp_path).is_inlined_data(size) is expected


def test_is_inlined_outboard_threshold(tmp_path):
    opts = Options.from_root(tmp_path)
    assert opts.is_inlined_outboard(1024 * 16)
    assert not opts.is_inlined_outboard(1024 * 16 + 1)


def test_is_inlined_all_depends_on_outboard(tmp_path):
    opts = Options(
        path=PathOptions.from_root(tmp_path),
        inline=InlineOptions(max_data_inlined=MAX_SIZE, max_outboard_inlined=0),
    )
    assert opts.is_inlined_all(IROH_BLOCK_SIZE)
    assert not opts.is_inlined_all(IROH_BLOCK_SIZE + 1)


def test_is_inlined_all_depends_on_data(tmp_path):
    opts = Options.from_root(tmp_path)
    assert opts.is_inlined_all(1024 * 16)
    assert not opts.is_inlined_all(1024 * 16 + 1)