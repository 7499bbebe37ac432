"""Configuration for the file based blob store: paths, inlining and batching."""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from .util import IROH_BLOCK_SIZE

#: Size of one entry of a pre-order outboard: a pair of 32 byte hashes.
HASH_PAIR_SIZE = 64

#: Largest value of an unsigned 64 bit size.
MAX_SIZE = (1 << 64) - 1

PathLike = Union[str, os.PathLike]


def _hex(hash: Union[bytes, bytearray, memoryview, str]) -> str:
    if isinstance(hash, str):
        return hash.lower()
    return bytes(hash).hex()


def raw_outboard_size(size: int) -> int:
    """Size in bytes of the pre-order outboard for a blob of ``size`` bytes."""
    if size < 0:
        raise ValueError("size must not be negative")
    full_blocks, rest = divmod(size, IROH_BLOCK_SIZE)
    blocks = max(full_blocks + (1 if rest else 0), 1)
    return (blocks - 1) * HASH_PAIR_SIZE


def _temp_name() -> str:
    return f"{uuid.uuid4().hex}.temp"


@dataclass(frozen=True)
class PathOptions:
    """Directories used by the file store.

    ``temp_dir`` must be on the same device as ``data_dir``, since temp
    files are moved into place.
    """

    data_dir: Path
    temp_dir: Path

    @classmethod
    def from_root(cls, root: PathLike) -> "PathOptions":
        root = Path(root)
        return cls(data_dir=root / "data", temp_dir=root / "temp")

    def data_path(self, hash) -> Path:
        return self.data_dir / f"{_hex(hash)}.data"

    def outboard_path(self, hash) -> Path:
        return self.data_dir / f"{_hex(hash)}.obao4"

    def sizes_path(self, hash) -> Path:
        return self.data_dir / f"{_hex(hash)}.sizes4"

    def bitfield_path(self, hash) -> Path:
        return self.data_dir / f"{_hex(hash)}.bitfield"

    def temp_file_name(self) -> Path:
        """A fresh, unique path inside the temp directory."""
        return self.temp_dir / _temp_name()


@dataclass(frozen=True)
class InlineOptions:
    """Limits for inlining small complete data or outboards in the database."""

    max_data_inlined: int = 1024 * 16
    max_outboard_inlined: int = 1024 * 16

    @classmethod
    def no_inline(cls) -> "InlineOptions":
        """Never inline anything."""
        return cls(max_data_inlined=0, max_outboard_inlined=0)

    @classmethod
    def always_inline(cls) -> "InlineOptions":
        """Always inline everything."""
        return cls(max_data_inlined=MAX_SIZE, max_outboard_inlined=MAX_SIZE)


@dataclass(frozen=True)
class BatchOptions:
    """Limits for batching database transactions; durations are in seconds."""

    max_read_batch: int = 10000
    max_read_duration: float = 1.0
    max_write_batch: int = 1000
    max_write_duration: float = 0.5


@dataclass(frozen=True)
class Options:
    """Options for the file store.

    ``gc`` is the garbage collection interval in seconds, or ``None`` to
    disable periodic collection.
    """

    path: PathOptions
    inline: InlineOptions = field(default_factory=InlineOptions)
    batch: BatchOptions = field(default_factory=BatchOptions)
    gc: Optional[float] = None

    @classmethod
    def from_root(cls, root: PathLike) -> "Options":
        """Options rooted at ``root`` with everything else at its default."""
        return cls(path=PathOptions.from_root(root))

    def is_inlined_data(self, data_size: int) -> bool:
        """True if data of this size is stored inline."""
        return data_size <= self.inline.max_data_inlined

    def is_inlined_outboard(self, outboard_size: int) -> bool:
        """True if an outboard of this size is stored inline."""
        return outboard_size <= self.inline.max_outboard_inlined

    def is_inlined_all(self, data_size: int) -> bool:
        """True if both data of this size and its outboard are stored inline."""
        return self.is_inlined_data(data_size) and self.is_inlined_outboard(
            raw_outboard_size(data_size)
        )