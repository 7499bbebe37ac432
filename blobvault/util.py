"""Shared helpers for the blob store: tags, ranges, checksummed files and hashing."""

from __future__ import annotations

import os
import struct
from datetime import datetime, timezone
from functools import total_ordering
from pathlib import Path
from typing import Callable, Iterator, Optional, Sequence, Union

#: log2 of the number of 1 KiB chunks in a block.
IROH_BLOCK_CHUNK_LOG = 4
#: Block size used by the store: 2^4 * 1024 = 16 KiB.
IROH_BLOCK_SIZE = (1 << IROH_BLOCK_CHUNK_LOG) * 1024

HASH_LEN = 32

BytesLike = Union[bytes, bytearray, memoryview]


class ChecksumError(ValueError):
    """A checksummed file is empty, truncated or corrupt."""


# --------------------------------------------------------------------------
# BLAKE3 (default hash mode, 32 byte output)
# --------------------------------------------------------------------------

_MASK = 0xFFFFFFFF
_IV = (
    0x6A09E667,
    0xBB67AE85,
    0x3C6EF372,
    0xA54FF53A,
    0x510E527F,
    0x9B05688C,
    0x1F83D9AB,
    0x5BE0CD19,
)
_PERMUTATION = (2, 6, 3, 10, 7, 0, 4, 13, 1, 11, 12, 5, 9, 14, 15, 8)
_CHUNK_START = 1
_CHUNK_END = 2
_PARENT = 4
_ROOT = 8
_CHUNK_LEN = 1024
_BLOCK_LEN = 64

_COLUMNS_AND_DIAGONALS = (
    (0, 4, 8, 12, 0, 1),
    (1, 5, 9, 13, 2, 3),
    (2, 6, 10, 14, 4, 5),
    (3, 7, 11, 15, 6, 7),
    (0, 5, 10, 15, 8, 9),
    (1, 6, 11, 12, 10, 11),
    (2, 7, 8, 13, 12, 13),
    (3, 4, 9, 14, 14, 15),
)


def _rotr(x: int, n: int) -> int:
    return ((x >> n) | (x << (32 - n))) & _MASK


def _round(s: list, m: list) -> None:
    for a, b, c, d, x, y in _COLUMNS_AND_DIAGONALS:
        s[a] = (s[a] + s[b] + m[x]) & _MASK
        s[d] = _rotr(s[d] ^ s[a], 16)
        s[c] = (s[c] + s[d]) & _MASK
        s[b] = _rotr(s[b] ^ s[c], 12)
        s[a] = (s[a] + s[b] + m[y]) & _MASK
        s[d] = _rotr(s[d] ^ s[a], 8)
        s[c] = (s[c] + s[d]) & _MASK
        s[b] = _rotr(s[b] ^ s[c], 7)


def _compress(cv: Sequence[int], block: bytes, counter: int, block_len: int, flags: int) -> list:
    m = list(struct.unpack("<16I", block.ljust(_BLOCK_LEN, b"\0")))
    s = [*cv, *_IV[:4], counter & _MASK, (counter >> 32) & _MASK, block_len, flags]
    for r in range(7):
        _round(s, m)
        if r < 6:
            m = [m[i] for i in _PERMUTATION]
    return [a ^ b for a, b in zip(s[:8], s[8:])]


def _chunk_cv(chunk: bytes, counter: int, root: bool) -> list:
    blocks = [chunk[i : i + _BLOCK_LEN] for i in range(0, len(chunk), _BLOCK_LEN)] or [b""]
    last = len(blocks) - 1
    cv: Sequence[int] = _IV
    for i, block in enumerate(blocks):
        flags = 0
        if i == 0:
            flags |= _CHUNK_START
        if i == last:
            flags |= _CHUNK_END
            if root:
                flags |= _ROOT
        cv = _compress(cv, block, counter, len(block), flags)
    return list(cv)


def _subtree_cv(data: bytes, start_chunk: int, root: bool) -> list:
    if len(data) <= _CHUNK_LEN:
        return _chunk_cv(data, start_chunk, root)
    chunks = -(-len(data) // _CHUNK_LEN)
    left_chunks = 1 << ((chunks - 1).bit_length() - 1)
    split = left_chunks * _CHUNK_LEN
    left = _subtree_cv(data[:split], start_chunk, False)
    right = _subtree_cv(data[split:], start_chunk + left_chunks, False)
    flags = _PARENT | (_ROOT if root else 0)
    return _compress(_IV, struct.pack("<16I", *left, *right), 0, _BLOCK_LEN, flags)


def blake3_hash(data: BytesLike) -> bytes:
    """Return the 32 byte BLAKE3 hash of ``data``."""
    return struct.pack("<8I", *_subtree_cv(bytes(data), 0, True))


# --------------------------------------------------------------------------
# Tags
# --------------------------------------------------------------------------


def next_prefix(data: BytesLike) -> Optional[bytes]:
    """Increment a prefix lexicographically.

    Returns ``None`` if the prefix is empty or all 0xFF, since there is no
    higher prefix.
    """
    out = bytearray(data)
    for i in reversed(range(len(out))):
        if out[i] < 255:
            out[i] += 1
            return bytes(out)
        out[i] = 0
    return None


@total_ordering
class Tag:
    """A named, persistent tag, ordered by its raw bytes."""

    __slots__ = ("_value",)

    def __init__(self, value: Union[BytesLike, str, "Tag"]) -> None:
        if isinstance(value, Tag):
            self._value = value._value
        elif isinstance(value, str):
            self._value = value.encode("utf-8")
        elif isinstance(value, (bytes, bytearray, memoryview)):
            self._value = bytes(value)
        else:
            raise TypeError(f"cannot make a tag from {type(value).__name__}")

    @property
    def value(self) -> bytes:
        return self._value

    def __bytes__(self) -> bytes:
        return self._value

    def __len__(self) -> int:
        return len(self._value)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Tag):
            return self._value == other._value
        return NotImplemented

    def __lt__(self, other: "Tag") -> bool:
        if isinstance(other, Tag):
            return self._value < other._value
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._value)

    def __str__(self) -> str:
        try:
            return f'"{self._value.decode("utf-8")}"'
        except UnicodeDecodeError:
            return self._value.hex()

    def __repr__(self) -> str:
        return f"Tag({self})"

    @classmethod
    def auto(cls, time: Union[datetime, float, int], exists: Callable[[bytes], bool]) -> "Tag":
        """Create a new tag, based on ``time``, for which ``exists`` is false."""
        if isinstance(time, datetime):
            now = time.replace(tzinfo=timezone.utc) if time.tzinfo is None else time.astimezone(timezone.utc)
        else:
            now = datetime.fromtimestamp(time, tz=timezone.utc)
        base = f"auto-{now:%Y-%m-%dT%H:%M:%S}.{now.microsecond // 1000:03d}Z"
        i = 0
        while True:
            text = base if i == 0 else f"{base}-{i}"
            if not exists(text.encode("utf-8")):
                return cls(text)
            i += 1

    def successor(self) -> "Tag":
        """The successor of this tag in lexicographic order."""
        return Tag(self._value + b"\0")

    def next_prefix(self) -> Optional["Tag"]:
        """The next prefix, or ``None`` if this tag is all 0xFF."""
        nxt = next_prefix(self._value)
        return None if nxt is None else Tag(nxt)


# --------------------------------------------------------------------------
# Ranges
# --------------------------------------------------------------------------


def limited_range(offset: int, length: int, buf_len: int) -> slice:
    """The slice of a buffer of ``buf_len`` bytes covering ``length`` bytes at ``offset``."""
    if offset < buf_len:
        return slice(offset, min(offset + length, buf_len))
    return slice(0, 0)


def get_limited_slice(data: BytesLike, offset: int, length: int) -> bytes:
    """Up to ``length`` bytes of ``data`` starting at ``offset``."""
    return bytes(data[limited_range(offset, length, len(data))])


def upper_bound(boundaries: Sequence[int]) -> Optional[int]:
    """The exclusive upper bound of a range set given by its boundaries.

    ``None`` if the set extends to infinity.
    """
    if not boundaries:
        return 0
    if len(boundaries) % 2 == 0:
        return boundaries[-1]
    return None


# --------------------------------------------------------------------------
# Checksummed files
# --------------------------------------------------------------------------


def write_checksummed(path: Union[str, os.PathLike], data: BytesLike) -> None:
    """Write ``data`` prefixed by its BLAKE3 hash and sync it to disk."""
    payload = bytes(data)
    with open(path, "wb") as f:
        f.write(blake3_hash(payload) + payload)
        f.flush()
        os.fsync(f.fileno())


def _verify(buffer: bytes) -> bytes:
    if not buffer:
        raise ChecksumError("File marked dirty")
    if len(buffer) < HASH_LEN:
        raise ChecksumError("File too short")
    stored, payload = buffer[:HASH_LEN], buffer[HASH_LEN:]
    if blake3_hash(payload) != stored:
        raise ChecksumError("Hash mismatch")
    return payload


def read_checksummed_and_truncate(path: Union[str, os.PathLike]) -> bytes:
    """Read and verify a checksummed file, truncating it to mark it dirty."""
    with open(path, "r+b") as f:
        buffer = f.read()
        f.seek(0)
        f.truncate(0)
        f.flush()
        os.fsync(f.fileno())
    return _verify(buffer)


def read_checksummed(path: Union[str, os.PathLike]) -> bytes:
    """Read and verify a checksummed file, leaving it untouched."""
    return _verify(Path(path).read_bytes())


# --------------------------------------------------------------------------
# Debug helpers
# --------------------------------------------------------------------------

SYMBOLS = (
    "😀", "😂", "😍", "😎", "😢", "😡", "😱", "😴", "🤓", "🤔", "🤗", "🤢", "🤡", "🤖", "👽",
    "👾", "👻", "💀", "💩", "♥", "💥", "💦", "💨", "💫", "💬", "💭", "💰", "💳", "💼", "📈",
    "📉", "📍", "📢", "📦", "📱", "📷", "📺", "🎃", "🎄", "🎉", "🎋", "🎍", "🎒", "🎓", "🎖",
    "🎤", "🎧", "🎮", "🎰", "🎲", "🎳", "🎴", "🎵", "🎷", "🎸", "🎹", "🎺", "🎻", "🎼", "🏀",
    "🏁", "🏆", "🏈",
)


def _symbols_of(digest: bytes) -> Iterator[str]:
    return (SYMBOLS[byte % len(SYMBOLS)] for byte in digest[:3])


def symbol_string(data: BytesLike) -> str:
    """A short, three symbol fingerprint of ``data``."""
    return "".join(_symbols_of(blake3_hash(data)))