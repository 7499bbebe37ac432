"""The tables of the metadata database and typed access to them."""

from __future__ import annotations

import enum
import os
import sqlite3
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple, Union

from .delete_set import FileTransaction
from .entry_state import (
    DataLocation,
    EntryState,
    InconsistentStateError,
    InlineData,
    InlineOutboard,
    OutboardLocation,
    decode_entry_state,
    encode_entry_state,
)
from .util import HASH_LEN, Tag

BLOBS_TABLE = "blobs-0"
TAGS_TABLE = "tags-0"
INLINE_DATA_TABLE = "inline-data-0"
INLINE_OUTBOARD_TABLE = "inline-outboard-0"

ALL_TABLES = (BLOBS_TABLE, TAGS_TABLE, INLINE_DATA_TABLE, INLINE_OUTBOARD_TABLE)

HashLike = Union[bytes, bytearray, memoryview, str]


def _hash_key(hash: HashLike) -> bytes:
    key = bytes.fromhex(hash) if isinstance(hash, str) else bytes(hash)
    if len(key) != HASH_LEN:
        raise ValueError(f"a hash is {HASH_LEN} bytes, got {len(key)}")
    return key


class BlobFormat(enum.IntEnum):
    """How the content of a blob is to be interpreted."""

    RAW = 0
    HASH_SEQ = 1

    def is_raw(self) -> bool:
        return self is BlobFormat.RAW

    def is_hash_seq(self) -> bool:
        return self is BlobFormat.HASH_SEQ


@dataclass(frozen=True)
class HashAndFormat:
    """A hash together with the format of the blob it names."""

    hash: bytes
    format: BlobFormat = BlobFormat.RAW

    def __post_init__(self) -> None:
        object.__setattr__(self, "hash", _hash_key(self.hash))
        object.__setattr__(self, "format", BlobFormat(self.format))


def _encode_haf(value: HashAndFormat) -> bytes:
    return value.hash + bytes([int(value.format)])


def _decode_haf(data: bytes) -> HashAndFormat:
    if len(data) != HASH_LEN + 1:
        raise ValueError("malformed tag value")
    return HashAndFormat(data[:HASH_LEN], BlobFormat(data[HASH_LEN]))


@dataclass(frozen=True)
class TagInfo:
    """A tag with the hash and format it points to."""

    name: Tag
    hash: bytes
    format: BlobFormat

    @property
    def hash_and_format(self) -> HashAndFormat:
        return HashAndFormat(self.hash, self.format)


def open_database(path: Union[str, os.PathLike]) -> sqlite3.Connection:
    """Open or create the metadata database at ``path`` with all its tables."""
    conn = sqlite3.connect(os.fspath(path), check_same_thread=False)
    with conn:
        for name in ALL_TABLES:
            conn.execute(
                f'CREATE TABLE IF NOT EXISTS "{name}" '
                "(key BLOB PRIMARY KEY NOT NULL, value BLOB NOT NULL) WITHOUT ROWID"
            )
    return conn


class Tables:
    """Access to all tables of the blob store inside one connection.

    ``ftx`` is the file transaction that collects files to delete when the
    surrounding database transaction commits; read-only users leave it out.
    """

    def __init__(self, conn: sqlite3.Connection, ftx: Optional[FileTransaction] = None) -> None:
        self.conn = conn
        self.ftx = ftx

    # -- raw key/value access ----------------------------------------------

    def _get(self, table: str, key: bytes) -> Optional[bytes]:
        row = self.conn.execute(
            f'SELECT value FROM "{table}" WHERE key = ?', (key,)
        ).fetchone()
        return None if row is None else bytes(row[0])

    def _put(self, table: str, key: bytes, value: bytes) -> Optional[bytes]:
        old = self._get(table, key)
        self.conn.execute(
            f'INSERT OR REPLACE INTO "{table}" (key, value) VALUES (?, ?)', (key, value)
        )
        return old

    def _remove(self, table: str, key: bytes) -> Optional[bytes]:
        old = self._get(table, key)
        if old is not None:
            self.conn.execute(f'DELETE FROM "{table}" WHERE key = ?', (key,))
        return old

    # -- blobs ---------------------------------------------------------------

    def get_blob(self, hash: HashLike) -> Optional[EntryState]:
        raw = self._get(BLOBS_TABLE, _hash_key(hash))
        return None if raw is None else decode_entry_state(raw)

    def put_blob(self, hash: HashLike, state: EntryState) -> Optional[EntryState]:
        """Store ``state``; inline payloads are not kept here. Returns the old state."""
        old = self._put(BLOBS_TABLE, _hash_key(hash), encode_entry_state(state))
        return None if old is None else decode_entry_state(old)

    def remove_blob(self, hash: HashLike) -> Optional[EntryState]:
        old = self._remove(BLOBS_TABLE, _hash_key(hash))
        return None if old is None else decode_entry_state(old)

    def iter_blobs(self) -> Iterator[Tuple[bytes, EntryState]]:
        """All blobs, ordered by hash."""
        rows = self.conn.execute(
            f'SELECT key, value FROM "{BLOBS_TABLE}" ORDER BY key'
        ).fetchall()
        for key, value in rows:
            yield bytes(key), decode_entry_state(bytes(value))

    # -- tags ----------------------------------------------------------------

    def get_tag(self, name: Union[Tag, str, bytes]) -> Optional[HashAndFormat]:
        raw = self._get(TAGS_TABLE, Tag(name).value)
        return None if raw is None else _decode_haf(raw)

    def put_tag(self, name: Union[Tag, str, bytes], value: HashAndFormat) -> Optional[HashAndFormat]:
        old = self._put(TAGS_TABLE, Tag(name).value, _encode_haf(value))
        return None if old is None else _decode_haf(old)

    def remove_tag(self, name: Union[Tag, str, bytes]) -> Optional[HashAndFormat]:
        old = self._remove(TAGS_TABLE, Tag(name).value)
        return None if old is None else _decode_haf(old)

    def tag_range(
        self,
        start: Optional[Union[Tag, str, bytes]],
        end: Optional[Union[Tag, str, bytes]],
    ) -> List[Tuple[Tag, HashAndFormat]]:
        """Tags from ``start`` (inclusive) to ``end`` (exclusive) in byte order.

        ``None`` leaves that side unbounded.
        """
        clauses, params = [], []
        if start is not None:
            clauses.append("key >= ?")
            params.append(Tag(start).value)
        if end is not None:
            clauses.append("key < ?")
            params.append(Tag(end).value)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.conn.execute(
            f'SELECT key, value FROM "{TAGS_TABLE}"{where} ORDER BY key', params
        ).fetchall()
        return [(Tag(bytes(k)), _decode_haf(bytes(v))) for k, v in rows]

    # -- inline data and outboards ------------------------------------------

    def get_inline_data(self, hash: HashLike) -> Optional[bytes]:
        return self._get(INLINE_DATA_TABLE, _hash_key(hash))

    def put_inline_data(self, hash: HashLike, data: bytes) -> Optional[bytes]:
        return self._put(INLINE_DATA_TABLE, _hash_key(hash), bytes(data))

    def remove_inline_data(self, hash: HashLike) -> Optional[bytes]:
        return self._remove(INLINE_DATA_TABLE, _hash_key(hash))

    def get_inline_outboard(self, hash: HashLike) -> Optional[bytes]:
        return self._get(INLINE_OUTBOARD_TABLE, _hash_key(hash))

    def put_inline_outboard(self, hash: HashLike, data: bytes) -> Optional[bytes]:
        return self._put(INLINE_OUTBOARD_TABLE, _hash_key(hash), bytes(data))

    def remove_inline_outboard(self, hash: HashLike) -> Optional[bytes]:
        return self._remove(INLINE_OUTBOARD_TABLE, _hash_key(hash))


def load_data(tables: Tables, location: DataLocation, hash: HashLike) -> DataLocation:
    """Fill an inline data location with its bytes from the inline data table."""
    if isinstance(location, InlineData):
        data = tables.get_inline_data(hash)
        if data is None:
            raise InconsistentStateError(
                f"inconsistent database state: {_hash_key(hash).hex()} "
                "should have inline data but does not"
            )
        return InlineData(data)
    return location


def load_outboard(tables: Tables, location: OutboardLocation, hash: HashLike) -> OutboardLocation:
    """Fill an inline outboard location with its bytes from the inline outboard table."""
    if isinstance(location, InlineOutboard):
        outboard = tables.get_inline_outboard(hash)
        if outboard is None:
            raise InconsistentStateError(
                f"inconsistent database state: {_hash_key(hash).hex()} "
                "should have inline outboard but does not"
            )
        return InlineOutboard(outboard)
    return location