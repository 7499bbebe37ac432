"""Deferred deletion of blob files, applied only when a transaction commits."""

from __future__ import annotations

import enum
import logging
import os
import threading
from typing import Iterable, Set, Tuple, Union

from .options import PathOptions

log = logging.getLogger(__name__)

HashLike = Union[bytes, bytearray, memoryview, str]


class BaoFilePart(enum.IntEnum):
    """The files that can make up a stored blob."""

    OUTBOARD = 0
    DATA = 1
    SIZES = 2
    BITFIELD = 3


def _key(hash: HashLike) -> bytes:
    if isinstance(hash, str):
        return bytes.fromhex(hash)
    return bytes(hash)


class _DeleteSet:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: Set[Tuple[bytes, BaoFilePart]] = set()

    def delete(self, hash: HashLike, parts: Iterable[BaoFilePart]) -> None:
        key = _key(hash)
        self.entries.update((key, BaoFilePart(p)) for p in parts)

    def protect(self, hash: HashLike, parts: Iterable[BaoFilePart]) -> None:
        key = _key(hash)
        for p in parts:
            self.entries.discard((key, BaoFilePart(p)))

    def commit(self, options: PathOptions) -> None:
        paths = {
            BaoFilePart.DATA: options.data_path,
            BaoFilePart.OUTBOARD: options.outboard_path,
            BaoFilePart.SIZES: options.sizes_path,
            BaoFilePart.BITFIELD: options.bitfield_path,
        }
        for hash, part in sorted(self.entries):
            log.debug("deleting %s for %s", part.name, hash.hex())
            path = paths[part](hash)
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError as cause:
                log.warning("failed to delete %s %s: %s", part.name, path, cause)
        self.entries.clear()


class ProtectHandle:
    """Marks files as to be kept, cancelling deletes in the open transaction."""

    def __init__(self, ds: _DeleteSet) -> None:
        self._ds = ds

    def protect(self, hash: HashLike, parts: Iterable[BaoFilePart]) -> None:
        """Keep these parts; does nothing outside a transaction."""
        with self._ds.lock:
            self._ds.protect(hash, parts)


class DeleteHandle:
    """Opens file transactions that collect files to delete."""

    def __init__(self, ds: _DeleteSet, options: PathOptions) -> None:
        self._ds = ds
        self._options = options

    def begin_write(self) -> "FileTransaction":
        """Open a transaction; only one may be open at a time."""
        return FileTransaction(self._ds, self._options)


class FileTransaction:
    """Collects files to delete; :meth:`commit` deletes them, :meth:`close` forgets them."""

    def __init__(self, ds: _DeleteSet, options: PathOptions) -> None:
        with ds.lock:
            assert not ds.entries, "a file transaction is already open"
        self._ds = ds
        self._options = options

    def delete(self, hash: HashLike, parts: Iterable[BaoFilePart]) -> None:
        """Mark parts of a blob for deletion."""
        with self._ds.lock:
            self._ds.delete(hash, parts)

    def commit(self) -> None:
        """Delete every marked file and clear the set."""
        with self._ds.lock:
            self._ds.commit(self._options)

    def close(self) -> None:
        """Forget all marked files without deleting them."""
        with self._ds.lock:
            self._ds.entries.clear()

    def __enter__(self) -> "FileTransaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def pair(options: PathOptions) -> Tuple[ProtectHandle, DeleteHandle]:
    """A protect handle and a delete handle sharing one delete set."""
    ds = _DeleteSet()
    return ProtectHandle(ds), DeleteHandle(ds, options)