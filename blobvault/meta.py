"""The metadata database: an actor that owns the tables, and a client to talk to it."""

from __future__ import annotations

import asyncio
import logging
import os
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Iterable, List, Optional, Tuple, Union

from .delete_set import BaoFilePart, DeleteHandle
from .entry_state import (
    CompleteEntry,
    EntryState,
    ExternalData,
    InconsistentStateError,
    InlineData,
    InlineOutboard,
    OwnedData,
    OwnedOutboard,
    PartialEntry,
    union_entry_state,
)
from .options import BatchOptions
from .peekable import PeekableReceiver
from .tables import (
    INLINE_DATA_TABLE,
    INLINE_OUTBOARD_TABLE,
    HashAndFormat,
    Tables,
    TagInfo,
    load_data,
    load_outboard,
    open_database,
)
from .util import HASH_LEN, Tag

log = logging.getLogger(__name__)

HashLike = Union[bytes, bytearray, memoryview, str]
TagName = Union[Tag, str, bytes]

_ALL_PARTS = (
    BaoFilePart.OUTBOARD,
    BaoFilePart.DATA,
    BaoFilePart.SIZES,
    BaoFilePart.BITFIELD,
)


class ActorDownError(RuntimeError):
    """The database actor has stopped and can no longer answer requests."""


class TagNotFoundError(LookupError):
    """A tag that a request refers to does not exist."""


# Errors that go back to the requester without stopping the actor.
_REQUEST_ERRORS = (TagNotFoundError,)


def _key(hash: HashLike) -> bytes:
    key = bytes.fromhex(hash) if isinstance(hash, str) else bytes(hash)
    if len(key) != HASH_LEN:
        raise ValueError(f"a hash is {HASH_LEN} bytes, got {len(key)}")
    return key


@dataclass(frozen=True)
class BlobStatus:
    """What the database knows about a blob.

    ``kind`` is one of :attr:`NOT_FOUND`, :attr:`PARTIAL` or :attr:`COMPLETE`;
    ``size`` is the validated size where known.
    """

    NOT_FOUND: ClassVar[str] = "not_found"
    PARTIAL: ClassVar[str] = "partial"
    COMPLETE: ClassVar[str] = "complete"

    kind: str
    size: Optional[int] = None


# --------------------------------------------------------------------------
# Commands
# --------------------------------------------------------------------------


def _new_future() -> asyncio.Future:
    return asyncio.get_running_loop().create_future()


@dataclass(eq=False)
class _Command:
    reply: asyncio.Future = field(default_factory=_new_future, kw_only=True, repr=False)


class _ReadOnly(_Command):
    pass


class _ReadWrite(_Command):
    pass


class _TopLevel(_Command):
    pass


@dataclass(eq=False)
class _Get(_ReadOnly):
    hash: bytes


@dataclass(eq=False)
class _Dump(_ReadOnly):
    pass


@dataclass(eq=False)
class _ListTags(_ReadOnly):
    start: Optional[TagName]
    end: Optional[TagName]
    raw: bool
    hash_seq: bool


@dataclass(eq=False)
class _ClearProtected(_ReadOnly):
    pass


@dataclass(eq=False)
class _GetBlobStatus(_ReadOnly):
    hash: bytes


@dataclass(eq=False)
class _Update(_ReadWrite):
    hash: bytes
    state: EntryState


@dataclass(eq=False)
class _Set(_ReadWrite):
    hash: bytes
    state: EntryState


@dataclass(eq=False)
class _DeleteBlobs(_ReadWrite):
    hashes: Tuple[bytes, ...]
    force: bool


@dataclass(eq=False)
class _SetTag(_ReadWrite):
    name: Tag
    value: HashAndFormat


@dataclass(eq=False)
class _DeleteTags(_ReadWrite):
    start: Optional[TagName]
    end: Optional[TagName]


@dataclass(eq=False)
class _RenameTag(_ReadWrite):
    old: Tag
    new: Tag


@dataclass(eq=False)
class _CreateTag(_ReadWrite):
    value: HashAndFormat


@dataclass(eq=False)
class _SyncDb(_TopLevel):
    pass


@dataclass(eq=False)
class _Shutdown(_TopLevel):
    pass


@dataclass(eq=False)
class _ListBlobs(_TopLevel):
    pass


# --------------------------------------------------------------------------
# Handlers
# --------------------------------------------------------------------------


def _split_inline(state: EntryState) -> Tuple[EntryState, Optional[bytes], Optional[bytes]]:
    if isinstance(state, CompleteEntry):
        location, data = state.data_location.split_inline_data()
        outboard_location, outboard = state.outboard_location.split_inline_data()
        return CompleteEntry(location, outboard_location), data, outboard
    return state, None, None


def _store(tables: Tables, hash: bytes, state: EntryState,
           data: Optional[bytes], outboard: Optional[bytes]) -> None:
    tables.put_blob(hash, state)
    if data is not None:
        tables.put_inline_data(hash, data)
    if outboard is not None:
        tables.put_inline_outboard(hash, outboard)


def _handle_get(tables: Tables, hash: bytes) -> Optional[EntryState]:
    entry = tables.get_blob(hash)
    if isinstance(entry, CompleteEntry):
        return CompleteEntry(
            load_data(tables, entry.data_location, hash),
            load_outboard(tables, entry.outboard_location, hash),
        )
    return entry


def _handle_dump(tables: Tables) -> None:
    log.debug("dumping database")
    for key, state in tables.iter_blobs():
        print(f"blobs: {key.hex()} -> {state!r}")
    for name, value in tables.tag_range(None, None):
        print(f"tags: {name} -> {value!r}")
    for table, label in ((INLINE_DATA_TABLE, "inline_data"), (INLINE_OUTBOARD_TABLE, "inline_outboard")):
        rows = tables.conn.execute(f'SELECT key, value FROM "{table}" ORDER BY key').fetchall()
        for key, value in rows:
            print(f"{label}: {bytes(key).hex()} -> {len(value)}")


def _handle_blob_status(tables: Tables, hash: bytes) -> BlobStatus:
    entry = tables.get_blob(hash)
    if entry is None:
        return BlobStatus(BlobStatus.NOT_FOUND)
    if isinstance(entry, PartialEntry):
        return BlobStatus(BlobStatus.PARTIAL, entry.size)
    location = entry.data_location
    if isinstance(location, InlineData):
        data = tables.get_inline_data(hash)
        if data is None:
            raise InconsistentStateError(
                f"inconsistent database state: {hash.hex()} not found"
            )
        return BlobStatus(BlobStatus.COMPLETE, len(data))
    return BlobStatus(BlobStatus.COMPLETE, location.size)


def _handle_list_tags(tables: Tables, cmd: _ListTags) -> List[TagInfo]:
    return [
        TagInfo(name, value.hash, value.format)
        for name, value in tables.tag_range(cmd.start, cmd.end)
        if (cmd.raw and value.format.is_raw()) or (cmd.hash_seq and value.format.is_hash_seq())
    ]


def _handle_update(tables: Tables, protected: set, cmd: _Update) -> None:
    protected.add(cmd.hash)
    log.debug("updating hash %s to %s", cmd.hash.hex(), cmd.state.fmt_short())
    state, data, outboard = _split_inline(cmd.state)
    old = tables.get_blob(cmd.hash)
    if old is not None:
        partial_to_complete = old.is_partial() and state.is_complete()
        state = union_entry_state(old, state)
        if partial_to_complete and tables.ftx is not None:
            tables.ftx.delete(cmd.hash, [BaoFilePart.SIZES, BaoFilePart.BITFIELD])
    _store(tables, cmd.hash, state, data, outboard)


def _handle_set(tables: Tables, protected: set, cmd: _Set) -> None:
    protected.add(cmd.hash)
    state, data, outboard = _split_inline(cmd.state)
    _store(tables, cmd.hash, state, data, outboard)


def _mark(tables: Tables, hash: bytes, parts: Iterable[BaoFilePart]) -> None:
    if tables.ftx is not None:
        tables.ftx.delete(hash, parts)


def _handle_delete(tables: Tables, protected: set, cmd: _DeleteBlobs) -> None:
    for hash in cmd.hashes:
        if not cmd.force and hash in protected:
            continue
        entry = tables.remove_blob(hash)
        if entry is None:
            continue
        if isinstance(entry, PartialEntry):
            _mark(tables, hash, _ALL_PARTS)
            continue
        if isinstance(entry.data_location, InlineData):
            tables.remove_inline_data(hash)
        elif isinstance(entry.data_location, OwnedData):
            _mark(tables, hash, [BaoFilePart.DATA])
        if isinstance(entry.outboard_location, InlineOutboard):
            tables.remove_inline_outboard(hash)
        elif isinstance(entry.outboard_location, OwnedOutboard):
            _mark(tables, hash, [BaoFilePart.OUTBOARD])


def _handle_create_tag(tables: Tables, value: HashAndFormat) -> Tag:
    tag = Tag.auto(time.time(), lambda name: tables.get_tag(name) is not None)
    tables.put_tag(tag, value)
    return tag


def _handle_delete_tags(tables: Tables, cmd: _DeleteTags) -> None:
    for name, _ in tables.tag_range(cmd.start, cmd.end):
        tables.remove_tag(name)


def _handle_rename_tag(tables: Tables, cmd: _RenameTag) -> None:
    value = tables.remove_tag(cmd.old)
    if value is None:
        raise TagNotFoundError(f"tag not found: {cmd.old}")
    tables.put_tag(cmd.new, value)


# --------------------------------------------------------------------------
# Actor
# --------------------------------------------------------------------------


class Actor:
    """Owns the metadata database and answers commands taken from a queue.

    Read-only commands are batched into one read transaction, writes into
    one write transaction whose file deletions are applied on commit.
    """

    def __init__(
        self,
        db_path: Union[str, os.PathLike],
        commands: asyncio.Queue,
        delete_handle: DeleteHandle,
        options: Optional[BatchOptions] = None,
    ) -> None:
        log.debug("creating or opening meta database at %s", db_path)
        self._conn: sqlite3.Connection = open_database(db_path)
        self._conn.isolation_level = None
        self._cmds: PeekableReceiver = PeekableReceiver(commands)
        self._delete_handle = delete_handle
        self._options = options if options is not None else BatchOptions()
        self._protected: set = set()

    @staticmethod
    def _answer(cmd: _Command, handler: Callable[[], Any]) -> None:
        try:
            result = handler()
        except _REQUEST_ERRORS as e:
            if not cmd.reply.done():
                cmd.reply.set_exception(e)
            return
        except Exception as e:
            if not cmd.reply.done():
                cmd.reply.set_exception(e)
            raise
        if not cmd.reply.done():
            cmd.reply.set_result(result)

    def _handle(self, tables: Tables, cmd: _Command) -> Any:
        protected = self._protected
        match cmd:
            case _Get(hash=hash):
                return _handle_get(tables, hash)
            case _Dump():
                return _handle_dump(tables)
            case _ListTags():
                return _handle_list_tags(tables, cmd)
            case _ClearProtected():
                protected.clear()
                return None
            case _GetBlobStatus(hash=hash):
                return _handle_blob_status(tables, hash)
            case _Update():
                return _handle_update(tables, protected, cmd)
            case _Set():
                return _handle_set(tables, protected, cmd)
            case _DeleteBlobs():
                return _handle_delete(tables, protected, cmd)
            case _SetTag(name=name, value=value):
                tables.put_tag(name, value)
                return None
            case _CreateTag(value=value):
                return _handle_create_tag(tables, value)
            case _DeleteTags():
                return _handle_delete_tags(tables, cmd)
            case _RenameTag():
                return _handle_rename_tag(tables, cmd)
        raise TypeError(f"unexpected command {cmd!r}")

    def _handle_toplevel(self, cmd: _TopLevel) -> Any:
        if isinstance(cmd, _ListBlobs):
            self._conn.execute("BEGIN")
            try:
                hashes = [key for key, _ in Tables(self._conn).iter_blobs()]
            finally:
                self._conn.execute("COMMIT")
            return hashes
        # a sync needs no work: outside a batch no transaction is open
        return None

    async def _batch(self, tables: Tables, accept: Callable, duration: float, limit: int) -> None:
        timeout = asyncio.ensure_future(asyncio.sleep(duration))
        try:
            n = 0
            while True:
                cmd = await self._cmds.extract(accept, timeout)
                if cmd is None:
                    break
                self._answer(cmd, lambda: self._handle(tables, cmd))
                n += 1
                if n >= limit:
                    break
        finally:
            timeout.cancel()

    async def _read_batch(self) -> None:
        self._conn.execute("BEGIN")
        try:
            await self._batch(
                Tables(self._conn),
                lambda c: c if isinstance(c, _ReadOnly) else None,
                self._options.max_read_duration,
                self._options.max_read_batch,
            )
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        self._conn.execute("COMMIT")

    async def _write_batch(self) -> None:
        with self._delete_handle.begin_write() as ftx:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                await self._batch(
                    Tables(self._conn, ftx),
                    lambda c: c if isinstance(c, (_ReadOnly, _ReadWrite)) else None,
                    self._options.max_write_duration,
                    self._options.max_write_batch,
                )
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")
            ftx.commit()

    async def run(self) -> None:
        """Serve commands until a shutdown or the end of the queue."""
        shutdown: Optional[_Shutdown] = None
        try:
            while True:
                cmd = await self._cmds.recv()
                if cmd is None:
                    break
                if isinstance(cmd, _Shutdown):
                    shutdown = cmd
                    break
                if isinstance(cmd, _TopLevel):
                    self._answer(cmd, lambda: self._handle_toplevel(cmd))
                elif isinstance(cmd, _ReadOnly):
                    self._cmds.push_back(cmd)
                    await self._read_batch()
                elif isinstance(cmd, _ReadWrite):
                    self._cmds.push_back(cmd)
                    await self._write_batch()
                else:
                    raise TypeError(f"unexpected command {cmd!r}")
        finally:
            log.debug("closing database")
            self._conn.close()
        if shutdown is not None and not shutdown.reply.done():
            shutdown.reply.set_result(None)


# --------------------------------------------------------------------------
# Client
# --------------------------------------------------------------------------


class Db:
    """Client of the database actor.

    ``task`` is the task running the actor; if given, requests fail with
    :class:`ActorDownError` once it has stopped.
    """

    def __init__(self, queue: asyncio.Queue, task: Optional[asyncio.Task] = None) -> None:
        self._queue = queue
        self._task = task

    def _task_error(self) -> Optional[BaseException]:
        if self._task is None or not self._task.done() or self._task.cancelled():
            return None
        return self._task.exception()

    async def _request(self, cmd: _Command) -> Any:
        await self._queue.put(cmd)
        if self._task is None:
            return await cmd.reply
        await asyncio.wait({cmd.reply, self._task}, return_when=asyncio.FIRST_COMPLETED)
        cause = self._task_error()
        if cmd.reply.done():
            return cmd.reply.result()
        raise ActorDownError("database actor is down") from cause

    async def get(self, hash: HashLike) -> Optional[EntryState]:
        """The entry state with inline data and outboard loaded, or ``None``."""
        return await self._request(_Get(_key(hash)))

    async def update(self, hash: HashLike, state: EntryState) -> None:
        """Merge ``state`` into the stored state and protect the blob."""
        await self._request(_Update(_key(hash), state))

    async def set(self, hash: HashLike, state: EntryState) -> None:
        """Replace the stored state and protect the blob."""
        await self._request(_Set(_key(hash), state))

    async def delete_blobs(self, hashes: Iterable[HashLike], force: bool = False) -> None:
        """Delete blobs; protected ones are kept unless ``force`` is set."""
        await self._request(_DeleteBlobs(tuple(_key(h) for h in hashes), force))

    async def set_tag(self, name: TagName, value: HashAndFormat) -> None:
        await self._request(_SetTag(Tag(name), value))

    async def create_tag(self, value: HashAndFormat) -> Tag:
        """Store ``value`` under a new, automatically named tag."""
        return await self._request(_CreateTag(value))

    async def delete_tags(self, start: Optional[TagName] = None, end: Optional[TagName] = None) -> None:
        """Delete tags from ``start`` (inclusive) to ``end`` (exclusive)."""
        await self._request(_DeleteTags(start, end))

    async def rename_tag(self, old: TagName, new: TagName) -> None:
        """Rename a tag; raises :class:`TagNotFoundError` if ``old`` is missing."""
        await self._request(_RenameTag(Tag(old), Tag(new)))

    async def list_tags(
        self,
        start: Optional[TagName] = None,
        end: Optional[TagName] = None,
        raw: bool = True,
        hash_seq: bool = True,
    ) -> List[TagInfo]:
        """Tags in ``[start, end)`` whose format is selected by ``raw``/``hash_seq``."""
        return await self._request(_ListTags(start, end, raw, hash_seq))

    async def blob_status(self, hash: HashLike) -> BlobStatus:
        return await self._request(_GetBlobStatus(_key(hash)))

    async def clear_protected(self) -> None:
        """Forget which blobs were protected from deletion."""
        await self._request(_ClearProtected())

    async def list_blobs(self) -> List[bytes]:
        """Hashes of all blobs, in order."""
        return await self._request(_ListBlobs())

    async def dump(self) -> None:
        """Print the content of all tables."""
        await self._request(_Dump())

    async def sync_db(self) -> None:
        """Wait until all earlier writes are committed."""
        await self._request(_SyncDb())

    async def shutdown(self) -> None:
        """Stop the actor and close the database."""
        await self._request(_Shutdown())


def open_db(
    db_path: Union[str, os.PathLike],
    delete_handle: DeleteHandle,
    options: Optional[BatchOptions] = None,
) -> Db:
    """Start a database actor on the running event loop and return its client."""
    queue: asyncio.Queue = asyncio.Queue()
    actor = Actor(db_path, queue, delete_handle, options)
    task = asyncio.get_running_loop().create_task(actor.run())
    return Db(queue, task)