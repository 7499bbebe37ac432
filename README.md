# blobvault

`blobvault` keeps the books for a content-addressed blob store. Blobs are
named by their 32 byte BLAKE3 hash. The package records where each blob's
data and outboard live, which named tags point at which blobs, and which files
on disk may be deleted once a transaction has committed.

It needs only the standard library. The metadata tables are kept in an SQLite
database, and BLAKE3 is implemented in pure Python.

## Modules

- `blobvault.util`
  - `Tag`: a named tag that is ordered by its raw bytes. `Tag.auto` builds a
    unique `auto-<timestamp>` name. `successor` and `next_prefix` give the
    tags that come next in order.
  - `blake3_hash` and `symbol_string`, a short three-symbol fingerprint.
  - Range helpers: `limited_range`, `get_limited_slice`, `next_prefix` and
    `upper_bound`.
  - Checksummed files: `write_checksummed`, `read_checksummed` and
    `read_checksummed_and_truncate`. A bad file raises `ChecksumError`.
  - The constant `IROH_BLOCK_SIZE`, which is 16 KiB.
- `blobvault.options`
  - `PathOptions` gives the per-blob paths `.data`, `.obao4`, `.sizes4` and
    `.bitfield` under `<root>/data`, and fresh temp file names under
    `<root>/temp`.
  - `InlineOptions` sets the inlining limits, `BatchOptions` sets the
    transaction batching, and `Options` holds all of these.
  - `raw_outboard_size` gives the outboard size for a blob of a given size.
- `blobvault.peekable`: `PeekableReceiver` wraps an `asyncio.Queue` so that one
  message can be pushed back.
- `blobvault.entry_state`
  - The data locations `InlineData`, `OwnedData` and `ExternalData`.
  - The outboard locations `InlineOutboard`, `OwnedOutboard` and
    `NotNeededOutboard`.
  - The entry states `CompleteEntry` and `PartialEntry`.
  - The merge rules `union_data_location` and `union_entry_state`. Both raise
    `InconsistentStateError` on a conflict.
  - A compact binary form: `encode_entry_state` and `decode_entry_state`.
- `blobvault.delete_set`: `pair(path_options)` returns a `ProtectHandle` and a
  `DeleteHandle`. A `FileTransaction` marks `BaoFilePart`s for deletion.
  `commit()` removes those files. `close()`, or leaving the `with` block,
  forgets them.
- `blobvault.tables`
  - `open_database` opens the database.
  - `Tables` gives typed access to the blob, tag, inline-data and
    inline-outboard tables.
  - `HashAndFormat`, `BlobFormat` and `TagInfo`.
  - `load_data` and `load_outboard` fill inline locations with their bytes.
- `blobvault.meta`: `open_db` starts an `Actor` on the running event loop and
  returns a `Db` client.
  - `get`, `update` and `set` read and write entry states.
  - `delete_blobs` removes blobs.
  - `set_tag`, `create_tag`, `rename_tag`, `delete_tags` and `list_tags`
    manage tags.
  - `blob_status` returns a `BlobStatus`.
  - `list_blobs` lists hashes, and `dump` prints every table.
  - `clear_protected`, `sync_db` and `shutdown` control the actor.
  - Renaming a missing tag raises `TagNotFoundError`. If the actor has
    stopped, requests raise `ActorDownError`.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
import asyncio
from pathlib import Path

from blobvault.delete_set import pair
from blobvault.entry_state import CompleteEntry, InlineData, NotNeededOutboard
from blobvault.meta import open_db
from blobvault.options import Options
from blobvault.tables import HashAndFormat
from blobvault.util import blake3_hash


async def main():
    root = Path("my-store")
    options = Options.from_root(root)
    options.path.data_dir.mkdir(parents=True, exist_ok=True)

    _protect, deletes = pair(options.path)
    db = open_db(root / "meta.db", deletes, options.batch)

    data = b"hello"
    hash = blake3_hash(data)
    await db.set(hash, CompleteEntry(InlineData(data), NotNeededOutboard()))
    await db.set_tag("greeting", HashAndFormat(hash))

    print(await db.blob_status(hash))   # BlobStatus(kind='complete', size=5)
    print(await db.list_tags())
    await db.shutdown()


asyncio.run(main())
```

With the default `InlineOptions`, data and outboards of up to 16 KiB count as
inline. For example, `options.is_inlined_data(1024)` is `True`.

## What it does not do

The package stores metadata only. It does not:

- read, write or verify blob content;
- compute outboards;
- import files or byte streams;
- export blobs;
- run garbage collection;
- serve blobs over a network.

Entry states that point to owned or external files are recorded as given. The
only files this package removes are those deleted when a `FileTransaction`
commits.