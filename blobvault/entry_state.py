"""Where a blob's data and outboard live, and how entry states are merged and stored."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Tuple, Union

from .util import symbol_string

_MAX_U64 = (1 << 64) - 1


class InconsistentStateError(Exception):
    """Two entry states contradict each other, or the database is inconsistent."""


def _addr_short(data: object) -> str:
    return symbol_string(id(data).to_bytes(8, "little"))


def _fmt_option(value: Optional[int]) -> str:
    return "None" if value is None else f"Some({value})"


# --------------------------------------------------------------------------
# Data locations
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class InlineData:
    """Data lives in the inline data table; ``data`` is ``None`` when not loaded."""

    data: Optional[bytes] = None

    def fmt_short(self) -> str:
        if self.data is None:
            return "Inline(())"
        return f"Inline({len(self.data)}, addr={_addr_short(self.data)})"

    def split_inline_data(self) -> Tuple["InlineData", Optional[bytes]]:
        """Separate the inline bytes from the location."""
        return InlineData(), self.data


@dataclass(frozen=True)
class OwnedData:
    """Data lives in the canonical file in the data directory."""

    size: int

    def fmt_short(self) -> str:
        return f"Owned({self.size})"

    def split_inline_data(self) -> Tuple["OwnedData", None]:
        return self, None


@dataclass(frozen=True)
class ExternalData:
    """Data lives in one or more files owned by the user."""

    paths: Tuple[Path, ...]
    size: int

    def __init__(self, paths: Iterable[Union[str, Path]], size: int) -> None:
        object.__setattr__(self, "paths", tuple(Path(p) for p in paths))
        object.__setattr__(self, "size", size)

    def fmt_short(self) -> str:
        paths = ", ".join(f'"{p}"' for p in self.paths)
        return f"External([{paths}], {self.size})"

    def split_inline_data(self) -> Tuple["ExternalData", None]:
        return self, None


DataLocation = Union[InlineData, OwnedData, ExternalData]


def union_data_location(a: DataLocation, b: DataLocation) -> DataLocation:
    """Merge two locations of the same complete blob.

    External paths are combined; owned wins over everything, then inline,
    so that no associated file or inline data is orphaned.
    """
    if isinstance(a, ExternalData) and isinstance(b, ExternalData):
        if a.size != b.size:
            raise InconsistentStateError(f"complete size mismatch {a.size} {b.size}")
        return ExternalData(sorted(set(a.paths) | set(b.paths)), a.size)
    if isinstance(b, OwnedData):
        return b
    if isinstance(a, OwnedData):
        return a
    if isinstance(b, InlineData):
        return b
    return a


# --------------------------------------------------------------------------
# Outboard locations
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class InlineOutboard:
    """Outboard lives in the inline outboard table; ``data`` is ``None`` when not loaded."""

    data: Optional[bytes] = None

    def fmt_short(self) -> str:
        if self.data is None:
            return "Inline(())"
        return f"Inline({len(self.data)})"

    def split_inline_data(self) -> Tuple["InlineOutboard", Optional[bytes]]:
        return InlineOutboard(), self.data


@dataclass(frozen=True)
class OwnedOutboard:
    """Outboard lives in the canonical file in the data directory."""

    def fmt_short(self) -> str:
        return "Owned"

    def split_inline_data(self) -> Tuple["OwnedOutboard", None]:
        return self, None


@dataclass(frozen=True)
class NotNeededOutboard:
    """The blob is small enough to need no outboard."""

    def fmt_short(self) -> str:
        return "NotNeeded"

    def split_inline_data(self) -> Tuple["NotNeededOutboard", None]:
        return self, None


OutboardLocation = Union[InlineOutboard, OwnedOutboard, NotNeededOutboard]


def inline_outboard(data: bytes) -> OutboardLocation:
    """An inline outboard, or ``NotNeededOutboard`` if ``data`` is empty."""
    if not data:
        return NotNeededOutboard()
    return InlineOutboard(bytes(data))


# --------------------------------------------------------------------------
# Entry states
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class CompleteEntry:
    """A complete blob; its size is always known."""

    data_location: DataLocation
    outboard_location: OutboardLocation

    def is_complete(self) -> bool:
        return True

    def is_partial(self) -> bool:
        return False

    def fmt_short(self) -> str:
        return (
            f"Complete {{ data: {self.data_location.fmt_short()}, "
            f"outboard: {self.outboard_location.fmt_short()} }}"
        )


@dataclass(frozen=True)
class PartialEntry:
    """A blob whose hash is known but whose data is incomplete.

    ``size`` is set once the size has been validated.
    """

    size: Optional[int] = field(default=None)

    def is_complete(self) -> bool:
        return False

    def is_partial(self) -> bool:
        return True

    def fmt_short(self) -> str:
        return f"Partial {{ size: {_fmt_option(self.size)} }}"


EntryState = Union[CompleteEntry, PartialEntry]


def union_entry_state(old: EntryState, new: EntryState) -> EntryState:
    """Merge two states of the same blob; complete wins over partial."""
    if isinstance(old, CompleteEntry) and isinstance(new, CompleteEntry):
        return CompleteEntry(
            union_data_location(old.data_location, new.data_location),
            old.outboard_location,
        )
    if isinstance(old, CompleteEntry):
        return old
    if isinstance(new, CompleteEntry):
        return new
    if old.size is not None and new.size is not None and old.size != new.size:
        raise InconsistentStateError(f"validated size mismatch {old.size} {new.size}")
    return PartialEntry(old.size if old.size is not None else new.size)


# --------------------------------------------------------------------------
# Wire format (compact varint encoding, inline payloads are not stored)
# --------------------------------------------------------------------------


def _put_varint(out: bytearray, value: int) -> None:
    if not 0 <= value <= _MAX_U64:
        raise ValueError(f"value out of range: {value}")
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def byte(self) -> int:
        if self._pos >= len(self._data):
            raise ValueError("unexpected end of entry state")
        b = self._data[self._pos]
        self._pos += 1
        return b

    def varint(self) -> int:
        value = 0
        for shift in range(0, 70, 7):
            b = self.byte()
            value |= (b & 0x7F) << shift
            if not b & 0x80:
                if value > _MAX_U64:
                    raise ValueError("varint out of range")
                return value
        raise ValueError("varint too long")

    def raw(self, n: int) -> bytes:
        end = self._pos + n
        if end > len(self._data):
            raise ValueError("unexpected end of entry state")
        chunk = self._data[self._pos : end]
        self._pos = end
        return chunk


def encode_entry_state(state: EntryState) -> bytes:
    """Serialize an entry state; inline payloads are left out."""
    out = bytearray()
    if isinstance(state, CompleteEntry):
        out.append(0)
        loc = state.data_location
        if isinstance(loc, InlineData):
            out.append(0)
        elif isinstance(loc, OwnedData):
            out.append(1)
            _put_varint(out, loc.size)
        else:
            out.append(2)
            _put_varint(out, len(loc.paths))
            for p in loc.paths:
                encoded = str(p).encode("utf-8")
                _put_varint(out, len(encoded))
                out += encoded
            _put_varint(out, loc.size)
        ob = state.outboard_location
        if isinstance(ob, InlineOutboard):
            out.append(0)
        elif isinstance(ob, OwnedOutboard):
            out.append(1)
        else:
            out.append(2)
    else:
        out.append(1)
        if state.size is None:
            out.append(0)
        else:
            out.append(1)
            _put_varint(out, state.size)
    return bytes(out)


def decode_entry_state(data: bytes) -> EntryState:
    """Parse an entry state written by :func:`encode_entry_state`."""
    r = _Reader(bytes(data))
    tag = r.varint()
    if tag == 0:
        kind = r.varint()
        location: DataLocation
        if kind == 0:
            location = InlineData()
        elif kind == 1:
            location = OwnedData(r.varint())
        elif kind == 2:
            count = r.varint()
            paths = [r.raw(r.varint()).decode("utf-8") for _ in range(count)]
            location = ExternalData(paths, r.varint())
        else:
            raise ValueError(f"unknown data location {kind}")
        kind = r.varint()
        outboard: OutboardLocation
        if kind == 0:
            outboard = InlineOutboard()
        elif kind == 1:
            outboard = OwnedOutboard()
        elif kind == 2:
            outboard = NotNeededOutboard()
        else:
            raise ValueError(f"unknown outboard location {kind}")
        return CompleteEntry(location, outboard)
    if tag == 1:
        flag = r.byte()
        if flag == 0:
            return PartialEntry(None)
        if flag == 1:
            return PartialEntry(r.varint())
        raise ValueError(f"invalid option flag {flag}")
    raise ValueError(f"unknown entry state {tag}")