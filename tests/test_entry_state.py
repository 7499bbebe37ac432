from pathlib import Path

import pytest

from blobvault.entry_state import (
    CompleteEntry,
    ExternalData,
    InconsistentStateError,
    InlineData,
    InlineOutboard,
    NotNeededOutboard,
    OwnedData,
    OwnedOutboard,
    PartialEntry,
    decode_entry_state,
    encode_entry_state,
    inline_outboard,
    union_data_location,
    union_entry_state,
)


def test_partial_none_wire_bytes():
    assert encode_entry_state(PartialEntry(None)) == b"\x01\x00"


def test_complete_owned_wire_bytes():
    state = CompleteEntry(OwnedData(5), OwnedOutboard())
    assert encode_entry_state(state) == b"\x00\x01\x05\x01"


@pytest.mark.parametrize(
    "state",
    [
        PartialEntry(None),
        PartialEntry(0),
        PartialEntry((1 << 64) - 1),
        CompleteEntry(InlineData(), InlineOutboard()),
        CompleteEntry(OwnedData(1 << 40), NotNeededOutboard()),
        CompleteEntry(ExternalData(["/a/b", "/c"], 12345), OwnedOutboard()),
    ],
)
def test_round_trip(state):
    assert decode_entry_state(encode_entry_state(state)) == state


def test_encode_discards_inline_payload():
    state = CompleteEntry(InlineData(b"abc"), InlineOutboard(b"xyz"))
    decoded = decode_entry_state(encode_entry_state(state))
    assert decoded == CompleteEntry(InlineData(), InlineOutboard())


def test_decode_truncated_raises():
    data = encode_entry_state(CompleteEntry(OwnedData(1 << 40), OwnedOutboard()))
    with pytest.raises(ValueError):
        decode_entry_state(data[:3])


def test_decode_unknown_tag_raises():
    with pytest.raises(ValueError):
        decode_entry_state(b"\x07")


def test_split_inline_data():
    loc, data = InlineData(b"hello").split_inline_data()
    assert loc == InlineData()
    assert data == b"hello"
    owned = OwnedData(3)
    assert owned.split_inline_data() == (owned, None)
    ob, obdata = InlineOutboard(b"ob").split_inline_data()
    assert ob == InlineOutboard()
    assert obdata == b"ob"
    assert NotNeededOutboard().split_inline_data() == (NotNeededOutboard(), None)


def test_inline_outboard_helper():
    assert inline_outboard(b"") == NotNeededOutboard()
    assert inline_outboard(b"data") == InlineOutboard(b"data")


def test_union_external_merges_paths():
    a = ExternalData(["/z", "/a"], 10)
    b = ExternalData(["/a", "/m"], 10)
    merged = union_data_location(a, b)
    assert merged == ExternalData([Path("/a"), Path("/m"), Path("/z")], 10)


def test_union_external_size_mismatch():
    with pytest.raises(InconsistentStateError):
        union_data_location(ExternalData(["/a"], 1), ExternalData(["/b"], 2))


def test_union_owned_wins():
    owned = OwnedData(7)
    assert union_data_location(ExternalData(["/a"], 7), owned) is owned
    assert union_data_location(owned, InlineData()) is owned
    inline = InlineData(b"x")
    assert union_data_location(ExternalData(["/a"], 1), inline) is inline
    assert union_data_location(inline, ExternalData(["/a"], 1)) is inline


def test_union_entry_complete_wins():
    complete = CompleteEntry(OwnedData(4), OwnedOutboard())
    partial = PartialEntry(4)
    assert union_entry_state(complete, partial) is complete
    assert union_entry_state(partial, complete) is complete


def test_union_entry_complete_keeps_old_outboard():
    old = CompleteEntry(ExternalData(["/a"], 4), NotNeededOutboard())
    new = CompleteEntry(ExternalData(["/b"], 4), OwnedOutboard())
    merged = union_entry_state(old, new)
    assert merged.outboard_location == NotNeededOutboard()
    assert merged.data_location == ExternalData(["/a", "/b"], 4)


def test_union_entry_partial_sizes():
    assert union_entry_state(PartialEntry(None), PartialEntry(9)) == PartialEntry(9)
    assert union_entry_state(PartialEntry(9), PartialEntry(None)) == PartialEntry(9)
    assert union_entry_state(PartialEntry(None), PartialEntry(None)) == PartialEntry(None)
    with pytest.raises(InconsistentStateError):
        union_entry_state(PartialEntry(1), PartialEntry(2))


def test_predicates_and_default():
    assert PartialEntry() == PartialEntry(None)
    assert PartialEntry().is_partial() and not PartialEntry().is_complete()
    c = CompleteEntry(OwnedData(1), OwnedOutboard())
    assert c.is_complete() and not c.is_partial()


def test_fmt_short():
    assert PartialEntry(None).fmt_short() == "Partial { size: None }"
    c = CompleteEntry(OwnedData(5), NotNeededOutboard())
    assert c.fmt_short().startswith("Complete { data: Owned(5)")
    assert c.fmt_short().endswith("outboard: NotNeeded }")
    assert InlineOutboard(b"abcd").fmt_short() == f"Inline({len(b'abcd')})"
    assert InlineData(b"abc").fmt_short().startswith(f"Inline({len(b'abc')}, addr=")