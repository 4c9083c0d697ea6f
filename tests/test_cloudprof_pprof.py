import gzip
from typing import Dict, List, Tuple

import pytest

from cloudprof.cloudprof_errors import EncodeFailed
from cloudprof.cloudprof_pprof import (
    ProfileEncoder,
    _varint,
    format_frame,
    parse_frame,
)
from cloudprof.cloudprof_types import ProfileKind, RawProfile

from conftest import FOLDED_CPU, FOLDED_HEAP


def _read_varint(buf: bytes, pos: int) -> Tuple[int, int]:
    shift = result = 0
    while True:
        byte = buf[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        shift += 7
        if not byte & 0x80:
            return result, pos


def _fields(buf: bytes) -> Dict[int, List]:
    """Minimal protobuf reader: field number -> list of raw values."""
    out: Dict[int, List] = {}
    pos = 0
    while pos < len(buf):
        key, pos = _read_varint(buf, pos)
        field, wire_type = key >> 3, key & 7
        if wire_type == 0:
            value, pos = _read_varint(buf, pos)
        elif wire_type == 2:
            length, pos = _read_varint(buf, pos)
            value, pos = buf[pos : pos + length], pos + length
        else:
            raise AssertionError(f"unexpected wire type {wire_type}")
        out.setdefault(field, []).append(value)
    return out


def _packed(buf: bytes) -> List[int]:
    values, pos = [], 0
    while pos < len(buf):
        value, pos = _read_varint(buf, pos)
        values.append(value)
    return values


def _decode(encoded: bytes) -> Dict[int, List]:
    return _fields(gzip.decompress(encoded))


def test_varint_encoding():
    assert _varint(0) == b"\x00"
    assert _varint(1) == b"\x01"
    assert _varint(300) == b"\xac\x02"
    # negative int64 values use the ten-byte two's complement form
    assert len(_varint(-1)) == 10


def test_frame_tokens():
    assert parse_frame("handle (app.py:42)") == ("handle", "app.py", 42)
    assert parse_frame("<module> (/srv/my app/main.py:1)") == ("<module>", "/srv/my app/main.py", 1)
    assert parse_frame("bare_name") == ("bare_name", "", 0)
    assert format_frame("f", "a;b.py", 3) == "f (a,b.py:3)"


def test_cpu_profile_structure():
    raw = RawProfile(kind=ProfileKind.CPU, duration=10.0, data=FOLDED_CPU)
    profile = _decode(ProfileEncoder().encode(raw, sampling_rate=100, time_nanos=123))
    strings = [s.decode("utf-8") for s in profile[6]]
    assert strings[0] == ""
    for name in ("samples", "count", "cpu", "nanoseconds", "main", "handle", "parse", "idle", "app.py"):
        assert name in strings

    sample_types = [_fields(vt) for vt in profile[1]]
    assert [strings[vt[1][0]] for vt in sample_types] == ["samples", "cpu"]

    samples = [_fields(s) for s in profile[2]]
    assert len(samples) == 2
    first_values = _packed(samples[0][2][0])
    assert first_values == [3, 3 * 10_000_000]

    # locations are leaf-first: the first sample's leaf is parse()
    locations = {}
    for loc in profile[4]:
        fields = _fields(loc)
        locations[fields[1][0]] = _fields(fields[4][0])
    functions = {}
    for fn in profile[5]:
        fields = _fields(fn)
        functions[fields[1][0]] = strings[fields[2][0]]
    leaf_id = _packed(samples[0][1][0])[0]
    assert functions[locations[leaf_id][1][0]] == "parse"
    assert locations[leaf_id][2][0] == 7

    # main() is shared by both stacks and appears once
    assert sorted(functions.values()) == ["handle", "idle", "main", "parse"]

    assert profile[9] == [123]
    assert profile[10] == [10_000_000_000]
    assert profile[12] == [10_000_000]


def test_heap_profile_uses_inuse_types():
    raw = RawProfile(kind=ProfileKind.HEAP, duration=10.0, data=FOLDED_HEAP)
    profile = _decode(ProfileEncoder().encode(raw, time_nanos=1))
    strings = [s.decode("utf-8") for s in profile[6]]
    sample_types = [_fields(vt) for vt in profile[1]]
    assert [strings[vt[1][0]] for vt in sample_types] == ["inuse_objects", "inuse_space"]
    (sample,) = [_fields(s) for s in profile[2]]
    assert _packed(sample[2][0]) == [4, 4096]
    assert 12 not in profile


def test_empty_window_encodes_to_a_valid_profile():
    raw = RawProfile(kind=ProfileKind.CPU, duration=10.0, data=b"")
    profile = _decode(ProfileEncoder().encode(raw, time_nanos=1))
    assert 2 not in profile
    assert len(profile[1]) == 2


def test_encoder_is_reusable():
    encoder = ProfileEncoder()
    raw = RawProfile(kind=ProfileKind.CPU, duration=1.0, data=FOLDED_CPU)
    assert encoder.encode(raw, time_nanos=5) == encoder.encode(raw, time_nanos=5)


@pytest.mark.parametrize(
    "kind,data",
    [
        (ProfileKind.CPU, b"main (a.py:1)\n"),
        (ProfileKind.CPU, b"main (a.py:1) many\n"),
        (ProfileKind.CPU, b"main (a.py:1) -2\n"),
        (ProfileKind.CPU, b";;; 4\n"),
        (ProfileKind.HEAP, b"main (a.py:1) 4\n"),
        (ProfileKind.CPU, b"\xff\xfe 1\n"),
    ],
)
def test_malformed_input_fails_encoding(kind, data):
    raw = RawProfile(kind=kind, duration=1.0, data=data)
    with pytest.raises(EncodeFailed):
        ProfileEncoder().encode(raw)


def test_invalid_sampling_rate_fails_encoding():
    raw = RawProfile(kind=ProfileKind.CPU, duration=1.0, data=FOLDED_CPU)
    with pytest.raises(EncodeFailed):
        ProfileEncoder().encode(raw, sampling_rate=0)


def test_encode_failures_keep_their_cause():
    raw = RawProfile(kind=ProfileKind.CPU, duration=1.0, data=b"main (a.py:1) many\n")
    with pytest.raises(EncodeFailed) as info:
        ProfileEncoder().encode(raw)
    assert isinstance(info.value.__cause__, ValueError)

    raw = RawProfile(kind=ProfileKind.CPU, duration=1.0, data=b"\xff\xfe 1\n")
    with pytest.raises(EncodeFailed) as info:
        ProfileEncoder().encode(raw)
    assert isinstance(info.value.__cause__, UnicodeDecodeError)
