"""
Encodes collector output as a gzipped pprof profile.

Collectors hand over folded stacks: one line per distinct stack, frames
root-first separated by ';', then one or more integer values. The pprof
Profile protobuf is written directly; only the handful of message types
the backend reads (ValueType, Sample, Location, Line, Function) are
emitted.
"""

import gzip
import re
import time
from typing import Dict, List, Optional, Tuple

from cloudprof.cloudprof_errors import EncodeFailed
from cloudprof.cloudprof_types import ProfileKind, RawProfile

# protobuf wire types
_VARINT = 0
_LENGTH_DELIMITED = 2

_UINT64_MASK = (1 << 64) - 1

# "function (filename:line)"
_FRAME_RE = re.compile(r"^(?P<name>.*?) \((?P<file>.*):(?P<line>\d+)\)$")

Frame = Tuple[str, str, int]

# (sample types, period type) per kind, as (type, unit) string pairs
_SAMPLE_TYPES: Dict[ProfileKind, List[Tuple[str, str]]] = {
    ProfileKind.CPU: [("samples", "count"), ("cpu", "nanoseconds")],
    ProfileKind.HEAP: [("inuse_objects", "count"), ("inuse_space", "bytes")],
}
_PERIOD_TYPES: Dict[ProfileKind, Tuple[str, str]] = {
    ProfileKind.CPU: ("cpu", "nanoseconds"),
    ProfileKind.HEAP: ("space", "bytes"),
}
# how many values each folded line carries
_FOLDED_VALUES: Dict[ProfileKind, int] = {
    ProfileKind.CPU: 1,
    ProfileKind.HEAP: 2,
}


def _varint(value: int) -> bytes:
    value &= _UINT64_MASK
    out = bytearray()
    while True:
        bits = value & 0x7F
        value >>= 7
        if value:
            out.append(bits | 0x80)
        else:
            out.append(bits)
            return bytes(out)


def _key(field: int, wire_type: int) -> bytes:
    return _varint((field << 3) | wire_type)


def _int_field(field: int, value: int) -> bytes:
    # proto3 omits zero scalars
    if not value:
        return b""
    return _key(field, _VARINT) + _varint(value)


def _bytes_field(field: int, payload: bytes) -> bytes:
    return _key(field, _LENGTH_DELIMITED) + _varint(len(payload)) + payload


def _packed_field(field: int, values: List[int]) -> bytes:
    if not values:
        return b""
    return _bytes_field(field, b"".join(_varint(v) for v in values))


def parse_frame(token: str) -> Frame:
    """Split a folded-stack frame token into (function, filename, line)."""
    match = _FRAME_RE.match(token)
    if match is None:
        return token, "", 0
    return match.group("name"), match.group("file"), int(match.group("line"))


def format_frame(function: str, filename: str, line: int) -> str:
    """Inverse of parse_frame; separators inside names are replaced."""
    return f"{function} ({filename}:{line})".replace(";", ",")


class ProfileEncoder:
    """Turns RawProfile folded stacks into gzipped pprof bytes."""

    def __init__(self) -> None:
        self.__strings: List[str] = []
        self.__string_index: Dict[str, int] = {}
        self.__functions: Dict[Tuple[str, str], int] = {}
        self.__locations: Dict[Frame, int] = {}

    def encode(
        self,
        raw: RawProfile,
        sampling_rate: int = 100,
        time_nanos: Optional[int] = None,
    ) -> bytes:
        """Encode one window; raises EncodeFailed on malformed input."""
        self.__reset()
        try:
            text = raw.data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EncodeFailed(
                f"{raw.kind.value} profile is not UTF-8: {exc}"
            ) from exc
        stacks = self.parse_folded(raw.kind, text)

        period = 0
        if raw.kind is ProfileKind.CPU:
            if sampling_rate <= 0:
                raise EncodeFailed(f"invalid sampling rate {sampling_rate}")
            period = int(1e9 / sampling_rate)

        samples = b""
        for frames, values in stacks:
            location_ids = [self.__location_id(f) for f in reversed(frames)]
            if raw.kind is ProfileKind.CPU:
                values = [values[0], values[0] * period]
            sample = _packed_field(1, location_ids) + _packed_field(2, values)
            samples += _bytes_field(2, sample)

        sample_types = b"".join(
            _bytes_field(1, self.__value_type(t, u))
            for t, u in _SAMPLE_TYPES[raw.kind]
        )
        period_type = self.__value_type(*_PERIOD_TYPES[raw.kind])

        if time_nanos is None:
            time_nanos = time.time_ns()
        body = (
            sample_types
            + samples
            + self.__encode_locations()
            + self.__encode_functions()
        )
        body += b"".join(_bytes_field(6, s.encode("utf-8")) for s in self.__strings)
        body += _int_field(9, time_nanos)
        body += _int_field(10, int(raw.duration * 1e9))
        body += _bytes_field(11, period_type)
        body += _int_field(12, period)
        return gzip.compress(body, mtime=0)

    @staticmethod
    def parse_folded(
        kind: ProfileKind, text: str
    ) -> List[Tuple[List[Frame], List[int]]]:
        expected = _FOLDED_VALUES[kind]
        stacks = []
        for lineno, line in enumerate(text.splitlines(), 1):
            if not line.strip():
                continue
            parts = line.rsplit(None, expected)
            if len(parts) != expected + 1:
                raise EncodeFailed(
                    f"line {lineno}: expected {expected} value(s) after the stack"
                )
            stack = parts[0].strip()
            try:
                values = [int(v) for v in parts[1:]]
            except ValueError as exc:
                raise EncodeFailed(
                    f"line {lineno}: non-integer value in {line!r}"
                ) from exc
            if any(v < 0 for v in values):
                raise EncodeFailed(f"line {lineno}: negative value in {line!r}")
            frames = [parse_frame(t) for t in stack.split(";") if t]
            if not frames:
                raise EncodeFailed(f"line {lineno}: empty stack")
            stacks.append((frames, values))
        return stacks

    def __reset(self) -> None:
        self.__strings = [""]
        self.__string_index = {"": 0}
        self.__functions = {}
        self.__locations = {}

    def __string(self, s: str) -> int:
        index = self.__string_index.get(s)
        if index is None:
            index = len(self.__strings)
            self.__strings.append(s)
            self.__string_index[s] = index
        return index

    def __value_type(self, type_: str, unit: str) -> bytes:
        return _int_field(1, self.__string(type_)) + _int_field(2, self.__string(unit))

    def __function_id(self, name: str, filename: str) -> int:
        key = (name, filename)
        function_id = self.__functions.get(key)
        if function_id is None:
            function_id = len(self.__functions) + 1
            self.__functions[key] = function_id
        return function_id

    def __location_id(self, frame: Frame) -> int:
        location_id = self.__locations.get(frame)
        if location_id is None:
            self.__function_id(frame[0], frame[1])
            location_id = len(self.__locations) + 1
            self.__locations[frame] = location_id
        return location_id

    def __encode_functions(self) -> bytes:
        out = b""
        for (name, filename), function_id in self.__functions.items():
            function = (
                _int_field(1, function_id)
                + _int_field(2, self.__string(name))
                + _int_field(3, self.__string(name))
                + _int_field(4, self.__string(filename))
            )
            out += _bytes_field(5, function)
        return out

    def __encode_locations(self) -> bytes:
        out = b""
        for (name, filename, line), location_id in self.__locations.items():
            function_id = self.__functions[(name, filename)]
            line_msg = _int_field(1, function_id) + _int_field(2, line)
            location = _int_field(1, location_id) + _bytes_field(4, line_msg)
            out += _bytes_field(4, location)
        return out
