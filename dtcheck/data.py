"""Byte buffers with positional markers, as used for property values."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import BinaryIO, Iterator, Optional

_INTEGER_WIDTHS = (8, 16, 32, 64)


class MarkerType(enum.Enum):
    """Kinds of annotation that can be attached to a position in a value."""

    NONE = enum.auto()
    REF_PHANDLE = enum.auto()
    REF_PATH = enum.auto()
    LABEL = enum.auto()
    STRING = enum.auto()


@dataclass(eq=False)
class Marker:
    """An annotation at a byte offset of a value."""

    offset: int
    type: MarkerType
    ref: Optional[str] = None


@dataclass(eq=False)
class Data:
    """A growable byte value together with its ordered list of markers.

    The mutating methods change the value in place and return it, so calls
    can be chained.
    """

    val: bytearray = field(default_factory=bytearray)
    markers: list[Marker] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.val = bytearray(self.val)

    def __len__(self) -> int:
        return len(self.val)

    def __bytes__(self) -> bytes:
        return bytes(self.val)

    def append_data(self, payload: bytes) -> Data:
        """Append raw bytes."""
        self.val += payload
        return self

    def insert_at_marker(self, marker: Marker, payload: bytes) -> Data:
        """Insert bytes at a marker's offset, moving every later marker along."""
        index = next(
            (i for i, m in enumerate(self.markers) if m is marker), None
        )
        if index is None:
            raise ValueError("marker does not belong to this value")
        self.val[marker.offset:marker.offset] = payload
        for later in self.markers[index + 1:]:
            later.offset += len(payload)
        return self

    def merge(self, other: Data) -> Data:
        """Append another value, bytes and markers both."""
        shift = len(self.val)
        self.val += other.val
        self.markers.extend(
            Marker(m.offset + shift, m.type, m.ref) for m in other.markers
        )
        return self

    def append_integer(self, value: int, bits: int) -> Data:
        """Append a big-endian integer of 8, 16, 32 or 64 bits, truncating it."""
        if bits not in _INTEGER_WIDTHS:
            raise ValueError(f"Invalid literal size ({bits})")
        mask = (1 << bits) - 1
        self.val += (value & mask).to_bytes(bits // 8, "big")
        return self

    def append_re(self, address: int, size: int) -> Data:
        """Append a memory reservation entry: 64-bit address then 64-bit size."""
        return self.append_integer(address, 64).append_integer(size, 64)

    def append_cell(self, word: int) -> Data:
        """Append one 32-bit cell."""
        return self.append_integer(word, 32)

    def append_addr(self, addr: int) -> Data:
        """Append a 64-bit address."""
        return self.append_integer(addr, 64)

    def append_byte(self, byte: int) -> Data:
        """Append a single byte."""
        return self.append_integer(byte, 8)

    def append_zeroes(self, length: int) -> Data:
        """Append the given number of zero bytes."""
        if length < 0:
            raise ValueError("length must not be negative")
        self.val += bytes(length)
        return self

    def append_align(self, align: int) -> Data:
        """Pad with zeroes up to the next multiple of a power-of-two alignment."""
        if align <= 0 or align & (align - 1):
            raise ValueError("alignment must be a power of two")
        newlen = (len(self.val) + align - 1) & ~(align - 1)
        return self.append_zeroes(newlen - len(self.val))

    def add_marker(self, type: MarkerType, ref: Optional[str] = None) -> Marker:
        """Add a marker at the current end of the value and return it."""
        marker = Marker(len(self.val), type, ref)
        self.markers.append(marker)
        return marker

    def markers_of_type(self, type: MarkerType) -> Iterator[Marker]:
        """Yield the markers of one type, in order."""
        return (m for m in self.markers if m.type is type)

    def is_one_string(self) -> bool:
        """True if the value is exactly one NUL-terminated string."""
        if not self.val:
            return False
        return self.val[-1] == 0 and 0 not in self.val[:-1]


def copy_mem(mem: bytes) -> Data:
    """Return a new value holding a copy of the given bytes."""
    return Data(bytearray(mem))


def copy_file(stream: BinaryIO, maxlen: Optional[int] = None) -> Data:
    """Read a binary stream, up to maxlen bytes if given, into a new value."""
    data = Data()
    data.add_marker(MarkerType.NONE)
    while maxlen is None or len(data.val) < maxlen:
        chunksize = 4096 if maxlen is None else maxlen - len(data.val)
        chunk = stream.read(chunksize)
        if not chunk:
            break
        data.val += chunk
    return data