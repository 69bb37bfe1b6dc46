"""
Binary Decoder - generic ASN.1 tag-length-value reader.

Decodes BER/DER input into a tree of read-only Element views. Payloads are
memoryview slices of the caller's buffer, so nothing is copied until a value
is actually read. The decoder knows nothing about receipts.

Supported:
- low and high tag number forms
- short and long definite lengths (up to 4 length octets)
- indefinite lengths on constructed elements (BER), which the storefront
  uses for its signed envelopes

Every structural problem raises MalformedEncodingError, including nesting
deeper than max_depth.
"""

from dataclasses import dataclass
from enum import IntEnum

from iap_receipt.exceptions import MalformedEncodingError

DEFAULT_MAX_DEPTH = 32
DEFAULT_MAX_INPUT_SIZE = 4 * 1024 * 1024

_MAX_TAG_OCTETS = 4
_MAX_LENGTH_OCTETS = 4
_INDEFINITE = -1


class TagClass(IntEnum):
    """Identifier octet class bits."""

    UNIVERSAL = 0
    APPLICATION = 1
    CONTEXT = 2
    PRIVATE = 3


class UniversalTag(IntEnum):
    """Standard type identifiers of the universal class."""

    END_OF_CONTENTS = 0
    BOOLEAN = 1
    INTEGER = 2
    BIT_STRING = 3
    OCTET_STRING = 4
    NULL = 5
    OBJECT_IDENTIFIER = 6
    UTF8_STRING = 12
    SEQUENCE = 16
    SET = 17
    PRINTABLE_STRING = 19
    IA5_STRING = 22
    UTC_TIME = 23
    GENERALIZED_TIME = 24


@dataclass(frozen=True)
class DecodeLimits:
    """Bounds applied to untrusted input before and during decoding."""

    max_input_size: int = DEFAULT_MAX_INPUT_SIZE
    max_depth: int = DEFAULT_MAX_DEPTH

    def __post_init__(self) -> None:
        """Validate limits."""
        if self.max_input_size <= 0:
            raise ValueError(f"max_input_size must be positive: {self.max_input_size}")
        if self.max_depth <= 0:
            raise ValueError(f"max_depth must be positive: {self.max_depth}")

    def check_size(self, data: bytes | bytearray | memoryview) -> None:
        """Reject input larger than max_input_size."""
        if len(data) > self.max_input_size:
            raise MalformedEncodingError(
                f"input of {len(data)} bytes exceeds limit of {self.max_input_size}"
            )


@dataclass(frozen=True)
class Element:
    """One decoded tag-length-value element."""

    tag_class: TagClass
    constructed: bool
    tag_number: int
    header_length: int
    length: int
    payload: memoryview
    children: tuple["Element", ...] = ()

    def is_universal(self, tag: UniversalTag) -> bool:
        """Check the element carries the given universal type identifier."""
        return self.tag_class == TagClass.UNIVERSAL and self.tag_number == tag

    def as_integer(self) -> int:
        """Read a two's complement big-endian INTEGER payload."""
        if self.constructed or not self.payload:
            raise MalformedEncodingError("INTEGER must be a non-empty primitive")
        return int.from_bytes(self.payload, "big", signed=True)

    def as_text(self, encoding: str) -> str:
        """Read a primitive string payload."""
        if self.constructed:
            raise MalformedEncodingError("string must be primitive")
        try:
            return bytes(self.payload).decode(encoding)
        except UnicodeDecodeError as e:
            raise MalformedEncodingError(f"invalid {encoding} string: {e}") from e

    def as_bytes(self) -> bytes:
        """Copy the raw payload out of the underlying buffer."""
        return bytes(self.payload)

    def __repr__(self) -> str:
        kind = "constructed" if self.constructed else "primitive"
        return (
            f"Element({self.tag_class.name.lower()} {self.tag_number}, {kind}, "
            f"length={self.length}, children={len(self.children)})"
        )


def _read_identifier(view: memoryview, offset: int, end: int) -> tuple[TagClass, bool, int, int]:
    if offset >= end:
        raise MalformedEncodingError(f"truncated tag at offset {offset}")
    first = view[offset]
    offset += 1
    if first == 0x00:
        raise MalformedEncodingError(f"unexpected end-of-contents at offset {offset - 1}")

    tag_number = first & 0x1F
    if tag_number == 0x1F:
        tag_number = 0
        for _ in range(_MAX_TAG_OCTETS):
            if offset >= end:
                raise MalformedEncodingError(f"truncated tag at offset {offset}")
            octet = view[offset]
            offset += 1
            tag_number = (tag_number << 7) | (octet & 0x7F)
            if not octet & 0x80:
                break
        else:
            raise MalformedEncodingError(f"tag number too large at offset {offset}")

    return TagClass(first >> 6), bool(first & 0x20), tag_number, offset


def _read_length(view: memoryview, offset: int, end: int) -> tuple[int, int]:
    if offset >= end:
        raise MalformedEncodingError(f"truncated length at offset {offset}")
    first = view[offset]
    offset += 1

    if first < 0x80:
        return first, offset
    if first == 0x80:
        return _INDEFINITE, offset

    count = first & 0x7F
    if count > _MAX_LENGTH_OCTETS:
        raise MalformedEncodingError(f"unsupported {count}-octet length at offset {offset - 1}")
    if offset + count > end:
        raise MalformedEncodingError(f"truncated length at offset {offset}")
    return int.from_bytes(view[offset : offset + count], "big"), offset + count


def _parse_element(
    view: memoryview, offset: int, end: int, depth: int, max_depth: int
) -> tuple[Element, int]:
    if depth > max_depth:
        raise MalformedEncodingError(f"nesting exceeds {max_depth} levels")

    start = offset
    tag_class, constructed, tag_number, offset = _read_identifier(view, offset, end)
    length, offset = _read_length(view, offset, end)
    header_length = offset - start

    if length == _INDEFINITE:
        if not constructed:
            raise MalformedEncodingError(f"indefinite length on primitive at offset {start}")
        children: list[Element] = []
        while True:
            if offset + 2 <= end and view[offset] == 0 and view[offset + 1] == 0:
                break
            if offset >= end:
                raise MalformedEncodingError(f"missing end-of-contents for element at offset {start}")
            child, offset = _parse_element(view, offset, end, depth + 1, max_depth)
            children.append(child)
        payload = view[start + header_length : offset]
        element = Element(
            tag_class, constructed, tag_number, header_length, len(payload), payload, tuple(children)
        )
        return element, offset + 2

    remaining = end - offset
    if length > remaining:
        raise MalformedEncodingError(
            f"declared length {length} exceeds {remaining} remaining bytes at offset {start}"
        )
    payload = view[offset : offset + length]
    nested = _parse_children(view, offset, offset + length, depth + 1, max_depth) if constructed else ()
    return Element(tag_class, constructed, tag_number, header_length, length, payload, nested), (
        offset + length
    )


def _parse_children(
    view: memoryview, offset: int, end: int, depth: int, max_depth: int
) -> tuple[Element, ...]:
    elements: list[Element] = []
    while offset < end:
        element, offset = _parse_element(view, offset, end, depth, max_depth)
        elements.append(element)
    return tuple(elements)


def decode(data: bytes | bytearray | memoryview, *, max_depth: int = DEFAULT_MAX_DEPTH) -> tuple[Element, ...]:
    """
    Decode every top-level element in data.

    Args:
        data: Encoded bytes
        max_depth: Maximum nesting level (top-level elements are level 1)

    Returns:
        Top-level elements in encoding order

    Raises:
        MalformedEncodingError: If the input is not well formed
    """
    view = memoryview(data).toreadonly()
    return _parse_children(view, 0, len(view), 1, max_depth)


def decode_single(data: bytes | bytearray | memoryview, *, max_depth: int = DEFAULT_MAX_DEPTH) -> Element:
    """
    Decode data that must hold exactly one element and nothing else.

    Raises:
        MalformedEncodingError: If the input is empty, malformed or has trailing bytes
    """
    view = memoryview(data).toreadonly()
    if not view:
        raise MalformedEncodingError("empty input")
    element, offset = _parse_element(view, 0, len(view), 1, max_depth)
    if offset != len(view):
        raise MalformedEncodingError(f"{len(view) - offset} trailing bytes after element")
    return element
