"""
Field Extractor - tag dispatch over receipt attribute containers.

Receipt payloads are a SET of attribute SEQUENCEs:

    ReceiptAttribute ::= SEQUENCE {
        type    INTEGER,
        version INTEGER,
        value   OCTET STRING
    }

The value octets hold a second, re-encoded primitive (INTEGER, UTF8String
or IA5String) or, for in-app purchases, a nested attribute SET.

Unknown tags are skipped: the storefront adds fields over time and older
validators must keep accepting newer receipts.
"""

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime

from iap_receipt.exceptions import DateParseError, FieldDecodeError, MalformedEncodingError
from iap_receipt.models.receipt import RECEIPT_TIMESTAMP_FORMAT
from iap_receipt.services.der import DEFAULT_MAX_DEPTH, Element, UniversalTag, decode_single

_TIMESTAMP_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z", re.ASCII)


@dataclass(frozen=True)
class FieldHandler:
    """How to decode one tag and which attribute receives the value."""

    name: str
    decode: Callable[[bytes], object]
    repeated: bool = False


FieldTable = Mapping[int, FieldHandler]


def parse_timestamp(text: str) -> datetime:
    """
    Parse a receipt timestamp.

    Only YYYY-MM-DDThh:mm:ssZ is accepted; the result is UTC.

    Raises:
        DateParseError: If text does not match the profile or is not a real date
    """
    if not _TIMESTAMP_PATTERN.fullmatch(text):
        raise DateParseError(text)
    try:
        parsed = datetime.strptime(text, RECEIPT_TIMESTAMP_FORMAT)
    except ValueError as e:
        raise DateParseError(text) from e
    return parsed.replace(tzinfo=UTC)


def format_timestamp(value: datetime) -> str:
    """Render a datetime in the receipt timestamp profile."""
    return value.astimezone(UTC).strftime(RECEIPT_TIMESTAMP_FORMAT)


def _primitive(data: bytes, tag: UniversalTag) -> Element:
    element = decode_single(data, max_depth=1)
    if not element.is_universal(tag):
        raise MalformedEncodingError(
            f"expected {tag.name}, got {element.tag_class.name.lower()} {element.tag_number}"
        )
    return element


def decode_integer(data: bytes) -> int:
    """Decode an encoded INTEGER."""
    return _primitive(data, UniversalTag.INTEGER).as_integer()


def decode_utf8_string(data: bytes) -> str:
    """Decode an encoded UTF8String."""
    return _primitive(data, UniversalTag.UTF8_STRING).as_text("utf-8")


def decode_ia5_string(data: bytes) -> str:
    """Decode an encoded IA5String (ASCII)."""
    return _primitive(data, UniversalTag.IA5_STRING).as_text("ascii")


def decode_timestamp(data: bytes) -> datetime:
    """Decode an IA5String timestamp."""
    return parse_timestamp(decode_ia5_string(data))


def _attribute(element: Element) -> tuple[int, bytes]:
    if not element.is_universal(UniversalTag.SEQUENCE) or len(element.children) < 3:
        raise MalformedEncodingError("receipt attribute must be a SEQUENCE of (type, version, value)")
    tag, _version, value = element.children[:3]
    if not tag.is_universal(UniversalTag.INTEGER) or not _version.is_universal(UniversalTag.INTEGER):
        raise MalformedEncodingError("receipt attribute type and version must be INTEGERs")
    if not value.is_universal(UniversalTag.OCTET_STRING) or value.constructed:
        raise MalformedEncodingError("receipt attribute value must be a primitive OCTET STRING")
    return tag.as_integer(), value.as_bytes()


def attribute_set(data: bytes, *, max_depth: int = DEFAULT_MAX_DEPTH) -> Element:
    """Decode data as a single attribute SET."""
    container = decode_single(data, max_depth=max_depth)
    if not container.is_universal(UniversalTag.SET):
        raise MalformedEncodingError("receipt payload must be a SET")
    return container


def extract_fields(container: Element, table: FieldTable) -> dict[str, object]:
    """
    Decode every known attribute of container.

    Args:
        container: Attribute SET
        table: Tag to handler mapping

    Returns:
        Attribute name to decoded value. Repeated handlers produce a tuple
        in encounter order. Absent tags are absent from the result.

    Raises:
        MalformedEncodingError: If an attribute is not a (type, version, value) triple
        FieldDecodeError: If a known value does not decode as its expected type
        DateParseError: If a known timestamp does not match the profile
    """
    values: dict[str, object] = {}
    repeated: dict[str, list[object]] = {}

    for element in container.children:
        tag, raw = _attribute(element)
        handler = table.get(tag)
        if handler is None:
            continue

        # DateParseError and nested FieldDecodeError propagate unchanged
        try:
            value = handler.decode(raw)
        except MalformedEncodingError as e:
            raise FieldDecodeError(tag, e.message) from e

        if handler.repeated:
            repeated.setdefault(handler.name, []).append(value)
        else:
            values[handler.name] = value

    values.update((name, tuple(items)) for name, items in repeated.items())
    return values
