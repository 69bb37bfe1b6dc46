"""
Purchase Record Decoder.

Each in-app purchase arrives as the value of a tag 17 receipt attribute and
is itself an attribute SET with its own tag numbers.
"""

from functools import partial

from iap_receipt.models.receipt import PurchaseRecord
from iap_receipt.services.der import DEFAULT_MAX_DEPTH
from iap_receipt.services.fields import (
    FieldHandler,
    FieldTable,
    attribute_set,
    decode_integer,
    decode_timestamp,
    decode_utf8_string,
    extract_fields,
)

# https://developer.apple.com/library/archive/releasenotes/General/ValidateAppStoreReceipt/Chapters/ReceiptFields.html
PURCHASE_FIELDS: FieldTable = {
    1701: FieldHandler("quantity", decode_integer),
    1702: FieldHandler("product_id", decode_utf8_string),
    1703: FieldHandler("transaction_id", decode_utf8_string),
    1704: FieldHandler("purchase_date", decode_timestamp),
    1705: FieldHandler("original_transaction_id", decode_utf8_string),
    1706: FieldHandler("original_purchase_date", decode_timestamp),
}


def decode_purchase_record(payload: bytes, *, max_depth: int = DEFAULT_MAX_DEPTH) -> PurchaseRecord:
    """
    Decode one in-app purchase.

    Args:
        payload: Octet string value of a tag 17 attribute
        max_depth: Nesting bound for the nested attribute SET

    Returns:
        Decoded purchase record

    Raises:
        MalformedEncodingError: If payload is not an attribute SET
        FieldDecodeError: If a purchase field has the wrong type
        DateParseError: If a purchase timestamp is malformed
    """
    container = attribute_set(payload, max_depth=max_depth)
    return PurchaseRecord(**extract_fields(container, PURCHASE_FIELDS))  # type: ignore[arg-type]


def purchase_decoder(max_depth: int) -> partial[PurchaseRecord]:
    """Bind the nesting bound so the decoder fits a FieldHandler."""
    return partial(decode_purchase_record, max_depth=max_depth)
