"""
Offline validation of signed App Store receipts.
"""

from iap_receipt.exceptions import (
    DateParseError,
    FieldDecodeError,
    IdentityMismatchError,
    MalformedEncodingError,
    NoSignerError,
    ReceiptError,
    SignatureInvalidError,
)
from iap_receipt.models.receipt import PurchaseRecord, Receipt
from iap_receipt.services.der import DecodeLimits
from iap_receipt.services.receipt import ReceiptDecoder, parse_receipt
from iap_receipt.services.trust_anchor import TrustAnchor, load_trust_anchor

__all__ = [
    "DateParseError",
    "DecodeLimits",
    "FieldDecodeError",
    "IdentityMismatchError",
    "MalformedEncodingError",
    "NoSignerError",
    "PurchaseRecord",
    "Receipt",
    "ReceiptDecoder",
    "ReceiptError",
    "SignatureInvalidError",
    "TrustAnchor",
    "load_trust_anchor",
    "parse_receipt",
]
