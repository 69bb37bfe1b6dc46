"""
Receipt Decoder - verify, decode and check ownership of a receipt.

NO PARTIAL RESULTS - a parse either returns a fully populated Receipt or
raises exactly one ReceiptError.
"""

from structlog import get_logger

from iap_receipt.config import Settings
from iap_receipt.exceptions import IdentityMismatchError
from iap_receipt.models.receipt import Receipt
from iap_receipt.services.der import DEFAULT_MAX_DEPTH, DecodeLimits
from iap_receipt.services.fields import (
    FieldHandler,
    FieldTable,
    attribute_set,
    decode_integer,
    decode_timestamp,
    decode_utf8_string,
    extract_fields,
)
from iap_receipt.services.purchase import purchase_decoder
from iap_receipt.services.signature import verify_envelope
from iap_receipt.services.trust_anchor import TrustAnchor, load_trust_anchor

logger = get_logger(__name__)

IN_APP_PURCHASE_TAG = 17


def receipt_fields(max_depth: int = DEFAULT_MAX_DEPTH) -> FieldTable:
    """Tag table of the outer receipt."""
    # https://developer.apple.com/library/archive/releasenotes/General/ValidateAppStoreReceipt/Chapters/ReceiptFields.html
    return {
        0: FieldHandler("receipt_type", decode_utf8_string),
        1: FieldHandler("app_item_id", decode_integer),
        2: FieldHandler("bundle_id", decode_utf8_string),
        3: FieldHandler("application_version", decode_utf8_string),
        12: FieldHandler("receipt_creation_date", decode_timestamp),
        15: FieldHandler("download_id", decode_integer),
        16: FieldHandler("version_external_identifier", decode_integer),
        IN_APP_PURCHASE_TAG: FieldHandler(
            "in_app_purchases", purchase_decoder(max_depth), repeated=True
        ),
        18: FieldHandler("original_purchase_date", decode_timestamp),
        19: FieldHandler("original_application_version", decode_utf8_string),
    }


def decode_receipt_content(content: bytes, *, max_depth: int = DEFAULT_MAX_DEPTH) -> Receipt:
    """
    Decode verified envelope content into a Receipt.

    No signature or identity checks happen here.

    Raises:
        MalformedEncodingError: If content is not an attribute SET
        FieldDecodeError: If a known field has the wrong type
        DateParseError: If a timestamp is malformed
    """
    container = attribute_set(content, max_depth=max_depth)
    return Receipt(**extract_fields(container, receipt_fields(max_depth)))  # type: ignore[arg-type]


class ReceiptDecoder:
    """
    Validates receipts against one trust anchor.

    Holds no mutable state; a single instance may serve concurrent callers.

    Usage:
        decoder = ReceiptDecoder(TrustAnchor.from_file("AppleIncRootCertificate.cer"))
        receipt = decoder.parse(blob, "com.example.app")
    """

    def __init__(self, trust_anchor: TrustAnchor, limits: DecodeLimits | None = None) -> None:
        """
        Initialize receipt decoder.

        Args:
            trust_anchor: Root certificate receipts must chain to
            limits: Input size and nesting bounds (defaults apply when omitted)
        """
        self.trust_anchor = trust_anchor
        self.limits = limits or DecodeLimits()

    @classmethod
    def from_settings(cls, config: Settings) -> "ReceiptDecoder":
        """Build a decoder from configured trust anchor and limits."""
        limits = DecodeLimits(
            max_input_size=config.max_receipt_size,
            max_depth=config.max_nesting_depth,
        )
        return cls(load_trust_anchor(config), limits)

    def parse(self, data: bytes, expected_bundle_id: str) -> Receipt:
        """
        Parse receipt as described in
        https://developer.apple.com/library/archive/releasenotes/General/ValidateAppStoreReceipt/Chapters/ValidateLocally.html

        Args:
            data: Receipt blob (already base64 decoded)
            expected_bundle_id: Bundle ID of the application the receipt must belong to

        Returns:
            Verified receipt

        Raises:
            MalformedEncodingError: If the envelope or payload is structurally invalid
            FieldDecodeError: If a known field has the wrong type
            DateParseError: If a timestamp is malformed
            NoSignerError: If the envelope has no signers
            SignatureInvalidError: If no signer chains to the trust anchor
            IdentityMismatchError: If the receipt belongs to another application
        """
        content = verify_envelope(data, self.trust_anchor, limits=self.limits)
        receipt = decode_receipt_content(content, max_depth=self.limits.max_depth)

        if receipt.bundle_id != expected_bundle_id:
            raise IdentityMismatchError(expected_bundle_id, receipt.bundle_id)

        logger.debug(
            "receipt_decoded",
            bundle_id=receipt.bundle_id,
            purchases=len(receipt.in_app_purchases),
        )
        return receipt


def parse_receipt(
    data: bytes,
    expected_bundle_id: str,
    trust_anchor: TrustAnchor,
    *,
    limits: DecodeLimits | None = None,
) -> Receipt:
    """Verify and decode one receipt. See ReceiptDecoder.parse."""
    return ReceiptDecoder(trust_anchor, limits).parse(data, expected_bundle_id)
